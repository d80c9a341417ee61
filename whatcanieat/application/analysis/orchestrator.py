"""
Analysis Orchestrator.

Selects the backend (direct vendor or proxy) and provider from
configuration and exposes one analyze / test-connection contract over
whichever adapter is active. Supports switching provider at runtime.

Design Pattern: Strategy + Dependency Injection
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

import structlog
from pydantic import TypeAdapter, ValidationError

from whatcanieat.domain.analysis.models import (
    AnalysisRequest,
    AnalysisResponse,
    ConnectionTestResult,
    MultimodalAnalysisRequest,
)
from whatcanieat.domain.analysis.ports import IAnalysisProvider
from whatcanieat.domain.shared.errors import ConfigurationError
from whatcanieat.infrastructure.ai.factory import create_provider_adapter
from whatcanieat.infrastructure.ai.transport import classify_error
from whatcanieat.infrastructure.config import (
    AIConfig,
    AIProvider,
    BackendMode,
    GeminiConfig,
    ProviderConfig,
    ProxyConfig,
    VertexConfig,
    load_ai_config,
    missing_fields,
    sanitize_config,
)

logger = structlog.get_logger(__name__)

AnyProviderConfig = Union[GeminiConfig, VertexConfig, ProxyConfig]
AdapterFactory = Callable[[AnyProviderConfig], IAnalysisProvider]

_provider_config_adapter: TypeAdapter[AnyProviderConfig] = TypeAdapter(ProviderConfig)


@dataclass(frozen=True)
class _ActiveBackend:
    """Immutable snapshot of the live backend; replaced as a whole on switch."""

    mode: BackendMode
    provider: AIProvider
    config: AnyProviderConfig
    adapter: IAnalysisProvider

    @property
    def tag(self) -> str:
        name = self.provider.value.upper()
        return f"PROXY {name}" if self.mode is BackendMode.PROXY else name


class AnalysisOrchestrator:
    """
    Routes analysis calls to the active provider adapter.

    Responsibilities:
    - Resolve backend mode and provider from AIConfig
    - Build and hold the active adapter
    - Convert adapter exceptions into failed responses
    - Switch provider atomically (in-flight calls keep their backend)

    Example:
        >>> orchestrator = AnalysisOrchestrator(load_ai_config())
        >>> response = await orchestrator.analyze_menu(request)
        >>> await orchestrator.switch_provider(AIProvider.VERTEX)
    """

    def __init__(
        self,
        config: AIConfig,
        adapter_factory: AdapterFactory = create_provider_adapter,
    ) -> None:
        """
        Initialize orchestrator.

        Args:
            config: Backend selection and provider settings
            adapter_factory: Builds an adapter from a provider config

        Raises:
            ConfigurationError: Active provider not configured or invalid
        """
        self.config = config
        self._adapter_factory = adapter_factory
        self._switch_lock = asyncio.Lock()
        self._retired: List[IAnalysisProvider] = []

        if config.backend_mode is BackendMode.PROXY:
            if config.proxy is None:
                raise ConfigurationError("BACKEND_MODE=proxy but no proxy configuration provided")
            provider_config: Optional[AnyProviderConfig] = config.proxy.model_copy(
                update={"provider": config.provider}
            )
        else:
            provider_config = config.provider_config()

        self._backend = self._build_backend(config.backend_mode, config.provider, provider_config)
        logger.info(
            "Orchestrator ready",
            backend_mode=config.backend_mode.value,
            provider=config.provider.value,
        )

    def _build_backend(
        self,
        mode: BackendMode,
        provider: AIProvider,
        provider_config: Optional[AnyProviderConfig],
    ) -> _ActiveBackend:
        if provider_config is None:
            raise ConfigurationError(f"No configuration provided for provider {provider.value}")
        return _ActiveBackend(
            mode=mode,
            provider=provider,
            config=provider_config,
            adapter=self._adapter_factory(provider_config),
        )

    @property
    def provider(self) -> AIProvider:
        """Currently active provider."""
        return self._backend.provider

    @property
    def backend_mode(self) -> BackendMode:
        return self._backend.mode

    def _failure(
        self, backend: _ActiveBackend, operation: str, request_id: str, error: Exception
    ) -> AnalysisResponse:
        logger.error(
            "Adapter raised",
            provider=backend.provider.value,
            operation=operation,
            request_id=request_id,
            error=str(error),
        )
        return AnalysisResponse.failure(
            request_id,
            f"{backend.tag} {operation} failed: {error}",
            classify_error(error),
            provider=backend.adapter.provider_name,
        )

    async def analyze_menu(self, request: AnalysisRequest) -> AnalysisResponse:
        """
        Analyze menu items with the active provider.

        Args:
            request: Text analysis request

        Returns:
            AnalysisResponse (never raises for call-time failures)
        """
        backend = self._backend
        try:
            return await backend.adapter.analyze(request)
        except Exception as e:
            return self._failure(backend, "analysis", request.request_id, e)

    async def analyze_menu_multimodal(self, request: MultimodalAnalysisRequest) -> AnalysisResponse:
        """Analyze a text and image menu with the active provider."""
        backend = self._backend
        try:
            return await backend.adapter.analyze_multimodal(request)
        except Exception as e:
            return self._failure(backend, "multimodal analysis", request.request_id, e)

    async def test_connection(self) -> ConnectionTestResult:
        """Test the active provider; message is prefixed with the provider tag."""
        backend = self._backend
        try:
            result = await backend.adapter.test_connection()
        except Exception as e:
            return ConnectionTestResult(success=False, message=f"{backend.tag}: Connection test failed: {e}")
        return result.model_copy(update={"message": f"{backend.tag}: {result.message}"})

    async def switch_provider(
        self,
        new_provider: Union[AIProvider, str],
        new_config: Union[AnyProviderConfig, Mapping[str, Any], None] = None,
    ) -> None:
        """
        Switch the active provider.

        The new configuration is validated and the new adapter built
        before anything changes; on any error the current backend stays
        live. The swap itself is a single reference assignment.

        Args:
            new_provider: Provider to activate
            new_config: Its configuration (defaults to the one in AIConfig)

        Raises:
            ConfigurationError: Proxy mode, unknown provider, missing or
                mismatched configuration
        """
        try:
            provider = AIProvider(new_provider)
        except ValueError as e:
            raise ConfigurationError(f"Unknown provider: {new_provider!r}") from e

        if self._backend.mode is BackendMode.PROXY:
            raise ConfigurationError("Provider switching is only available in local backend mode")

        if new_config is None:
            resolved = self.config.provider_config(provider)
        elif isinstance(new_config, Mapping):
            try:
                resolved = _provider_config_adapter.validate_python(dict(new_config))
            except ValidationError as e:
                raise ConfigurationError(f"Invalid {provider.value} configuration: {e}") from e
        else:
            resolved = new_config

        if resolved is not None and resolved.kind != provider.value:
            raise ConfigurationError(
                f"Configuration of kind {resolved.kind!r} does not match provider {provider.value!r}"
            )

        backend = self._build_backend(BackendMode.LOCAL, provider, resolved)

        async with self._switch_lock:
            previous = self._backend
            self._backend = backend
            self.config = self.config.model_copy(
                update={"provider": provider, provider.value: backend.config}
            )
            self._retired.append(previous.adapter)

        logger.info(
            "Provider switched",
            from_provider=previous.provider.value,
            to_provider=provider.value,
        )

    def is_provider_available(
        self,
        provider: Union[AIProvider, str],
        config: Optional[AnyProviderConfig] = None,
    ) -> bool:
        """
        Check configuration completeness for a provider (no network).

        Gemini needs an API key and endpoint; Vertex a project id and
        location; in proxy mode, a base URL and access token.
        """
        try:
            provider = AIProvider(provider)
        except ValueError:
            return False

        if config is None:
            if self._backend.mode is BackendMode.PROXY:
                config = self.config.proxy
            else:
                config = self.config.provider_config(provider)
        if config is None:
            return False
        if not isinstance(config, ProxyConfig) and config.kind != provider.value:
            return False
        return not missing_fields(config)

    def get_available_providers(self) -> List[AIProvider]:
        """Providers whose configuration is complete."""
        return [provider for provider in AIProvider if self.is_provider_available(provider)]

    def get_config(self) -> Dict[str, Any]:
        """Active backend description without secrets."""
        backend = self._backend
        return {
            "backend_mode": backend.mode.value,
            "provider": backend.provider.value,
            "config": sanitize_config(backend.config),
        }

    async def aclose(self) -> None:
        """Close the active adapter and any adapters replaced by switches."""
        adapters = [self._backend.adapter, *self._retired]
        self._retired = []
        for adapter in adapters:
            await adapter.aclose()


def create_orchestrator(env: Optional[Mapping[str, str]] = None) -> AnalysisOrchestrator:
    """Build an orchestrator from environment variables."""
    return AnalysisOrchestrator(load_ai_config(env))
