"""
Unit tests for AnalysisOrchestrator.

Adapters are replaced with FakeAdapter through the adapter_factory
argument, so no SDK client is ever built.
"""

import asyncio
from typing import List
from unittest.mock import AsyncMock

import pytest

from whatcanieat.application.analysis.orchestrator import AnalysisOrchestrator
from whatcanieat.domain.analysis.models import (
    AnalysisRequest,
    AnalysisResponse,
    ConnectionTestResult,
)
from whatcanieat.domain.shared.errors import ConfigurationError, ErrorCode, TransportError
from whatcanieat.infrastructure.config import (
    AIConfig,
    AIProvider,
    BackendMode,
    GeminiConfig,
    ProxyConfig,
    VertexConfig,
    missing_fields,
)


class FakeAdapter:
    """In-memory provider adapter recording what it was built with."""

    def __init__(self, config) -> None:
        self.config = config
        self.provider_name = config.kind
        self.analyze = AsyncMock()
        self.analyze_multimodal = AsyncMock()
        self.test_connection = AsyncMock(
            return_value=ConnectionTestResult(success=True, message="API connection test passed")
        )
        self.aclose = AsyncMock()


class FakeFactory:
    def __init__(self) -> None:
        self.built: List[FakeAdapter] = []

    def __call__(self, config) -> FakeAdapter:
        if missing_fields(config):
            raise ConfigurationError(f"Invalid {config.kind} configuration")
        adapter = FakeAdapter(config)
        self.built.append(adapter)
        return adapter


@pytest.fixture
def factory() -> FakeFactory:
    return FakeFactory()


@pytest.fixture
def ai_config(gemini_config: GeminiConfig, vertex_config: VertexConfig) -> AIConfig:
    return AIConfig(gemini=gemini_config, vertex=vertex_config)


@pytest.fixture
def orchestrator(ai_config: AIConfig, factory: FakeFactory) -> AnalysisOrchestrator:
    return AnalysisOrchestrator(ai_config, adapter_factory=factory)


class TestConstruction:
    def test_local_gemini(self, orchestrator: AnalysisOrchestrator, factory: FakeFactory) -> None:
        assert orchestrator.provider is AIProvider.GEMINI
        assert orchestrator.backend_mode is BackendMode.LOCAL
        assert isinstance(factory.built[0].config, GeminiConfig)

    def test_proxy_mode_carries_provider(self, proxy_config: ProxyConfig, factory: FakeFactory) -> None:
        config = AIConfig(backend_mode=BackendMode.PROXY, provider=AIProvider.VERTEX, proxy=proxy_config)

        orchestrator = AnalysisOrchestrator(config, adapter_factory=factory)

        built = factory.built[0].config
        assert isinstance(built, ProxyConfig)
        assert built.provider is AIProvider.VERTEX
        assert orchestrator.backend_mode is BackendMode.PROXY

    def test_proxy_mode_without_proxy_config(self, factory: FakeFactory) -> None:
        with pytest.raises(ConfigurationError, match="proxy"):
            AnalysisOrchestrator(AIConfig(backend_mode=BackendMode.PROXY), adapter_factory=factory)

    def test_missing_provider_config(self, factory: FakeFactory) -> None:
        with pytest.raises(ConfigurationError, match="gemini"):
            AnalysisOrchestrator(AIConfig(), adapter_factory=factory)


class TestDelegation:
    @pytest.mark.asyncio
    async def test_analyze_delegates(
        self,
        orchestrator: AnalysisOrchestrator,
        factory: FakeFactory,
        analysis_request: AnalysisRequest,
        success_response: AnalysisResponse,
    ) -> None:
        factory.built[0].analyze.return_value = success_response

        assert await orchestrator.analyze_menu(analysis_request) is success_response
        factory.built[0].analyze.assert_awaited_once_with(analysis_request)

    @pytest.mark.asyncio
    async def test_adapter_exception_becomes_failure(
        self, orchestrator: AnalysisOrchestrator, factory: FakeFactory, analysis_request: AnalysisRequest
    ) -> None:
        factory.built[0].analyze.side_effect = TransportError("connection reset")

        response = await orchestrator.analyze_menu(analysis_request)

        assert response.success is False
        assert response.message == "GEMINI analysis failed: connection reset"
        assert response.error_code is ErrorCode.TRANSPORT
        assert response.request_id == "req-1"

    @pytest.mark.asyncio
    async def test_connection_message_tagged(self, orchestrator: AnalysisOrchestrator) -> None:
        result = await orchestrator.test_connection()

        assert result.success is True
        assert result.message == "GEMINI: API connection test passed"

    @pytest.mark.asyncio
    async def test_proxy_tag(self, proxy_config: ProxyConfig, factory: FakeFactory) -> None:
        config = AIConfig(backend_mode=BackendMode.PROXY, proxy=proxy_config)
        orchestrator = AnalysisOrchestrator(config, adapter_factory=factory)

        result = await orchestrator.test_connection()

        assert result.message.startswith("PROXY GEMINI: ")


class TestSwitchProvider:
    @pytest.mark.asyncio
    async def test_switch_to_configured_provider(
        self, orchestrator: AnalysisOrchestrator, factory: FakeFactory
    ) -> None:
        await orchestrator.switch_provider(AIProvider.VERTEX)

        assert orchestrator.provider is AIProvider.VERTEX
        assert orchestrator.config.provider is AIProvider.VERTEX
        assert isinstance(factory.built[-1].config, VertexConfig)

    @pytest.mark.asyncio
    async def test_switch_with_mapping(self, factory: FakeFactory, gemini_config: GeminiConfig) -> None:
        orchestrator = AnalysisOrchestrator(AIConfig(gemini=gemini_config), adapter_factory=factory)

        await orchestrator.switch_provider("vertex", {"kind": "vertex", "project_id": "other-project"})

        assert orchestrator.provider is AIProvider.VERTEX
        assert orchestrator.config.vertex is not None
        assert orchestrator.config.vertex.project_id == "other-project"

    @pytest.mark.asyncio
    async def test_mismatched_config_rejected(
        self, orchestrator: AnalysisOrchestrator, gemini_config: GeminiConfig
    ) -> None:
        with pytest.raises(ConfigurationError, match="does not match"):
            await orchestrator.switch_provider(AIProvider.VERTEX, gemini_config)

        assert orchestrator.provider is AIProvider.GEMINI

    @pytest.mark.asyncio
    async def test_invalid_config_keeps_current_backend(
        self, orchestrator: AnalysisOrchestrator, factory: FakeFactory
    ) -> None:
        with pytest.raises(ConfigurationError):
            await orchestrator.switch_provider(AIProvider.VERTEX, VertexConfig())

        assert orchestrator.provider is AIProvider.GEMINI
        assert len(factory.built) == 1

    @pytest.mark.asyncio
    async def test_unknown_provider(self, orchestrator: AnalysisOrchestrator) -> None:
        with pytest.raises(ConfigurationError, match="Unknown provider"):
            await orchestrator.switch_provider("openai")

    @pytest.mark.asyncio
    async def test_proxy_mode_rejects_switch(self, proxy_config: ProxyConfig, factory: FakeFactory) -> None:
        config = AIConfig(backend_mode=BackendMode.PROXY, proxy=proxy_config)
        orchestrator = AnalysisOrchestrator(config, adapter_factory=factory)

        with pytest.raises(ConfigurationError, match="local backend mode"):
            await orchestrator.switch_provider(AIProvider.VERTEX)

    @pytest.mark.asyncio
    async def test_in_flight_call_keeps_old_backend(
        self,
        orchestrator: AnalysisOrchestrator,
        factory: FakeFactory,
        analysis_request: AnalysisRequest,
        success_response: AnalysisResponse,
    ) -> None:
        gemini = factory.built[0]
        release = asyncio.Event()

        async def slow_analyze(request: AnalysisRequest) -> AnalysisResponse:
            await release.wait()
            return success_response

        gemini.analyze.side_effect = slow_analyze

        pending = asyncio.create_task(orchestrator.analyze_menu(analysis_request))
        await asyncio.sleep(0)
        await orchestrator.switch_provider(AIProvider.VERTEX)
        release.set()

        assert (await pending).provider == "gemini"
        gemini.analyze.assert_awaited_once()
        factory.built[-1].analyze.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_aclose_closes_retired_adapters(
        self, orchestrator: AnalysisOrchestrator, factory: FakeFactory
    ) -> None:
        await orchestrator.switch_provider(AIProvider.VERTEX)

        await orchestrator.aclose()

        for adapter in factory.built:
            adapter.aclose.assert_awaited_once()


class TestAvailability:
    def test_available_providers(self, orchestrator: AnalysisOrchestrator) -> None:
        assert orchestrator.get_available_providers() == [AIProvider.GEMINI, AIProvider.VERTEX]

    def test_incomplete_provider_unavailable(self, factory: FakeFactory, gemini_config: GeminiConfig) -> None:
        orchestrator = AnalysisOrchestrator(
            AIConfig(gemini=gemini_config, vertex=VertexConfig()), adapter_factory=factory
        )

        assert orchestrator.is_provider_available(AIProvider.VERTEX) is False
        assert orchestrator.is_provider_available("unknown") is False

    def test_explicit_config(self, orchestrator: AnalysisOrchestrator) -> None:
        assert orchestrator.is_provider_available(AIProvider.GEMINI, GeminiConfig(api_key="k")) is True
        assert orchestrator.is_provider_available(AIProvider.GEMINI, GeminiConfig()) is False

    def test_get_config_hides_secrets(self, orchestrator: AnalysisOrchestrator) -> None:
        data = orchestrator.get_config()

        assert data["backend_mode"] == "local"
        assert data["provider"] == "gemini"
        assert "test-gemini-key" not in str(data)
        assert data["config"]["api_key_present"] is True
