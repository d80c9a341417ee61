"""
Proxy backend adapter.

Sends analysis requests to a server-side edge function that holds the
vendor credentials and forwards to Gemini or Vertex.
"""

import time
from typing import Any, Dict, Optional

import aiohttp
import structlog

from whatcanieat.domain.analysis.models import (
    AnalysisRequest,
    AnalysisResponse,
    ConnectionTestResult,
    MultimodalAnalysisRequest,
    elapsed_ms,
)
from whatcanieat.domain.analysis.response_parser import parse_analysis_payload
from whatcanieat.domain.shared.errors import (
    ErrorCode,
    NonRetryableAPIError,
    ParseError,
    TransportError,
)
from whatcanieat.infrastructure.ai.transport import ResilientTransport, classify_error
from whatcanieat.infrastructure.config import ProxyConfig, validate_provider_config

logger = structlog.get_logger(__name__)

_NON_RETRYABLE_STATUS = {
    400: ErrorCode.INVALID_REQUEST,
    401: ErrorCode.AUTHORIZATION,
    403: ErrorCode.AUTHORIZATION,
    429: ErrorCode.RATE_LIMITED,
}


class ProxyAdapter:
    """
    Menu analysis through the edge function proxy.

    Envelope sent:
        {type, dietaryPreferences?, menuItems?, contentParts?, context?,
         requestId, provider}

    Example:
        >>> async with ProxyAdapter(config) as adapter:
        ...     response = await adapter.analyze(request)
    """

    def __init__(
        self,
        config: ProxyConfig,
        session: Optional[aiohttp.ClientSession] = None,
        transport: Optional[ResilientTransport] = None,
    ) -> None:
        """
        Initialize adapter.

        Args:
            config: Proxy settings
            session: Optional aiohttp session (for testing)
            transport: Optional transport (defaults to one built from config)

        Raises:
            ConfigurationError: Base URL or access token missing
        """
        validate_provider_config(config)
        self.config = config
        self._session = session
        self._owns_session = session is None
        self._transport = transport or ResilientTransport(
            timeout_seconds=config.timeout_seconds,
            max_retries=config.max_retries,
            name=self.provider_name,
        )

    @property
    def provider_name(self) -> str:
        return f"proxy:{self.config.provider.value}"

    async def __aenter__(self) -> "ProxyAdapter":
        """Async context manager entry."""
        return self

    async def __aexit__(self, *args: object) -> None:
        """Async context manager exit."""
        await self.aclose()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession()
        return self._session

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.access_token}",
            "apikey": self.config.access_token,
            "Content-Type": "application/json",
        }

    async def _invoke(self, envelope: Dict[str, Any]) -> Dict[str, Any]:
        """
        POST one envelope to the function.

        Raises:
            NonRetryableAPIError: 400/401/403/429
            TransportError: Other HTTP errors, empty body, or ``success: false``
        """
        session = self._get_session()
        async with session.post(
            self.config.function_url,
            json=envelope,
            headers=self._headers(),
            timeout=aiohttp.ClientTimeout(total=self.config.timeout_seconds),
        ) as response:
            if response.status in _NON_RETRYABLE_STATUS:
                body = await response.text()
                raise NonRetryableAPIError(
                    f"Proxy function error: HTTP {response.status} {body[:200]}".strip(),
                    code=_NON_RETRYABLE_STATUS[response.status],
                    status=response.status,
                )
            if response.status >= 400:
                raise TransportError(
                    f"Proxy function error: HTTP {response.status}",
                    status=response.status,
                )
            data = await response.json(content_type=None)

        if not data:
            raise TransportError("No data received from proxy function")
        if not isinstance(data, dict):
            raise TransportError("Unexpected proxy function response")
        if not data.get("success") and data.get("error"):
            raise TransportError(str(data["error"]))
        return data

    async def _run(self, envelope: Dict[str, Any], started_at: float) -> AnalysisResponse:
        request_id = envelope["requestId"]
        try:
            data = await self._transport.call(lambda: self._invoke(envelope))
            parsed = parse_analysis_payload(data)
        except ParseError as e:
            return AnalysisResponse.failure(
                request_id,
                f"Failed to parse API response: {e}",
                e.code,
                started_at=started_at,
                provider=self.provider_name,
            )
        except Exception as e:
            return AnalysisResponse.failure(
                request_id,
                str(e) or type(e).__name__,
                classify_error(e),
                started_at=started_at,
                provider=self.provider_name,
            )

        logger.info(
            "Proxy analysis completed",
            provider=self.provider_name,
            request_id=request_id,
            items=len(parsed.results),
        )
        return AnalysisResponse(
            success=parsed.success,
            results=parsed.results,
            confidence=parsed.confidence,
            message=parsed.message,
            request_id=request_id,
            processing_time_ms=elapsed_ms(started_at),
            provider=data.get("provider") or self.provider_name,
        )

    async def analyze(self, request: AnalysisRequest) -> AnalysisResponse:
        """Analyze text menu items through the proxy."""
        started_at = time.monotonic()
        envelope = {
            "type": "analyze",
            "dietaryPreferences": request.dietary_preferences.to_wire(),
            "menuItems": [item.to_wire() for item in request.menu_items],
            "context": request.context,
            "requestId": request.request_id,
            "provider": self.config.provider.value,
        }
        return await self._run(envelope, started_at)

    async def analyze_multimodal(self, request: MultimodalAnalysisRequest) -> AnalysisResponse:
        """Analyze text and image parts through the proxy."""
        started_at = time.monotonic()
        envelope = {
            "type": "analyze_multimodal",
            "dietaryPreferences": request.dietary_preferences.to_wire(),
            "contentParts": [part.to_wire() for part in request.content_parts],
            "context": request.context,
            "requestId": request.request_id,
            "provider": self.config.provider.value,
        }
        return await self._run(envelope, started_at)

    async def test_connection(self) -> ConnectionTestResult:
        """Ask the function to run its own vendor connectivity test."""
        started_at = time.monotonic()
        envelope = {
            "type": "test_connection",
            "requestId": f"test_{int(time.time() * 1000)}",
            "provider": self.config.provider.value,
        }
        try:
            data = await self._transport.call(lambda: self._invoke(envelope), max_attempts=1)
        except Exception as e:
            return ConnectionTestResult(
                success=False,
                message=f"Connection test failed: {e}",
                latency_ms=elapsed_ms(started_at),
            )
        success = bool(data.get("success"))
        message = data.get("message") or ("Connection successful" if success else "Connection failed")
        return ConnectionTestResult(
            success=success,
            message=message,
            latency_ms=elapsed_ms(started_at),
        )

    async def aclose(self) -> None:
        """Close the HTTP session if this adapter created it."""
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None
