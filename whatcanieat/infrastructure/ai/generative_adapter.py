"""
Shared base for adapters backed by the google-genai SDK.

Gemini API and Vertex AI expose the same ``generate_content`` surface;
they only differ in how the client is authenticated and in output limits.
"""

from __future__ import annotations

import time
from typing import Any, Dict, List, Optional, Sequence, Union

import structlog
from google import genai
from google.genai import types

from whatcanieat.domain.analysis.models import (
    AnalysisRequest,
    AnalysisResponse,
    ConnectionTestResult,
    MultimodalAnalysisRequest,
    elapsed_ms,
)
from whatcanieat.domain.analysis.prompts import (
    CONNECTION_TEST_PROMPT,
    build_analysis_prompt,
    build_multimodal_parts,
)
from whatcanieat.domain.analysis.response_parser import parse_model_output
from whatcanieat.domain.shared.errors import ParseError, TransportError
from whatcanieat.infrastructure.ai.transport import ResilientTransport, classify_error
from whatcanieat.infrastructure.config import AIProvider

logger = structlog.get_logger(__name__)

CONNECTION_TEST_MAX_TOKENS = 100

Contents = Union[str, List[types.Part]]


def to_genai_parts(parts: Sequence[Dict[str, Any]]) -> List[types.Part]:
    """Convert vendor-neutral prompt parts into SDK parts."""
    converted = []
    for part in parts:
        if "inline_data" in part:
            blob = part["inline_data"]
            converted.append(types.Part.from_bytes(data=blob["data"], mime_type=blob["mime_type"]))
        else:
            converted.append(types.Part.from_text(text=part["text"]))
    return converted


class GenerativeAdapter:
    """
    Provider adapter over a google-genai client.

    Never raises from analyze calls: failures become a failed
    AnalysisResponse carrying the error code.
    """

    provider: AIProvider
    max_output_tokens: int = 2048
    temperature: float = 0.1
    top_k: int = 1
    top_p: float = 0.8

    def __init__(self, model: str, client: genai.Client, transport: ResilientTransport) -> None:
        self.model = model
        self._client = client
        self._transport = transport

    @property
    def provider_name(self) -> str:
        return self.provider.value

    def _generation_config(self, max_output_tokens: Optional[int] = None) -> types.GenerateContentConfig:
        return types.GenerateContentConfig(
            temperature=self.temperature,
            top_k=self.top_k,
            top_p=self.top_p,
            max_output_tokens=max_output_tokens or self.max_output_tokens,
        )

    async def _generate(
        self,
        contents: Contents,
        max_output_tokens: Optional[int] = None,
        max_attempts: Optional[int] = None,
    ) -> str:
        config = self._generation_config(max_output_tokens)

        async def operation() -> str:
            response = await self._client.aio.models.generate_content(
                model=self.model,
                contents=contents,
                config=config,
            )
            text = response.text or ""
            if not text.strip():
                raise TransportError(f"Empty response from {self.provider.value.capitalize()} API")
            return text

        return await self._transport.call(operation, max_attempts=max_attempts)

    async def _run_analysis(
        self, request_id: str, contents: Contents, started_at: float
    ) -> AnalysisResponse:
        try:
            text = await self._generate(contents)
            parsed = parse_model_output(text)
        except ParseError as e:
            logger.error("Model output parse failed", provider=self.provider_name, request_id=request_id, error=str(e))
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

        response = AnalysisResponse(
            success=parsed.success,
            results=parsed.results,
            confidence=parsed.confidence,
            message=parsed.message,
            request_id=request_id,
            processing_time_ms=elapsed_ms(started_at),
            provider=self.provider_name,
        )
        logger.info(
            "Analysis completed",
            provider=self.provider_name,
            request_id=request_id,
            items=len(response.results),
            processing_time_ms=response.processing_time_ms,
        )
        return response

    async def analyze(self, request: AnalysisRequest) -> AnalysisResponse:
        """
        Analyze text menu items.

        Args:
            request: Text analysis request

        Returns:
            AnalysisResponse (failed response on any error)
        """
        started_at = time.monotonic()
        prompt = build_analysis_prompt(
            request.dietary_preferences,
            request.menu_items,
            request.request_id,
            request.context,
        )
        logger.debug(
            "Sending analysis request",
            provider=self.provider_name,
            request_id=request.request_id,
            items=len(request.menu_items),
        )
        return await self._run_analysis(request.request_id, prompt, started_at)

    async def analyze_multimodal(self, request: MultimodalAnalysisRequest) -> AnalysisResponse:
        """Analyze a menu given as ordered text and image parts."""
        started_at = time.monotonic()
        parts = build_multimodal_parts(
            request.dietary_preferences,
            request.content_parts,
            request.request_id,
            request.context,
        )
        return await self._run_analysis(request.request_id, to_genai_parts(parts), started_at)

    async def test_connection(self) -> ConnectionTestResult:
        """
        Send a one-line prompt and check the echo.

        Single attempt, no retries.
        """
        started_at = time.monotonic()
        try:
            text = await self._generate(
                CONNECTION_TEST_PROMPT,
                max_output_tokens=CONNECTION_TEST_MAX_TOKENS,
                max_attempts=1,
            )
        except Exception as e:
            return ConnectionTestResult(
                success=False,
                message=f"Connection test failed: {e}",
                latency_ms=elapsed_ms(started_at),
            )

        if "successful" in text.lower():
            return ConnectionTestResult(
                success=True,
                message="API connection test passed",
                latency_ms=elapsed_ms(started_at),
            )
        return ConnectionTestResult(
            success=False,
            message="API responded but with unexpected content",
            latency_ms=elapsed_ms(started_at),
        )

    async def aclose(self) -> None:
        """Close the SDK's async HTTP client."""
        await self._client.aio.aclose()
