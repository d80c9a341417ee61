"""
Shared fixtures for menu analysis tests.

No fixture touches the network: vendor SDK clients, aiohttp sessions and
motor collections are all mocked.
"""

import json
from typing import Any, Callable, Dict, List
from unittest.mock import AsyncMock, MagicMock

import pytest

from whatcanieat.domain.analysis.models import (
    AnalysisRequest,
    AnalysisResponse,
    DietaryPreferences,
    DietaryType,
    FoodAnalysisResult,
    MenuItem,
    Suitability,
)
from whatcanieat.infrastructure.cache.in_memory_store import InMemoryCacheStore
from whatcanieat.infrastructure.config import GeminiConfig, ProxyConfig, VertexConfig


# ═══════════════════════════════════════════════════════════
# DOMAIN MODEL FIXTURES
# ═══════════════════════════════════════════════════════════


@pytest.fixture
def vegan_preferences() -> DietaryPreferences:
    return DietaryPreferences(dietary_type=DietaryType.VEGAN)


@pytest.fixture
def garden_salad() -> MenuItem:
    return MenuItem(
        id="1",
        name="Garden Salad",
        description="Mixed greens, tomatoes, cucumber, balsamic vinaigrette",
        ingredients=["lettuce", "tomato", "cucumber", "balsamic vinegar"],
        raw_text="Garden Salad - Mixed greens, tomatoes, cucumber, balsamic vinaigrette",
    )


@pytest.fixture
def analysis_request(
    vegan_preferences: DietaryPreferences, garden_salad: MenuItem
) -> AnalysisRequest:
    return AnalysisRequest(
        dietary_preferences=vegan_preferences,
        menu_items=[garden_salad],
        request_id="req-1",
    )


@pytest.fixture
def safe_result() -> FoodAnalysisResult:
    return FoodAnalysisResult(
        item_id="1",
        item_name="Garden Salad",
        suitability=Suitability.SAFE,
        explanation="Vegetables and a vinegar dressing only",
        confidence=0.95,
    )


@pytest.fixture
def success_response(safe_result: FoodAnalysisResult) -> AnalysisResponse:
    return AnalysisResponse(
        success=True,
        results=[safe_result],
        confidence=0.9,
        request_id="req-1",
        processing_time_ms=420,
        provider="gemini",
    )


@pytest.fixture
def model_output_payload() -> Dict[str, Any]:
    """Model reply as the prompt instructs it to be shaped."""
    return {
        "success": True,
        "results": [
            {
                "itemId": "1",
                "itemName": "Garden Salad",
                "suitability": "good",
                "explanation": "Vegetables and a vinegar dressing only",
                "confidence": 0.95,
            }
        ],
        "confidence": 0.9,
        "requestId": "req-1",
        "processingTime": 0,
    }


@pytest.fixture
def model_output_text(model_output_payload: Dict[str, Any]) -> str:
    return "```json\n" + json.dumps(model_output_payload) + "\n```"


# ═══════════════════════════════════════════════════════════
# CONFIG FIXTURES
# ═══════════════════════════════════════════════════════════


@pytest.fixture
def gemini_config() -> GeminiConfig:
    return GeminiConfig(api_key="test-gemini-key", max_retries=3, timeout_ms=5000)


@pytest.fixture
def vertex_config() -> VertexConfig:
    return VertexConfig(project_id="test-project", location="us-central1")


@pytest.fixture
def proxy_config() -> ProxyConfig:
    return ProxyConfig(base_url="https://proxy.example.com", access_token="anon-token")


# ═══════════════════════════════════════════════════════════
# INFRASTRUCTURE FIXTURES
# ═══════════════════════════════════════════════════════════


@pytest.fixture
def memory_store() -> InMemoryCacheStore:
    return InMemoryCacheStore()


class FakeClock:
    """Manually advanced epoch clock."""

    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def no_sleep() -> AsyncMock:
    """Sleep replacement recording backoff delays."""
    return AsyncMock(return_value=None)


@pytest.fixture
def genai_client_factory() -> Callable[[List[Any]], MagicMock]:
    """
    Build a mock google-genai client.

    Each element of ``outcomes`` is either reply text or an exception
    raised by that call.
    """

    def _factory(outcomes: List[Any]) -> MagicMock:
        side_effects: List[Any] = []
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                side_effects.append(outcome)
            else:
                reply = MagicMock()
                reply.text = outcome
                side_effects.append(reply)

        client = MagicMock()
        client.aio.models.generate_content = AsyncMock(side_effect=side_effects)
        client.aio.aclose = AsyncMock()
        return client

    return _factory
