"""
Domain models for menu analysis.

Requests, per-item results and responses exchanged between the caller,
the orchestrator and the provider adapters. Field aliases follow the
camelCase wire format used by the model output and the proxy backend.
"""

from __future__ import annotations

import time
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from whatcanieat.domain.shared.errors import ErrorCode


DEFAULT_CONFIDENCE = 0.8


class DietaryType(str, Enum):
    """Dietary profile selected by the user."""

    VEGAN = "vegan"
    VEGETARIAN = "vegetarian"
    CUSTOM = "custom"


class Suitability(str, Enum):
    """
    Suitability category of a single menu item.

    Wire values are the lowercase words the model is instructed to emit.
    Lookup is case-insensitive and also accepts the member names, so
    "GOOD", "safe" and "Careful" all resolve.
    """

    SAFE = "good"  # Clearly compatible
    NEEDS_CLARIFICATION = "careful"  # Ask staff before ordering
    AVOID = "avoid"  # Clearly violates restrictions

    @classmethod
    def _missing_(cls, value: object) -> Optional["Suitability"]:
        if isinstance(value, str):
            normalized = value.strip().lower()
            for member in cls:
                if normalized in (member.value, member.name.lower()):
                    return member
        return None


class ContentType(str, Enum):
    """Kind of multimodal content part."""

    TEXT = "text"
    IMAGE = "image"


class _WireModel(BaseModel):
    """Base for models with camelCase aliases."""

    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        """Dump using wire (camelCase) field names."""
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


class DietaryPreferences(_WireModel):
    """
    User dietary preferences relevant to analysis.

    Example:
        >>> prefs = DietaryPreferences(dietary_type=DietaryType.VEGAN)
        >>> prefs.to_wire()
        {'dietaryType': 'vegan'}
    """

    dietary_type: DietaryType = Field(..., alias="dietaryType")
    custom_restrictions: Optional[str] = Field(None, alias="customRestrictions")


class MenuItem(_WireModel):
    """
    Single menu item to analyze.

    Attributes:
        id: Caller-side identifier, echoed back as itemId (numbered by
            position inside a request when left blank)
        name: Dish name
        description: Optional description text
        price: Price as printed on the menu
        category: Menu section (appetizer, main, dessert...)
        ingredients: Known ingredients
        raw_text: Original menu line
    """

    id: str = ""
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    price: Optional[str] = None
    category: Optional[str] = None
    ingredients: List[str] = Field(default_factory=list)
    raw_text: str = Field("", alias="rawText")

    @field_validator("name")
    @classmethod
    def not_empty(cls, v: str) -> str:
        """Ensure not just whitespace."""
        if not v.strip():
            raise ValueError("Menu item name cannot be empty or whitespace")
        return v.strip()


class ContentPart(_WireModel):
    """
    Multimodal content part.

    For IMAGE parts, data is a data URL: ``data:<mime>;base64,<payload>``.
    """

    type: ContentType
    data: str


class AnalysisRequest(_WireModel):
    """Text-only analysis request. The request id is correlation only."""

    dietary_preferences: DietaryPreferences = Field(..., alias="dietaryPreferences")
    menu_items: List[MenuItem] = Field(default_factory=list, alias="menuItems")
    context: Optional[str] = None
    request_id: str = Field(..., alias="requestId")

    @field_validator("menu_items")
    @classmethod
    def number_items(cls, items: List[MenuItem]) -> List[MenuItem]:
        """Give items without an id their 1-based position."""
        return [
            item if item.id.strip() else item.model_copy(update={"id": str(index)})
            for index, item in enumerate(items, start=1)
        ]


class MultimodalAnalysisRequest(_WireModel):
    """Analysis request made of ordered text and image parts."""

    dietary_preferences: DietaryPreferences = Field(..., alias="dietaryPreferences")
    content_parts: List[ContentPart] = Field(default_factory=list, alias="contentParts")
    context: Optional[str] = None
    request_id: str = Field(..., alias="requestId")


class FoodAnalysisResult(_WireModel):
    """
    Analysis result for one menu item.

    Example:
        >>> result = FoodAnalysisResult(
        ...     item_id="1",
        ...     item_name="Garden Salad",
        ...     suitability="good",
        ...     explanation="Only vegetables and vinaigrette",
        ...     confidence=0.95,
        ... )
        >>> assert result.suitability is Suitability.SAFE
    """

    item_id: str = Field(..., alias="itemId")
    item_name: str = Field(..., alias="itemName")
    suitability: Suitability
    explanation: str = ""
    questions_to_ask: Optional[List[str]] = Field(None, alias="questionsToAsk")
    confidence: float = Field(DEFAULT_CONFIDENCE, ge=0.0, le=1.0)
    concerns: Optional[List[str]] = None

    @field_validator("item_id", mode="before")
    @classmethod
    def coerce_item_id(cls, v: Any) -> Any:
        """Models sometimes emit numeric ids."""
        if isinstance(v, (int, float)):
            return str(v)
        return v

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, v: Any) -> Any:
        """Clamp numeric confidence into [0, 1]."""
        if v is None:
            return DEFAULT_CONFIDENCE
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return min(max(float(v), 0.0), 1.0)
        return v


class AnalysisResponse(_WireModel):
    """
    Uniform response returned for every analysis call.

    Failed calls carry ``success=False``, an empty result list, zero
    confidence, a human readable message and an error code.
    """

    success: bool
    results: List[FoodAnalysisResult] = Field(default_factory=list)
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    message: Optional[str] = None
    request_id: str = Field(..., alias="requestId")
    processing_time_ms: int = Field(0, ge=0, alias="processingTime")
    provider: Optional[str] = None
    error_code: Optional[ErrorCode] = Field(None, alias="errorCode")

    @classmethod
    def failure(
        cls,
        request_id: str,
        message: str,
        error_code: ErrorCode = ErrorCode.UNKNOWN,
        started_at: Optional[float] = None,
        provider: Optional[str] = None,
    ) -> AnalysisResponse:
        """Build a failed response, timing from ``started_at`` if given."""
        return cls(
            success=False,
            results=[],
            confidence=0.0,
            message=message,
            request_id=request_id,
            processing_time_ms=elapsed_ms(started_at) if started_at else 0,
            provider=provider,
            error_code=error_code,
        )


class ConnectionTestResult(BaseModel):
    """Outcome of a provider connectivity test."""

    success: bool
    message: str
    latency_ms: Optional[int] = None


class CacheEntry(_WireModel):
    """
    Cached analysis response.

    Immutable: re-caching a key replaces the whole entry.
    Timestamps are epoch seconds.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    key: str
    data: AnalysisResponse
    created_at: float = Field(..., alias="timestamp")
    expires_at: float = Field(..., alias="expiresAt")

    def is_expired(self, now: Optional[float] = None) -> bool:
        """Check if entry is expired."""
        return (now if now is not None else time.time()) >= self.expires_at


def elapsed_ms(started_at: float) -> int:
    """Milliseconds elapsed since a ``time.monotonic()`` reading."""
    return max(0, int((time.monotonic() - started_at) * 1000))
