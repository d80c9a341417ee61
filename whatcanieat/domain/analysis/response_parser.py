"""
Model output parsing.

Extracts the JSON object from raw model text (which may be wrapped in
markdown fences or prose) and validates it into typed results.
"""

from __future__ import annotations

import json
from typing import Any, List, Optional

from pydantic import BaseModel, ValidationError

from whatcanieat.domain.analysis.models import DEFAULT_CONFIDENCE, FoodAnalysisResult
from whatcanieat.domain.shared.errors import ParseError


class ParsedAnalysis(BaseModel):
    """Validated content of a model reply."""

    success: bool
    results: List[FoodAnalysisResult]
    confidence: float = DEFAULT_CONFIDENCE
    message: Optional[str] = None


def parse_model_output(text: str) -> ParsedAnalysis:
    """
    Parse raw model output into a ParsedAnalysis.

    Takes the slice from the first ``{`` to the last ``}``.

    Args:
        text: Raw model output

    Returns:
        Validated analysis

    Raises:
        ParseError: No JSON object, invalid JSON, or wrong shape

    Example:
        >>> parsed = parse_model_output('```json\\n{"success":true,"results":[]}\\n```')
        >>> assert parsed.success and parsed.results == []
    """
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or end < start:
        raise ParseError("No JSON object found in the response.")

    try:
        payload = json.loads(text[start : end + 1])
    except json.JSONDecodeError as e:
        raise ParseError(f"Invalid JSON: {e.msg}") from e

    return parse_analysis_payload(payload)


def parse_analysis_payload(payload: Any) -> ParsedAnalysis:
    """
    Validate an already decoded reply object.

    Raises:
        ParseError: Missing ``success``/``results`` or invalid result items
    """
    if (
        not isinstance(payload, dict)
        or not isinstance(payload.get("success"), bool)
        or not isinstance(payload.get("results"), list)
    ):
        raise ParseError("Invalid response format: missing required fields (success, results).")

    confidence = payload.get("confidence")
    if not isinstance(confidence, (int, float)) or isinstance(confidence, bool) or not confidence:
        confidence = DEFAULT_CONFIDENCE

    message = payload.get("message")
    try:
        return ParsedAnalysis(
            success=payload["success"],
            results=[FoodAnalysisResult.model_validate(item) for item in payload["results"]],
            confidence=min(max(float(confidence), 0.0), 1.0),
            message=message if isinstance(message, str) else None,
        )
    except ValidationError as e:
        raise ParseError(f"Invalid analysis result: {e.errors()[0]['msg']}") from e
