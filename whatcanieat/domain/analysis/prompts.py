"""
Prompt construction for menu analysis.

Builds the text prompt (or ordered multimodal parts) sent to the model
from the semantic request. Shared by every provider adapter so that
vendors only differ in how the payload is transported.
"""

from __future__ import annotations

import base64
import re
from typing import Any, Dict, List, Optional, Sequence

from whatcanieat.domain.analysis.models import (
    ContentPart,
    ContentType,
    DietaryPreferences,
    DietaryType,
    MenuItem,
)


CONNECTION_TEST_PROMPT = 'Respond with "API connection successful"'

_DATA_URL_RE = re.compile(r"^data:([^;]+);base64,(.+)$", re.DOTALL)

SYSTEM_PROMPT = """You are a dietary analysis assistant. You help people with food \
restrictions find menu items they can safely order.

OUTPUT: reply with a single JSON object and nothing else.

JSON shape:
{
  "success": true,
  "results": [
    {
      "itemId": "string",
      "itemName": "string",
      "suitability": "good" | "careful" | "avoid",
      "explanation": "string",
      "questionsToAsk": ["string"] (only for "careful" items),
      "confidence": number between 0 and 1,
      "concerns": ["string"] (optional)
    }
  ],
  "confidence": number between 0 and 1,
  "message": "string" (optional),
  "requestId": "string",
  "processingTime": 0
}

CATEGORIES:
- "good": compatible with the restrictions as described
- "careful": cannot be decided without asking staff (unknown ingredients, preparation)
- "avoid": conflicts with the restrictions

Give concrete questions for staff on every "careful" item.
Every item needs an explanation and a confidence score."""


def build_dietary_context(preferences: DietaryPreferences) -> str:
    """
    Describe the user's restrictions for the model.

    Args:
        preferences: Dietary preferences

    Returns:
        Restriction section of the prompt
    """
    if preferences.dietary_type is DietaryType.VEGAN:
        return (
            "DIETARY RESTRICTIONS: Vegan\n"
            "- Exclude every animal product: meat, poultry, fish, dairy, eggs, honey\n"
            "- Exclude animal-derived additives such as gelatin, casein and whey\n"
            "- Flag possible contact with animal products (shared grills, lard, butter)"
        )
    if preferences.dietary_type is DietaryType.VEGETARIAN:
        return (
            "DIETARY RESTRICTIONS: Vegetarian\n"
            "- Exclude meat, poultry, fish and seafood\n"
            "- Exclude meat or fish stocks, broths and sauces\n"
            "- Dairy and eggs are allowed\n"
            "- Watch for hidden animal ingredients (anchovies, bacon bits, lard)"
        )
    restrictions = (preferences.custom_restrictions or "").strip()
    return (
        "DIETARY RESTRICTIONS: Custom\n"
        f"{restrictions or 'No specific restrictions provided'}\n"
        "- Judge every item against the restrictions above\n"
        "- Prefer \"careful\" when ingredients are unclear"
    )


def build_menu_items_context(menu_items: Sequence[MenuItem]) -> str:
    """
    Render menu items as a numbered list.

    Args:
        menu_items: Items to analyze

    Returns:
        Menu section of the prompt
    """
    if not menu_items:
        return "No menu items provided for analysis."

    blocks = []
    for index, item in enumerate(menu_items, start=1):
        lines = [f"{index}. {item.name} (id: {item.id})"]
        if item.description:
            lines.append(f"Description: {item.description}")
        if item.ingredients:
            lines.append(f"Ingredients: {', '.join(item.ingredients)}")
        if item.category:
            lines.append(f"Category: {item.category}")
        if item.price:
            lines.append(f"Price: {item.price}")
        blocks.append("\n   ".join(lines))

    items_text = "\n\n".join(blocks)
    return f"MENU ITEMS TO ANALYZE ({len(menu_items)} items):\n{items_text}"


def build_analysis_instructions(request_id: str) -> str:
    """Step list closing the prompt."""
    return (
        "ANALYSIS INSTRUCTIONS:\n"
        "1. Check each menu item against the dietary restrictions\n"
        '2. Assign "good", "careful" or "avoid"\n'
        "3. Explain each decision briefly\n"
        '4. List questions for staff on "careful" items\n'
        "5. Base confidence on how complete the item information is\n"
        f"6. Echo request ID: {request_id}\n\n"
        "Be concise. Dietary compliance and food safety come first."
    )


def build_analysis_prompt(
    preferences: DietaryPreferences,
    menu_items: Sequence[MenuItem],
    request_id: str,
    context: Optional[str] = None,
) -> str:
    """
    Build the complete text prompt for a menu analysis.

    Args:
        preferences: Dietary preferences
        menu_items: Items to analyze
        request_id: Correlation id echoed by the model
        context: Optional extra instructions

    Returns:
        Prompt string

    Example:
        >>> prompt = build_analysis_prompt(
        ...     DietaryPreferences(dietary_type=DietaryType.VEGAN),
        ...     [MenuItem(id="1", name="Garden Salad")],
        ...     request_id="req-1",
        ... )
        >>> assert "Garden Salad" in prompt
    """
    sections = [
        SYSTEM_PROMPT,
        build_dietary_context(preferences),
        build_menu_items_context(menu_items),
        build_analysis_instructions(request_id),
    ]
    if context:
        sections.append(f"ADDITIONAL CONTEXT: {context}")
    return "\n\n".join(sections)


def parse_data_url(data: str) -> Optional[tuple[str, bytes]]:
    """
    Split an image data URL into mime type and decoded bytes.

    Returns:
        (mime_type, raw bytes) or None if ``data`` is not a base64 data URL
    """
    match = _DATA_URL_RE.match(data.strip())
    if not match:
        return None
    try:
        payload = base64.b64decode(match.group(2), validate=True)
    except ValueError:
        return None
    return match.group(1), payload


def build_multimodal_parts(
    preferences: DietaryPreferences,
    content_parts: Sequence[ContentPart],
    request_id: str,
    context: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """
    Build vendor-neutral ordered parts for a multimodal analysis.

    The first part carries the instructions; content parts follow in
    their original order. Image parts become
    ``{"inline_data": {"mime_type": ..., "data": bytes}}``; images that
    are not valid data URLs are skipped.

    Args:
        preferences: Dietary preferences
        content_parts: Ordered text and image parts
        request_id: Correlation id
        context: Optional extra instructions

    Returns:
        List of part dicts
    """
    header = [
        SYSTEM_PROMPT,
        build_dietary_context(preferences),
        "The menu is provided in the following text and images. "
        "Identify each menu item and analyze it.",
        build_analysis_instructions(request_id),
    ]
    if context:
        header.append(f"ADDITIONAL CONTEXT: {context}")

    parts: List[Dict[str, Any]] = [{"text": "\n\n".join(header)}]
    for part in content_parts:
        if part.type is ContentType.TEXT:
            parts.append({"text": part.data})
            continue
        decoded = parse_data_url(part.data)
        if decoded is None:
            continue
        mime_type, payload = decoded
        parts.append({"inline_data": {"mime_type": mime_type, "data": payload}})
    return parts
