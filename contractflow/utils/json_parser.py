import json
from typing import Any, Dict, Optional

from contractflow.utils.logging import get_logger

LOGGER = get_logger(__name__)


def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown code block (```json ... ```) if present."""
    cleaned_text = text.strip()
    if cleaned_text.startswith("```json"):
        cleaned_text = cleaned_text[7:]
    elif cleaned_text.startswith("```"):
        cleaned_text = cleaned_text[3:]

    if cleaned_text.endswith("```"):
        cleaned_text = cleaned_text[:-3]

    return cleaned_text.strip()


def parse_json_object(text: Optional[str]) -> Optional[Dict[str, Any]]:
    """Parse model output that must be a single JSON object.

    Arrays, scalars and anything that is not valid JSON are rejected.

    Args:
        text: Raw model output

    Returns:
        The parsed object, or None when the text is not a JSON object
    """
    if not text:
        return None

    try:
        parsed = json.loads(strip_code_fences(text))
    except json.JSONDecodeError as e:
        LOGGER.warning(f"JSON parse failed: {e}")
        return None

    if not isinstance(parsed, dict):
        LOGGER.warning(f"Expected a JSON object, got {type(parsed).__name__}")
        return None

    return parsed
