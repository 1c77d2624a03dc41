import json
from typing import Any

from app.utils.logging import get_logger

LOGGER = get_logger(__name__)


def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown code block (```json ... ```)."""
    cleaned = text.strip()
    if cleaned.startswith("```json"):
        cleaned = cleaned[7:]
    elif cleaned.startswith("```"):
        cleaned = cleaned[3:]

    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]

    return cleaned.strip()


def parse_json_safely(text: str) -> Any:
    """Parse JSON from model output, tolerating common formatting issues.

    Handles:
    - Markdown code blocks (```json ... ```)
    - Leading/trailing whitespace
    - Prose before or after the JSON value

    Args:
        text: The text containing JSON

    Returns:
        The parsed JSON value

    Raises:
        json.JSONDecodeError: If no JSON value can be recovered
    """
    if not text or not text.strip():
        raise json.JSONDecodeError("Empty response", text or "", 0)

    cleaned_text = strip_code_fences(text)

    try:
        return json.loads(cleaned_text)
    except json.JSONDecodeError as e:
        LOGGER.warning(f"Initial JSON parse failed: {e}, attempting to isolate JSON value")

        for opener, closer in (("{", "}"), ("[", "]")):
            start = cleaned_text.find(opener)
            end = cleaned_text.rfind(closer)
            if start == -1 or end <= start:
                continue
            try:
                return json.loads(cleaned_text[start:end + 1])
            except json.JSONDecodeError:
                continue

        raise
