import json
import re
from typing import Any, Dict, List, Optional, Union

from rto_validator.utils.logging import get_logger

LOGGER = get_logger(__name__)

_FENCE_PATTERN = re.compile(r"```(?:json|JSON)?\s*\n?(.*?)```", re.DOTALL)


def load_strict(text: str) -> Union[Dict[str, Any], List[Any], None]:
    """``json.loads`` of the whole stripped text, or None."""
    if not text or not text.strip():
        return None
    try:
        return json.loads(text.strip())
    except (json.JSONDecodeError, ValueError):
        return None


def extract_fenced_block(text: str) -> Optional[str]:
    """Body of the first Markdown code fence, if any."""
    if not text:
        return None
    match = _FENCE_PATTERN.search(text)
    if not match:
        return None
    return match.group(1).strip()


def find_embedded_json(text: str) -> Optional[Dict[str, Any]]:
    """First JSON object embedded anywhere in free text.

    Tries ``JSONDecoder.raw_decode`` at every opening brace so that prose
    before and after the object is ignored.
    """
    if not text:
        return None
    decoder = json.JSONDecoder()
    idx = text.find("{")
    while idx != -1:
        try:
            obj, _ = decoder.raw_decode(text, idx)
            if isinstance(obj, dict):
                return obj
        except json.JSONDecodeError:
            pass
        idx = text.find("{", idx + 1)
    return None


def parse_json_safely(text: str) -> Union[Dict[str, Any], List[Any], None]:
    """Parse JSON from text, handling common LLM formatting issues.

    Handles:
    - Markdown code blocks (```json ... ```)
    - Leading/trailing prose around a single object

    Args:
        text: The text containing JSON

    Returns:
        Parsed JSON object or None if parsing fails
    """
    result = load_strict(text)
    if result is not None:
        return result

    fenced = extract_fenced_block(text)
    if fenced is not None:
        result = load_strict(fenced)
        if result is not None:
            return result

    result = find_embedded_json(text)
    if result is None:
        LOGGER.debug("No JSON found in model output")
    return result
