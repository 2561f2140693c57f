import json
import re
from typing import Any, Callable, Dict, List, Optional, Tuple

from app.core.exceptions import UnparseableResponseError
from app.utils.logging import get_logger

LOGGER = get_logger(__name__)

_JSON_TAG_PATTERN = re.compile(r"<json>(.*?)</json>", re.DOTALL | re.IGNORECASE)
_JSON_FENCE_PATTERN = re.compile(r"```json\s*(.*?)```", re.DOTALL | re.IGNORECASE)
_GENERIC_FENCE_PATTERN = re.compile(r"```[a-zA-Z]*\s*(.*?)```", re.DOTALL)


def _from_json_tags(text: str) -> Optional[str]:
    match = _JSON_TAG_PATTERN.search(text)
    return match.group(1) if match else None


def _from_json_fence(text: str) -> Optional[str]:
    match = _JSON_FENCE_PATTERN.search(text)
    return match.group(1) if match else None


def _from_generic_fence(text: str) -> Optional[str]:
    match = _GENERIC_FENCE_PATTERN.search(text)
    return match.group(1) if match else None


def _from_balanced_braces(text: str) -> Optional[str]:
    """Return the first balanced ``{...}`` span, ignoring braces inside strings."""
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for idx in range(start, len(text)):
            char = text[idx]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    return text[start : idx + 1]
        start = text.find("{", start + 1)
    return None


# Ordered from most to least explicit delimiter
EXTRACTION_STRATEGIES: List[Tuple[str, Callable[[str], Optional[str]]]] = [
    ("json_tags", _from_json_tags),
    ("json_fence", _from_json_fence),
    ("generic_fence", _from_generic_fence),
    ("balanced_braces", _from_balanced_braces),
]


def parse_json_object(text: str) -> Dict[str, Any]:
    """Parse a JSON object out of a loosely formatted model response.

    Tries each strategy in ``EXTRACTION_STRATEGIES`` in order and returns the
    first candidate that decodes to a JSON object.

    Args:
        text: Raw response text, possibly wrapped in prose or markup

    Returns:
        The decoded JSON object

    Raises:
        UnparseableResponseError: If no strategy yields a JSON object
    """
    if not text or not text.strip():
        raise UnparseableResponseError("Empty model response")

    candidates: List[Tuple[str, str]] = [("raw", text.strip())]
    for name, strategy in EXTRACTION_STRATEGIES:
        candidate = strategy(text)
        if candidate:
            candidates.append((name, candidate.strip()))

    last_error: Optional[Exception] = None
    for name, candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError as e:
            last_error = e
            continue
        if isinstance(parsed, dict):
            LOGGER.debug(f"Parsed model response using strategy '{name}'")
            return parsed

    snippet = text.strip()[:120]
    raise UnparseableResponseError(
        f"No JSON object found in model response: {snippet!r}",
        original_error=last_error,
    )
