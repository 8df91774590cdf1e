"""Best-effort decoding of JSON objects from model output.

Two attempts, in order:

1. Parse the whole (trimmed) text as JSON.
2. Locate the first balanced ``{...}`` span (string-literal aware) and parse it.

Anything else, including a top-level value that is not an object, raises
StructuredOutputError.
"""

import json
import logging
from typing import Any, Optional

logger = logging.getLogger(__name__)


class StructuredOutputError(ValueError):
    """Model output does not contain a JSON object."""

    pass


def find_balanced_object(text: str) -> Optional[str]:
    """Return the first balanced ``{...}`` substring of ``text``, if any.

    Braces inside JSON string literals are ignored.
    """
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start:i + 1]
        # Unbalanced from this brace; try the next one
        start = text.find("{", start + 1)
    return None


def decode_structured_output(text: Optional[str]) -> dict[str, Any]:
    """Decode a JSON object from model output.

    Args:
        text: Raw model output.

    Returns:
        The decoded object.

    Raises:
        StructuredOutputError: If no JSON object can be decoded.
    """
    trimmed = (text or "").strip()
    if not trimmed:
        raise StructuredOutputError("empty model output")

    try:
        parsed = json.loads(trimmed)
    except json.JSONDecodeError:
        candidate = find_balanced_object(trimmed)
        if candidate is None:
            logger.warning(f"No JSON object found in model output: {trimmed[:200]}")
            raise StructuredOutputError("no JSON object in model output")
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError as e:
            raise StructuredOutputError(f"invalid JSON object in model output: {e}") from e

    if not isinstance(parsed, dict):
        raise StructuredOutputError(
            f"expected a JSON object, got {type(parsed).__name__}"
        )
    return parsed
