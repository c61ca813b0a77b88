"""JSON extraction from model output.

Models often wrap JSON in markdown fences or add a sentence around it. These helpers recover the
payload and return ``None`` instead of raising when nothing parses.
"""

from __future__ import annotations

import json
import re
from typing import Any, Optional

from searchweaver.logging import get_logger

logger = get_logger(__name__)

_FENCE_JSON = re.compile(r"```json\s*\n?(.*?)\n?```", re.DOTALL | re.IGNORECASE)
_FENCE_ANY = re.compile(r"```\s*\n?(.*?)\n?```", re.DOTALL)


def strip_code_fences(text: str) -> str:
    """Return the body of the first fenced block, or the stripped text."""

    cleaned = (text or "").strip()
    m = _FENCE_JSON.search(cleaned) or _FENCE_ANY.search(cleaned)
    if m:
        return m.group(1).strip()
    return cleaned


def _loads(candidate: str) -> Any:
    try:
        return json.loads(candidate)
    except (json.JSONDecodeError, ValueError):
        return None


def extract_json_value(text: str, *, opener: str, closer: str) -> Any:
    """Extract the first JSON value delimited by ``opener``/``closer``.

    Strategies, strict to loose:
        1. the fenced block, if any;
        2. the whole text;
        3. the outermost ``opener ... closer`` span.
    """

    if not text:
        return None

    body = strip_code_fences(text)
    if body.startswith(opener) and body.endswith(closer):
        value = _loads(body)
        if value is not None:
            return value

    start = body.find(opener)
    end = body.rfind(closer)
    if start != -1 and end > start:
        value = _loads(body[start : end + 1])
        if value is not None:
            return value

    logger.debug("extract_json_value: no parsable JSON found", extra={"opener": opener})
    return None


def extract_json_object(text: str) -> Optional[dict[str, Any]]:
    value = extract_json_value(text, opener="{", closer="}")
    return value if isinstance(value, dict) else None


def extract_json_array(text: str) -> Optional[list[Any]]:
    value = extract_json_value(text, opener="[", closer="]")
    return value if isinstance(value, list) else None
