"""Recover a single JSON value from free-form model output.

Model answers arrive wrapped in prose, fenced in triple backticks or cut off by
the token limit. ``extract_json`` locates the first top-level object or array,
walks it with string awareness so braces and escaped quotes inside string
literals never affect depth, and parses only that span. Truncated output is
reported as ``None`` instead of being repaired.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

logger = logging.getLogger(__name__)

_OPEN_FENCE_RE = re.compile(r"^```(?:json)?[ \t]*(?:\r?\n)?", re.IGNORECASE)
_CLOSE_FENCE_RE = re.compile(r"(?:\r?\n)?[ \t]*```[ \t]*$")

_CLOSERS = {"{": "}", "[": "]"}


def strip_code_fences(raw: str) -> str:
    text = raw.strip()
    text = _OPEN_FENCE_RE.sub("", text, count=1)
    text = _CLOSE_FENCE_RE.sub("", text, count=1)
    return text.strip()


def _find_start(text: str) -> int:
    obj = text.find("{")
    arr = text.find("[")
    if obj == -1:
        return arr
    if arr == -1:
        return obj
    return min(obj, arr)


def find_json_span(text: str) -> tuple[int, int] | None:
    """Return ``(start, end)`` of the first complete top-level value, or None."""
    start = _find_start(text)
    if start < 0:
        return None

    open_char = text[start]
    close_char = _CLOSERS[open_char]
    depth = 0
    in_string = False
    escape_next = False

    for index in range(start, len(text)):
        ch = text[index]
        if in_string:
            if escape_next:
                escape_next = False
            elif ch == "\\":
                escape_next = True
            elif ch == '"':
                in_string = False
            continue

        if ch == '"':
            in_string = True
        elif ch == open_char:
            depth += 1
        elif ch == close_char:
            depth -= 1
            if depth == 0:
                return start, index + 1

    return None


def extract_json(raw: Any) -> Any | None:
    """Parse the first JSON object/array found in ``raw``; never raises."""
    if not isinstance(raw, str) or not raw.strip():
        return None

    text = strip_code_fences(raw)
    span = find_json_span(text)
    if span is None:
        if _find_start(text) < 0:
            logger.info("json_extract_no_candidate length=%s", len(text))
        else:
            logger.warning("json_extract_truncated length=%s tail=%r", len(text), text[-120:])
        return None

    candidate = text[span[0] : span[1]]
    try:
        return json.loads(candidate)
    except (ValueError, RecursionError) as exc:
        logger.warning("json_extract_parse_failed length=%s: %s", len(candidate), exc)
        return None
