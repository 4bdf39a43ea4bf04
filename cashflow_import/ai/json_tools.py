from __future__ import annotations

import json
import logging
import re

logger = logging.getLogger(__name__)

"""JSON extraction from model responses.

Model output is untrusted text: it may be wrapped in markdown fences, carry
prose around the payload, contain trailing commas or be cut off when the
output token budget runs out. ``extract_json`` handles the well-formed
cases; ``extract_arrays_incrementally`` salvages the complete objects of
each entity array from a damaged payload.
"""

__all__ = [
    "ENTITY_ARRAYS",
    "extract_json",
    "extract_arrays_incrementally",
    "repair_json",
]

ENTITY_ARRAYS = ("contracts", "receivables", "expenses")

_FENCE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)
_TRAILING_COMMA = re.compile(r",(\s*[}\]])")
_MISSING_COMMA = re.compile(r"\}\s*\{")


def extract_json(text: str) -> dict | list | None:
    """Extract the first valid JSON object or array from *text*.

    1. ``json.loads`` on the whole text (fast path), then on a fenced block
    2. brace-balanced scan from every ``{`` / ``[``
    3. None if nothing parses
    """
    if not text or not text.strip():
        return None

    stripped = text.strip()
    candidates = [stripped]
    fence = _FENCE.search(stripped)
    if fence:
        candidates.insert(0, fence.group(1).strip())

    for candidate in candidates:
        try:
            return json.loads(candidate)
        except (json.JSONDecodeError, ValueError):
            pass

    for i, ch in enumerate(stripped):
        if ch == "{":
            result = _extract_balanced(stripped, i, "{", "}")
        elif ch == "[":
            result = _extract_balanced(stripped, i, "[", "]")
        else:
            continue
        if result is not None:
            return result
    return None


def _find_balanced_end(text: str, start: int, open_ch: str, close_ch: str) -> int | None:
    """Index of the bracket closing the one at *start*, or None if truncated."""
    depth = 0
    in_string = False
    escape = False
    for i in range(start, len(text)):
        ch = text[i]
        if escape:
            escape = False
            continue
        if ch == "\\":
            if in_string:
                escape = True
            continue
        if ch == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if ch == open_ch:
            depth += 1
        elif ch == close_ch:
            depth -= 1
            if depth == 0:
                return i
    return None


def _extract_balanced(text: str, start: int, open_ch: str, close_ch: str) -> dict | list | None:
    end = _find_balanced_end(text, start, open_ch, close_ch)
    if end is None:
        return None
    candidate = text[start:end + 1]
    for attempt in (candidate, repair_json(candidate)):
        try:
            return json.loads(attempt)
        except (json.JSONDecodeError, ValueError):
            continue
    return None


def repair_json(text: str) -> str:
    """Cheap textual repairs: trailing commas, ``}{`` without comma, NUL bytes."""
    repaired = _TRAILING_COMMA.sub(r"\1", text)
    repaired = _MISSING_COMMA.sub("}, {", repaired)
    return repaired.replace("\x00", "").strip()


def _salvage_objects(text: str, start: int) -> list:
    """Complete ``{...}`` elements of the array opened at *start*.

    Used when the array itself never closes; a truncated trailing element is
    dropped.
    """
    items: list = []
    i = start + 1
    while i < len(text):
        ch = text[i]
        if ch == "]":
            break
        if ch == "{":
            end = _find_balanced_end(text, i, "{", "}")
            if end is None:
                break
            obj = _extract_balanced(text, i, "{", "}")
            if obj is not None:
                items.append(obj)
            i = end + 1
            continue
        i += 1
    return items


def extract_arrays_incrementally(text: str, names: tuple[str, ...] = ENTITY_ARRAYS) -> dict[str, list]:
    """Parse each named array on its own.

    Returns a dict holding only the arrays that could be recovered; an
    empty dict means nothing was salvageable.
    """
    recovered: dict[str, list] = {}
    for name in names:
        m = re.search(rf'"{name}"\s*:\s*\[', text)
        if not m:
            continue
        start = m.end() - 1
        end = _find_balanced_end(text, start, "[", "]")
        if end is not None:
            parsed = _extract_balanced(text, start, "[", "]")
            if isinstance(parsed, list):
                recovered[name] = parsed
                continue
        items = _salvage_objects(text, start)
        if items:
            logger.debug("salvaged %d %s from damaged response", len(items), name)
            recovered[name] = items
    return recovered
