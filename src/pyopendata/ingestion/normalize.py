"""Normalization helpers.

Centralizes parsing of upstream values and CSV cells.
"""

from __future__ import annotations

import math
import re
from typing import Any

_INT_RE = re.compile(r"^[-+]?\d+$")
_FLOAT_RE = re.compile(r"^[-+]?(\d+\.\d*|\.\d+|\d+)([eE][-+]?\d+)?$")
# Codes such as "0123" or "00966" are identifiers, not numbers.
_LEADING_ZERO_RE = re.compile(r"^[-+]?0\d")
_UUID_RE = re.compile(r"[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}")


def safe_float(value: Any) -> float | None:
    if value is None or value == "" or value == "--":
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(result) or math.isinf(result):
        return None
    return result


def safe_int(value: Any) -> int | None:
    parsed = safe_float(value)
    if parsed is None:
        return None
    return int(parsed)


def safe_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value)
    return text if text else None


def coerce_cell(value: str | None) -> Any:
    """Best-effort typing of one CSV cell.

    - Missing or blank -> None
    - Integer-looking -> int
    - Decimal-looking -> float
    - Everything else, including leading-zero codes, stays a string
    """
    if value is None:
        return None
    text = value.strip()
    if not text:
        return None
    if _LEADING_ZERO_RE.match(text):
        return value
    if _INT_RE.match(text):
        return int(text)
    if _FLOAT_RE.match(text):
        result = float(text)
        if math.isinf(result):
            return value
        return result
    return value


def first_text(value: Any, *keys: str) -> str | None:
    """Return the first non-empty string found in *value*.

    Dicts are searched under *keys* in order; lists use their first element.
    This flattens nested upstream shapes such as ``organization.title`` or
    ``groups[0].title``.
    """
    if isinstance(value, list):
        return first_text(value[0], *keys) if value else None
    if isinstance(value, dict):
        for key in keys:
            found = first_text(value.get(key), *keys)
            if found:
                return found
        return None
    return safe_str(value)


def extract_dataset_ids(text: str) -> list[str]:
    """Extract unique dataset ids (UUIDs) from arbitrary text, in order of appearance."""
    seen: set[str] = set()
    ids: list[str] = []
    for match in _UUID_RE.finditer(text):
        dataset_id = match.group(0).lower()
        if dataset_id not in seen:
            seen.add(dataset_id)
            ids.append(dataset_id)
    return ids
