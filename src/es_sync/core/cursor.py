"""Cursor value helpers shared by the planner and the engine."""

from __future__ import annotations

import re
from datetime import date, datetime
from typing import Any


TEMPORAL_FORMAT = "%Y-%m-%d %H:%M:%S"

_NUMBER = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)$")


def is_numeric(value: str | None) -> bool:
    """True for cursors like ``"42"`` or ``"-3.5"``."""
    if not value:
        return False
    return _NUMBER.match(value.strip()) is not None


def format_cursor(value: Any) -> str | None:
    """
    Canonical string form of an increment value, or None when blank.

    ``datetime`` values render as ``YYYY-MM-DD HH:MM:SS`` and ``date`` values
    as ``YYYY-MM-DD`` so they compare lexicographically.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.strftime(TEMPORAL_FORMAT)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="replace")
    text = str(value)
    return text if text.strip() else None


def bind_cursor(value: str) -> int | float | str:
    """Statement parameter for a cursor: numbers compare numerically."""
    if is_numeric(value):
        text = value.strip()
        if re.fullmatch(r"[+-]?\d+", text):
            return int(text)
        return float(text)
    return value
