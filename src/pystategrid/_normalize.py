"""Normalization helpers.

Centralizes defensive parsing of provider values and date formats.
"""

from __future__ import annotations

import datetime as dt
import math
from typing import Any


def safe_float(value: Any) -> float | None:
    if value is None or value == "" or value == "-" or value == "--":
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(result):
        return None
    return result


def text(value: Any) -> str:
    """Coerce scalars to ``str``; ``None`` becomes ``""``."""
    if value is None:
        return ""
    return str(value)


def parse_day(value: Any) -> dt.date:
    """Parse ``YYYYMMDD`` or ``YYYY-MM-DD`` into a date."""
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    raw = text(value).strip()
    if len(raw) == 8 and raw.isdigit():
        return dt.date(int(raw[:4]), int(raw[4:6]), int(raw[6:8]))
    return dt.date.fromisoformat(raw)


def format_month(value: Any) -> str:
    """Normalize ``YYYYMM`` (or ``YYYY-MM``) to ``YYYY-MM``."""
    raw = text(value).strip()
    if len(raw) == 6 and raw.isdigit():
        return f"{raw[:4]}-{raw[4:6]}"
    return raw
