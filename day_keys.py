"""Calendar-day keys used to namespace persisted per-day records."""
from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Union

DateLike = Union[date, datetime]


def day_key(value: DateLike) -> str:
    """Return the key for the calendar day containing *value*.

    Aware datetimes use their own wall-clock date, so every instant of one local
    day maps to the same key.
    """
    if isinstance(value, datetime):
        value = value.date()
    return f"{value.year}-{value.month}-{value.day}"


def parse_day_key(key: str) -> date:
    """Inverse of :func:`day_key`; raises ``ValueError`` for malformed keys."""
    parts = key.split("-")
    if len(parts) != 3:
        raise ValueError(f"Malformed day key: {key!r}")
    year, month, day = (int(part) for part in parts)
    return date(year, month, day)


def days_between(earlier: str, later: str) -> int:
    """Whole calendar days from *earlier* to *later* (negative if reversed)."""
    return (parse_day_key(later) - parse_day_key(earlier)).days


def shift_day_key(key: str, days: int) -> str:
    return day_key(parse_day_key(key) + timedelta(days=days))
