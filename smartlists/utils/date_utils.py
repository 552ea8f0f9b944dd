# smartlists/utils/date_utils.py

"""Utility functions for parsing date rule targets.

Rule targets arrive as strings. This module turns them into timezone-aware
UTC datetimes, relative durations, and weekday indices.

Accepted absolute formats: ISO 8601 (with or without time and offset),
YYYY-MM-DD, DD.MM.YYYY, YYYY/MM/DD, DD-MM-YYYY, raw Unix timestamp.

Accepted relative formats: ``"30:days"``, ``"30 days"``, ``"30d"``, and
bare numbers (interpreted as days).
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone

__all__ = [
    "MAX_RELATIVE_DURATION",
    "WEEKDAY_NAMES",
    "parse_date",
    "parse_relative_duration",
    "parse_weekday",
    "to_utc",
]

WEEKDAY_NAMES: tuple[str, ...] = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)

_DURATION_UNITS: dict[str, timedelta] = {
    "h": timedelta(hours=1),
    "hour": timedelta(hours=1),
    "hours": timedelta(hours=1),
    "d": timedelta(days=1),
    "day": timedelta(days=1),
    "days": timedelta(days=1),
    "w": timedelta(weeks=1),
    "week": timedelta(weeks=1),
    "weeks": timedelta(weeks=1),
    "month": timedelta(days=30),
    "months": timedelta(days=30),
    "y": timedelta(days=365),
    "year": timedelta(days=365),
    "years": timedelta(days=365),
}

_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(?::\s*)?([a-zA-Z]*)\s*$")

# Numbers above this are Unix timestamps, below are years
_TIMESTAMP_THRESHOLD = 100_000_000

# Longest accepted relative duration
MAX_RELATIVE_DURATION = timedelta(days=365 * 1000)

# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def to_utc(value: datetime) -> datetime:
    """Normalizes a datetime to UTC. Naive datetimes are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_date(date_str: str) -> datetime | None:
    """Parses an absolute date target into an aware UTC datetime.

    Args:
        date_str: The target string.

    Returns:
        The parsed datetime, or None when no format matches or the value
        lies outside the range a datetime can hold.
    """
    if not date_str or not date_str.strip():
        return None

    date_str = date_str.strip()

    if date_str.isdigit():
        number = int(date_str)
        if number <= _TIMESTAMP_THRESHOLD:
            return None
        try:
            return datetime.fromtimestamp(number, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None

    # --- ISO first, then the legacy day-first formats ---
    iso_candidate = date_str[:-1] + "+00:00" if date_str.endswith("Z") else date_str
    try:
        return to_utc(datetime.fromisoformat(iso_candidate))
    except OverflowError:
        return None
    except ValueError:
        pass

    formats: list[str] = ["%d.%m.%Y", "%Y-%m-%d", "%Y/%m/%d", "%d-%m-%Y"]

    for fmt in formats:
        try:
            return datetime.strptime(date_str, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue

    return None


def parse_relative_duration(text: str) -> timedelta | None:
    """Parses a relative duration such as ``"30:days"`` or ``"2 weeks"``.

    Args:
        text: The target string.

    Returns:
        The duration, or None when the target is not a valid duration or is
        longer than ``MAX_RELATIVE_DURATION``.
    """
    if not text:
        return None
    match = _DURATION_RE.match(text)
    if match is None:
        return None
    amount = float(match.group(1))
    unit = match.group(2).lower() or "days"
    step = _DURATION_UNITS.get(unit)
    if step is None:
        return None
    try:
        duration = step * amount
    except (OverflowError, ValueError):
        return None
    if duration > MAX_RELATIVE_DURATION:
        return None
    return duration


def parse_weekday(text: str) -> int | None:
    """Parses a weekday name, prefix, or 0-6 index (Monday = 0).

    Returns:
        The weekday index, or None if the target is not a weekday.
    """
    if not text or not text.strip():
        return None
    value = text.strip().lower()
    if value.isdigit():
        index = int(value)
        return index if 0 <= index <= 6 else None
    if len(value) < 3:
        return None
    for index, name in enumerate(WEEKDAY_NAMES):
        if name.startswith(value):
            return index
    return None
