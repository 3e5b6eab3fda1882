"""Wall-clock helpers shared by the window, scheduling and rescheduling services.

Times of day travel as ``"HH:MM"`` strings and are converted to minute offsets
from midnight for arithmetic. ``"24:00"`` is accepted as the end of a day.
Dates are naive ``datetime.date`` values; no time zones are involved.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta

logger = logging.getLogger(__name__)

MINUTES_PER_DAY = 24 * 60

WEEKDAYS = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)

MORNING_END = 12 * 60
AFTERNOON_END = 18 * 60


class TimeParseError(ValueError):
    """Raised when a value is not a valid ``"HH:MM"`` time of day."""


def parse_hhmm(value: str) -> int:
    """Convert ``"HH:MM"`` to minutes since midnight, raising on bad input."""
    if not isinstance(value, str):
        raise TimeParseError(f"Expected an HH:MM string, got {value!r}")
    parts = value.strip().split(":")
    if len(parts) != 2 or not parts[0].isdigit() or not parts[1].isdigit():
        raise TimeParseError(f"Malformed time {value!r}")
    if len(parts[1]) != 2 or len(parts[0]) > 2:
        raise TimeParseError(f"Malformed time {value!r}")
    hours, minutes = int(parts[0]), int(parts[1])
    if minutes > 59 or hours > 24 or (hours == 24 and minutes != 0):
        raise TimeParseError(f"Time out of range {value!r}")
    return hours * 60 + minutes


def try_parse_hhmm(value: str) -> int | None:
    try:
        return parse_hhmm(value)
    except TimeParseError:
        return None


def time_to_minutes(value: str, default: int = 0) -> int:
    """Lenient conversion: malformed input is logged and treated as midnight."""
    parsed = try_parse_hhmm(value)
    if parsed is None:
        logger.warning(f"Invalid time value {value!r}, falling back to {minutes_to_time(default)}")
        return default
    return parsed


def minutes_to_time(minutes: int) -> str:
    clamped = max(0, min(MINUTES_PER_DAY, int(minutes)))
    return f"{clamped // 60:02d}:{clamped % 60:02d}"


def weekday_name(value: date) -> str:
    return WEEKDAYS[value.weekday()]


def date_string(value: date) -> str:
    return value.isoformat()


def parse_date(value: str | date | datetime | None) -> date | None:
    """Accept ISO strings, dates or datetimes; return ``None`` for anything unusable."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        logger.warning(f"Invalid date value {value!r}")
        return None


def add_days(value: date, days: int) -> date:
    return value + timedelta(days=days)


def days_until(target: date, reference: date) -> int:
    """Whole calendar days from ``reference`` to ``target`` (negative when past)."""
    return (target - reference).days


def time_of_day(minutes: int) -> str:
    if minutes < MORNING_END:
        return "morning"
    if minutes < AFTERNOON_END:
        return "afternoon"
    return "evening"
