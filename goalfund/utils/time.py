"""
Calendar helpers for month-based planning.

Monthly plans and execution records are keyed by a "YYYY-MM" month label
computed in UTC. Month arithmetic here is calendar based: a month boundary is
crossed when the day of month is reached, not after a fixed number of days.
"""

import calendar
from datetime import date, datetime, timezone
from typing import Callable, Optional, Union

Clock = Callable[[], datetime]

DateLike = Union[date, datetime]


def utc_now() -> datetime:
    """Current wall-clock time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _as_date(value: DateLike) -> date:
    if isinstance(value, datetime):
        return ensure_utc(value).date()
    return value


def month_label(value: Optional[DateLike] = None) -> str:
    """
    Format a date as a "YYYY-MM" month label.

    Args:
        value: Date or datetime, defaults to the current UTC time

    Returns:
        Month label string
    """
    if value is None:
        value = utc_now()
    d = _as_date(value)
    return f"{d.year:04d}-{d.month:02d}"


def parse_month_label(label: str) -> tuple[int, int]:
    """
    Parse a "YYYY-MM" month label into (year, month).

    Raises:
        ValueError: If the label is malformed
    """
    parts = label.split("-")
    if len(parts) != 2 or len(parts[0]) != 4 or len(parts[1]) != 2:
        raise ValueError(f"Invalid month label: {label!r}")

    year, month = int(parts[0]), int(parts[1])
    if not 1 <= month <= 12:
        raise ValueError(f"Invalid month in label: {label!r}")
    return year, month


def add_months_to_label(label: str, months: int) -> str:
    """Shift a month label by a number of months (may be negative)."""
    year, month = parse_month_label(label)
    index = year * 12 + (month - 1) + months
    return f"{index // 12:04d}-{index % 12 + 1:02d}"


def add_months(value: date, months: int) -> date:
    """Shift a date by calendar months, clamping the day to the month length."""
    index = value.year * 12 + (value.month - 1) + months
    year, month = index // 12, index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def months_between(start: DateLike, end: DateLike) -> int:
    """
    Whole calendar months from start to end, floored at 0.

    A month only counts once its day of month has been reached, so
    2026-01-15 -> 2026-05-15 is 4 months and 2026-01-15 -> 2026-05-14 is 3.
    """
    s, e = _as_date(start), _as_date(end)
    months = (e.year - s.year) * 12 + (e.month - s.month)
    if e.day < s.day:
        months -= 1
    return max(months, 0)


def days_between(start: DateLike, end: DateLike) -> int:
    """Signed number of days from start to end."""
    return (_as_date(end) - _as_date(start)).days


def format_timestamp(value: datetime) -> str:
    """ISO8601 representation used for persistence and logging."""
    return ensure_utc(value).isoformat()


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a persisted ISO8601 timestamp back into an aware datetime."""
    if value is None:
        return None
    return ensure_utc(datetime.fromisoformat(value))
