"""
Timezone-aware datetime utilities for the engagement engine.

Every timestamp the engine stores or compares is a timezone-aware UTC
datetime. Databases such as SQLite hand naive datetimes back, so anything
read from a repository is passed through ensure_utc() before arithmetic.
"""

from datetime import datetime, timezone, timedelta
from typing import Optional, Union


def utc_now() -> datetime:
    """
    Get the current UTC time as a timezone-aware datetime object.

    Returns:
        datetime: Current UTC time with timezone information
    """
    return datetime.now(timezone.utc)


def utc_from_timestamp(timestamp: Union[int, float]) -> datetime:
    """
    Convert a Unix timestamp to a timezone-aware UTC datetime.

    Args:
        timestamp: Unix timestamp (seconds since epoch)

    Returns:
        datetime: Timezone-aware datetime in UTC
    """
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Ensure a datetime object is timezone-aware and in UTC.

    Naive datetimes are assumed to already be UTC. None passes through so
    nullable columns can be normalized without a guard at every call site.

    Args:
        dt: Datetime object (may be naive, timezone-aware or None)

    Returns:
        Timezone-aware datetime in UTC, or None
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    if dt.tzinfo != timezone.utc:
        return dt.astimezone(timezone.utc)
    return dt


def parse_utc_iso(value: Union[str, datetime]) -> datetime:
    """
    Parse an ISO 8601 timestamp (or pass a datetime through) into UTC.

    A trailing 'Z' is accepted, as browsers send it.

    Args:
        value: ISO 8601 string or datetime

    Returns:
        datetime: Timezone-aware datetime in UTC

    Raises:
        ValueError: If the string is not a valid ISO 8601 timestamp
        TypeError: If value is neither a string nor a datetime
    """
    if isinstance(value, datetime):
        return ensure_utc(value)
    if not isinstance(value, str):
        raise TypeError(f"Expected ISO timestamp string, got {type(value).__name__}")
    text = value.strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    return ensure_utc(datetime.fromisoformat(text))


def format_utc_iso(dt: Optional[datetime] = None) -> str:
    """
    Format a datetime as an ISO 8601 string in UTC.

    Args:
        dt: Datetime to format (defaults to now)

    Returns:
        str: ISO 8601 formatted string
    """
    return ensure_utc(dt or utc_now()).isoformat()


def add_hours(dt: datetime, hours: float) -> datetime:
    """Return dt shifted forward by the given number of hours."""
    return ensure_utc(dt) + timedelta(hours=hours)


def hours_between(earlier: datetime, later: datetime) -> float:
    """
    Elapsed hours from earlier to later (negative if later precedes earlier).
    """
    return (ensure_utc(later) - ensure_utc(earlier)).total_seconds() / 3600.0


def seconds_between(earlier: datetime, later: datetime) -> int:
    """Whole elapsed seconds from earlier to later, floored, never negative."""
    delta = (ensure_utc(later) - ensure_utc(earlier)).total_seconds()
    return max(0, int(delta))


def whole_days_between(first: datetime, second: datetime) -> int:
    """
    Absolute distance between two datetimes in days, rounded to the nearest day.

    Used for the daysSinceActivity rule condition, where 36 hours counts as 2 days.
    """
    seconds = abs((ensure_utc(first) - ensure_utc(second)).total_seconds())
    # floor(x + 0.5) rather than round() so half-days always round up
    return int(seconds / 86400.0 + 0.5)
