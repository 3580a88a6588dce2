"""Timestamp utilities for UTC handling, storage encoding and run timing.

Run timestamps are always handled as timezone-aware UTC datetimes. The
persistence layer stores them as fixed-width ISO 8601 strings so that
lexicographic comparison in SQL matches chronological order.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

STORAGE_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

_ONE_MS = timedelta(milliseconds=1)


def utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime.

    Example:
        >>> utc_now().tzinfo == timezone.utc
        True
    """
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Ensure a datetime is timezone-aware and in UTC.

    Naive datetimes are treated as UTC; aware ones are converted.

    Args:
        dt: Datetime to convert (can be None)

    Returns:
        Timezone-aware datetime in UTC, or None if input is None
    """
    if dt is None:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)

    return dt.astimezone(timezone.utc)


def format_timestamp(dt: datetime, include_microseconds: bool = False) -> str:
    """Format a datetime as ISO 8601 UTC with a 'Z' suffix.

    Example:
        >>> format_timestamp(datetime(2025, 11, 4, 12, 0, 0, tzinfo=timezone.utc))
        '2025-11-04T12:00:00Z'
    """
    dt_utc = ensure_utc(dt)
    if dt_utc is None:
        return ""

    if include_microseconds:
        return dt_utc.strftime(STORAGE_FORMAT)
    return dt_utc.strftime("%Y-%m-%dT%H:%M:%SZ")


def to_storage(dt: Optional[datetime]) -> Optional[str]:
    """Encode a datetime for a string column (fixed width, microseconds, UTC)."""
    if dt is None:
        return None
    return format_timestamp(dt, include_microseconds=True)


def from_storage(value: Optional[str]) -> Optional[datetime]:
    """Decode a string column written by to_storage()."""
    if value is None or value == "":
        return None

    raw = value.rstrip("Z")
    try:
        dt = datetime.strptime(raw, "%Y-%m-%dT%H:%M:%S.%f")
    except ValueError:
        dt = datetime.strptime(raw, "%Y-%m-%dT%H:%M:%S")
    return dt.replace(tzinfo=timezone.utc)


def elapsed_ms(start: datetime, end: datetime) -> int:
    """Whole milliseconds from start to end, clamped at zero."""
    return max(0, (ensure_utc(end) - ensure_utc(start)) // _ONE_MS)


def hours_ago(hours: float, now: Optional[datetime] = None) -> datetime:
    """Return the instant ``hours`` before ``now`` (defaults to the current time)."""
    reference = ensure_utc(now) if now is not None else utc_now()
    return reference - timedelta(hours=hours)
