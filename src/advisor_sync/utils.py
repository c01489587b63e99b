"""Shared time helpers."""

from datetime import UTC, date, datetime
from typing import Any


def utc_now() -> datetime:
    """Get current UTC time."""
    return datetime.now(UTC)


def to_iso(dt: datetime) -> str:
    return dt.isoformat()


def today_iso(now: datetime | None = None) -> str:
    """Calendar date (YYYY-MM-DD) in UTC."""
    return (now or utc_now()).date().isoformat()


def parse_timestamp(value: Any) -> datetime | None:
    """
    Parse a timestamp field from a blob.

    Accepts ISO strings (with or without "Z"), epoch milliseconds and
    datetime/date objects. Returns None for anything unparseable.
    Naive values are treated as UTC.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime(value.year, value.month, value.day)
    elif isinstance(value, (int, float)):
        try:
            dt = datetime.fromtimestamp(value / 1000, tz=UTC)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        if not value:
            return None
        iso_str = value[:-1] + "+00:00" if value.endswith("Z") else value
        try:
            dt = datetime.fromisoformat(iso_str)
        except ValueError:
            return None
    else:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt
