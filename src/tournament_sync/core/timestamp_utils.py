"""Timestamp utilities for tournament sync.

Remote stores hand out timestamps in several shapes (datetime objects,
ISO-8601 strings over HTTP, epoch numbers, or seconds/nanoseconds
mappings). The local store always holds timezone-aware datetimes.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping, Optional


def to_local_datetime(value: Any) -> Optional[datetime]:
    """Convert a remote timestamp representation to a UTC datetime.

    Args:
        value: datetime, ISO-8601 string, Unix timestamp (seconds), a
            mapping with "seconds" and optional "nanoseconds", or None

    Returns:
        Timezone-aware datetime in UTC, or None if value is None

    Raises:
        ValueError: If the value cannot be interpreted as a timestamp
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, bool):
        raise ValueError(f"Not a timestamp: {value!r}")
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if isinstance(value, str):
        text = value.strip()
        # fromisoformat() before 3.11 does not accept a trailing Z
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return to_local_datetime(datetime.fromisoformat(text))
    if isinstance(value, Mapping) and "seconds" in value:
        seconds = value["seconds"] + value.get("nanoseconds", 0) / 1_000_000_000
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    raise ValueError(f"Not a timestamp: {value!r}")


def to_wire(value: Optional[datetime]) -> Optional[str]:
    """Format a datetime as an ISO-8601 string for JSON transport."""
    if value is None:
        return None
    return to_local_datetime(value).isoformat()


def format_timestamp(ts: Optional[datetime]) -> str:
    """Format a datetime in the local timezone for display.

    Returns:
        "YYYY-MM-DD HH:MM:SS" in local timezone, or empty string if ts is None
    """
    if ts is None:
        return ""
    return to_local_datetime(ts).astimezone().strftime("%Y-%m-%d %H:%M:%S")


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)
