"""
UTC helpers shared by reservation entities and the stores.

Every stored timestamp (reservation created_at / updated_at, sweep cutoffs)
is timezone-aware with offset 0. Cache expiry does not use these: it runs on
a monotonic clock.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any


def require_utc_timestamp(name: str, value: datetime) -> None:
    """Raise ValueError unless `value` is timezone-aware with a zero UTC offset."""

    if value.tzinfo is None or value.utcoffset() is None:
        raise ValueError(f"{name} must be timezone-aware (UTC)")
    if value.utcoffset() != timedelta(0):
        raise ValueError(f"{name} must be a UTC timestamp (offset 0)")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso_utc(value: datetime, *, name: str) -> str:
    require_utc_timestamp(name, value)
    return value.isoformat()


def parse_utc(value: Any) -> datetime:
    """
    Parse a stored timestamp into an aware UTC datetime.

    Accepts datetimes and ISO-8601 strings, including a trailing 'Z'.
    Naive values are taken to be UTC already.
    """

    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    else:
        raise TypeError(f"Unsupported timestamp type: {type(value)!r}")

    if dt.tzinfo is None or dt.utcoffset() is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


__all__ = ["parse_utc", "require_utc_timestamp", "to_iso_utc", "utc_now"]
