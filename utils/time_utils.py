"""
utils/time_utils.py

Purpose: Time and expiry helpers

- Timezone-aware "now"
- Expiry checks for stored timestamps
- Minutes-of-day conversion for slot matching
"""

from datetime import datetime, timedelta, timezone
from typing import Optional, Union


def utc_now() -> datetime:
    """Returns the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_aware(dt: datetime) -> datetime:
    """Treats naive datetimes as UTC (Mongo returns naive values unless tz_aware)."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def parse_timestamp(value: Union[str, datetime, None]) -> Optional[datetime]:
    """Parses an ISO-8601 string (or passes through a datetime) into an aware datetime."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return ensure_aware(value)
    try:
        return ensure_aware(datetime.fromisoformat(value.replace("Z", "+00:00")))
    except ValueError:
        return None


def is_expired(expires_at: Optional[datetime], now: Optional[datetime] = None) -> bool:
    """A missing expiry is treated as expired."""
    if expires_at is None:
        return True
    now = now or utc_now()
    return ensure_aware(now) > ensure_aware(expires_at)


def expires_in(minutes: int = 0, seconds: int = 0) -> datetime:
    """Returns an aware UTC timestamp `minutes`/`seconds` from now."""
    return utc_now() + timedelta(minutes=minutes, seconds=seconds)


def time_to_minutes(value: str) -> Optional[int]:
    """
    Converts a time of day to minutes since midnight.

    Accepts "HH:MM", "HH:MM:SS" and full "YYYY-MM-DD HH:MM:SS" strings
    (the time part is used). Returns None when no time can be read.
    """
    if not value:
        return None

    time_part = value.strip().split(" ")[-1].split("T")[-1]
    pieces = time_part.split(":")
    if len(pieces) < 2:
        return None

    try:
        hours = int(pieces[0])
        minutes = int(pieces[1])
    except ValueError:
        return None

    if not (0 <= hours < 24 and 0 <= minutes < 60):
        return None
    return hours * 60 + minutes
