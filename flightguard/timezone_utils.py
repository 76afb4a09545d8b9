# flightguard/timezone_utils.py
#
# Timezone utilities for consistent datetime handling
# Everything is stored and compared in UTC; the school's local zone is only
# used when showing times to people (prompts, e-mails)

from datetime import datetime, timezone
from typing import Optional

import pytz

from config.settings import APP_TIMEZONE

DEFAULT_TIMEZONE = APP_TIMEZONE


def now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_utc(dt: datetime) -> datetime:
    """
    Convert a datetime to UTC.
    Naive datetimes are assumed to already be UTC.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_local(dt: datetime, tz: Optional[str] = None) -> datetime:
    """Convert a datetime to the school's display timezone."""
    tz_obj = pytz.timezone(tz or DEFAULT_TIMEZONE)
    return to_utc(dt).astimezone(tz_obj)


def truncate_to_hour(dt: datetime) -> datetime:
    """UTC datetime with minutes, seconds and microseconds dropped."""
    return to_utc(dt).replace(minute=0, second=0, microsecond=0)


def parse_iso_with_tz(iso_string: str) -> datetime:
    """
    Parse ISO format string and ensure timezone awareness.
    If no timezone info, assumes UTC.
    """
    dt = datetime.fromisoformat(iso_string.replace('Z', '+00:00'))
    return to_utc(dt)


def format_flight_time(dt: datetime, tz: Optional[str] = None) -> str:
    """
    Human readable flight time in the display timezone.
    Example: 'Monday, October 19, 2026 at 9:00 AM CDT'
    """
    local = to_local(dt, tz)
    hour = local.strftime("%I").lstrip("0") or "12"
    return (
        f"{local.strftime('%A, %B')} {local.day}, {local.year} "
        f"at {hour}:{local.strftime('%M %p')} {local.tzname()}"
    )
