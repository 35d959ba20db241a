"""
Timezone-aware datetime utilities for the campaign broker.

All functions return timezone-aware datetime objects. The Gateway speaks Unix
seconds on the wire and Korea Standard Time in anything shown to people, so the
helpers for both live here.
"""

from datetime import datetime, timezone
from typing import Optional
import time
import pytz

GATEWAY_TIMEZONE = 'Asia/Seoul'


def utc_now() -> datetime:
    """
    Get the current UTC time as a timezone-aware datetime object.

    Returns:
        datetime: Current UTC time with timezone information
    """
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """
    Ensure a datetime object is timezone-aware and in UTC.

    Naive datetimes are assumed to already be UTC; aware ones are converted.

    Example:
        >>> ensure_utc(datetime(2025, 1, 1, 12, 0, 0)).tzinfo
        datetime.timezone.utc
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    if dt.tzinfo != timezone.utc:
        return dt.astimezone(timezone.utc)
    return dt


def to_unix_timestamp(dt: Optional[datetime]) -> Optional[int]:
    """
    Convert a datetime to whole Unix seconds, the unit the Gateway expects.

    Example:
        >>> to_unix_timestamp(datetime(2025, 1, 1, tzinfo=timezone.utc))
        1735689600
    """
    if dt is None:
        return None
    return int(ensure_utc(dt).timestamp())


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO 8601 string (a trailing 'Z' is accepted) to an aware UTC datetime.

    Returns None for empty input and raises ValueError for garbage, leaving the
    caller to decide how to report it.
    """
    if not value:
        return None
    if value.endswith('Z'):
        value = value[:-1] + '+00:00'
    return ensure_utc(datetime.fromisoformat(value))


def utc_to_local(dt: datetime, local_tz: str = GATEWAY_TIMEZONE) -> datetime:
    """
    Convert a UTC datetime to a local timezone.

    Args:
        dt: UTC datetime (naive values are treated as UTC)
        local_tz: Target timezone name (default: Asia/Seoul)
    """
    return ensure_utc(dt).astimezone(pytz.timezone(local_tz))


def format_local(dt: Optional[datetime], local_tz: str = GATEWAY_TIMEZONE) -> Optional[str]:
    """Format a datetime for people reading it in the Gateway's timezone."""
    if dt is None:
        return None
    return utc_to_local(dt, local_tz).strftime('%Y-%m-%d %H:%M %Z')


def generate_correlation_id() -> str:
    """
    Millisecond timestamp used as the Gateway 'tid'.

    It only ties a request to its response in the logs; it is not a dedup key.
    """
    return str(time.time_ns() // 1_000_000)
