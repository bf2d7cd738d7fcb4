"""
Timezone-aware datetime utilities for the unified inbox.

All functions return timezone-aware datetime objects in UTC. Provider
payloads carry timestamps in several shapes (epoch seconds, Slack's
"seconds.micro" strings, ISO 8601, RFC 2822 mail dates); the parsers here
turn all of them into UTC datetimes.
"""

from datetime import datetime, timezone, timedelta
from email.utils import parsedate_to_datetime
from typing import Optional, Union


def utc_now() -> datetime:
    """
    Get the current UTC time as a timezone-aware datetime object.

    Returns:
        datetime: Current UTC time with timezone information
    """
    return datetime.now(timezone.utc)


def utc_from_timestamp(timestamp: Union[int, float, str]) -> datetime:
    """
    Convert a Unix timestamp to a timezone-aware UTC datetime.

    Accepts strings so Slack's "1000.001" style ts values can be passed as-is.

    Example:
        >>> utc_from_timestamp('1000.001').year
        1970
    """
    return datetime.fromtimestamp(float(timestamp), tz=timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """
    Ensure a datetime object is timezone-aware and in UTC.

    Naive datetimes (as read back from SQLite) are assumed to be UTC.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    elif dt.tzinfo != timezone.utc:
        return dt.astimezone(timezone.utc)
    else:
        return dt


def utc_seconds_from_now(seconds: Union[int, float]) -> datetime:
    """Expiry helper for OAuth ``expires_in`` values."""
    return utc_now() + timedelta(seconds=int(seconds))


def format_utc_iso(dt: Optional[datetime] = None) -> str:
    """
    Format a datetime as an ISO 8601 string in UTC.

    Example:
        >>> format_utc_iso(datetime(2025, 1, 1, 12))
        '2025-01-01T12:00:00+00:00'
    """
    utc_dt = ensure_utc(dt) if dt else utc_now()
    return utc_dt.isoformat()


def parse_utc_iso(iso_string: str) -> datetime:
    """
    Parse an ISO 8601 string to a timezone-aware UTC datetime.

    Example:
        >>> parse_utc_iso('2025-01-01T12:00:00Z').tzinfo
        datetime.timezone.utc
    """
    if iso_string.endswith('Z'):
        iso_string = iso_string[:-1] + '+00:00'

    dt = datetime.fromisoformat(iso_string)
    return ensure_utc(dt)


def parse_provider_timestamp(value) -> Optional[datetime]:
    """
    Best-effort parse of a timestamp found in a provider payload.

    Returns None when the value is missing or unparseable so callers can
    fall back to the receive time.
    """
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, (int, float)):
        # Gmail internalDate is epoch milliseconds
        return utc_from_timestamp(value / 1000 if value > 1e11 else value)

    text = str(value).strip()
    try:
        return parse_provider_timestamp(float(text))
    except (ValueError, OverflowError, OSError):
        pass
    try:
        return parse_utc_iso(text)
    except ValueError:
        pass
    try:
        return ensure_utc(parsedate_to_datetime(text))
    except (TypeError, ValueError):
        return None
