"""
MailBridge clock helpers

Rules:
1. Internal time is always UTC
2. Do not call datetime.now() / datetime.utcnow() directly
3. Stores persist epoch milliseconds

Usage:
    from mailbridge.core.time import utc_now, utc_now_ms

    now = utc_now()  # aware UTC datetime
    timestamp = utc_now_ms()  # epoch milliseconds
"""

from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """
    Current UTC time (timezone-aware)

    Example:
        >>> now = utc_now()
        >>> now.tzname()  # 'UTC'
    """
    return datetime.now(timezone.utc)


def utc_now_ms() -> int:
    """
    Current UTC time as epoch milliseconds

    Example:
        >>> ts = utc_now_ms()
        >>> ts  # 1738329600000
    """
    return int(utc_now().timestamp() * 1000)


def from_epoch_ms(ms: int) -> datetime:
    """
    Convert epoch milliseconds to an aware UTC datetime

    Example:
        >>> dt = from_epoch_ms(1769860800000)
        >>> dt.year  # 2026
    """
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)


def iso_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Format a datetime as ISO 8601 UTC with a Z suffix, or None

    Example:
        >>> iso_z(datetime(2026, 1, 31, 12, 34, 56, 789012, tzinfo=timezone.utc))
        '2026-01-31T12:34:56.789012Z'
    """
    if dt is None:
        return None

    if dt.tzinfo is None:
        # Naive datetime - declare as UTC (do not convert)
        dt = dt.replace(tzinfo=timezone.utc)
    else:
        dt = dt.astimezone(timezone.utc)

    return dt.strftime('%Y-%m-%dT%H:%M:%S.%fZ')


__all__ = [
    'utc_now',
    'utc_now_ms',
    'from_epoch_ms',
    'iso_z',
]
