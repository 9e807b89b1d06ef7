"""
Datetime utility functions.
Provides replacements for deprecated datetime functions.
"""

from datetime import datetime
from typing import Optional
import pytz


def utcnow() -> datetime:
    """
    Get current UTC datetime using pytz.UTC.

    Returns:
        Current UTC datetime with pytz timezone information
    """
    return datetime.now(pytz.UTC)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Attach UTC to a naive datetime read back from the database.

    Some drivers (SQLite) drop tzinfo on DateTime(timezone=True) columns, so
    timestamps need normalizing before they can be compared with utcnow().

    Args:
        value: Datetime from an ORM row, possibly naive or None

    Returns:
        Timezone-aware UTC datetime, or None if value is None
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return pytz.UTC.localize(value)
    return value.astimezone(pytz.UTC)


def elapsed_seconds(since: Optional[datetime], now: Optional[datetime] = None) -> Optional[float]:
    """Seconds between `since` and `now` (defaults to utcnow()), None if `since` is None."""
    since = ensure_utc(since)
    if since is None:
        return None
    return ((now or utcnow()) - since).total_seconds()
