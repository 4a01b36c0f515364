"""
Datetime utilities for identity reconciliation services.
"""
from datetime import datetime, timezone
from typing import Optional, Union


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def make_aware(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Ensure datetime is timezone-aware (UTC if naive).

    Args:
        dt: A datetime object that may or may not have timezone info

    Returns:
        The same datetime with UTC timezone if it was naive,
        or the original timezone-aware datetime, or None if input was None
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def parse_timestamp(value: Union[str, datetime, None]) -> Optional[datetime]:
    """
    Parse a stored timestamp into an aware datetime.

    SQLite hands back ISO strings, either our own isoformat() output or
    CURRENT_TIMESTAMP's "YYYY-MM-DD HH:MM:SS" form.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return make_aware(value)
    return make_aware(datetime.fromisoformat(value.replace("Z", "+00:00")))
