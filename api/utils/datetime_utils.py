"""
Datetime utilities for the identity API services.
"""
from datetime import datetime, timezone
from typing import Optional


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


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a stored ISO-8601 timestamp into an aware datetime."""
    if not value:
        return None
    return make_aware(datetime.fromisoformat(value.replace("Z", "+00:00")))
