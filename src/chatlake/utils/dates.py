"""
Timezone helpers.

All timestamps are stored as UTC. SQLite hands timezone-aware columns back
as naive datetimes, so comparisons go through ensure_utc.
"""

from datetime import UTC, datetime
from typing import Optional


def utc_now() -> datetime:
    return datetime.now(UTC)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes; convert aware ones to UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def from_unix_seconds(value) -> Optional[datetime]:
    """Convert a unix timestamp (int, float or numeric string) to aware UTC."""
    if value is None:
        return None
    try:
        return datetime.fromtimestamp(float(value), tz=UTC)
    except (TypeError, ValueError, OverflowError, OSError):
        return None
