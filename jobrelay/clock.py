"""
Time helpers.

All timestamps are timezone-aware UTC. Some database backends hand naive
values back, so anything read from a row goes through ``as_utc`` before it
is compared against ``utcnow()``.
"""

from datetime import UTC, datetime


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to a naive datetime, leave aware ones untouched."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)
