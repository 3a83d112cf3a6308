"""Timestamp helpers.

All timestamps are stored as naive UTC datetimes because SQLite drops
timezone information on the way back out.
"""

from datetime import datetime, timezone

EPOCH = datetime(1970, 1, 1)


def utcnow() -> datetime:
    """Return the current time as a naive UTC datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Normalize a datetime to naive UTC.

    Aware datetimes are converted to UTC; naive ones are assumed to already
    be in UTC and returned unchanged.
    """
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
