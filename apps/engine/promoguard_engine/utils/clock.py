"""Time helpers.

All timestamps in the pipeline are naive UTC datetimes, matching what the
SQLAlchemy ``DateTime`` columns round-trip on every supported database.
"""

from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Current time as naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Normalize an aware datetime to naive UTC; naive values are assumed UTC."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def epoch_seconds(value: datetime) -> float:
    """Seconds since the epoch for a naive UTC datetime."""
    return value.replace(tzinfo=timezone.utc).timestamp()
