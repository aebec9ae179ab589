"""
Time helpers. All persisted timestamps are naive UTC.
"""

from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """Current time as a naive UTC datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def ms_to_datetime(timestamp_ms: int) -> datetime:
    """Convert a venue millisecond timestamp to a naive UTC datetime."""
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).replace(tzinfo=None)


def datetime_to_ms(value: datetime) -> int:
    """Convert a naive UTC datetime to milliseconds since the epoch."""
    return int(value.replace(tzinfo=timezone.utc).timestamp() * 1000)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize an aware datetime to naive UTC; naive values are assumed to be UTC already."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
