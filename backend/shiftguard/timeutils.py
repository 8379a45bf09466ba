"""
Timestamp helpers.

All persisted timestamps are naive UTC, matching DateTime columns without
timezone. Expiry comparisons elsewhere rely on that.
"""
from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Current time as naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize an aware datetime to naive UTC; naive values are assumed UTC."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def is_active_until(until: Optional[datetime], now: datetime) -> bool:
    """A sanction with expiry `until` is in force at `now` (null = permanent)."""
    return until is None or until > now
