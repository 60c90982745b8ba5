from datetime import datetime, timezone, timedelta
from typing import Optional


def utc_now_naive() -> datetime:
    """Current UTC time without tzinfo, the form MongoDB hands back."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Normalise an aware datetime to naive UTC; naive values are assumed UTC."""
    if value.tzinfo is not None and value.utcoffset() is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class Clock:
    """Source of 'now' for date-bound transitions"""

    def now(self) -> datetime:
        return utc_now_naive()


class FrozenClock(Clock):
    """Clock pinned to a fixed instant, moved explicitly"""

    def __init__(self, at: Optional[datetime] = None):
        self._now = to_naive_utc(at) if at else utc_now_naive()

    def now(self) -> datetime:
        return self._now

    def set(self, at: datetime):
        self._now = to_naive_utc(at)

    def advance(self, **kwargs):
        self._now = self._now + timedelta(**kwargs)
