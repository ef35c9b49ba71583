"""
Business clock.

All day counting, grace windows and "is it expired" checks go through this
module so that every comparison happens in the single business timezone
(Asia/Riyadh by default). Values read back from the database may come back
naive (SQLite) or in UTC (Postgres); `Clock.localize` normalizes both.
"""
import math
import os
from datetime import datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

BUSINESS_TIMEZONE = os.getenv("BUSINESS_TIMEZONE", "Asia/Riyadh")

SECONDS_PER_DAY = 24 * 60 * 60


class Clock:
    def __init__(self, tz_name: str = BUSINESS_TIMEZONE):
        self.tz = ZoneInfo(tz_name)

    def now(self) -> datetime:
        return datetime.now(self.tz)

    def localize(self, value: Optional[datetime]) -> Optional[datetime]:
        """Return `value` as an aware datetime in the business timezone."""
        if value is None:
            return None
        if value.tzinfo is None:
            # Naive values are stored business-local wall time.
            return value.replace(tzinfo=self.tz)
        return value.astimezone(self.tz)


class FrozenClock(Clock):
    """Clock that only moves when told to. Used for time-travel in tests and scripts."""

    def __init__(self, current: datetime, tz_name: str = BUSINESS_TIMEZONE):
        super().__init__(tz_name)
        self.current = self.localize(current)

    def now(self) -> datetime:
        return self.current

    def advance(self, days: float = 0, **kwargs) -> datetime:
        self.current = self.current + timedelta(days=days, **kwargs)
        return self.current

    def set(self, value: datetime) -> datetime:
        self.current = self.localize(value)
        return self.current


def days_between(start: datetime, end: datetime) -> int:
    """Whole days between two instants, rounded up, never negative."""
    diff = abs((end - start).total_seconds())
    return math.ceil(diff / SECONDS_PER_DAY)


def days_until(start: datetime, end: datetime) -> int:
    """Signed whole days from `start` to `end`, rounded up. Negative when `end` is past."""
    return math.ceil((end - start).total_seconds() / SECONDS_PER_DAY)


def fractional_days(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / SECONDS_PER_DAY


def add_days(value: datetime, days: int) -> datetime:
    """Calendar-day addition (not business days)."""
    return value + timedelta(days=days)


_default_clock = Clock()


def get_clock() -> Clock:
    """FastAPI dependency; overridden in tests with a FrozenClock."""
    return _default_clock
