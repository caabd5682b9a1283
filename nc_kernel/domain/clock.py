"""
Clock -- the only way "now" enters the workflow.

Stage completion stamps, task due dates, SLA buckets and the dashboard
trend all read the time from an injected Clock, so a test (or a replay of
an incident) can pin them.  SystemClock is the single place that reads the
wall clock.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone


class Clock(ABC):
    """Source of the current UTC instant.  ``today`` is its calendar date."""

    @abstractmethod
    def now_utc(self) -> datetime:
        ...

    def today(self) -> date:
        return self.now_utc().date()


class SystemClock(Clock):
    def now_utc(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Clock that only moves when told to.

    Starts at 2024-01-01 12:00 UTC unless given another aware datetime.
    Midday keeps ``advance_days`` well away from a date boundary.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._current = (fixed_time or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)).astimezone(
            timezone.utc
        )

    def now_utc(self) -> datetime:
        return self._current

    def advance(self, delta: timedelta) -> None:
        if delta < timedelta(0):
            raise ValueError("a clock never runs backwards")
        self._current += delta

    def advance_days(self, days: int) -> None:
        self.advance(timedelta(days=days))
