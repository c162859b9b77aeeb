"""
Clock -- injectable time source.

Engines never read the time: every transition takes ``now`` as an
argument.  Services read their Clock once per operation, so all stamps
written by one operation (released_at, pending_at, success_at, ...) agree,
and tests can drive the auto-transit delay without sleeping.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class Clock(ABC):
    """``now()`` returns a timezone-aware UTC datetime."""

    @abstractmethod
    def now(self) -> datetime:
        ...


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Test clock.  Starts at 2024-01-01 12:00 UTC unless told otherwise and
    only moves when advanced.
    """

    DEFAULT_START = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __init__(self, start: datetime | None = None):
        self._now = start or self.DEFAULT_START

    def now(self) -> datetime:
        return self._now

    def set_time(self, moment: datetime) -> None:
        self._now = moment

    def advance(self, seconds: int = 1) -> None:
        self._now += timedelta(seconds=seconds)

    def advance_hours(self, hours: float) -> None:
        """Move forward by ``hours``; used to pass the auto-transit delay."""
        self._now += timedelta(hours=hours)
