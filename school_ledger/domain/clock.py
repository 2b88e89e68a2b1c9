"""
Clock -- injectable time source.

Services receive a Clock through their constructor and never call
``datetime.now()`` or ``date.today()`` themselves.  posted_at timestamps,
default entry dates and the year embedded in generated references all come
from here, which keeps tests deterministic.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone


class Clock(ABC):
    """
    Abstract clock interface.

    Guarantees:
        - ``now()`` returns a timezone-aware ``datetime``.
        - ``today()`` is the calendar date of ``now()``.
    """

    @abstractmethod
    def now(self) -> datetime:
        raise NotImplementedError

    def today(self) -> date:
        return self.now().date()


class SystemClock(Clock):
    """Production clock returning the actual UTC system time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """Fixed clock for tests.  Time only moves when ``advance()`` is called."""

    DEFAULT_TIME = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __init__(self, fixed_time: datetime | None = None):
        self._current = fixed_time or self.DEFAULT_TIME

    def now(self) -> datetime:
        return self._current

    def advance(self, **delta: float) -> datetime:
        """Move forward by a timedelta spec, e.g. ``advance(days=31)``."""
        self._current += timedelta(**delta)
        return self._current
