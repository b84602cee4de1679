"""
Clock -- injectable source of "now" and "today".

Responsibility:
    Services and selectors take a ``Clock`` instead of calling
    ``datetime.now()``.  History timestamps, correction-note stamps and the
    "today" that decides whether an installment is overdue all come from it.

Architecture position:
    Kernel > Domain.  ``SystemClock`` is the only place that reads the real
    time.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone


class Clock(ABC):
    """Timezone-aware UTC time source."""

    @abstractmethod
    def now(self) -> datetime:
        ...

    def today(self) -> date:
        """Calendar date of ``now()`` in UTC; the reference for overdue."""
        return self.now().date()


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Clock frozen at a given instant until moved explicitly.

    Naive datetimes are taken as UTC.  ``advance`` moves forward by days
    and/or seconds, which lets a test walk a sale past its due dates.
    """

    DEFAULT_TIME = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __init__(self, fixed_time: datetime | None = None):
        self._current = self._aware(fixed_time or self.DEFAULT_TIME)

    @staticmethod
    def _aware(value: datetime) -> datetime:
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._current

    def advance(self, seconds: int = 0, *, days: int = 0) -> datetime:
        """Move forward and return the new time."""
        self._current += timedelta(days=days, seconds=seconds)
        return self._current
