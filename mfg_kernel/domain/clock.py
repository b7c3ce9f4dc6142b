"""
Clock -- injectable time source.

Services never call ``datetime.now()`` themselves.  Ledger ``posted_at``,
document dates (RFQ request date, PO order date, GRN receipt date) and the
year inside document numbers (``PO-YYYY-NNNN``) all come from the clock the
engine was built with.
"""

import threading
from abc import ABC, abstractmethod
from datetime import UTC, date, datetime, timedelta


class Clock(ABC):
    """Returns timezone-aware UTC datetimes."""

    @abstractmethod
    def now(self) -> datetime:
        ...

    def today(self) -> date:
        """Calendar date (UTC) used as the default document date."""
        return self.now().date()


class SystemClock(Clock):

    def now(self) -> datetime:
        return datetime.now(UTC)


class DeterministicClock(Clock):
    """
    Fixed clock for tests.

    ``now()`` repeats the same instant until it is moved with
    ``set_time``, ``advance`` or ``tick``.  Safe to share between the
    threads of a concurrency test.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._current = fixed_time or datetime(2024, 1, 1, 12, 0, tzinfo=UTC)
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._current

    def set_time(self, moment: datetime) -> None:
        with self._lock:
            self._current = moment

    def advance(self, seconds: int = 0, days: int = 0) -> None:
        with self._lock:
            self._current += timedelta(days=days, seconds=seconds)

    def tick(self) -> datetime:
        """Move forward one second and return the new instant."""
        with self._lock:
            self._current += timedelta(seconds=1)
            return self._current
