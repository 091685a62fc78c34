"""
Injectable time source.

Engine, service and storage code take a ``Clock`` instead of calling
``datetime.now()``, so every lifecycle and history timestamp can be pinned
in tests.  All clocks return timezone-aware UTC datetimes.
"""

import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

EPOCH = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class Clock(ABC):

    @abstractmethod
    def now(self) -> datetime:
        """Current time, timezone-aware."""


class SystemClock(Clock):

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Clock that only moves when told to.

    ``now()`` is stable between calls; ``advance()`` and ``tick()`` move it
    forward, ``set_time()`` jumps.  Safe to share between threads.
    """

    def __init__(self, start: datetime | None = None):
        self._lock = threading.Lock()
        self._current = _aware(start or EPOCH)

    def now(self) -> datetime:
        with self._lock:
            return self._current

    def set_time(self, time: datetime) -> None:
        with self._lock:
            self._current = _aware(time)

    def advance(self, seconds: float | timedelta = 1) -> None:
        step = seconds if isinstance(seconds, timedelta) else timedelta(seconds=seconds)
        if step < timedelta(0):
            raise ValueError("DeterministicClock cannot move backwards; use set_time()")
        with self._lock:
            self._current += step

    def tick(self) -> datetime:
        """Advance one second and return the new time."""
        self.advance(1)
        return self.now()


def _aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        raise ValueError("Clock times must be timezone-aware")
    return value.astimezone(timezone.utc)
