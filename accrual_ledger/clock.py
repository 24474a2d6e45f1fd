"""
Accrual Clock Module

Supplies the current time to the ledger. Times are integer seconds; the ledger
never reads a clock on its own, it is handed one at construction (or an
explicit `now` per call) so settlement stays deterministic and testable.
"""

from abc import ABC, abstractmethod
from typing import Optional
import threading
import time

from .errors import NonMonotonicTimeError


class AccrualClock(ABC):
    """Abstract time source for interest accrual"""

    @abstractmethod
    def now(self) -> int:
        """Current time in integer seconds"""
        pass

    @staticmethod
    def elapsed(since: Optional[int], now: int) -> int:
        """
        Seconds elapsed since a reference point.

        A reference point of None (never settled) yields zero elapsed time
        rather than the time since epoch zero.

        Raises:
            NonMonotonicTimeError: If now is earlier than since
        """
        if since is None:
            return 0
        if now < since:
            raise NonMonotonicTimeError(since, now)
        return now - since


class SystemClock(AccrualClock):
    """
    Wall-clock time source

    Never returns less than it returned before, so a wall clock stepped
    backwards cannot make settled accounts reject operations.
    """

    def __init__(self):
        self._last = 0
        self._lock = threading.Lock()

    def now(self) -> int:
        with self._lock:
            self._last = max(self._last, int(time.time()))
            return self._last


class ManualClock(AccrualClock):
    """Settable clock for tests and simulations"""

    def __init__(self, start: int = 0):
        if start < 0:
            raise ValueError("Clock cannot start before zero")
        self._now = start

    def now(self) -> int:
        return self._now

    def advance(self, seconds: int) -> int:
        """Move the clock forward and return the new time"""
        if seconds < 0:
            raise ValueError("Clock can only move forward")
        self._now += seconds
        return self._now

    def set(self, timestamp: int) -> None:
        if timestamp < self._now:
            raise NonMonotonicTimeError(self._now, timestamp)
        self._now = timestamp
