"""
Clock abstraction so tests can control timestamps.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class Clock(ABC):
    @abstractmethod
    def now(self) -> datetime:
        """Current UTC datetime."""

    def now_ms(self) -> int:
        return int(self.now().timestamp() * 1000)


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(tz=timezone.utc)


class FakeClock(Clock):
    """Clock frozen at a fixed instant; advance it manually."""

    def __init__(self, initial: datetime | None = None) -> None:
        if initial is None:
            initial = datetime(2024, 1, 15, 12, 0, 0, tzinfo=timezone.utc)
        self._current = initial

    def now(self) -> datetime:
        return self._current

    def set(self, dt: datetime) -> None:
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        self._current = dt

    def advance(self, *, seconds: float = 0, milliseconds: float = 0) -> None:
        self._current += timedelta(seconds=seconds, milliseconds=milliseconds)


system_clock = SystemClock()
