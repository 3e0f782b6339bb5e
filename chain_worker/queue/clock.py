"""Time sources for the queue engine.

All timing decisions (eligibility, backoff, pruning) read the clock passed
to the engine, so tests can move time forward without sleeping.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol


class Clock(Protocol):
    def now(self) -> datetime:
        ...


class SystemClock:
    """Wall clock, always timezone-aware UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None):
        self._now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._now

    def advance(self, ms: float = 0, seconds: float = 0) -> datetime:
        """Move time forward and return the new current time."""
        if ms < 0 or seconds < 0:
            raise ValueError("ManualClock cannot move backwards")
        self._now += timedelta(milliseconds=ms, seconds=seconds)
        return self._now

    def set(self, when: datetime) -> None:
        self._now = when
