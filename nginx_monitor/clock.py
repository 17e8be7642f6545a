from __future__ import annotations

import asyncio
import time
from datetime import datetime, timedelta, timezone
from typing import Protocol


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


class TimeSource(Protocol):
    def now(self) -> datetime:
        """Current wall-clock time (timezone-aware UTC)."""
        ...

    def monotonic(self) -> float:
        ...

    async def sleep(self, seconds: float) -> None:
        ...


class SystemClock:
    def now(self) -> datetime:
        return now_utc()

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(0.0, float(seconds)))


class FrozenClock:
    """
    Manually driven clock for tests.

    `sleep()` advances both the wall clock and the monotonic counter instead of
    waiting, and records each requested delay in `sleeps`.
    """

    def __init__(self, start: datetime, *, monotonic_start: float = 0.0) -> None:
        if start.tzinfo is None:
            start = start.replace(tzinfo=timezone.utc)
        self._now = start
        self._monotonic = float(monotonic_start)
        self.sleeps: list[float] = []

    def now(self) -> datetime:
        return self._now

    def monotonic(self) -> float:
        return self._monotonic

    def advance(self, seconds: float) -> None:
        self._now = self._now + timedelta(seconds=seconds)
        self._monotonic += float(seconds)

    async def sleep(self, seconds: float) -> None:
        seconds = max(0.0, float(seconds))
        self.sleeps.append(seconds)
        self.advance(seconds)
        # Yield so cancellation can be delivered like with a real sleep.
        await asyncio.sleep(0)
