from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import TypeVar

T = TypeVar("T")


class PeriodicPoller:
    """
    Bounded polling loop.

    `ticks()` yields the attempt number immediately and then once per
    `interval` until `max_attempts` or `max_elapsed` is reached. After the
    loop, `exhausted` tells whether a limit ended it.
    """

    def __init__(
        self,
        interval: float,
        *,
        max_attempts: int | None = None,
        max_elapsed: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.interval = interval
        self.max_attempts = max_attempts
        self.max_elapsed = max_elapsed
        self._sleep = sleep
        self._clock = clock
        self.attempts = 0
        self.exhausted = False
        self._started_at: float | None = None

    @property
    def elapsed(self) -> float:
        if self._started_at is None:
            return 0.0
        return self._clock() - self._started_at

    def _limit_reached(self) -> bool:
        if self.max_attempts is not None and self.attempts >= self.max_attempts:
            return True
        if self.max_elapsed is not None and self.elapsed >= self.max_elapsed:
            return True
        return False

    async def ticks(self) -> AsyncIterator[int]:
        self._started_at = self._clock()
        self.attempts = 0
        self.exhausted = False
        while True:
            if self._limit_reached():
                self.exhausted = True
                return
            self.attempts += 1
            yield self.attempts
            await self._sleep(self.interval)

    async def pause(self, seconds: float) -> None:
        await self._sleep(seconds)

    async def run(self, check: Callable[[], Awaitable[T | None]]) -> T | None:
        """
        Call `check` on every tick and return its first non-None result, or
        None when the poller runs out.
        """
        async for _ in self.ticks():
            result = await check()
            if result is not None:
                return result
        return None


__all__ = ["PeriodicPoller"]
