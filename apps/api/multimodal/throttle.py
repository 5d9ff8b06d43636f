"""Sequential request gate for rate-limited external APIs."""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, Optional, TypeVar

T = TypeVar("T")


class RateLimitedSequencer:
    """
    Run awaitables one at a time, leaving at least ``min_interval`` seconds
    between the end of one call and the start of the next.

    The first call is never delayed, so no wait happens after the final call
    of a batch. ``sleep`` and ``clock`` are injectable for tests.
    """

    def __init__(
        self,
        min_interval: float,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        if min_interval < 0:
            raise ValueError("min_interval must be >= 0")
        self.min_interval = float(min_interval)
        self._sleep = sleep
        self._clock = clock
        self._lock = asyncio.Lock()
        self._last_finished: Optional[float] = None
        self.calls = 0

    async def run(self, func: Callable[..., Awaitable[T]], *args, **kwargs) -> T:
        async with self._lock:
            if self._last_finished is not None and self.min_interval > 0:
                remaining = self.min_interval - (self._clock() - self._last_finished)
                if remaining > 0:
                    await self._sleep(remaining)
            try:
                return await func(*args, **kwargs)
            finally:
                self.calls += 1
                self._last_finished = self._clock()
