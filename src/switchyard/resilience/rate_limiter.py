from __future__ import annotations
import asyncio
import time
from typing import Awaitable, Callable, Optional

DEFAULT_MIN_INTERVAL = 0.1  # 10 requests/second


class RateLimiter:
    """
    Minimum-spacing gate between the *start* times of consecutive requests.

    Not a token bucket: idle time earns no credit and bursts are never allowed.
    The check-sleep-stamp sequence runs under a lock so concurrent callers on the
    same provider queue up behind each other instead of firing together.
    """

    def __init__(
        self,
        min_interval: float = DEFAULT_MIN_INTERVAL,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if min_interval < 0:
            raise ValueError("min_interval must be >= 0")
        self.min_interval = float(min_interval)
        self._clock = clock
        self._sleep = sleep
        self._last_start: Optional[float] = None
        self._lock = asyncio.Lock()

    @property
    def last_start(self) -> Optional[float]:
        return self._last_start

    async def acquire(self) -> float:
        """Wait until a request may start; returns the recorded start time."""
        async with self._lock:
            if self._last_start is not None and self.min_interval > 0:
                elapsed = self._clock() - self._last_start
                if elapsed < self.min_interval:
                    await self._sleep(self.min_interval - elapsed)
            self._last_start = self._clock()
            return self._last_start
