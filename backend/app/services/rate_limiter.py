"""
Sliding-window rate limiter for outbound email sends
"""
import asyncio
import logging
import time
from collections import deque
from typing import Awaitable, Callable, Deque

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Caps provider calls at `rate_per_second` within any rolling window.

    The send times of the last `rate_per_second` calls are kept. When the log
    is full, `acquire` waits until the oldest entry leaves the window. Callers
    are served one at a time so concurrent senders cannot overrun the limit.
    """

    def __init__(
        self,
        rate_per_second: int,
        window_seconds: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if rate_per_second < 1:
            raise ValueError("rate_per_second must be at least 1")
        self.rate_per_second = rate_per_second
        self.window_seconds = window_seconds
        self._clock = clock
        self._sleep = sleep
        self.sent_times: Deque[float] = deque(maxlen=rate_per_second)
        self._lock = asyncio.Lock()

    async def acquire(self) -> float:
        """Reserve one send slot. Returns the time spent waiting, in seconds."""
        async with self._lock:
            waited = 0.0

            if len(self.sent_times) == self.rate_per_second:
                wait_time = self.sent_times[0] + self.window_seconds - self._clock()
                if wait_time > 0:
                    logger.info(f"Rate limit reached, waiting {wait_time * 1000:.0f}ms")
                    await self._sleep(wait_time)
                    waited = wait_time

            # a full deque drops the oldest entry on append
            self.sent_times.append(self._clock())
            return waited
