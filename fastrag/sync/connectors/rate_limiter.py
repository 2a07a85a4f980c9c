"""
Client-side Rate Limiter.

Sliding one-second window over the timestamps of recent outbound requests.
"""

import asyncio
import logging
import time
from collections import deque
from typing import Awaitable, Callable, Deque

logger = logging.getLogger(__name__)


class SlidingWindowRateLimiter:
    """
    Gate that admits at most `requests_per_second` requests per window.

    A caller that finds the window full sleeps until the oldest recorded
    request leaves it and then re-checks, so the limit holds even when
    several coroutines contend for the same ledger.
    """

    def __init__(
        self,
        requests_per_second: int,
        window_seconds: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        if requests_per_second < 1:
            raise ValueError("requests_per_second must be at least 1")
        self.requests_per_second = requests_per_second
        self.window_seconds = window_seconds
        self._clock = clock
        self._sleep = sleep
        self._requests: Deque[float] = deque()
        self._lock = asyncio.Lock()

    def _evict(self, now: float) -> None:
        cutoff = now - self.window_seconds
        while self._requests and self._requests[0] <= cutoff:
            self._requests.popleft()

    async def acquire(self) -> float:
        """
        Wait for a free slot and record the request.

        Returns:
            Total seconds spent waiting
        """
        waited = 0.0
        async with self._lock:
            while True:
                now = self._clock()
                self._evict(now)

                if len(self._requests) < self.requests_per_second:
                    self._requests.append(now)
                    return waited

                wait_time = self._requests[0] + self.window_seconds - now
                if wait_time > 0:
                    logger.debug(f"Rate limit reached, waiting {wait_time:.3f}s")
                    await self._sleep(wait_time)
                    waited += wait_time

    @property
    def recent_requests(self) -> int:
        """Requests recorded in the current window."""
        self._evict(self._clock())
        return len(self._requests)
