"""Token-bucket rate limiter for Figma API calls.

Callers reserve a token under a lock and then sleep outside it, so
concurrent callers queue up in arrival order instead of racing for the
next refill. A reservation whose wait would exceed ``max_wait`` is refused
with RateLimitExceededError and consumes nothing.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from typing import Awaitable, Callable, Optional

from ..errors import InvalidInputError, RateLimitExceededError

logger = logging.getLogger("design_context.integrations.figma")


class TokenBucketRateLimiter:
    """Args:
        requests_per_minute: Sustained refill rate.
        burst_size: Bucket capacity; the bucket starts full.
        max_wait: Longest a single acquire() may wait, in seconds.
        clock: Monotonic time source (injectable for tests).
        sleep: Coroutine used to wait (injectable for tests).
    """

    def __init__(
        self,
        requests_per_minute: int,
        burst_size: int,
        max_wait: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if requests_per_minute <= 0 or burst_size <= 0:
            raise InvalidInputError(
                "requests_per_minute and burst_size must be positive",
                requests_per_minute=requests_per_minute,
                burst_size=burst_size,
            )
        self._rate = requests_per_minute / 60.0
        self._capacity = float(burst_size)
        self._max_wait = max_wait
        self._clock = clock
        self._sleep = sleep
        self._tokens = float(burst_size)
        self._updated = clock()
        self._lock = threading.Lock()

    @property
    def burst_size(self) -> int:
        return int(self._capacity)

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._updated)
        self._tokens = min(self._capacity, self._tokens + elapsed * self._rate)
        self._updated = now

    def _reserve(self, operation: Optional[str]) -> float:
        with self._lock:
            self._refill()
            if self._tokens >= 1.0:
                self._tokens -= 1.0
                return 0.0
            wait = (1.0 - self._tokens) / self._rate
            if wait > self._max_wait:
                raise RateLimitExceededError(
                    f"Rate limit exceeded: next token in {wait:.1f}s "
                    f"(max wait {self._max_wait:.1f}s)",
                    operation=operation,
                )
            # Negative balance = tokens already promised to waiting callers
            self._tokens -= 1.0
            return wait

    def _refund(self) -> None:
        with self._lock:
            self._tokens = min(self._capacity, self._tokens + 1.0)

    async def acquire(self, operation: Optional[str] = None) -> float:
        """Take one token, waiting if needed. Returns the seconds waited."""
        wait = self._reserve(operation)
        if wait > 0:
            logger.info(f"rate_limiter: {operation or 'request'} waiting {wait:.2f}s for a token")
            try:
                await self._sleep(wait)
            except asyncio.CancelledError:
                self._refund()
                raise
        return wait

    def available(self) -> float:
        with self._lock:
            self._refill()
            return max(0.0, self._tokens)
