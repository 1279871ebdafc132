"""
Token bucket rate limiter for Lark API calls.

The bucket is refilled to ``capacity`` once every ``refill_interval`` seconds.
Refill is lazy: it is computed from elapsed clock time whenever the bucket is
touched, so no background task is needed.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 5
DEFAULT_REFILL_INTERVAL = 1.0


class RateLimiter:
    """
    Token bucket admission control.

    ``acquire()`` never fails; it only suspends until a token is available.
    This is the only backpressure mechanism in the client.

    Args:
        capacity: Maximum number of tokens in the bucket.
        refill_interval: Seconds after which the bucket is refilled to capacity.
        clock: Time source in seconds. Injected for tests.
        sleep: Coroutine used to suspend. Injected for tests.
    """

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        refill_interval: float = DEFAULT_REFILL_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        if refill_interval <= 0:
            raise ValueError("refill_interval must be positive")
        self.capacity = capacity
        self.refill_interval = refill_interval
        self._clock = clock
        self._sleep = sleep
        self._tokens = capacity
        self._last_refill = clock()

    @property
    def available_tokens(self) -> int:
        """Number of tokens that can be acquired right now without waiting."""
        self._refill()
        return self._tokens

    async def acquire(self) -> None:
        """Take one token, suspending until the next refill if the bucket is empty."""
        self._refill()
        if self._tokens > 0:
            self._tokens -= 1
            return

        wait = self.refill_interval - (self._clock() - self._last_refill)
        if wait > 0:
            logger.debug(f"Rate limit bucket empty, waiting {wait:.3f}s")
            await self._sleep(wait)

        while True:
            self._refill()
            if self._tokens > 0:
                self._tokens -= 1
                return
            # Woke early or other waiters drained the refill.
            logger.debug(f"Rate limit bucket still empty, waiting a full interval ({self.refill_interval}s)")
            await self._sleep(self.refill_interval)

    def _refill(self) -> None:
        now = self._clock()
        if now - self._last_refill >= self.refill_interval:
            self._tokens = self.capacity
            self._last_refill = now
