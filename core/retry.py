"""
Exponential backoff retry for transient Lark API failures.

- HTTP 429: retried up to ``max_retries_429`` times, delays 1s, 2s, 4s, 8s ...
- HTTP 5xx: retried up to ``max_retries_5xx`` times, delays 2s, 4s, 8s ...
- Anything else: re-raised immediately.

Each delay is multiplied by a jitter factor in [0.5, 1.0) so that concurrent
callers do not retry in lockstep.
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_RETRIES_429 = 4
DEFAULT_BASE_DELAY_429 = 1.0
DEFAULT_MAX_RETRIES_5XX = 3
DEFAULT_BASE_DELAY_5XX = 2.0


class RetryPolicy:
    """
    Retry wrapper with independent budgets for rate-limit and server errors.

    Because the two counters are independent, alternating 429/5xx failures
    can consume up to ``max_retries_429 + max_retries_5xx`` retries in total.
    """

    def __init__(
        self,
        max_retries_429: int = DEFAULT_MAX_RETRIES_429,
        base_delay_429: float = DEFAULT_BASE_DELAY_429,
        max_retries_5xx: int = DEFAULT_MAX_RETRIES_5XX,
        base_delay_5xx: float = DEFAULT_BASE_DELAY_5XX,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        random_fn: Callable[[], float] = random.random,
    ) -> None:
        self.max_retries_429 = max_retries_429
        self.base_delay_429 = base_delay_429
        self.max_retries_5xx = max_retries_5xx
        self.base_delay_5xx = base_delay_5xx
        self._sleep = sleep
        self._random = random_fn

    def compute_delay(self, base_delay: float, attempt: int) -> float:
        """Delay before retry number ``attempt`` (0-based): base * 2^attempt * jitter."""
        jitter = 0.5 + self._random() * 0.5
        return base_delay * (2**attempt) * jitter

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        classify: Callable[[BaseException], int | None],
    ) -> T:
        """
        Run ``operation`` until it succeeds or a failure is not retryable.

        Args:
            operation: Zero-argument coroutine function to invoke.
            classify: Maps a raised exception to an HTTP status code, or None
                when the failure is not HTTP-related.

        Returns:
            Whatever ``operation`` returns.

        Raises:
            The last exception raised by ``operation``, unchanged.
        """
        attempt_429 = 0
        attempt_5xx = 0

        while True:
            try:
                return await operation()
            except Exception as error:
                status = classify(error)

                if status == 429 and attempt_429 < self.max_retries_429:
                    delay = self.compute_delay(self.base_delay_429, attempt_429)
                    attempt_429 += 1
                    logger.warning(
                        f"Rate limited (429), retry {attempt_429}/{self.max_retries_429} in {delay:.2f}s: {error}"
                    )
                    await self._sleep(delay)
                    continue

                if status is not None and status >= 500 and attempt_5xx < self.max_retries_5xx:
                    delay = self.compute_delay(self.base_delay_5xx, attempt_5xx)
                    attempt_5xx += 1
                    logger.warning(
                        f"Server error ({status}), retry {attempt_5xx}/{self.max_retries_5xx} in {delay:.2f}s: {error}"
                    )
                    await self._sleep(delay)
                    continue

                raise
