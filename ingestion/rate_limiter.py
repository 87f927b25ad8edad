"""
Process-wide admission control for API requests.

At most ``rate`` operations may start within any rolling window of
``period`` seconds, and at most ``rate`` may be in flight at once. The
window itself is a pyrate-limiter bucket; callers queue for it in arrival
order. Errors raised by an operation reach the caller untouched; retry
policy belongs to the stages.
"""

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from pyrate_limiter import Duration, Limiter, Rate

logger = logging.getLogger(__name__)

T = TypeVar("T")

BUCKET_NAME = "magento-api"


class RateLimitedFetcher:
    """
    FIFO sliding-window limiter wrapped around awaitable operations.

    Attributes:
        rate: Operations admitted per window (and in-flight cap)
        period: Window length in seconds (default: 1.0)
        poll_interval: Seconds between attempts while the window is full
    """

    def __init__(
        self,
        rate: int,
        period: float = 1.0,
        poll_interval: float = 0.01,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        if rate < 1:
            raise ValueError("rate must be at least 1 operation per period")
        self.rate = rate
        self.period = period
        self.poll_interval = poll_interval
        self._sleep = sleep

        # Non-blocking bucket; waiting happens on the event loop below
        self._limiter = Limiter(
            [Rate(rate, int(int(Duration.SECOND) * period))],
            raise_when_fail=False,
            max_delay=None,
        )
        # asyncio.Lock wakes waiters in the order they arrived
        self._admission = asyncio.Lock()
        self._in_flight = asyncio.Semaphore(rate)

    async def _admit(self):
        async with self._admission:
            waited = False
            while not self._limiter.try_acquire(BUCKET_NAME, weight=1):
                if not waited:
                    logger.debug("Rate limit reached, waiting for a free slot")
                    waited = True
                await self._sleep(self.poll_interval)

    async def fetch(self, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Run ``operation`` once it is admitted.

        Args:
            operation: Zero-argument callable returning an awaitable

        Returns:
            Whatever the operation returns
        """
        async with self._in_flight:
            await self._admit()
            return await operation()
