"""Minimum-interval rate limiter for task evaluator calls

One instance is built per container and shared by reference, so every
evaluator call in the process goes through the same spacing window.
Callers that arrive early are made to wait cooperatively; nobody is
rejected.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

from progress_engine.config import EVALUATOR_MIN_INTERVAL_SECONDS
from progress_engine.resilience.metrics import record_rate_limit_wait

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Enforce a minimum spacing between consecutive calls

    Args:
        min_interval: Seconds that must elapse between two calls
        clock: Monotonic time source (seconds), injectable for tests
        sleep: Awaitable sleep, injectable for tests
    """

    def __init__(
        self,
        min_interval: float = EVALUATOR_MIN_INTERVAL_SECONDS,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.min_interval = min_interval
        self._clock = clock or time.monotonic
        self._sleep = sleep or asyncio.sleep
        self._last_call: Optional[float] = None
        self._lock = asyncio.Lock()

    async def acquire(self) -> float:
        """
        Wait until the minimum interval since the previous call has passed

        Returns:
            Seconds spent waiting (0.0 if none)
        """
        async with self._lock:
            waited = 0.0
            if self._last_call is not None:
                elapsed = self._clock() - self._last_call
                if elapsed < self.min_interval:
                    waited = self.min_interval - elapsed
                    logger.debug(f"Rate limiter: waiting {waited:.2f}s before next evaluator call")
                    record_rate_limit_wait(waited)
                    await self._sleep(waited)
            self._last_call = self._clock()
            return waited

    async def __aenter__(self) -> "RateLimiter":
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        return None
