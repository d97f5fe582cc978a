"""Rate limiting and retry utilities for API clients."""

import asyncio
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Deque, Optional, Tuple, Type

from newsletter_queue.infrastructure.logging import get_logger

logger = get_logger(__name__)

SleepFunc = Callable[[float], Awaitable[Any]]


@dataclass
class RetryPolicy:
    """Bounded exponential backoff.

    Bounds provider calls (execute), queue job attempts (allows_another, used
    by QueueStore) and the worker's back-off between failing iterations
    (delay_for).
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: Optional[float] = None
    sleep: SleepFunc = field(default=asyncio.sleep, repr=False, compare=False)

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0:
            raise ValueError("base_delay must not be negative")

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the given failed attempt (1-based)."""
        delay = self.base_delay * (self.multiplier ** max(attempt - 1, 0))
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)
        return delay

    def allows_another(self, attempts: int) -> bool:
        """Whether another attempt is permitted after `attempts` were made."""
        return attempts < self.max_attempts

    async def execute(
        self,
        func: Callable[..., Awaitable[Any]],
        *args,
        retry_on: Tuple[Type[BaseException], ...] = (Exception,),
        on_retry: Optional[Callable[[int, BaseException, float], None]] = None,
        **kwargs,
    ) -> Any:
        """Call `func` until it succeeds or the attempts are exhausted.

        Only exceptions listed in `retry_on` are retried; anything else and
        the final failure propagate to the caller.
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                return await func(*args, **kwargs)
            except retry_on as e:
                if not self.allows_another(attempt):
                    logger.error(
                        "Retries exhausted",
                        attempts=attempt,
                        error=str(e),
                    )
                    raise

                delay = self.delay_for(attempt)
                logger.warning(
                    "Retrying after failure",
                    attempt=attempt,
                    max_attempts=self.max_attempts,
                    delay_seconds=round(delay, 1),
                    error=str(e),
                )
                if on_retry:
                    on_retry(attempt, e, delay)
                await self.sleep(delay)


class SlidingWindowRateLimiter:
    """At most `max_requests` acquisitions within any `period` seconds.

    Callers over the limit wait for the oldest acquisition to age out
    instead of failing.
    """

    def __init__(
        self,
        max_requests: int,
        period: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: SleepFunc = asyncio.sleep,
    ):
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        self.max_requests = max_requests
        self.period = period
        self._clock = clock
        self._sleep = sleep
        self._timestamps: Deque[float] = deque()
        self._lock = asyncio.Lock()

    @property
    def in_window(self) -> int:
        """Acquisitions still counted against the current window."""
        self._evict(self._clock())
        return len(self._timestamps)

    def _evict(self, now: float) -> None:
        while self._timestamps and now - self._timestamps[0] >= self.period:
            self._timestamps.popleft()

    async def acquire(self) -> None:
        """Wait until a request is allowed, then record it."""
        async with self._lock:
            while True:
                now = self._clock()
                self._evict(now)

                if len(self._timestamps) < self.max_requests:
                    self._timestamps.append(now)
                    return

                wait = self.period - (now - self._timestamps[0])
                logger.debug(
                    "Rate limit reached, waiting",
                    wait_seconds=round(wait, 2),
                    max_requests=self.max_requests,
                )
                await self._sleep(max(wait, 0.0))
