"""Tests for retry policy and sliding-window rate limiting."""

import pytest
from unittest.mock import AsyncMock, call

from newsletter_queue.infrastructure.api_clients.rate_limiter import (
    RetryPolicy,
    SlidingWindowRateLimiter,
)
from newsletter_queue.infrastructure.error_handling import (
    ContentProviderError,
    TransientProviderError,
)


class FakeClock:
    """Monotonic clock advanced only by its own sleep."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    async def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


class TestRetryPolicy:
    """Backoff arithmetic and execution."""

    def test_delay_doubles_from_base(self):
        policy = RetryPolicy(max_attempts=6, base_delay=60)
        assert [policy.delay_for(n) for n in range(1, 6)] == [60, 120, 240, 480, 960]

    def test_delay_is_capped(self):
        policy = RetryPolicy(max_attempts=5, base_delay=5, max_delay=60)
        assert [policy.delay_for(n) for n in range(1, 7)] == [5, 10, 20, 40, 60, 60]

    def test_allows_another_until_max_attempts(self):
        policy = RetryPolicy(max_attempts=3)
        assert policy.allows_another(1)
        assert policy.allows_another(2)
        assert not policy.allows_another(3)

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)

    @pytest.mark.asyncio
    async def test_execute_retries_until_success(self):
        sleep = AsyncMock()
        policy = RetryPolicy(max_attempts=3, base_delay=1, sleep=sleep)
        func = AsyncMock(side_effect=[TransientProviderError("busy"), "ok"])

        result = await policy.execute(func, retry_on=(TransientProviderError,))

        assert result == "ok"
        assert func.await_count == 2
        sleep.assert_awaited_once_with(1)

    @pytest.mark.asyncio
    async def test_execute_raises_after_last_attempt(self):
        sleep = AsyncMock()
        policy = RetryPolicy(max_attempts=3, base_delay=1, sleep=sleep)
        func = AsyncMock(side_effect=TransientProviderError("busy"))

        with pytest.raises(TransientProviderError):
            await policy.execute(func, retry_on=(TransientProviderError,))

        assert func.await_count == 3
        assert sleep.await_args_list == [call(1), call(2)]

    @pytest.mark.asyncio
    async def test_execute_does_not_retry_other_errors(self):
        sleep = AsyncMock()
        policy = RetryPolicy(max_attempts=3, base_delay=1, sleep=sleep)
        func = AsyncMock(side_effect=ContentProviderError("bad request"))

        with pytest.raises(ContentProviderError):
            await policy.execute(func, retry_on=(TransientProviderError,))

        assert func.await_count == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_execute_passes_arguments_and_reports_retries(self):
        sleep = AsyncMock()
        retries = []
        policy = RetryPolicy(max_attempts=2, base_delay=3, sleep=sleep)
        func = AsyncMock(side_effect=[TransientProviderError("busy"), "done"])

        result = await policy.execute(
            func,
            "a",
            key="b",
            retry_on=(TransientProviderError,),
            on_retry=lambda attempt, error, delay: retries.append((attempt, delay)),
        )

        assert result == "done"
        func.assert_awaited_with("a", key="b")
        assert retries == [(1, 3)]


class TestSlidingWindowRateLimiter:
    """Image call limiting."""

    @pytest.mark.asyncio
    async def test_allows_limit_without_waiting(self):
        clock = FakeClock()
        limiter = SlidingWindowRateLimiter(15, 60.0, clock=clock, sleep=clock.sleep)

        for _ in range(15):
            await limiter.acquire()

        assert clock.sleeps == []
        assert limiter.in_window == 15

    @pytest.mark.asyncio
    async def test_blocks_until_oldest_call_leaves_window(self):
        clock = FakeClock()
        limiter = SlidingWindowRateLimiter(15, 60.0, clock=clock, sleep=clock.sleep)
        for _ in range(15):
            await limiter.acquire()

        clock.now = 10.0
        await limiter.acquire()

        assert clock.sleeps == [50.0]
        assert clock.now == 60.0
        assert limiter.in_window == 1

    @pytest.mark.asyncio
    async def test_window_slides(self):
        clock = FakeClock()
        limiter = SlidingWindowRateLimiter(2, 60.0, clock=clock, sleep=clock.sleep)

        await limiter.acquire()
        clock.now = 30.0
        await limiter.acquire()
        clock.now = 61.0
        await limiter.acquire()

        assert clock.sleeps == []
        assert limiter.in_window == 2

    @pytest.mark.asyncio
    async def test_instances_do_not_share_state(self):
        clock = FakeClock()
        first = SlidingWindowRateLimiter(1, 60.0, clock=clock, sleep=clock.sleep)
        second = SlidingWindowRateLimiter(1, 60.0, clock=clock, sleep=clock.sleep)

        await first.acquire()
        await second.acquire()

        assert clock.sleeps == []

    def test_rejects_zero_limit(self):
        with pytest.raises(ValueError):
            SlidingWindowRateLimiter(0)
