"""Tests for the token bucket rate limiter."""

import pytest

from debrid_connector.api_clients.rate_limiter import TokenBucketRateLimiter
from debrid_connector.config.schema import RateLimitConfig


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class TestTokenBucketRateLimiter:
    """Token bucket behaviour under a simulated clock."""

    def setup_method(self):
        self.clock = FakeClock()
        self.config = RateLimitConfig(requests_per_window=250, window_seconds=60, burst_size=10)
        self.limiter = TokenBucketRateLimiter(self.config, clock=self.clock, sleep=self.clock.sleep)

    @pytest.mark.asyncio
    async def test_burst_is_served_without_waiting(self):
        for _ in range(10):
            await self.limiter.acquire()

        assert self.clock.sleeps == []
        assert self.limiter.tokens == 0

    @pytest.mark.asyncio
    async def test_empty_bucket_waits_for_one_token(self):
        for _ in range(10):
            await self.limiter.acquire()

        assert 0.24 <= self.limiter.wait_time() <= 0.241

        await self.limiter.acquire()

        assert len(self.clock.sleeps) >= 1
        assert self.limiter.tokens < 1

    def test_tokens_never_exceed_burst(self):
        self.clock.now += 3600

        snapshot = self.limiter.snapshot()

        assert snapshot.tokens == 10

    @pytest.mark.asyncio
    async def test_snapshot_does_not_consume_or_refill(self):
        for _ in range(5):
            await self.limiter.acquire()
        self.clock.now += 0.5

        snapshot = self.limiter.snapshot()

        assert snapshot.tokens == 7
        assert self.limiter.tokens == 5
        assert snapshot.config.burst_size == 10

    def test_wait_time_is_zero_with_tokens(self):
        assert self.limiter.wait_time() == 0.0

    @pytest.mark.asyncio
    async def test_window_admits_at_most_rate_plus_burst(self):
        start = self.clock.now
        granted = 0
        while True:
            await self.limiter.acquire()
            if self.clock.now - start > 60:
                break
            granted += 1

        assert granted <= 250 + 10
