"""Token bucket admission control shared by all outbound API calls."""

import asyncio
import math
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from ..config.schema import RateLimitConfig
from ..utils.logging import get_logger


logger = get_logger(__name__)


@dataclass(frozen=True)
class RateLimitSnapshot:
    """Read-only view of the bucket."""

    tokens: float
    reset_time: float
    config: RateLimitConfig


class TokenBucketRateLimiter:
    """Token bucket refilled lazily in whole tokens.

    Waiters are not queued: after sleeping they race for the next token.
    """

    def __init__(
        self,
        config: Optional[RateLimitConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        self.config = config or RateLimitConfig()
        self._clock = clock
        self._sleep = sleep
        self._tokens = float(self.config.burst_size)
        self._last_refill = clock()
        self._lock = asyncio.Lock()

    @property
    def tokens(self) -> float:
        return self._tokens

    def _project(self, now: float) -> tuple[float, float]:
        """Return ``(tokens, last_refill)`` as they would be after a refill at ``now``."""
        elapsed = now - self._last_refill
        if elapsed <= 0:
            return self._tokens, self._last_refill

        new_tokens = math.floor(elapsed / self.config.seconds_per_token)
        if new_tokens <= 0:
            return self._tokens, self._last_refill

        tokens = min(float(self.config.burst_size), self._tokens + new_tokens)
        if tokens >= self.config.burst_size:
            return tokens, now
        return tokens, self._last_refill + new_tokens * self.config.seconds_per_token

    def _refill(self, now: float) -> None:
        self._tokens, self._last_refill = self._project(now)

    def wait_time(self) -> float:
        """Seconds until one whole token has accrued, rounded up to the millisecond."""
        if self._tokens >= 1:
            return 0.0
        return math.ceil((1 - self._tokens) / self.config.tokens_per_ms) / 1000

    async def acquire(self) -> None:
        """Wait until a token is available and take it."""
        while True:
            async with self._lock:
                self._refill(self._clock())
                if self._tokens >= 1:
                    self._tokens -= 1
                    return
                delay = self.wait_time()

            logger.debug("Rate limit reached, waiting for token", wait_seconds=delay)
            await self._sleep(delay)

    def snapshot(self) -> RateLimitSnapshot:
        tokens, last_refill = self._project(self._clock())
        return RateLimitSnapshot(
            tokens=tokens,
            reset_time=last_refill + self.config.window_seconds,
            config=self.config,
        )
