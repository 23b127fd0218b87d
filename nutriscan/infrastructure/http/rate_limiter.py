"""Client-side rate limiting for quota-bound providers."""

from __future__ import annotations

import asyncio
import time

from nutriscan.domain.shared.errors import RateLimitError


class RateLimiter:
    """Token bucket rate limiter.

    Keeps a provider under its published quota. Waits for a token when
    the wait is short, refuses with RateLimitError (carrying the wait
    as backoff hint) when it would exceed max_wait_s.
    """

    def __init__(
        self,
        requests_per_hour: int = 1000,
        burst_size: int = 10,
        max_wait_s: float = 60.0,
        clock=time.monotonic,
    ) -> None:
        """Initialize rate limiter.

        Args:
            requests_per_hour: Max requests per hour
            burst_size: Max burst requests
            max_wait_s: Longest wait tolerated before refusing
            clock: Monotonic clock, injectable for tests
        """
        self.requests_per_hour = requests_per_hour
        self.burst_size = burst_size
        self.max_wait_s = max_wait_s
        self.tokens = float(burst_size)
        self._clock = clock
        self.last_update = clock()
        self.lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Acquire token or wait.

        Raises:
            RateLimitError: If the wait for the next token is too long
        """
        async with self.lock:
            now = self._clock()
            elapsed = now - self.last_update

            # Refill tokens based on time elapsed
            refill_rate = self.requests_per_hour / 3600.0
            self.tokens = min(self.burst_size, self.tokens + elapsed * refill_rate)
            self.last_update = now

            if self.tokens >= 1.0:
                self.tokens -= 1.0
                return

            wait_time = (1.0 - self.tokens) / refill_rate
            if wait_time > self.max_wait_s:
                raise RateLimitError(
                    f"Local quota exhausted, next token in {wait_time:.0f}s",
                    retry_after=wait_time,
                )

            await asyncio.sleep(wait_time)
            self.tokens = 0.0
            self.last_update = self._clock()
