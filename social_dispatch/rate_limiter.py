"""Token bucket rate limiting for outbound platform calls.

One bucket per platform keeps a burst of dispatches from tripping a
platform's own rate limit. Buckets are shared across worker threads.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable


class RateLimitExceeded(Exception):
    """Raised when rate limit would be exceeded and blocking is disabled."""

    def __init__(self, retry_after: float) -> None:
        self.retry_after = retry_after
        super().__init__(f"Rate limit exceeded, retry after {retry_after:.1f}s")


@dataclass
class RateLimiterConfig:
    """Token bucket configuration."""
    tokens_per_second: float = 1.0
    max_tokens: float = 10.0
    initial_tokens: float | None = None  # Defaults to max_tokens


class RateLimiter:
    """Thread-safe token bucket."""

    def __init__(
        self,
        config: RateLimiterConfig | None = None,
        clock: Callable[[], float] | None = None,
        sleep_func: Callable[[float], None] | None = None,
    ) -> None:
        cfg = config or RateLimiterConfig()
        self._rate = cfg.tokens_per_second
        self._max = cfg.max_tokens
        self._tokens = cfg.initial_tokens if cfg.initial_tokens is not None else cfg.max_tokens
        self._clock = clock or time.monotonic
        self._sleep = sleep_func or time.sleep
        self._last_refill = self._clock()
        self._lock = threading.Lock()

    def _refill(self) -> None:
        now = self._clock()
        self._tokens = min(self._max, self._tokens + (now - self._last_refill) * self._rate)
        self._last_refill = now

    def acquire(self, tokens: float = 1.0, block: bool = True) -> bool:
        """Take tokens from the bucket, sleeping for the deficit if block is set.

        The sleep happens outside the lock; the tokens are reserved first so
        concurrent callers queue behind each other instead of double-spending.
        """
        with self._lock:
            self._refill()
            if self._tokens >= tokens:
                self._tokens -= tokens
                return True
            wait_time = (tokens - self._tokens) / self._rate
            if not block:
                raise RateLimitExceeded(wait_time)
            self._tokens -= tokens
        self._sleep(wait_time)
        return True

    @property
    def available_tokens(self) -> float:
        with self._lock:
            self._refill()
            return self._tokens
