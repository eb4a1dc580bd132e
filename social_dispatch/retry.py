"""Exponential backoff retry with jitter for outbound platform calls.

Wraps a single refresh or publish operation. Only transient failures are
retried; anything else fails on the first attempt. Attempts and total
elapsed time are both bounded, and the attempt count is reported back so
callers can say "failed after N attempts".
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass, replace
from typing import Any, Callable, Generic, Mapping, TypeVar

from social_dispatch.errors import RateLimitedError, TransientError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    multiplier: float = 2.0
    jitter: bool = True
    max_elapsed: float = 120.0
    retryable_exceptions: tuple[type[BaseException], ...] = (
        TransientError, ConnectionError, TimeoutError, OSError,
    )

    @classmethod
    def for_platform(
        cls,
        platform: str,
        overrides: Mapping[str, Mapping[str, Any]] | None = None,
        base: Mapping[str, Any] | None = None,
    ) -> RetryConfig:
        """Settings for a platform.

        Layers, later wins: class defaults, the platform table below, base
        (settings configured for every platform), then overrides[platform].
        """
        cfg = cls()
        for layer in (PLATFORM_RETRY_DEFAULTS.get(platform), base, (overrides or {}).get(platform)):
            if layer:
                cfg = replace(cfg, **{k: v for k, v in layer.items() if v is not None and hasattr(cfg, k)})
        return cfg


# Per-platform defaults; max_attempts counts the first call. Slow or strict
# APIs get longer base delays.
PLATFORM_RETRY_DEFAULTS: dict[str, dict[str, Any]] = {
    "twitter": {"max_attempts": 3, "base_delay": 2.0, "max_delay": 30.0},
    "linkedin": {"max_attempts": 2, "base_delay": 1.5, "max_delay": 20.0},
    "discord": {"max_attempts": 2, "base_delay": 1.0, "max_delay": 10.0},
    "reddit": {"max_attempts": 3, "base_delay": 2.0, "max_delay": 30.0},
    "telegram": {"max_attempts": 2, "base_delay": 1.0, "max_delay": 10.0},
    "instagram": {"max_attempts": 2, "base_delay": 1.5, "max_delay": 20.0},
    "facebook": {"max_attempts": 2, "base_delay": 1.5, "max_delay": 20.0},
    "youtube": {"max_attempts": 2, "base_delay": 2.0, "max_delay": 30.0},
    "wordpress": {"max_attempts": 2, "base_delay": 1.0, "max_delay": 15.0},
}


@dataclass
class RetryOutcome(Generic[T]):
    """What with_retry observed: result or last error, plus attempt count."""
    label: str
    success: bool
    attempts: int
    result: T | None = None
    error: BaseException | None = None
    elapsed: float = 0.0

    def describe(self) -> str:
        if self.success:
            return f"{self.label} succeeded after {self.attempts} attempt(s)"
        if self.attempts > 1:
            return f"failed after {self.attempts} attempts: {self.error}"
        return str(self.error)


def is_retryable(exc: BaseException, config: RetryConfig | None = None) -> bool:
    cfg = config or RetryConfig()
    if getattr(exc, "retryable", None) is False:
        return False
    return isinstance(exc, cfg.retryable_exceptions)


def _delay_for(attempt: int, cfg: RetryConfig, exc: BaseException) -> float:
    delay = min(cfg.base_delay * (cfg.multiplier ** (attempt - 1)), cfg.max_delay)
    if cfg.jitter:
        delay = delay * (0.5 + random.random() * 0.5)
    if isinstance(exc, RateLimitedError) and exc.retry_after:
        delay = min(max(delay, exc.retry_after), cfg.max_delay)
    return delay


def with_retry(
    operation: Callable[[], T],
    label: str,
    config: RetryConfig | None = None,
    sleep_func: Callable[[float], None] | None = None,
    clock: Callable[[], float] | None = None,
) -> RetryOutcome[T]:
    """Run operation with bounded exponential backoff; never raises.

    Args:
        operation: Zero-argument callable performing one outbound call.
        label: Name used in logs and in the outcome, e.g. "telegram:@news".
        config: Retry configuration. Uses defaults if None.
        sleep_func: Sleep function (injectable for testing). Defaults to time.sleep.
        clock: Monotonic clock (injectable for testing).

    Returns:
        RetryOutcome with the result on success or the last error otherwise.
    """
    cfg = config or RetryConfig()
    do_sleep = sleep_func or time.sleep
    now = clock or time.monotonic
    started = now()
    attempt = 0
    last_exc: BaseException | None = None

    while attempt < cfg.max_attempts:
        attempt += 1
        try:
            result = operation()
        except Exception as exc:
            last_exc = exc
            if not is_retryable(exc, cfg):
                logger.warning("%s failed with non-retryable error: %s", label, exc)
                break
            if attempt >= cfg.max_attempts:
                logger.error("%s failed after %d attempts: %s", label, attempt, exc)
                break
            delay = _delay_for(attempt, cfg, exc)
            if now() - started + delay > cfg.max_elapsed:
                logger.error(
                    "%s giving up after %d attempts, retry budget of %.0fs spent: %s",
                    label, attempt, cfg.max_elapsed, exc,
                )
                break
            logger.warning(
                "Attempt %d/%d failed for %s: %s. Retrying in %.1fs...",
                attempt, cfg.max_attempts, label, exc, delay,
            )
            do_sleep(delay)
            continue
        return RetryOutcome(label, True, attempt, result=result, elapsed=now() - started)

    return RetryOutcome(label, False, attempt, error=last_exc, elapsed=now() - started)
