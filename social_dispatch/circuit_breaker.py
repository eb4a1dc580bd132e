"""Per-platform circuit breaker.

Three-state machine guarded by a lock so concurrent dispatches share it:
  CLOSED    -> normal operation, consecutive failures are counted
  OPEN      -> calls to the platform fail immediately
  HALF_OPEN -> one trial call decides whether to close again

Only transient failures count against the circuit; a platform rejecting one
post's content says nothing about whether the platform is up.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from social_dispatch.errors import TransientError

logger = logging.getLogger(__name__)


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitOpenError(TransientError):
    """Raised when a call is attempted while the circuit is OPEN."""

    retryable = False

    def __init__(self, name: str, reset_at: float) -> None:
        self.reset_at = reset_at
        super().__init__(f"{name} circuit is open, resets at {reset_at:.1f}", platform=name)


@dataclass
class CircuitBreakerConfig:
    failure_threshold: int = 5
    reset_timeout: float = 60.0
    half_open_max_calls: int = 1


class CircuitBreaker:
    """Counts consecutive transient failures and opens past a threshold."""

    def __init__(
        self,
        name: str,
        config: CircuitBreakerConfig | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.name = name
        self._config = config or CircuitBreakerConfig()
        self._clock = clock or time.monotonic
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at = 0.0
        self._half_open_calls = 0

    def _current_state(self) -> CircuitState:
        if self._state == CircuitState.OPEN:
            if self._clock() - self._opened_at >= self._config.reset_timeout:
                self._state = CircuitState.HALF_OPEN
                self._half_open_calls = 0
        return self._state

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._current_state()

    @property
    def failure_count(self) -> int:
        return self._failure_count

    def before_call(self) -> None:
        """Admit a call or raise CircuitOpenError."""
        with self._lock:
            state = self._current_state()
            reset_at = self._opened_at + self._config.reset_timeout
            if state == CircuitState.OPEN:
                raise CircuitOpenError(self.name, reset_at)
            if state == CircuitState.HALF_OPEN:
                if self._half_open_calls >= self._config.half_open_max_calls:
                    raise CircuitOpenError(self.name, reset_at)
                self._half_open_calls += 1

    def record_success(self) -> None:
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                logger.info("%s circuit closed after successful trial call", self.name)
            self._state = CircuitState.CLOSED
            self._failure_count = 0

    def record_failure(self) -> None:
        with self._lock:
            self._failure_count += 1
            reopen = self._state == CircuitState.HALF_OPEN
            if reopen or self._failure_count >= self._config.failure_threshold:
                if self._state != CircuitState.OPEN:
                    logger.warning(
                        "%s circuit opened after %d consecutive failures",
                        self.name, self._failure_count,
                    )
                self._state = CircuitState.OPEN
                self._opened_at = self._clock()

    def reset(self) -> None:
        """Manually reset the circuit breaker to CLOSED."""
        with self._lock:
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._half_open_calls = 0
