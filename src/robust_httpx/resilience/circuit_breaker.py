"""
Circuit breaker for fault isolation.

Implements the circuit breaker pattern with three states:
- Closed: Normal operation, requests pass through
- Open: Circuit tripped, requests fail fast
- Half-Open: A bounded number of trial requests test recovery

The breaker does not wrap calls itself. The client asks
:meth:`CircuitBreaker.before_request` for admission and reports the
outcome with :meth:`record_success` / :meth:`record_failure`.
"""

from __future__ import annotations

import os
import time
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from robust_httpx.telemetry.logger import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable

logger = get_logger(__name__)


class CircuitBreakerState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker.

    Attributes:
        failure_threshold: Consecutive failures that trip the circuit
        reset_timeout: Seconds spent open before trial requests are allowed
        half_open_max_requests: Trial requests admitted while half-open, and
            successes needed to close again
    """

    failure_threshold: int = 5
    reset_timeout: float = 60.0
    half_open_max_requests: int = 3

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        if self.reset_timeout < 0:
            raise ValueError("reset_timeout must not be negative")
        if self.half_open_max_requests < 1:
            raise ValueError("half_open_max_requests must be at least 1")

    @classmethod
    def default(cls) -> CircuitBreakerConfig:
        """Create default configuration."""
        return cls()

    @classmethod
    def from_env(cls) -> CircuitBreakerConfig:
        """Create configuration from environment variables."""
        failure_threshold = int(
            os.getenv("ROBUST_HTTPX_BREAKER_FAILURE_THRESHOLD", "5")
        )
        reset_timeout = float(
            os.getenv("ROBUST_HTTPX_BREAKER_RESET_SECS", "60")
        )
        half_open_max_requests = int(
            os.getenv("ROBUST_HTTPX_BREAKER_HALF_OPEN_MAX", "3")
        )

        return cls(
            failure_threshold=failure_threshold,
            reset_timeout=reset_timeout,
            half_open_max_requests=half_open_max_requests,
        )


class CircuitOpenError(Exception):
    """Raised when circuit is open and request is rejected.

    Not part of the ResilienceError taxonomy. It is raised before
    any network traffic and is never classified or retried.
    """

    def __init__(
        self,
        message: str = "Circuit breaker is open",
        time_until_retry: float | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.time_until_retry = time_until_retry


@dataclass
class CircuitStats:
    """Statistics for circuit breaker."""

    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    rejected_requests: int = 0
    state_changes: int = 0
    last_failure_time: float | None = None
    last_success_time: float | None = None


class CircuitBreaker:
    """Circuit breaker for fault isolation.

    Prevents cascading failures by failing fast when a service is unhealthy.
    All methods are synchronous check-and-update blocks, so on a single
    event loop no locking is needed.

    Example:
        >>> breaker = CircuitBreaker(CircuitBreakerConfig(failure_threshold=3))
        >>> if not breaker.before_request():
        ...     raise CircuitOpenError()
        >>> breaker.record_success()
    """

    def __init__(
        self,
        config: CircuitBreakerConfig | None = None,
        on_state_change: Callable[[CircuitBreakerState], object] | None = None,
    ) -> None:
        """Initialize circuit breaker.

        Args:
            config: Circuit breaker configuration
            on_state_change: Observer called with the new state on every transition
        """
        self._config = config or CircuitBreakerConfig()
        self._on_state_change = on_state_change
        self._state = CircuitBreakerState.CLOSED

        # Failure tracking
        self._failure_count = 0
        self._opened_at: float | None = None

        # Half-open trial management
        self._half_open_requests = 0
        self._half_open_successes = 0

        # Statistics
        self._stats = CircuitStats()

    @property
    def config(self) -> CircuitBreakerConfig:
        """Breaker configuration."""
        return self._config

    @property
    def state(self) -> CircuitBreakerState:
        """Get current circuit state."""
        return self._state

    @property
    def failure_count(self) -> int:
        """Consecutive failures seen while closed."""
        return self._failure_count

    @property
    def is_closed(self) -> bool:
        """Check if circuit is closed (normal operation)."""
        return self._state == CircuitBreakerState.CLOSED

    @property
    def is_open(self) -> bool:
        """Check if circuit is open (failing fast)."""
        return self._state == CircuitBreakerState.OPEN

    @property
    def is_half_open(self) -> bool:
        """Check if circuit is half-open (testing)."""
        return self._state == CircuitBreakerState.HALF_OPEN

    def before_request(self) -> bool:
        """Decide whether a request may proceed.

        Returns:
            True if admitted, False if the request must fail fast
        """
        self._stats.total_requests += 1

        if self._state == CircuitBreakerState.OPEN:
            if self.get_time_until_retry() == 0:
                self._transition_to(CircuitBreakerState.HALF_OPEN)
            else:
                self._stats.rejected_requests += 1
                return False

        if self._state == CircuitBreakerState.HALF_OPEN:
            if self._half_open_requests >= self._config.half_open_max_requests:
                self._stats.rejected_requests += 1
                return False
            self._half_open_requests += 1

        return True

    def record_success(self) -> None:
        """Record a successful request."""
        self._stats.successful_requests += 1
        self._stats.last_success_time = time.monotonic()

        if self._state == CircuitBreakerState.HALF_OPEN:
            self._half_open_successes += 1
            if self._half_open_successes >= self._config.half_open_max_requests:
                self._transition_to(CircuitBreakerState.CLOSED)

        self._failure_count = 0

    def record_failure(self) -> None:
        """Record a terminally failed request."""
        now = time.monotonic()
        self._stats.failed_requests += 1
        self._stats.last_failure_time = now
        self._failure_count += 1

        if self._state == CircuitBreakerState.HALF_OPEN:
            # Single failed trial trips back to open
            self._transition_to(CircuitBreakerState.OPEN)
        elif self._state == CircuitBreakerState.OPEN:
            self._opened_at = now
        elif self._failure_count >= self._config.failure_threshold:
            self._transition_to(CircuitBreakerState.OPEN)

    def release_trial(self) -> None:
        """Give back a half-open trial slot.

        Called when an admitted request ends without a recorded success or
        failure (rate limited, cancelled), so the slot can be reused.
        """
        if self._state == CircuitBreakerState.HALF_OPEN and self._half_open_requests > 0:
            self._half_open_requests -= 1

    def get_time_until_retry(self) -> float | None:
        """Get time until circuit will allow trial requests.

        Returns:
            Seconds until retry, or None if not open
        """
        if self._state != CircuitBreakerState.OPEN or self._opened_at is None:
            return None

        elapsed = time.monotonic() - self._opened_at
        remaining = self._config.reset_timeout - elapsed
        return max(0.0, remaining)

    def _transition_to(self, new_state: CircuitBreakerState) -> None:
        """Transition to a new state and notify the observer.

        Args:
            new_state: Target state
        """
        if new_state == self._state:
            return

        previous = self._state
        self._state = new_state
        self._stats.state_changes += 1

        if new_state == CircuitBreakerState.OPEN:
            self._opened_at = time.monotonic()
        elif new_state == CircuitBreakerState.HALF_OPEN:
            self._half_open_requests = 0
            self._half_open_successes = 0
        elif new_state == CircuitBreakerState.CLOSED:
            self._failure_count = 0
            self._opened_at = None

        logger.info(
            "Circuit breaker state changed",
            previous=previous.value,
            state=new_state.value,
        )
        self._notify(new_state)

    def _notify(self, new_state: CircuitBreakerState) -> None:
        if self._on_state_change is None:
            return
        try:
            self._on_state_change(new_state)
        except Exception as e:
            logger.error(
                "Circuit breaker state observer failed",
                state=new_state.value,
                error=str(e),
            )

    def reset(self) -> None:
        """Reset circuit breaker to closed state."""
        self._transition_to(CircuitBreakerState.CLOSED)
        self._failure_count = 0
        self._half_open_requests = 0
        self._half_open_successes = 0
        self._opened_at = None

    def get_stats(self) -> CircuitStats:
        """Get circuit breaker statistics.

        Returns:
            CircuitStats with current statistics
        """
        return CircuitStats(
            total_requests=self._stats.total_requests,
            successful_requests=self._stats.successful_requests,
            failed_requests=self._stats.failed_requests,
            rejected_requests=self._stats.rejected_requests,
            state_changes=self._stats.state_changes,
            last_failure_time=self._stats.last_failure_time,
            last_success_time=self._stats.last_success_time,
        )

    def __repr__(self) -> str:
        return (
            f"CircuitBreaker(state={self._state.value}, "
            f"failures={self._failure_count}/{self._config.failure_threshold})"
        )
