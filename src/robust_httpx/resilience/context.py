"""
Retry context tracking.

A RetryContext follows one logical request across its attempts. Contexts
live in a BoundedContextCache: an LRU capped by count plus an explicit
age sweep.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from robust_httpx.cache.lru import LRUCache

if TYPE_CHECKING:
    from robust_httpx.transport.http import RequestConfig

DEFAULT_CONTEXT_THRESHOLD = 100
DEFAULT_CONTEXT_MAX_AGE = 3600.0


@dataclass
class Attempt:
    """One failed attempt.

    Attributes:
        timestamp: Wall-clock time of the failure (epoch seconds)
        error: The raw failure
        duration: Seconds since the context was created
    """

    timestamp: float
    error: BaseException
    duration: float


@dataclass
class RetryContext:
    """Per-request retry state.

    Attributes:
        key: Request identity key
        request_config: Last configuration used for this request
        retry_count: Retries performed so far
        start_time: Wall-clock creation time (epoch seconds)
        attempts: Failed attempts, oldest first
        category: Name of the matched request category, if any
        outcome_recorded: Whether the circuit breaker has seen this request's
            success or terminal failure
    """

    key: str
    request_config: RequestConfig
    retry_count: int = 0
    start_time: float = field(default_factory=time.time)
    attempts: list[Attempt] = field(default_factory=list)
    category: str | None = None
    outcome_recorded: bool = field(default=False, repr=False)

    def record_attempt(self, error: BaseException) -> Attempt:
        """Append a failed attempt.

        Args:
            error: The failure of the attempt

        Returns:
            The recorded Attempt
        """
        now = time.time()
        attempt = Attempt(timestamp=now, error=error, duration=now - self.start_time)
        self.attempts.append(attempt)
        return attempt

    @property
    def elapsed(self) -> float:
        """Seconds since the context was created."""
        return time.time() - self.start_time

    @property
    def last_error(self) -> BaseException | None:
        """Error of the most recent attempt."""
        return self.attempts[-1].error if self.attempts else None


class BoundedContextCache(LRUCache[str, RetryContext]):
    """LRU cache of retry contexts keyed by request identity.

    Capacity eviction happens on insert. Age-based expiry is separate and
    only happens when :meth:`sweep_expired` is called.
    """

    def __init__(self, capacity: int = DEFAULT_CONTEXT_THRESHOLD) -> None:
        super().__init__(capacity)

    def sweep_expired(self, max_age: float = DEFAULT_CONTEXT_MAX_AGE) -> int:
        """Remove contexts older than max_age.

        Args:
            max_age: Maximum context age in seconds

        Returns:
            Number of contexts removed
        """
        now = time.time()
        expired = [
            key for key, context in self.items() if now - context.start_time > max_age
        ]
        for key in expired:
            self.delete(key)
        return len(expired)
