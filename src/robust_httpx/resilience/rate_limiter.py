"""
Rate limiter using token bucket algorithm.

Admission gate for outgoing requests: non-blocking, continuous refill.
"""

from __future__ import annotations

import os
import time
from dataclasses import dataclass


@dataclass
class RateLimitConfig:
    """Configuration for rate limiter.

    Attributes:
        max_requests: Bucket capacity (burst size) and requests per window
        window_seconds: Window over which max_requests may be admitted
    """

    max_requests: int
    window_seconds: float = 1.0

    def __post_init__(self) -> None:
        if self.max_requests <= 0:
            raise ValueError("max_requests must be positive")
        if self.window_seconds <= 0:
            raise ValueError("window_seconds must be positive")

    @property
    def rate(self) -> float:
        """Refill rate in tokens per second."""
        return self.max_requests / self.window_seconds

    @classmethod
    def from_env(cls) -> RateLimitConfig | None:
        """Create configuration from environment variables.

        Returns:
            RateLimitConfig, or None when ROBUST_HTTPX_RATE_LIMIT_MAX is unset
        """
        max_requests = os.getenv("ROBUST_HTTPX_RATE_LIMIT_MAX")
        if not max_requests:
            return None
        window = float(os.getenv("ROBUST_HTTPX_RATE_LIMIT_WINDOW_SECS", "1"))
        return cls(max_requests=int(max_requests), window_seconds=window)


class TokenBucketRateLimiter:
    """Token bucket rate limiter.

    - The bucket starts full (``max_requests`` tokens)
    - Tokens refill continuously at ``max_requests / window`` per second
    - Each admitted request consumes one token
    - Requests are never queued: :meth:`try_acquire` answers immediately

    Bursts up to ``max_requests`` are allowed at any instant while the
    average rate stays bounded by ``max_requests / window``.

    Example:
        >>> limiter = TokenBucketRateLimiter(max_requests=2, window_seconds=1.0)
        >>> [limiter.try_acquire() for _ in range(3)]
        [True, True, False]
    """

    def __init__(self, max_requests: int, window_seconds: float) -> None:
        """Initialize rate limiter.

        Args:
            max_requests: Bucket capacity
            window_seconds: Window length in seconds
        """
        self._config = RateLimitConfig(max_requests=max_requests, window_seconds=window_seconds)
        self._max_tokens = float(max_requests)
        self._tokens = float(max_requests)
        self._rate = self._config.rate
        self._last_refill = time.monotonic()

    @classmethod
    def from_config(cls, config: RateLimitConfig) -> TokenBucketRateLimiter:
        """Create a limiter from a RateLimitConfig."""
        return cls(config.max_requests, config.window_seconds)

    @property
    def config(self) -> RateLimitConfig:
        """Limiter configuration."""
        return self._config

    def _refill(self) -> None:
        """Refill tokens based on elapsed time."""
        now = time.monotonic()
        elapsed = now - self._last_refill
        self._last_refill = now
        self._tokens = min(self._tokens + elapsed * self._rate, self._max_tokens)

    def try_acquire(self) -> bool:
        """Try to take one token without waiting.

        Returns:
            True if admitted, False if the bucket is empty
        """
        self._refill()
        if self._tokens >= 1:
            self._tokens -= 1
            return True
        return False

    def get_wait_time(self) -> float:
        """Estimated seconds until one token is available."""
        self._refill()
        if self._tokens >= 1:
            return 0.0
        return (1 - self._tokens) / self._rate

    @property
    def available_tokens(self) -> float:
        """Get current available tokens."""
        self._refill()
        return self._tokens

    def __repr__(self) -> str:
        return (
            f"TokenBucketRateLimiter(max_requests={self._config.max_requests}, "
            f"window_seconds={self._config.window_seconds})"
        )
