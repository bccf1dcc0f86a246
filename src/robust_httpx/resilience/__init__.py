"""
Resilience layer - Retry, rate limiting, circuit breaker and retry contexts.

This module provides the patterns wired into ResilientClient:
- RetryOrchestrator: Retry eligibility, backoff, timeout strategy and re-issue
- TokenBucketRateLimiter: Non-blocking token bucket admission
- CircuitBreaker: Closed/Open/Half-Open state machine
- BoundedContextCache: LRU store of per-request retry contexts
"""

from robust_httpx.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerState,
    CircuitOpenError,
    CircuitStats,
)
from robust_httpx.resilience.context import (
    DEFAULT_CONTEXT_MAX_AGE,
    DEFAULT_CONTEXT_THRESHOLD,
    Attempt,
    BoundedContextCache,
    RetryContext,
)
from robust_httpx.resilience.rate_limiter import RateLimitConfig, TokenBucketRateLimiter
from robust_httpx.resilience.retry import (
    BackoffStrategy,
    CategorySettings,
    RequestCategory,
    RetryConfig,
    RetryOrchestrator,
    TimeoutStrategy,
    calculate_delay,
    calculate_next_timeout,
    default_retry_condition,
    fibonacci,
)

__all__ = [
    "DEFAULT_CONTEXT_MAX_AGE",
    "DEFAULT_CONTEXT_THRESHOLD",
    "Attempt",
    "BackoffStrategy",
    "BoundedContextCache",
    "CategorySettings",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerState",
    "CircuitOpenError",
    "CircuitStats",
    "RateLimitConfig",
    "RequestCategory",
    "RetryConfig",
    "RetryContext",
    "RetryOrchestrator",
    "TimeoutStrategy",
    "TokenBucketRateLimiter",
    "calculate_delay",
    "calculate_next_timeout",
    "default_retry_condition",
    "fibonacci",
]
