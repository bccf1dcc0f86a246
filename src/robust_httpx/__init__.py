"""
robust-httpx: Resilient async HTTP client built on httpx.

Automatic retries with configurable backoff, circuit breaking, token
bucket rate limiting and error classification, applied through
interceptors around every request.
"""

from __future__ import annotations

from robust_httpx.client import (
    CancelReason,
    CancelToken,
    ClientConfig,
    ResilientClient,
    create,
    create_cancel_pair,
)
from robust_httpx.errors import (
    CancellationError,
    ClientError,
    ErrorClassifier,
    HttpError,
    NetworkError,
    RateLimitError,
    RequestTimeoutError,
    ResilienceError,
    ServerError,
    TimeoutError,
    ValidationError,
)
from robust_httpx.resilience import (
    BackoffStrategy,
    CategorySettings,
    CircuitBreakerConfig,
    CircuitBreakerState,
    CircuitOpenError,
    RateLimitConfig,
    RequestCategory,
    RetryConfig,
    RetryContext,
    TimeoutStrategy,
)
from robust_httpx.telemetry import LoggerProtocol, RobustLogger, get_logger
from robust_httpx.transport import RequestConfig, Response

__version__ = "0.1.0"

__all__ = [
    # Client
    "ClientConfig",
    "ResilientClient",
    "create",
    # Cancellation
    "CancelReason",
    "CancelToken",
    "create_cancel_pair",
    # Errors
    "CancellationError",
    "CircuitOpenError",
    "ClientError",
    "ErrorClassifier",
    "HttpError",
    "NetworkError",
    "RateLimitError",
    "RequestTimeoutError",
    "ResilienceError",
    "ServerError",
    "TimeoutError",
    "ValidationError",
    # Resilience
    "BackoffStrategy",
    "CategorySettings",
    "CircuitBreakerConfig",
    "CircuitBreakerState",
    "RateLimitConfig",
    "RequestCategory",
    "RetryConfig",
    "RetryContext",
    "TimeoutStrategy",
    # Transport
    "RequestConfig",
    "Response",
    # Logging
    "LoggerProtocol",
    "RobustLogger",
    "get_logger",
    # Version
    "__version__",
]
