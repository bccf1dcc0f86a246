"""
Error hierarchy for robust-httpx.

Provides the closed taxonomy of classified failures and the classifier
that produces them.
"""

from robust_httpx.errors.base import (
    CancellationError,
    ClientError,
    ErrorContext,
    HttpError,
    NetworkError,
    RateLimitError,
    ResilienceError,
    ServerError,
    ValidationError,
)
from robust_httpx.errors.base import (
    TimeoutError as RequestTimeoutError,
)
from robust_httpx.errors.classification import (
    ErrorClassifier,
    extract_validation_details,
    parse_retry_after,
)

TimeoutError = RequestTimeoutError  # noqa: A001

__all__ = [
    "CancellationError",
    "ClientError",
    # Classification
    "ErrorClassifier",
    "ErrorContext",
    "HttpError",
    "NetworkError",
    "RateLimitError",
    "RequestTimeoutError",
    # Base errors
    "ResilienceError",
    "ServerError",
    "TimeoutError",
    "ValidationError",
    "extract_validation_details",
    "parse_retry_after",
]
