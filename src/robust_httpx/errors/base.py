"""Base error classes for robust-httpx.

Provides the closed error taxonomy surfaced to callers:
- ResilienceError: Base class for all library errors
- NetworkError: No response received (connection-level failure)
- TimeoutError: Request exceeded its timeout
- RateLimitError: Local limiter rejection or remote 429
- ValidationError: Remote 422 / structured validation details
- HttpError: Any other HTTP status (base of ClientError / ServerError)
- CancellationError: Request or retry cancelled by the caller
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from robust_httpx.transport.http import Response


@dataclass
class ErrorContext:
    """Structured error context for diagnostics.

    Provides actionable information for debugging and error handling.
    """

    details: dict[str, Any] = field(default_factory=dict)
    """Additional details about the error"""

    source: str | None = None
    """Error source (e.g., 'network', 'remote', 'rate_limiter')"""

    hint: str | None = None
    """Actionable hint for resolving the error"""

    def __str__(self) -> str:
        parts = []
        if self.source:
            parts.append(f"[{self.source}]")
        if self.hint:
            parts.append(f"(hint: {self.hint})")
        return " ".join(parts)


class ResilienceError(Exception):
    """Base class for all robust-httpx errors.

    All taxonomy errors inherit from this class, making it easy to catch
    every classified failure with a single except clause. The plain
    ``message`` is kept separately from the formatted ``str()`` so that
    two classifications of the same failure compare equal by message.

    Attributes:
        message: Human-readable error message
        context: Optional structured error context
    """

    name = "ResilienceError"

    def __init__(
        self,
        message: str,
        context: ErrorContext | None = None,
        *,
        cause: BaseException | None = None,
    ) -> None:
        self.message = message
        self.context = context or ErrorContext()
        super().__init__(message)
        if cause is not None:
            self.__cause__ = cause

    @property
    def cause(self) -> BaseException | None:
        """The underlying failure, if any."""
        return self.__cause__

    def with_hint(self, hint: str) -> ResilienceError:
        """Add a hint to this error."""
        self.context.hint = hint
        return self

    def __repr__(self) -> str:
        return f"{self.name}({self.message!r})"


class NetworkError(ResilienceError):
    """No response was received.

    Raised when:
    - Connection refused
    - Host not found
    - SSL certificate expired
    - Any other connection-level failure
    """

    name = "NetworkError"

    def __init__(
        self,
        message: str,
        original_error: BaseException | None = None,
        *,
        url: str | None = None,
    ) -> None:
        ctx = ErrorContext(source="network")
        if url:
            ctx.details["url"] = url
        super().__init__(message, ctx, cause=original_error)
        self.original_error = original_error
        self.url = url


class TimeoutError(ResilienceError):  # noqa: A001
    """Request exceeded its timeout, while connecting or awaiting a response."""

    name = "TimeoutError"

    def __init__(
        self,
        message: str,
        *,
        timeout: float | None = None,
        cause: BaseException | None = None,
    ) -> None:
        ctx = ErrorContext(source="timeout")
        if timeout is not None:
            ctx.details["timeout"] = timeout
        super().__init__(message, ctx, cause=cause)
        self.timeout = timeout


class RateLimitError(ResilienceError):
    """Request rejected for exceeding a rate limit.

    Raised when the local token bucket has no tokens, or when the remote
    answered 429 and retries are exhausted or disallowed.
    """

    name = "RateLimitError"

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        *,
        retry_after: float | None = None,
        cause: BaseException | None = None,
    ) -> None:
        ctx = ErrorContext(source="rate_limit")
        if retry_after is not None:
            ctx.details["retry_after"] = retry_after
        super().__init__(message, ctx, cause=cause)
        self.retry_after = retry_after


class ValidationError(ResilienceError):
    """Remote rejected the request as semantically invalid (422)."""

    name = "ValidationError"

    def __init__(
        self,
        message: str,
        *,
        details: Any = None,
        cause: BaseException | None = None,
    ) -> None:
        ctx = ErrorContext(source="validation")
        if details is not None:
            ctx.details["validation"] = details
        super().__init__(message, ctx, cause=cause)
        self.details = details


class HttpError(ResilienceError):
    """Remote answered with an HTTP error status.

    Attributes:
        status_code: HTTP status code
        response: The raw response, when one was received
    """

    name = "HttpError"

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response: Response | None = None,
        *,
        cause: BaseException | None = None,
    ) -> None:
        ctx = ErrorContext(source="remote")
        if status_code is not None:
            ctx.details["status_code"] = status_code
        super().__init__(message, ctx, cause=cause)
        self.status_code = status_code
        self.response = response


class ClientError(HttpError):
    """Remote answered with a 4xx status other than 422 and 429."""

    name = "ClientError"


class ServerError(HttpError):
    """Remote answered with a 5xx status."""

    name = "ServerError"


class CancellationError(ResilienceError):
    """Request or pending retry was cancelled by the caller."""

    name = "CancellationError"

    def __init__(
        self,
        message: str = "Request was cancelled",
        *,
        reason: str | None = None,
    ) -> None:
        ctx = ErrorContext(source="cancel")
        if reason:
            ctx.details["reason"] = reason
        super().__init__(message, ctx)
        self.reason = reason
