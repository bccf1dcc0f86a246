"""Error classification: maps raw transport/HTTP failures to the taxonomy.

Every terminal failure leaves the client as exactly one of the error kinds
in :mod:`robust_httpx.errors.base`.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any
from urllib.parse import urlsplit

from robust_httpx.errors.base import (
    CancellationError,
    ClientError,
    HttpError,
    NetworkError,
    RateLimitError,
    ServerError,
    TimeoutError,
    ValidationError,
)
from robust_httpx.transport.http import (
    CODE_ABORTED,
    CODE_CERT_EXPIRED,
    CODE_NETWORK,
    CODE_NOT_FOUND,
    CODE_REFUSED,
    CODE_TIMED_OUT,
    HttpRequestError,
    RequestCancelled,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from robust_httpx.transport.http import Response

    CustomErrorHandler = Callable[[BaseException], Any]


# Errors that are already final and must not be reclassified
_PASS_THROUGH: tuple[type[BaseException], ...] = (
    RateLimitError,
    CancellationError,
    TimeoutError,
    ValidationError,
)


def parse_retry_after(headers: Any) -> float | None:
    """Read a Retry-After header expressed in seconds.

    Args:
        headers: Response headers (any mapping, case-insensitive preferred)

    Returns:
        Seconds to wait, or None if absent or not numeric
    """
    if not headers:
        return None
    value = headers.get("retry-after") or headers.get("Retry-After")
    if value is None:
        return None
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return None
    return seconds if seconds >= 0 else None


def extract_validation_details(body: Any) -> Any:
    """Extract structured validation details from a response body.

    Supports ``{"errors": ...}`` and ``{"details": ...}`` envelopes.

    Args:
        body: Parsed response body

    Returns:
        The details if found, None otherwise
    """
    if not isinstance(body, dict):
        return None
    return body.get("errors") or body.get("details")


def _hostname(url: str | None) -> str:
    if not url:
        return "unknown host"
    return urlsplit(url).hostname or url


class ErrorClassifier:
    """Classifies raw failures into the error taxonomy.

    Classification order:
    1. Optional custom handler (a returned exception is final)
    2. Pass-through of errors already in the taxonomy
    3. Network-level failures (no response), by failure code
    4. HTTP responses, by status
    5. Keyword heuristics on other exceptions

    Classification is a pure function of its input: classifying the same
    failure twice yields two errors of the same kind and message.

    Example:
        >>> classifier = ErrorClassifier()
        >>> error = classifier.classify(raw_failure)
        >>> isinstance(error, ResilienceError)
        True
    """

    def __init__(self, custom_handler: CustomErrorHandler | None = None) -> None:
        """Initialize classifier.

        Args:
            custom_handler: Called first with the raw failure. A new
                exception it returns is final and skips classification.
                Returning the original failure (possibly mutated in place)
                or a non-exception value continues classification on the
                original.
        """
        self._custom_handler = custom_handler

    def classify(self, error: BaseException) -> BaseException:
        """Map a raw failure to a taxonomy error.

        Args:
            error: Raw failure

        Returns:
            Classified error (or the input if nothing matched)
        """
        if self._custom_handler is not None:
            result = self._custom_handler(error)
            if isinstance(result, BaseException) and result is not error:
                return result

        if isinstance(error, _PASS_THROUGH):
            return error

        if isinstance(error, RequestCancelled):
            return CancellationError("Request was cancelled", reason=error.reason)

        if isinstance(error, HttpRequestError):
            if error.response is None:
                return self._classify_network(error)
            return self._classify_response(error, error.response)

        return self._classify_generic(error)

    def _classify_network(self, error: HttpRequestError) -> BaseException:
        """Classify a failure where no response was received."""
        url = error.config.full_url or None
        code = error.code

        if code == CODE_ABORTED:
            timeout = error.config.timeout
            shown = f"{timeout}s" if timeout is not None else "unknown time"
            return TimeoutError(
                f"Request timed out after {shown}", timeout=timeout, cause=error
            )

        if code == CODE_TIMED_OUT:
            return TimeoutError(
                "Connection timed out while waiting for response",
                timeout=error.config.timeout,
                cause=error,
            )

        if code == CODE_REFUSED:
            return NetworkError(
                f"Connection refused to {url or 'unknown endpoint'}", error, url=url
            )

        if code == CODE_NOT_FOUND:
            return NetworkError(f"Host not found: {_hostname(url)}", error, url=url)

        if code == CODE_CERT_EXPIRED:
            return NetworkError("SSL certificate has expired", error, url=url)

        if code == CODE_NETWORK or "Network Error" in error.message:
            return NetworkError("Network connectivity issue detected", error, url=url)

        return NetworkError(f"Network error occurred: {error.message}", error, url=url)

    def _classify_response(
        self, error: HttpRequestError, response: Response
    ) -> BaseException:
        """Classify a failure carrying an HTTP response."""
        status = response.status

        if 400 <= status < 500:
            if status == 429:
                retry_after = parse_retry_after(response.headers)
                if retry_after is not None:
                    return RateLimitError(
                        f"Rate limit exceeded. Retry after {retry_after:g} seconds",
                        retry_after=retry_after,
                        cause=error,
                    )
                return RateLimitError("Rate limit exceeded", cause=error)

            if status == 422:
                details = extract_validation_details(response.data)
                if details:
                    return ValidationError(
                        f"Validation failed: {json.dumps(details, default=str)}",
                        details=details,
                        cause=error,
                    )
                return ValidationError(error.message, cause=error)

            if status == 401:
                return ClientError("Authentication required", status, response, cause=error)

            if status == 403:
                return ClientError("Permission denied", status, response, cause=error)

            if status == 404:
                return ClientError(
                    f"Resource not found: {error.config.url or 'unknown'}",
                    status,
                    response,
                    cause=error,
                )

            return ClientError(
                error.message or f"Client error ({status})", status, response, cause=error
            )

        if status >= 500:
            return ServerError(
                error.message or f"Server error ({status})", status, response, cause=error
            )

        return HttpError(error.message, status, response, cause=error)

    def _classify_generic(self, error: BaseException) -> BaseException:
        """Keyword heuristics for failures that are not HTTP failures."""
        message = str(error)
        lowered = message.lower()

        if "timeout" in lowered:
            return TimeoutError(f"Operation timed out: {message}", cause=error)

        if "network" in lowered or "connection" in lowered:
            return NetworkError(f"Network issue: {message}", error)

        return error
