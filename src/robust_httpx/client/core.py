"""
Core ResilientClient implementation.

Wires the circuit breaker, rate limiter, retry context cache, retry
orchestrator and error classifier into the transport's interceptor chains.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import httpx

from robust_httpx.cache.key import RequestKeyGenerator
from robust_httpx.client.config import ClientConfig
from robust_httpx.errors.base import CancellationError, RateLimitError
from robust_httpx.errors.classification import ErrorClassifier
from robust_httpx.resilience.circuit_breaker import CircuitBreaker, CircuitOpenError
from robust_httpx.resilience.context import BoundedContextCache, RetryContext
from robust_httpx.resilience.rate_limiter import TokenBucketRateLimiter
from robust_httpx.resilience.retry import RetryOrchestrator
from robust_httpx.telemetry.logger import (
    REDACTED,
    LogContext,
    clear_log_context,
    get_logger,
    set_log_context,
)
from robust_httpx.transport.http import (
    HttpRequestError,
    HttpTransport,
    RequestCancelled,
    RequestConfig,
    Response,
    maybe_await,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from robust_httpx.resilience.circuit_breaker import CircuitBreakerState
    from robust_httpx.resilience.retry import RetryConfig
    from robust_httpx.telemetry.logger import LoggerProtocol


def _sanitize_headers(headers: dict[str, str]) -> dict[str, str]:
    return {
        key: REDACTED if key.lower() == "authorization" else value
        for key, value in headers.items()
    }


class ResilientClient:
    """HTTP client with retry, circuit breaking and rate limiting.

    Every request passes through the resilience interceptors registered at
    construction: admission (circuit breaker, rate limiter), retry context
    tracking, and on failure either a retry through the full pipeline or
    a terminal, classified error. User request interceptors run before
    the resilience request handler, so retry tracking keys the config as
    sent. User response interceptors run after the resilience one, and
    retries re-enter the whole chain, so a user response interceptor
    sees the outcome of every re-issued attempt.

    Example:
        >>> async with ResilientClient(ClientConfig(base_url="https://api.example.com")) as client:
        ...     response = await client.get("/users")
        ...     print(response.status, response.data)

        >>> # With rate limiting and fibonacci backoff
        >>> client = ResilientClient(
        ...     ClientConfig(
        ...         retry=RetryConfig(backoff_strategy=BackoffStrategy.FIBONACCI),
        ...         rate_limit=RateLimitConfig(max_requests=10, window_seconds=1.0),
        ...     )
        ... )
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            config: Client configuration
            http_client: Pre-built httpx client (the client will not close it)
        """
        self._config = config or ClientConfig()
        self._logger: LoggerProtocol = self._config.logger or get_logger("robust_httpx.client")
        self._transport = HttpTransport(
            self._config.base_url,
            headers=self._config.headers,
            timeout=self._config.timeout,
            client=http_client,
        )

        retry = self._config.retry
        self._circuit_breaker: CircuitBreaker | None = None
        if retry.circuit_breaker is not None:
            self._circuit_breaker = CircuitBreaker(
                retry.circuit_breaker,
                retry.on_circuit_breaker_state_change,
            )

        self._rate_limiter: TokenBucketRateLimiter | None = None
        if self._config.rate_limit is not None:
            self._rate_limiter = TokenBucketRateLimiter.from_config(self._config.rate_limit)
            self._logger.debug(
                "Rate limiter initialized",
                {
                    "max_requests": self._config.rate_limit.max_requests,
                    "window_seconds": self._config.rate_limit.window_seconds,
                },
            )

        self._contexts = BoundedContextCache(self._config.context_threshold)
        self._keys = RequestKeyGenerator()
        self._classifier = ErrorClassifier(self._config.custom_error_handler)
        self._retry = RetryOrchestrator(
            retry,
            reissue=self._transport.request,
            contexts=self._contexts,
            logger=self._logger,
        )

        self._setup_interceptors()

    @classmethod
    def create(cls, config: ClientConfig | None = None, **kwargs: Any) -> ResilientClient:
        """Create a new client.

        Args:
            config: Client configuration
            **kwargs: ClientConfig fields, used when config is omitted

        Returns:
            Configured ResilientClient

        Example:
            >>> client = ResilientClient.create(base_url="https://api.example.com", debug=True)
        """
        if config is None:
            config = ClientConfig(**kwargs)
        return cls(config)

    # Accessors

    @property
    def config(self) -> ClientConfig:
        """Client configuration."""
        return self._config

    @property
    def retry_config(self) -> RetryConfig:
        """Retry configuration in effect."""
        return self._config.retry

    @property
    def transport(self) -> HttpTransport:
        """Underlying transport."""
        return self._transport

    @property
    def logger(self) -> LoggerProtocol:
        """Logger receiving client logs."""
        return self._logger

    @property
    def circuit_breaker(self) -> CircuitBreaker | None:
        """Circuit breaker, or None if disabled."""
        return self._circuit_breaker

    @property
    def circuit_state(self) -> CircuitBreakerState | None:
        """Current circuit state, or None if the breaker is disabled."""
        return self._circuit_breaker.state if self._circuit_breaker is not None else None

    @property
    def rate_limiter(self) -> TokenBucketRateLimiter | None:
        """Rate limiter, or None if disabled."""
        return self._rate_limiter

    @property
    def retry_contexts(self) -> BoundedContextCache:
        """Live retry contexts."""
        return self._contexts

    def get_retry_context(self, config: RequestConfig) -> RetryContext | None:
        """Look up the live retry context of a request without promoting it.

        The config is matched as it leaves the user request interceptors.
        """
        merged = self._transport.merge_defaults(config)
        return self._contexts.peek(self._key(merged))

    def get_uri(self, config: RequestConfig | None = None) -> str:
        """Build the URI a request would be sent to."""
        return self._transport.get_uri(config)

    # Requests

    async def request(self, config: RequestConfig) -> Response:
        """Send a request through the resilience pipeline.

        Args:
            config: Request configuration

        Returns:
            Response with a 2xx status

        Raises:
            ResilienceError: Classified terminal failure
            CircuitOpenError: If the circuit breaker rejected the request
        """
        if self._config.dry_run:
            merged = self._transport.merge_defaults(config)
            self._logger.info(
                "Dry run request",
                {"base_url": merged.base_url, "method": merged.method, "url": merged.url},
            )
            return Response(
                status=200,
                status_text="OK",
                headers=httpx.Headers({"content-type": "application/json"}),
                data={},
                config=merged,
            )

        try:
            return await self._transport.request(config)
        finally:
            clear_log_context()

    async def get(self, url: str, config: RequestConfig | None = None) -> Response:
        """Send a GET request."""
        return await self.request(self._with(config, method="GET", url=url))

    async def delete(self, url: str, config: RequestConfig | None = None) -> Response:
        """Send a DELETE request."""
        return await self.request(self._with(config, method="DELETE", url=url))

    async def head(self, url: str, config: RequestConfig | None = None) -> Response:
        """Send a HEAD request."""
        return await self.request(self._with(config, method="HEAD", url=url))

    async def options(self, url: str, config: RequestConfig | None = None) -> Response:
        """Send an OPTIONS request."""
        return await self.request(self._with(config, method="OPTIONS", url=url))

    async def post(
        self, url: str, data: Any = None, config: RequestConfig | None = None
    ) -> Response:
        """Send a POST request."""
        return await self.request(self._with(config, method="POST", url=url, data=data))

    async def put(
        self, url: str, data: Any = None, config: RequestConfig | None = None
    ) -> Response:
        """Send a PUT request."""
        return await self.request(self._with(config, method="PUT", url=url, data=data))

    async def patch(
        self, url: str, data: Any = None, config: RequestConfig | None = None
    ) -> Response:
        """Send a PATCH request."""
        return await self.request(self._with(config, method="PATCH", url=url, data=data))

    @staticmethod
    def _with(config: RequestConfig | None, **overrides: Any) -> RequestConfig:
        return (config or RequestConfig()).merge(**overrides)

    # Interceptor management

    def add_request_interceptor(
        self,
        fulfilled: Callable[[RequestConfig], Any] | None = None,
        rejected: Callable[[Exception], Any] | None = None,
    ) -> int:
        """Register a request interceptor.

        Returns:
            Interceptor id for removal
        """
        return self._transport.interceptors.request.use(fulfilled, rejected)

    def add_response_interceptor(
        self,
        fulfilled: Callable[[Response], Any] | None = None,
        rejected: Callable[[Exception], Any] | None = None,
    ) -> int:
        """Register a response interceptor.

        Returns:
            Interceptor id for removal
        """
        return self._transport.interceptors.response.use(fulfilled, rejected)

    def remove_request_interceptor(self, interceptor_id: int) -> bool:
        """Remove a request interceptor by id."""
        return self._transport.interceptors.request.eject(interceptor_id)

    def remove_response_interceptor(self, interceptor_id: int) -> bool:
        """Remove a response interceptor by id."""
        return self._transport.interceptors.response.eject(interceptor_id)

    # Configuration

    def set_default_header(self, key: str, value: str) -> None:
        """Set a header sent with every request."""
        self._transport.defaults.headers[key] = value

    def update_config(self, **overrides: Any) -> None:
        """Replace request defaults (base_url, headers, params, timeout, ...).

        Example:
            >>> client.update_config(base_url="https://staging.example.com", timeout=5.0)
        """
        self._transport.defaults = self._transport.defaults.merge(**overrides)

    # Lifecycle

    def destroy(self) -> None:
        """Discard every retry context."""
        self._contexts.clear()

    async def aclose(self) -> None:
        """Discard retry contexts and close the transport."""
        self.destroy()
        await self._transport.close()

    async def __aenter__(self) -> ResilientClient:
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.aclose()

    # Interceptors

    def _setup_interceptors(self) -> None:
        # The request chain runs newest first, so admission and context
        # tracking see the config produced by every user interceptor.
        self._transport.interceptors.request.use(self._on_request, name="resilience")
        self._transport.interceptors.response.use(
            self._on_response, self._on_response_error, name="resilience"
        )

    def _key(self, config: RequestConfig) -> str:
        return self._keys.generate(config).key

    def _admit(self, config: RequestConfig, retrying: bool) -> None:
        breaker = self._circuit_breaker
        if breaker is not None:
            # A re-issued attempt keeps the admission of its logical request
            held = retrying and not breaker.is_open
            if not held and not breaker.before_request():
                raise CircuitOpenError(time_until_retry=breaker.get_time_until_retry())

        if self._rate_limiter is not None and not self._rate_limiter.try_acquire():
            if not config.is_retry:
                self._release_trial()
            self._logger.warning(
                "Rate limit exceeded, request rejected",
                {"method": config.method, "url": config.url},
            )
            raise RateLimitError(
                "Rate limit exceeded", retry_after=self._rate_limiter.get_wait_time()
            )

    def _release_trial(self) -> None:
        if self._circuit_breaker is not None:
            self._circuit_breaker.release_trial()

    def _on_request(self, config: RequestConfig) -> RequestConfig:
        key = self._key(config)
        context = self._contexts.get(key) if config.is_retry else None
        self._admit(config, retrying=context is not None)

        if context is None:
            category = self._config.retry.match_category(config)
            context = RetryContext(
                key=key,
                request_config=config,
                category=category.name if category is not None else None,
            )
            self._contexts.set(key, context)
        else:
            context.request_config = config

        set_log_context(
            LogContext(
                request_key=key,
                method=config.method,
                url=config.full_url,
                attempt=context.retry_count,
                category=context.category,
            )
        )

        removed = self._contexts.sweep_expired(self._config.context_max_age)
        if removed:
            self._logger.debug("Cleaned up expired contexts", {"count": removed})

        self._log_request(config)
        return config

    async def _on_response(self, response: Response) -> Response:
        key = self._key(response.config)
        context = self._contexts.peek(key)
        self._log_response(response)

        if self._circuit_breaker is not None:
            self._circuit_breaker.record_success()

        if context is not None:
            context.outcome_recorded = True
            try:
                if self._config.retry.on_success is not None:
                    await maybe_await(self._config.retry.on_success(response, context))
            finally:
                self._contexts.delete(key)

        return response

    async def _on_response_error(self, error: Exception) -> Response:
        self._logger.error(
            "Response error",
            {"error_type": type(error).__name__, "error": str(error)},
        )

        if isinstance(error, RequestCancelled):
            self._logger.info("Request was cancelled", {"url": error.config.url})
            self._contexts.delete(self._key(error.config))
            if not error.config.is_retry:
                self._release_trial()
            raise CancellationError("Request was cancelled", reason=error.reason) from error

        if isinstance(error, CircuitOpenError):
            raise error

        if not isinstance(error, HttpRequestError):
            raise self._terminal(error)

        key = self._key(error.config)
        context = self._contexts.get(key)
        if context is None:
            if not error.config.is_retry:
                self._release_trial()
            raise self._terminal(error)

        context.record_attempt(error)

        if await self._retry.should_retry(error, context):
            try:
                return await self._retry.perform_retry(error, context)
            except Exception:
                # Only the outermost attempt releases a trial slot
                if not error.config.is_retry and not context.outcome_recorded:
                    self._release_trial()
                raise

        if self._circuit_breaker is not None:
            self._circuit_breaker.record_failure()
        context.outcome_recorded = True

        try:
            if self._config.retry.on_failed is not None:
                await maybe_await(self._config.retry.on_failed(error, context))
        finally:
            self._contexts.delete(key)
        raise self._terminal(error)

    def _terminal(self, error: Exception) -> BaseException:
        classified = self._classifier.classify(error)
        if classified is not error and classified.__cause__ is None:
            classified.__cause__ = error
        return classified

    # Logging

    def _log_request(self, config: RequestConfig) -> None:
        message: dict[str, Any] = {
            "base_url": config.base_url,
            "method": config.method,
            "url": config.url,
        }
        self._logger.info("Request", message)

        if self._config.debug:
            self._logger.debug(
                "Request",
                {
                    **message,
                    "headers": _sanitize_headers(config.headers),
                    "data": config.data,
                },
            )

    def _log_response(self, response: Response) -> None:
        message: dict[str, Any] = {
            "base_url": response.config.base_url,
            "status": response.status,
        }
        self._logger.info("Response", message)

        if self._config.debug:
            self._logger.debug(
                "Response",
                {**message, "headers": dict(response.headers), "data": response.data},
            )

    def __repr__(self) -> str:
        return (
            f"ResilientClient(base_url={self._transport.defaults.base_url!r}, "
            f"contexts={len(self._contexts)})"
        )


def create(config: ClientConfig | None = None, **kwargs: Any) -> ResilientClient:
    """Create a new ResilientClient.

    Args:
        config: Client configuration
        **kwargs: ClientConfig fields, used when config is omitted

    Returns:
        Configured ResilientClient
    """
    return ResilientClient.create(config, **kwargs)
