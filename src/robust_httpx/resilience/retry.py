"""
Retry orchestration with configurable backoff.

Decides whether a failed attempt is retried, how long to wait, how the
timeout evolves, and re-issues the request through the full client
pipeline. Backoff strategies (in seconds, n = retry number from 1):

- exponential: 2 ** n
- linear: n
- fibonacci: Fib(n) with Fib(1) = Fib(2) = 1
- custom: custom_backoff(n, error)

A 429 response with a numeric Retry-After header overrides the strategy.
"""

from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from robust_httpx.errors.base import RateLimitError
from robust_httpx.errors.classification import parse_retry_after
from robust_httpx.resilience.circuit_breaker import CircuitBreakerConfig, CircuitOpenError
from robust_httpx.telemetry.logger import LogContext, get_logger, set_log_context
from robust_httpx.transport.http import CODE_ABORTED, HttpRequestError, maybe_await

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from robust_httpx.resilience.circuit_breaker import CircuitBreakerState
    from robust_httpx.resilience.context import BoundedContextCache, RetryContext
    from robust_httpx.telemetry.logger import LoggerProtocol
    from robust_httpx.transport.http import RequestConfig, Response


class BackoffStrategy(str, Enum):
    """Delay growth between retries."""

    EXPONENTIAL = "exponential"
    LINEAR = "linear"
    FIBONACCI = "fibonacci"
    CUSTOM = "custom"


class TimeoutStrategy(str, Enum):
    """How the request timeout evolves across retries."""

    RESET = "reset"
    DECAY = "decay"
    FIXED = "fixed"


def default_retry_condition(error: BaseException) -> bool:
    """Retry on network failures, 5xx, 429 and client-side timeouts.

    Args:
        error: Raw failure of an attempt

    Returns:
        True if the attempt should be retried
    """
    if not isinstance(error, HttpRequestError):
        return False
    if error.response is None:
        return True
    status = error.response.status
    return status >= 500 or status == 429 or error.code == CODE_ABORTED


def default_custom_backoff(retry_count: int, error: BaseException) -> float:
    """Linear one-second steps, used when no custom function is given."""
    return float(retry_count)


def fibonacci(n: int) -> int:
    """Compute Fib(n) iteratively with Fib(1) = Fib(2) = 1.

    Example:
        >>> [fibonacci(n) for n in range(1, 6)]
        [1, 1, 2, 3, 5]
    """
    if n <= 0:
        return 0
    previous, current = 0, 1
    for _ in range(n - 1):
        previous, current = current, previous + current
    return current


@dataclass
class CategorySettings:
    """Retry overrides applied to requests of one category.

    Unset fields fall back to the client-wide RetryConfig.
    """

    max_retries: int | None = None
    retry_condition: Callable[[BaseException], bool | Awaitable[bool]] | None = None
    backoff_strategy: BackoffStrategy | None = None
    custom_backoff: Callable[[int, BaseException], float] | None = None


@dataclass
class RequestCategory:
    """Named request class with its own retry settings.

    Attributes:
        name: Category name stored on matching retry contexts
        matcher: Predicate over the merged request configuration
        settings: Overrides for matching requests
    """

    name: str
    matcher: Callable[[RequestConfig], bool]
    settings: CategorySettings = field(default_factory=CategorySettings)

    def matches(self, config: RequestConfig) -> bool:
        """Check whether a request belongs to this category."""
        return bool(self.matcher(config))


@dataclass
class RetryConfig:
    """Configuration for retry orchestration.

    Attributes:
        max_retries: Maximum number of retries (0 = no retries)
        retry_condition: Predicate deciding retry eligibility (sync or async)
        backoff_strategy: Delay strategy between retries
        custom_backoff: Delay function for the custom strategy, in seconds
        timeout_strategy: Timeout evolution across retries
        timeout_multiplier: Growth factor for the decay strategy
        on_retry: Hook awaited before each retry delay
        on_success: Hook called with (response, context) on success
        on_failed: Hook called with (error, context) on terminal failure
        circuit_breaker: Breaker configuration (None disables the breaker)
        on_circuit_breaker_state_change: Observer of breaker transitions
        request_categories: Ordered categories, first match wins
    """

    max_retries: int = 3
    retry_condition: Callable[[BaseException], bool | Awaitable[bool]] | None = None
    backoff_strategy: BackoffStrategy = BackoffStrategy.EXPONENTIAL
    custom_backoff: Callable[[int, BaseException], float] | None = None
    timeout_strategy: TimeoutStrategy = TimeoutStrategy.DECAY
    timeout_multiplier: float = 1.5
    on_retry: Callable[[RetryContext], Any] | None = None
    on_success: Callable[[Response, RetryContext], Any] | None = None
    on_failed: Callable[[BaseException, RetryContext], Any] | None = None
    circuit_breaker: CircuitBreakerConfig | None = field(default_factory=CircuitBreakerConfig)
    on_circuit_breaker_state_change: Callable[[CircuitBreakerState], Any] | None = None
    request_categories: list[RequestCategory] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must not be negative")
        if self.timeout_multiplier <= 0:
            raise ValueError("timeout_multiplier must be positive")
        self.backoff_strategy = BackoffStrategy(self.backoff_strategy)
        self.timeout_strategy = TimeoutStrategy(self.timeout_strategy)

    @classmethod
    def default(cls) -> RetryConfig:
        """Create default configuration."""
        return cls()

    @classmethod
    def no_retry(cls) -> RetryConfig:
        """Create a config that disables retries."""
        return cls(max_retries=0)

    @classmethod
    def from_env(cls) -> RetryConfig:
        """Create configuration from environment variables."""
        return cls(
            max_retries=int(os.getenv("ROBUST_HTTPX_MAX_RETRIES", "3")),
            backoff_strategy=BackoffStrategy(
                os.getenv("ROBUST_HTTPX_BACKOFF", BackoffStrategy.EXPONENTIAL.value)
            ),
            timeout_strategy=TimeoutStrategy(
                os.getenv("ROBUST_HTTPX_TIMEOUT_STRATEGY", TimeoutStrategy.DECAY.value)
            ),
            circuit_breaker=CircuitBreakerConfig.from_env(),
        )

    def match_category(self, config: RequestConfig) -> RequestCategory | None:
        """Return the first category matching a request."""
        for category in self.request_categories:
            if category.matches(config):
                return category
        return None

    def get_category(self, name: str | None) -> RequestCategory | None:
        """Look up a category by name."""
        if name is None:
            return None
        for category in self.request_categories:
            if category.name == name:
                return category
        return None


def calculate_delay(
    retry_count: int,
    error: BaseException,
    strategy: BackoffStrategy = BackoffStrategy.EXPONENTIAL,
    custom_backoff: Callable[[int, BaseException], float] | None = None,
) -> float:
    """Calculate the delay before a retry.

    Args:
        retry_count: Retry number (1 for the first retry)
        error: Failure that triggered the retry
        strategy: Backoff strategy
        custom_backoff: Delay function for the custom strategy

    Returns:
        Delay in seconds
    """
    # If server provided retry-after, respect it
    if (
        isinstance(error, HttpRequestError)
        and error.response is not None
        and error.response.status == 429
    ):
        retry_after = parse_retry_after(error.response.headers)
        if retry_after is not None:
            return retry_after

    if strategy == BackoffStrategy.EXPONENTIAL:
        return float(2**retry_count)
    if strategy == BackoffStrategy.LINEAR:
        return float(retry_count)
    if strategy == BackoffStrategy.FIBONACCI:
        return float(fibonacci(retry_count))
    return float((custom_backoff or default_custom_backoff)(retry_count, error))


def calculate_next_timeout(
    current: float | None,
    strategy: TimeoutStrategy,
    multiplier: float = 1.5,
) -> float | None:
    """Compute the timeout for the next attempt.

    Args:
        current: Timeout of the failed attempt (None = transport default)
        strategy: Timeout strategy
        multiplier: Growth factor for decay

    Returns:
        Timeout in seconds, or None when no timeout was set
    """
    if current is None:
        return None
    if strategy == TimeoutStrategy.DECAY:
        return current * multiplier
    return current


class RetryOrchestrator:
    """Retry decisions and re-issue for the resilient client.

    Example:
        >>> orchestrator = RetryOrchestrator(config, reissue=transport.request,
        ...                                  contexts=contexts, logger=logger)
        >>> if await orchestrator.should_retry(error, context):
        ...     response = await orchestrator.perform_retry(error, context)
    """

    def __init__(
        self,
        config: RetryConfig,
        reissue: Callable[[RequestConfig], Awaitable[Response]],
        contexts: BoundedContextCache,
        logger: LoggerProtocol | None = None,
    ) -> None:
        """Initialize orchestrator.

        Args:
            config: Retry configuration
            reissue: Sends a config through the full request pipeline
            contexts: Retry context store (entries removed on aborted retries)
            logger: Logger for predicate failures and retry decisions
        """
        self._config = config
        self._reissue = reissue
        self._contexts = contexts
        self._logger = logger or get_logger(__name__)

    @property
    def config(self) -> RetryConfig:
        """Retry configuration."""
        return self._config

    def _settings(self, context: RetryContext) -> CategorySettings | None:
        category = self._config.get_category(context.category)
        return category.settings if category is not None else None

    def max_retries_for(self, context: RetryContext) -> int:
        """Effective retry budget of a context."""
        settings = self._settings(context)
        if settings is not None and settings.max_retries is not None:
            return settings.max_retries
        return self._config.max_retries

    async def should_retry(self, error: BaseException, context: RetryContext) -> bool:
        """Check if a failed attempt should be retried.

        Args:
            error: Raw failure of the attempt
            context: Retry context of the request

        Returns:
            True if a retry should be performed
        """
        if context.retry_count >= self.max_retries_for(context):
            return False

        settings = self._settings(context)
        condition = (
            (settings.retry_condition if settings is not None else None)
            or self._config.retry_condition
            or default_retry_condition
        )

        try:
            return bool(await maybe_await(condition(error)))
        except Exception as e:
            self._logger.error("Error in retry condition check", {"error": str(e)})
            return False

    def get_delay(self, error: BaseException, context: RetryContext) -> float:
        """Delay in seconds before the next retry of a context."""
        settings = self._settings(context)
        strategy = (
            settings.backoff_strategy
            if settings is not None and settings.backoff_strategy is not None
            else self._config.backoff_strategy
        )
        custom = (
            settings.custom_backoff
            if settings is not None and settings.custom_backoff is not None
            else self._config.custom_backoff
        )
        return calculate_delay(context.retry_count, error, strategy, custom)

    async def perform_retry(self, error: BaseException, context: RetryContext) -> Response:
        """Wait the backoff delay and re-issue the request.

        Args:
            error: Raw failure of the attempt
            context: Retry context of the request

        Returns:
            Response of the re-issued request

        Raises:
            CancellationError: If the request is cancelled around the delay
            Exception: Whatever the re-issued pipeline raises
        """
        context.retry_count += 1

        delay = self.get_delay(error, context)
        if self._config.on_retry is not None:
            try:
                await maybe_await(self._config.on_retry(context))
            except Exception:
                self._contexts.delete(context.key)
                raise

        config = context.request_config
        if isinstance(error, HttpRequestError):
            config = error.config
        config = config.merge(
            timeout=calculate_next_timeout(
                config.timeout,
                self._config.timeout_strategy,
                self._config.timeout_multiplier,
            ),
            is_retry=True,
        )
        context.request_config = config

        set_log_context(
            LogContext(
                request_key=context.key,
                method=config.method,
                url=config.full_url,
                attempt=context.retry_count,
                category=context.category,
            )
        )
        self._logger.info(
            "Retrying request",
            {
                "method": config.method,
                "url": config.url,
                "attempt": context.retry_count,
                "delay": delay,
            },
        )

        token = config.cancel_token
        if token is not None and token.is_cancelled:
            self._contexts.delete(context.key)
            token.raise_if_cancelled("Request was cancelled during retry")

        if token is not None:
            if await token.sleep(delay):
                self._contexts.delete(context.key)
                token.raise_if_cancelled("Request was cancelled during retry delay")
        else:
            await asyncio.sleep(delay)

        if token is not None and token.is_cancelled:
            self._contexts.delete(context.key)
            token.raise_if_cancelled("Request was cancelled after retry delay")

        try:
            return await self._reissue(config)
        except (RateLimitError, CircuitOpenError):
            # Admission refused the re-issue before any response handler ran
            self._contexts.delete(context.key)
            raise
