"""
Client configuration.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from robust_httpx.resilience.context import DEFAULT_CONTEXT_MAX_AGE, DEFAULT_CONTEXT_THRESHOLD
from robust_httpx.resilience.rate_limiter import RateLimitConfig
from robust_httpx.resilience.retry import RetryConfig

if TYPE_CHECKING:
    from collections.abc import Callable

    from robust_httpx.telemetry.logger import LoggerProtocol

_TRUTHY = ("1", "true", "yes", "on")


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in _TRUTHY


@dataclass
class ClientConfig:
    """Configuration for ResilientClient.

    Attributes:
        base_url: Base URL prepended to relative request paths
        headers: Default headers sent with every request
        timeout: Default request timeout in seconds
        retry: Retry, backoff, hook and circuit breaker settings
        rate_limit: Token bucket settings (None disables rate limiting)
        logger: Logger receiving request/response/error logs
        debug: Log headers and bodies at debug level
        dry_run: Return a canned 200 response without network traffic
        custom_error_handler: Called first during error classification
        context_max_age: Seconds after which idle retry contexts are swept
        context_threshold: Maximum number of live retry contexts
    """

    base_url: str | None = None
    headers: dict[str, str] = field(default_factory=dict)
    timeout: float | None = None
    retry: RetryConfig = field(default_factory=RetryConfig)
    rate_limit: RateLimitConfig | None = None
    logger: LoggerProtocol | None = None
    debug: bool = False
    dry_run: bool = False
    custom_error_handler: Callable[[BaseException], Any] | None = None
    context_max_age: float = DEFAULT_CONTEXT_MAX_AGE
    context_threshold: int = DEFAULT_CONTEXT_THRESHOLD

    def __post_init__(self) -> None:
        if self.timeout is not None and self.timeout <= 0:
            raise ValueError("timeout must be positive")
        if self.context_max_age <= 0:
            raise ValueError("context_max_age must be positive")
        if self.context_threshold < 1:
            raise ValueError("context_threshold must be at least 1")

    @classmethod
    def default(cls) -> ClientConfig:
        """Create default configuration."""
        return cls()

    @classmethod
    def from_env(cls) -> ClientConfig:
        """Create configuration from environment variables.

        Reads ROBUST_HTTPX_BASE_URL, ROBUST_HTTPX_TIMEOUT_SECS,
        ROBUST_HTTPX_DEBUG and ROBUST_HTTPX_DRY_RUN, plus the retry,
        breaker and rate limit variables.
        """
        timeout = os.getenv("ROBUST_HTTPX_TIMEOUT_SECS")
        return cls(
            base_url=os.getenv("ROBUST_HTTPX_BASE_URL") or None,
            timeout=float(timeout) if timeout else None,
            retry=RetryConfig.from_env(),
            rate_limit=RateLimitConfig.from_env(),
            debug=_env_flag("ROBUST_HTTPX_DEBUG"),
            dry_run=_env_flag("ROBUST_HTTPX_DRY_RUN"),
        )
