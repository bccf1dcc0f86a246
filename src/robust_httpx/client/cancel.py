"""
Request cancellation control.

Provides cancellation tokens that ride on a RequestConfig. The transport
races in-flight requests against the token, and the retry engine checks it
before and after every backoff delay.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from robust_httpx.errors import CancellationError
from robust_httpx.telemetry.logger import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable

logger = get_logger(__name__)


class CancelReason(str, Enum):
    """Reasons for cancellation."""

    USER_REQUEST = "user_request"
    TIMEOUT = "timeout"
    SHUTDOWN = "shutdown"


@dataclass
class CancelState:
    """State of a cancellation token.

    Attributes:
        cancelled: Whether cancellation was requested
        reason: Reason for cancellation
        timestamp: Time of cancellation
    """

    cancelled: bool = False
    reason: CancelReason | None = None
    timestamp: float | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class CancelToken:
    """Cancellation token attached to a request.

    Example:
        >>> token = CancelToken()
        >>> task = asyncio.create_task(
        ...     client.get("/slow", RequestConfig(cancel_token=token))
        ... )
        >>> token.cancel()
        >>> await task  # raises CancellationError
    """

    def __init__(self, timeout: float | None = None) -> None:
        """Initialize cancellation token.

        Args:
            timeout: Optional delay in seconds after which the token
                cancels itself (requires a running event loop)
        """
        self._state = CancelState()
        self._event = asyncio.Event()
        self._callbacks: list[Callable[[CancelReason], Any]] = []
        self._timeout_handle: asyncio.TimerHandle | None = None

        if timeout:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                logger.warning("CancelToken timeout ignored: no running event loop")
            else:
                self._timeout_handle = loop.call_later(
                    timeout, self.cancel, CancelReason.TIMEOUT
                )

    def cancel(
        self,
        reason: CancelReason = CancelReason.USER_REQUEST,
        **metadata: Any,
    ) -> bool:
        """Request cancellation.

        Args:
            reason: Reason for cancellation
            **metadata: Additional metadata

        Returns:
            True if cancellation was newly requested, False if already cancelled
        """
        if self._state.cancelled:
            return False

        self._state.cancelled = True
        self._state.reason = reason
        self._state.timestamp = time.time()
        self._state.metadata.update(metadata)
        self._event.set()

        if self._timeout_handle is not None:
            self._timeout_handle.cancel()

        for callback in self._callbacks:
            self._invoke(callback, reason)

        return True

    @property
    def is_cancelled(self) -> bool:
        """Check if cancellation was requested."""
        return self._state.cancelled

    @property
    def reason(self) -> CancelReason | None:
        """Get cancellation reason."""
        return self._state.reason

    @property
    def state(self) -> CancelState:
        """Get full cancellation state."""
        return self._state

    async def wait(self) -> CancelReason:
        """Wait until cancellation is requested.

        Returns:
            Cancellation reason
        """
        await self._event.wait()
        return self._state.reason or CancelReason.USER_REQUEST

    async def sleep(self, delay: float) -> bool:
        """Sleep for ``delay`` seconds unless cancelled first.

        Args:
            delay: Seconds to sleep

        Returns:
            True if the sleep was interrupted by cancellation
        """
        if self._state.cancelled:
            return True
        try:
            await asyncio.wait_for(self._event.wait(), timeout=max(delay, 0.0))
        except asyncio.TimeoutError:
            return False
        return True

    def on_cancel(self, callback: Callable[[CancelReason], Any]) -> CancelToken:
        """Register a callback to be called on cancellation.

        Args:
            callback: Callback function (coroutines are scheduled as tasks)

        Returns:
            Self for chaining
        """
        self._callbacks.append(callback)
        if self._state.cancelled and self._state.reason:
            self._invoke(callback, self._state.reason)
        return self

    def raise_if_cancelled(self, message: str = "Request was cancelled") -> None:
        """Raise CancellationError if cancelled.

        Raises:
            CancellationError: If cancellation was requested
        """
        if self._state.cancelled:
            reason = self._state.reason
            raise CancellationError(message, reason=reason.value if reason else None)

    def _invoke(self, callback: Callable[[CancelReason], Any], reason: CancelReason) -> None:
        try:
            result = callback(reason)
            if asyncio.iscoroutine(result):
                _ = asyncio.ensure_future(result)  # noqa: RUF006
        except Exception:
            logger.exception("Cancel callback failed", callback=repr(callback))


class CancelHandle:
    """Handle for cancelling a request from the outside.

    The token goes on the request config; the handle stays with whoever
    may want to abort it.
    """

    def __init__(self, token: CancelToken) -> None:
        """Initialize cancel handle.

        Args:
            token: Associated cancel token
        """
        self._token = token

    def cancel(
        self,
        reason: CancelReason = CancelReason.USER_REQUEST,
        **metadata: Any,
    ) -> bool:
        """Request cancellation.

        Returns:
            True if cancellation was newly requested
        """
        return self._token.cancel(reason, **metadata)

    @property
    def is_cancelled(self) -> bool:
        """Check if cancellation was requested."""
        return self._token.is_cancelled


def create_cancel_pair(
    timeout: float | None = None,
) -> tuple[CancelHandle, CancelToken]:
    """Create a cancel handle and token pair.

    Args:
        timeout: Optional timeout in seconds

    Returns:
        Tuple of (CancelHandle, CancelToken)
    """
    token = CancelToken(timeout=timeout)
    return CancelHandle(token), token
