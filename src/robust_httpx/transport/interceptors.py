"""
Interceptor registry for request/response processing.

Provides ordered, id-addressable handler chains run by the transport.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterator

    Handler = Callable[[Any], Any | Awaitable[Any]]


@dataclass
class Interceptor:
    """A registered interceptor.

    Attributes:
        id: Identifier returned by :meth:`InterceptorManager.use`
        fulfilled: Handler for the success path (config or response)
        rejected: Handler for the failure path (receives the exception)
        name: Optional name for diagnostics
    """

    id: int
    fulfilled: Handler | None = None
    rejected: Handler | None = None
    name: str = ""


class InterceptorManager:
    """Ordered chain of interceptors for one phase (request or response).

    Handlers may be plain functions or coroutine functions. A fulfilled
    handler returns the (possibly replaced) value; a rejected handler
    either raises to keep the failure going or returns a value to recover.
    A reversed chain runs the most recently registered interceptor first.

    Example:
        >>> manager = InterceptorManager()
        >>> interceptor_id = manager.use(add_header, log_error)
        >>> manager.eject(interceptor_id)
    """

    def __init__(self, reverse: bool = False) -> None:
        """Initialize an empty chain.

        Args:
            reverse: Run interceptors newest first
        """
        self._interceptors: list[Interceptor] = []
        self._reverse = reverse
        self._ids = itertools.count()

    def use(
        self,
        fulfilled: Handler | None = None,
        rejected: Handler | None = None,
        *,
        name: str = "",
    ) -> int:
        """Append an interceptor to the chain.

        Args:
            fulfilled: Success-path handler
            rejected: Failure-path handler
            name: Optional name

        Returns:
            Interceptor id for later removal
        """
        interceptor = Interceptor(
            id=next(self._ids),
            fulfilled=fulfilled,
            rejected=rejected,
            name=name or getattr(fulfilled, "__name__", ""),
        )
        self._interceptors.append(interceptor)
        return interceptor.id

    def eject(self, interceptor_id: int) -> bool:
        """Remove an interceptor by id.

        Args:
            interceptor_id: Id returned by :meth:`use`

        Returns:
            True if removed, False if not found
        """
        for i, interceptor in enumerate(self._interceptors):
            if interceptor.id == interceptor_id:
                self._interceptors.pop(i)
                return True
        return False

    def clear(self) -> None:
        """Remove every interceptor."""
        self._interceptors.clear()

    @property
    def names(self) -> list[str]:
        """Get list of interceptor names in execution order."""
        return [i.name for i in self]

    def __iter__(self) -> Iterator[Interceptor]:
        if self._reverse:
            return reversed(self._interceptors)
        return iter(self._interceptors)

    def __len__(self) -> int:
        """Get number of interceptors."""
        return len(self._interceptors)
