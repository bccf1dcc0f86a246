"""
Process-wide default client.

Convenience layer for scripts. Library code constructs its own
ResilientClient and never depends on this module.

Example:
    >>> import robust_httpx.default as http
    >>> response = await http.get("https://api.example.com/users")
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from robust_httpx.client.config import ClientConfig
from robust_httpx.client.core import ResilientClient

if TYPE_CHECKING:
    from robust_httpx.transport.http import RequestConfig, Response

_default_client: ResilientClient | None = None


def get_default_client() -> ResilientClient:
    """Get the default client, creating it from the environment on first use.

    Returns:
        Default ResilientClient instance
    """
    global _default_client
    if _default_client is None:
        _default_client = ResilientClient(ClientConfig.from_env())
    return _default_client


def set_default_client(client: ResilientClient) -> None:
    """Set the default client.

    Args:
        client: ResilientClient instance
    """
    global _default_client
    _default_client = client


def reset_default_client() -> None:
    """Destroy the default client's retry contexts and forget it."""
    global _default_client
    if _default_client is not None:
        _default_client.destroy()
        _default_client = None


async def close_default_client() -> None:
    """Close the default client's transport and forget it."""
    global _default_client
    if _default_client is not None:
        await _default_client.aclose()
        _default_client = None


async def request(config: RequestConfig) -> Response:
    """Send a request with the default client."""
    return await get_default_client().request(config)


async def get(url: str, config: RequestConfig | None = None) -> Response:
    """Send a GET request with the default client."""
    return await get_default_client().get(url, config)


async def delete(url: str, config: RequestConfig | None = None) -> Response:
    """Send a DELETE request with the default client."""
    return await get_default_client().delete(url, config)


async def head(url: str, config: RequestConfig | None = None) -> Response:
    """Send a HEAD request with the default client."""
    return await get_default_client().head(url, config)


async def options(url: str, config: RequestConfig | None = None) -> Response:
    """Send an OPTIONS request with the default client."""
    return await get_default_client().options(url, config)


async def post(url: str, data: Any = None, config: RequestConfig | None = None) -> Response:
    """Send a POST request with the default client."""
    return await get_default_client().post(url, data, config)


async def put(url: str, data: Any = None, config: RequestConfig | None = None) -> Response:
    """Send a PUT request with the default client."""
    return await get_default_client().put(url, data, config)


async def patch(url: str, data: Any = None, config: RequestConfig | None = None) -> Response:
    """Send a PATCH request with the default client."""
    return await get_default_client().patch(url, data, config)
