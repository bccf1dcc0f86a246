"""
Client layer - User-facing API.

This module provides:
- ResilientClient: HTTP client with retry, circuit breaking and rate limiting
- ClientConfig: Client configuration
- Cancellation: Request cancellation tokens
"""

from robust_httpx.client.cancel import (
    CancelHandle,
    CancelReason,
    CancelState,
    CancelToken,
    create_cancel_pair,
)
from robust_httpx.client.config import ClientConfig
from robust_httpx.client.core import ResilientClient, create

__all__ = [
    "CancelHandle",
    "CancelReason",
    "CancelState",
    "CancelToken",
    "ClientConfig",
    "ResilientClient",
    "create",
    "create_cancel_pair",
]
