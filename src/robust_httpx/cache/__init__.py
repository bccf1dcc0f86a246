"""
Caching primitives for robust-httpx.

Provides the bounded LRU structure and deterministic request identities
used to track retry contexts.
"""

from robust_httpx.cache.key import RequestIdentity, RequestKeyGenerator, request_identity
from robust_httpx.cache.lru import LRUCache

__all__ = [
    "LRUCache",
    "RequestIdentity",
    "RequestKeyGenerator",
    "request_identity",
]
