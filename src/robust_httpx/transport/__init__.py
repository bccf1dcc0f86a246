"""
Transport layer - httpx adapter for the resilience engine.

Provides:
- Request/response shapes (RequestConfig, Response)
- Failure shape with codes (HttpRequestError)
- Interceptor chains run around every request
"""

from robust_httpx.transport.http import (
    HttpRequestError,
    HttpTransport,
    RequestCancelled,
    RequestConfig,
    Response,
    build_full_url,
    encode_body,
)
from robust_httpx.transport.interceptors import Interceptor, InterceptorManager

__all__ = [
    "HttpRequestError",
    "HttpTransport",
    "Interceptor",
    "InterceptorManager",
    "RequestCancelled",
    "RequestConfig",
    "Response",
    "build_full_url",
    "encode_body",
]
