"""HTTP transport using httpx for async requests.

Provides:
- RequestConfig / Response: the request and response shapes the
  resilience engine works with
- HttpRequestError: failure shape (optional response, code, message, config)
- HttpTransport: httpx-based sender with request/response interceptor chains
"""

from __future__ import annotations

import asyncio
import inspect
import os
from contextlib import suppress
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, TypeVar

import httpx
from pydantic import BaseModel

from robust_httpx.transport.interceptors import InterceptorManager

if TYPE_CHECKING:
    from robust_httpx.client.cancel import CancelToken

M = TypeVar("M", bound=BaseModel)


# Default timeouts
_DEFAULT_TIMEOUT = 30.0
_DEFAULT_CONNECT_TIMEOUT = 10.0

# Failure codes attached to HttpRequestError
CODE_ABORTED = "ECONNABORTED"
CODE_TIMED_OUT = "ETIMEDOUT"
CODE_REFUSED = "ECONNREFUSED"
CODE_NOT_FOUND = "ENOTFOUND"
CODE_CERT_EXPIRED = "CERT_HAS_EXPIRED"
CODE_NETWORK = "ERR_NETWORK"
CODE_BAD_REQUEST = "ERR_BAD_REQUEST"
CODE_BAD_RESPONSE = "ERR_BAD_RESPONSE"

_HOST_NOT_FOUND_MARKERS = (
    "name or service not known",
    "nodename nor servname",
    "getaddrinfo failed",
    "name resolution",
    "no address associated",
)


def _trust_env_enabled() -> bool:
    """Use env proxy settings only when explicitly enabled."""
    return os.getenv("ROBUST_HTTPX_TRUST_ENV", "0") == "1"


@dataclass
class RequestConfig:
    """Configuration of a single HTTP request.

    Attributes:
        method: HTTP method
        url: Absolute URL or path relative to base_url
        base_url: Base URL prepended to relative paths
        headers: Request headers
        params: Query parameters
        data: Request body (dict/list sent as JSON, str/bytes sent raw, pydantic models dumped to JSON)
        timeout: Timeout in seconds (None = transport default)
        cancel_token: Optional cancellation token
    """

    method: str = "GET"
    url: str = ""
    base_url: str | None = None
    headers: dict[str, str] = field(default_factory=dict)
    params: dict[str, Any] | None = None
    data: Any = None
    timeout: float | None = None
    cancel_token: CancelToken | None = None
    is_retry: bool = field(default=False, repr=False, compare=False)

    def merge(self, **overrides: Any) -> RequestConfig:
        """Return a copy with the given fields replaced."""
        return replace(self, **overrides)

    @property
    def full_url(self) -> str:
        """Resolve the URL against base_url."""
        return build_full_url(self.base_url, self.url)


def build_full_url(base_url: str | None, url: str | None) -> str:
    """Join a base URL and a path the way the transport does.

    Args:
        base_url: Base URL (may be None)
        url: Absolute URL or relative path

    Returns:
        Combined URL, or an empty string when both are missing
    """
    path = url or ""
    if "://" in path:
        return path
    base = (base_url or "").rstrip("/")
    path = path.lstrip("/")
    if base and path:
        return f"{base}/{path}"
    return base or path


@dataclass
class Response:
    """Response received from the remote.

    Attributes:
        status: HTTP status code
        status_text: Reason phrase
        headers: Case-insensitive response headers
        data: Parsed body (JSON when possible, text otherwise)
        config: Configuration that produced this response
        raw: Underlying httpx response (None for synthetic responses)
    """

    status: int
    status_text: str = ""
    headers: httpx.Headers = field(default_factory=httpx.Headers)
    data: Any = None
    config: RequestConfig = field(default_factory=RequestConfig)
    raw: httpx.Response | None = field(default=None, repr=False)

    @classmethod
    def from_httpx(cls, response: httpx.Response, config: RequestConfig) -> Response:
        """Build a Response from an httpx response.

        Args:
            response: httpx response (already read)
            config: Request configuration used

        Returns:
            Response instance
        """
        data: Any = None
        if response.content:
            content_type = response.headers.get("content-type", "")
            if "json" in content_type:
                try:
                    data = response.json()
                except ValueError:
                    data = response.text
            else:
                data = response.text

        return cls(
            status=response.status_code,
            status_text=response.reason_phrase,
            headers=response.headers,
            data=data,
            config=config,
            raw=response,
        )

    @property
    def ok(self) -> bool:
        """Check for a 2xx status."""
        return 200 <= self.status < 300

    def parse(self, model: type[M]) -> M:
        """Validate the body into a pydantic model.

        Args:
            model: Pydantic model class

        Returns:
            Validated model instance

        Raises:
            pydantic.ValidationError: If the body does not match the model
        """
        if isinstance(self.data, (str, bytes)):
            return model.model_validate_json(self.data)
        return model.model_validate(self.data)


class HttpRequestError(Exception):
    """A request failed before or after reaching the remote.

    Attributes:
        message: Failure message
        config: Configuration of the failed request
        code: Failure code (ECONNABORTED, ECONNREFUSED, ERR_BAD_RESPONSE, ...)
        response: Response, or None for network-level failures
    """

    def __init__(
        self,
        message: str,
        *,
        config: RequestConfig,
        code: str | None = None,
        response: Response | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.config = config
        self.code = code
        self.response = response
        if cause is not None:
            self.__cause__ = cause

    @property
    def status(self) -> int | None:
        """Response status, if a response was received."""
        return self.response.status if self.response is not None else None


class RequestCancelled(Exception):
    """The request's cancel token fired before or while it was sent."""

    def __init__(self, config: RequestConfig, reason: str | None = None) -> None:
        super().__init__(f"Request was cancelled ({reason or 'user_request'})")
        self.config = config
        self.reason = reason


def encode_body(data: Any) -> Any:
    """Turn pydantic models into JSON-ready values, leave other bodies as-is."""
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json", by_alias=True, exclude_none=True)
    if isinstance(data, list) and any(isinstance(item, BaseModel) for item in data):
        return [encode_body(item) for item in data]
    return data


def _connect_error_code(error: httpx.ConnectError) -> str:
    """Map an httpx connection error to a failure code."""
    text = str(error).lower()
    if "refused" in text:
        return CODE_REFUSED
    if any(marker in text for marker in _HOST_NOT_FOUND_MARKERS):
        return CODE_NOT_FOUND
    if "certificate has expired" in text or "certificate_expired" in text:
        return CODE_CERT_EXPIRED
    return CODE_NETWORK


async def maybe_await(value: Any) -> Any:
    """Await the value if a handler or hook returned an awaitable."""
    if inspect.isawaitable(value):
        return await value
    return value


class HttpTransport:
    """HTTP transport with interceptor chains.

    Uses httpx for async HTTP requests. Every call to :meth:`request`
    merges the transport defaults into the config, runs the request
    interceptors newest first, sends, then runs the response interceptors
    in registration order. A handler that raises moves the chain to
    the rejection path, and a rejection handler that returns a value
    moves it back to the fulfilment path.

    Example:
        >>> transport = HttpTransport(base_url="https://api.example.com")
        >>> transport.interceptors.request.use(add_trace_header)
        >>> response = await transport.request(RequestConfig(url="/users"))
    """

    def __init__(
        self,
        base_url: str | None = None,
        *,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize HTTP transport.

        Args:
            base_url: Default base URL
            headers: Default headers sent with every request
            timeout: Default timeout in seconds
            client: Pre-built httpx client (the transport will not close it)
        """
        self.defaults = RequestConfig(
            method="GET",
            base_url=base_url,
            headers=dict(headers or {}),
            timeout=timeout,
        )
        self.interceptors = _Interceptors()
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(
                    _DEFAULT_TIMEOUT, connect=_DEFAULT_CONNECT_TIMEOUT
                ),
                follow_redirects=True,
                trust_env=_trust_env_enabled(),
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def merge_defaults(self, config: RequestConfig) -> RequestConfig:
        """Fill unset fields of a config from the transport defaults.

        Args:
            config: Per-request configuration

        Returns:
            New configuration with defaults applied
        """
        return config.merge(
            method=(config.method or self.defaults.method).upper(),
            base_url=config.base_url or self.defaults.base_url,
            headers={**self.defaults.headers, **config.headers},
            params=(
                {**(self.defaults.params or {}), **config.params}
                if config.params is not None
                else self.defaults.params
            ),
            timeout=(
                config.timeout if config.timeout is not None else self.defaults.timeout
            ),
        )

    def get_uri(self, config: RequestConfig | None = None) -> str:
        """Build the full URI a config would be sent to (without query)."""
        merged = self.merge_defaults(config or RequestConfig())
        return merged.full_url

    async def request(self, config: RequestConfig) -> Response:
        """Run a request through the interceptor chains.

        Args:
            config: Request configuration

        Returns:
            Response from the final fulfilled handler

        Raises:
            Exception: Whatever the last rejection handler raised
        """
        config = self.merge_defaults(config)

        value, error = await self._settle(self.interceptors.request, config, None)

        if error is None:
            try:
                value = await self.send(value)
            except Exception as exc:
                error = exc

        value, error = await self._settle(self.interceptors.response, value, error)

        if error is not None:
            raise error
        return value  # type: ignore[no-any-return]

    async def _settle(
        self,
        chain: InterceptorManager,
        value: Any,
        error: Exception | None,
    ) -> tuple[Any, Exception | None]:
        """Pass a value or an error through one interceptor chain."""
        for interceptor in list(chain):
            handler = interceptor.rejected if error is not None else interceptor.fulfilled
            if handler is None:
                continue
            try:
                value = await maybe_await(handler(error if error is not None else value))
                error = None
            except Exception as exc:
                error = exc
        return value, error

    async def send(self, config: RequestConfig) -> Response:
        """Send a request without running interceptors.

        Args:
            config: Fully merged request configuration

        Returns:
            Response with a 2xx status

        Raises:
            HttpRequestError: On network failures and non-2xx responses
            RequestCancelled: If the cancel token fires
        """
        token = config.cancel_token
        if token is not None and token.is_cancelled:
            raise RequestCancelled(config, _reason(token))

        client = self._get_client()
        kwargs: dict[str, Any] = {
            "method": config.method,
            "url": config.full_url,
            "headers": config.headers,
            "params": config.params,
        }
        body = encode_body(config.data)
        if isinstance(body, (str, bytes)):
            kwargs["content"] = body
        elif body is not None:
            kwargs["json"] = body
        if config.timeout is not None:
            kwargs["timeout"] = httpx.Timeout(config.timeout)

        try:
            raw = await self._dispatch(client, config, kwargs)
        except httpx.ConnectTimeout as e:
            raise HttpRequestError(
                f"Connect timeout: {e}", config=config, code=CODE_TIMED_OUT, cause=e
            ) from e
        except httpx.TimeoutException as e:
            raise HttpRequestError(
                f"timeout of {config.timeout or _DEFAULT_TIMEOUT}s exceeded",
                config=config,
                code=CODE_ABORTED,
                cause=e,
            ) from e
        except httpx.ConnectError as e:
            code = _connect_error_code(e)
            message = "Network Error" if code == CODE_NETWORK else str(e)
            raise HttpRequestError(message, config=config, code=code, cause=e) from e
        except httpx.HTTPError as e:
            raise HttpRequestError(
                "Network Error", config=config, code=CODE_NETWORK, cause=e
            ) from e

        response = Response.from_httpx(raw, config)
        if not response.ok:
            raise HttpRequestError(
                f"Request failed with status code {response.status}",
                config=config,
                code=CODE_BAD_RESPONSE if response.status >= 500 else CODE_BAD_REQUEST,
                response=response,
            )
        return response

    async def _dispatch(
        self,
        client: httpx.AsyncClient,
        config: RequestConfig,
        kwargs: dict[str, Any],
    ) -> httpx.Response:
        """Issue the httpx call, racing it against the cancel token."""
        token = config.cancel_token
        if token is None:
            return await client.request(**kwargs)

        request_task = asyncio.ensure_future(client.request(**kwargs))
        cancel_task = asyncio.ensure_future(token.wait())
        try:
            done, _ = await asyncio.wait(
                {request_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            cancel_task.cancel()

        if request_task in done:
            return request_task.result()

        request_task.cancel()
        with suppress(asyncio.CancelledError, httpx.HTTPError):
            await request_task
        raise RequestCancelled(config, _reason(token))

    async def __aenter__(self) -> HttpTransport:
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()


def _reason(token: CancelToken) -> str | None:
    reason = token.reason
    return reason.value if reason is not None else None


class _Interceptors:
    """Request and response interceptor chains of one transport."""

    def __init__(self) -> None:
        self.request = InterceptorManager(reverse=True)
        self.response = InterceptorManager()
