"""
Request identity generation.

Provides the deterministic key that correlates responses and errors back
to their retry context.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from robust_httpx.transport.http import build_full_url, encode_body

if TYPE_CHECKING:
    from robust_httpx.transport.http import RequestConfig

NO_PARAMS = "[NO_PARAMS]"
NO_DATA = "[NO_DATA]"
UNSERIALIZABLE = "[UNSERIALIZABLE]"
NON_PLAIN_DATA = "[NON_PLAIN_OBJECT_DATA]"

MAX_BODY_CHARS = 256


@dataclass(frozen=True)
class RequestIdentity:
    """Identity of a logical request.

    Two configs describing the same call (including retries of it) map to
    the same identity. Headers, timeout and cancel token are not part of it.

    Attributes:
        key: The key string
        method: Upper-cased HTTP method
        uri: Base URL joined with the path
    """

    key: str
    method: str = ""
    uri: str = ""

    def __str__(self) -> str:
        """Return the key string."""
        return self.key


class RequestKeyGenerator:
    """Generates deterministic request identities.

    Key layout: ``METHOD::uri::params::body``. Params and dict/list bodies
    are serialised with sorted keys. Pydantic model bodies are
    serialised through their JSON dump. A body longer than ``max_body_chars``
    is cut and suffixed with a SHA-256 prefix of the full serialisation, so
    two long bodies only collide on a digest-prefix collision.

    Example:
        >>> generator = RequestKeyGenerator()
        >>> generator.generate(RequestConfig(method="get", url="/users")).key
        'GET::users::[NO_PARAMS]::[NO_DATA]'
    """

    def __init__(self, max_body_chars: int = MAX_BODY_CHARS, digest_chars: int = 16) -> None:
        """Initialize key generator.

        Args:
            max_body_chars: Body serialisation length before truncation
            digest_chars: Hex digest characters appended to truncated bodies
        """
        self._max_body_chars = max_body_chars
        self._digest_chars = digest_chars

    def generate(self, config: RequestConfig) -> RequestIdentity:
        """Generate the identity of a request.

        Args:
            config: Request configuration

        Returns:
            RequestIdentity instance
        """
        method = (config.method or "UNKNOWN").upper()
        uri = build_full_url(config.base_url, config.url) or "unknown_uri"
        params = self._serialize_params(config.params)
        body = self._serialize_body(config.data)

        return RequestIdentity(
            key=f"{method}::{uri}::{params}::{body}",
            method=method,
            uri=uri,
        )

    def _serialize_params(self, params: dict[str, Any] | None) -> str:
        if not params:
            return NO_PARAMS
        try:
            return json.dumps(params, sort_keys=True, ensure_ascii=True)
        except (TypeError, ValueError):
            return UNSERIALIZABLE

    def _serialize_body(self, data: Any) -> str:
        data = encode_body(data)
        if data is None or data == "" or data == b"":
            return NO_DATA

        if isinstance(data, str):
            text = data
        elif isinstance(data, (dict, list, tuple)):
            try:
                text = json.dumps(data, sort_keys=True, ensure_ascii=True)
            except (TypeError, ValueError):
                return UNSERIALIZABLE
        elif isinstance(data, (bytes, bytearray)):
            text = f"[BYTES:{self._hash_string(bytes(data))}]"
        else:
            return NON_PLAIN_DATA

        if len(text) > self._max_body_chars:
            digest = self._hash_string(text.encode())[: self._digest_chars]
            text = f"{text[: self._max_body_chars]}[TRUNCATED:{digest}]"
        return text

    def _hash_string(self, content: bytes) -> str:
        """Hash bytes using SHA-256."""
        return hashlib.sha256(content).hexdigest()


_default_generator = RequestKeyGenerator()


def request_identity(config: RequestConfig) -> RequestIdentity:
    """Identity of a request using the default generator."""
    return _default_generator.generate(config)
