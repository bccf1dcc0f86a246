"""
Structured logging for robust-httpx.

Provides context-aware logging with sensitive data masking, plus the
protocol any injected logger must satisfy.
"""

from __future__ import annotations

import json
import logging
import re
import sys
import time
from collections.abc import Mapping
from contextvars import ContextVar
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Protocol, runtime_checkable

# Context variable for request-scoped logging context
_log_context: ContextVar[dict[str, Any] | None] = ContextVar("log_context", default=None)

REDACTED = "***REDACTED***"


@runtime_checkable
class LoggerProtocol(Protocol):
    """Interface for pluggable loggers.

    Each method takes a message plus arbitrary positional and keyword
    arguments carrying structured detail.
    """

    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None: ...

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None: ...

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None: ...

    def error(self, msg: str, *args: Any, **kwargs: Any) -> None: ...


class LogLevel(str, Enum):
    """Log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"

    def to_logging_level(self) -> int:
        """Convert to standard logging level."""
        return getattr(logging, self.value)


@dataclass
class LogContext:
    """Request-scoped logging context.

    Attributes:
        request_key: Identity of the logical request
        method: HTTP method
        url: Target URL
        attempt: Retry attempt number (0 = first try)
        category: Request category, if one matched
        extra: Additional context fields
    """

    request_key: str | None = None
    method: str | None = None
    url: str | None = None
    attempt: int | None = None
    category: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result: dict[str, Any] = {}
        if self.request_key:
            result["request_key"] = self.request_key
        if self.method:
            result["method"] = self.method
        if self.url:
            result["url"] = self.url
        if self.attempt is not None:
            result["attempt"] = self.attempt
        if self.category:
            result["category"] = self.category
        result.update(self.extra)
        return result


def get_log_context() -> LogContext:
    """Get current logging context."""
    data = _log_context.get()
    if not data:
        return LogContext()
    known = {k: data[k] for k in ("request_key", "method", "url", "attempt", "category") if k in data}
    extra = {k: v for k, v in data.items() if k not in known}
    return LogContext(**known, extra=extra)


def set_log_context(context: LogContext) -> None:
    """Set logging context for current async context."""
    _log_context.set(context.to_dict())


def clear_log_context() -> None:
    """Clear logging context."""
    _log_context.set(None)


class SensitiveDataMasker:
    """Masks credentials in log messages and structured fields."""

    DEFAULT_PATTERNS: ClassVar[list[tuple[str, str]]] = [
        # Bearer / Basic tokens
        (r"(Bearer\s+)([^\s\"',}]+)", rf"\1{REDACTED}"),
        (r"(Basic\s+)([A-Za-z0-9+/=]+)", rf"\1{REDACTED}"),
        # Authorization headers rendered as text
        (r"(Authorization[\"']?\s*[:=]\s*[\"']?)([^\"',}\s]+)", rf"\1{REDACTED}"),
        # API keys
        (r"(api[_-]?key[\"']?\s*[:=]\s*[\"']?)([^\"'\s,}]+)", rf"\1{REDACTED}"),
        # Credentials embedded in URLs
        (r"(://[^:/\s]+:)([^@/\s]+)(@)", rf"\1{REDACTED}\3"),
    ]

    SENSITIVE_KEYS: ClassVar[tuple[str, ...]] = (
        "authorization",
        "token",
        "secret",
        "password",
        "api_key",
        "api-key",
        "apikey",
        "cookie",
    )

    def __init__(self, patterns: list[tuple[str, str]] | None = None) -> None:
        """Initialize masker with patterns.

        Args:
            patterns: List of (pattern, replacement) tuples
        """
        self._patterns = [
            (re.compile(p, re.IGNORECASE), r)
            for p, r in (patterns or self.DEFAULT_PATTERNS)
        ]

    def mask(self, text: str) -> str:
        """Mask sensitive data in text."""
        result = text
        for pattern, replacement in self._patterns:
            result = pattern.sub(replacement, result)
        return result

    def mask_value(self, value: Any) -> Any:
        """Mask a structured value recursively."""
        if isinstance(value, str):
            return self.mask(value)
        if isinstance(value, dict):
            return self.mask_dict(value)
        if isinstance(value, (list, tuple)):
            return [self.mask_value(v) for v in value]
        return value

    def mask_dict(self, data: dict[str, Any]) -> dict[str, Any]:
        """Mask sensitive data in dictionary.

        Values under keys that look like credentials are replaced wholesale.
        """
        result: dict[str, Any] = {}
        for key, value in data.items():
            key_lower = str(key).lower()
            if any(sensitive in key_lower for sensitive in self.SENSITIVE_KEYS):
                result[key] = REDACTED
            else:
                result[key] = self.mask_value(value)
        return result


class JsonFormatter(logging.Formatter):
    """JSON log formatter."""

    def __init__(
        self,
        masker: SensitiveDataMasker | None = None,
        include_timestamp: bool = True,
    ) -> None:
        super().__init__()
        self._masker = masker or SensitiveDataMasker()
        self._include_timestamp = include_timestamp

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data: dict[str, Any] = {
            "level": record.levelname,
            "logger": record.name,
            "message": self._masker.mask(record.getMessage()),
        }

        if self._include_timestamp:
            log_data["timestamp"] = time.strftime(
                "%Y-%m-%dT%H:%M:%S", time.gmtime(record.created)
            ) + f".{int(record.msecs):03d}Z"

        context = get_log_context()
        if context_dict := context.to_dict():
            log_data["context"] = context_dict

        if hasattr(record, "extra_fields"):
            log_data.update(self._masker.mask_dict(record.extra_fields))

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable text formatter."""

    def __init__(
        self,
        masker: SensitiveDataMasker | None = None,
        include_context: bool = True,
    ) -> None:
        super().__init__(
            fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        self._masker = masker or SensitiveDataMasker()
        self._include_context = include_context

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as text."""
        original_msg = record.msg
        record.msg = self._masker.mask(str(record.msg))
        result = super().format(record)
        record.msg = original_msg

        fields: dict[str, Any] = {}
        if self._include_context:
            fields.update(get_log_context().to_dict())
        if hasattr(record, "extra_fields"):
            fields.update(self._masker.mask_dict(record.extra_fields))
        if fields:
            rendered = " ".join(f"{k}={v}" for k, v in fields.items())
            result = f"{result} | {self._masker.mask(rendered)}"

        return result


class RobustLogger:
    """Logger for robust-httpx with structured logging support.

    Satisfies :class:`LoggerProtocol`. Wrap any stdlib logger with it to
    inject custom handlers into a client.

    Example:
        >>> logger = RobustLogger.get_logger("robust_httpx.client")
        >>> logger.info("Request", method="GET", url="https://example.com")
    """

    _loggers: ClassVar[dict[str, logging.Logger]] = {}
    _level: ClassVar[LogLevel] = LogLevel.INFO
    _handler: ClassVar[logging.Handler | None] = None

    @classmethod
    def configure(
        cls,
        level: LogLevel = LogLevel.INFO,
        format: str = "text",
        stream: Any = None,
        masker: SensitiveDataMasker | None = None,
    ) -> None:
        """Configure global logging settings.

        Args:
            level: Log level
            format: Output format ('json' or 'text')
            stream: Output stream (default: stderr)
            masker: Sensitive data masker
        """
        cls._level = level
        formatter: logging.Formatter = (
            JsonFormatter(masker=masker) if format == "json" else TextFormatter(masker=masker)
        )

        cls._handler = logging.StreamHandler(stream or sys.stderr)
        cls._handler.setFormatter(formatter)
        cls._handler.setLevel(level.to_logging_level())

        for logger in cls._loggers.values():
            logger.handlers.clear()
            logger.addHandler(cls._handler)
            logger.setLevel(level.to_logging_level())

    @classmethod
    def get_logger(cls, name: str) -> RobustLogger:
        """Get or create a logger.

        Loggers propagate to the root logger unless :meth:`configure`
        installed a dedicated handler.
        """
        if name not in cls._loggers:
            logger = logging.getLogger(name)
            if cls._handler:
                logger.handlers.clear()
                logger.addHandler(cls._handler)
                logger.setLevel(cls._level.to_logging_level())
                logger.propagate = False
            cls._loggers[name] = logger

        return cls(cls._loggers[name])

    def __init__(self, logger: logging.Logger) -> None:
        """Initialize with underlying logger."""
        self._logger = logger

    @property
    def name(self) -> str:
        """Name of the underlying logger."""
        return self._logger.name

    def _log(
        self,
        level: int,
        msg: str,
        args: tuple[Any, ...],
        exc_info: bool = False,
        **kwargs: Any,
    ) -> None:
        if not self._logger.isEnabledFor(level):
            return
        fields = dict(kwargs)
        if len(args) == 1 and isinstance(args[0], Mapping):
            fields = {**args[0], **fields}
        elif args:
            fields["args"] = list(args)
        extra = {"extra_fields": fields} if fields else {}
        self._logger.log(level, msg, exc_info=exc_info, extra=extra)

    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None:
        """Log debug message."""
        self._log(logging.DEBUG, msg, args, **kwargs)

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None:
        """Log info message."""
        self._log(logging.INFO, msg, args, **kwargs)

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None:
        """Log warning message."""
        self._log(logging.WARNING, msg, args, **kwargs)

    warn = warning

    def error(self, msg: str, *args: Any, exc_info: bool = False, **kwargs: Any) -> None:
        """Log error message."""
        self._log(logging.ERROR, msg, args, exc_info=exc_info, **kwargs)

    def exception(self, msg: str, *args: Any, **kwargs: Any) -> None:
        """Log exception with traceback."""
        self._log(logging.ERROR, msg, args, exc_info=True, **kwargs)


def get_logger(name: str) -> RobustLogger:
    """Get a logger instance."""
    return RobustLogger.get_logger(name)
