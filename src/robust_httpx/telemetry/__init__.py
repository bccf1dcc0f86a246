"""
Telemetry module for robust-httpx.

Provides structured logging with credential masking.
"""

from robust_httpx.telemetry.logger import (
    REDACTED,
    JsonFormatter,
    LogContext,
    LoggerProtocol,
    LogLevel,
    RobustLogger,
    SensitiveDataMasker,
    TextFormatter,
    clear_log_context,
    get_log_context,
    get_logger,
    set_log_context,
)

__all__ = [
    "REDACTED",
    "JsonFormatter",
    "LogContext",
    "LogLevel",
    "LoggerProtocol",
    "RobustLogger",
    "SensitiveDataMasker",
    "TextFormatter",
    "clear_log_context",
    "get_log_context",
    "get_logger",
    "set_log_context",
]
