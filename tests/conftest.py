"""Root pytest fixtures for robust-httpx tests."""

from __future__ import annotations

import logging

import pytest

from robust_httpx.telemetry.logger import LogLevel, RobustLogger, clear_log_context


class FakeClock:
    """Deterministic stand-in for the ``time`` module.

    Patched over a module's ``time`` attribute so monotonic and wall-clock
    reads only move when a test advances them.
    """

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def monotonic(self) -> float:
        return self.now

    def time(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_clock() -> FakeClock:
    """A controllable clock starting at t=1000s."""
    return FakeClock()


class RecordingLogger:
    """Logger satisfying LoggerProtocol that keeps every call."""

    def __init__(self) -> None:
        self.records: list[tuple[str, str, tuple, dict]] = []

    def _record(self, level: str, msg: str, args: tuple, kwargs: dict) -> None:
        self.records.append((level, msg, args, kwargs))

    def debug(self, msg: str, *args, **kwargs) -> None:
        self._record("debug", msg, args, kwargs)

    def info(self, msg: str, *args, **kwargs) -> None:
        self._record("info", msg, args, kwargs)

    def warning(self, msg: str, *args, **kwargs) -> None:
        self._record("warning", msg, args, kwargs)

    def error(self, msg: str, *args, **kwargs) -> None:
        self._record("error", msg, args, kwargs)

    def messages(self, level: str) -> list[str]:
        return [msg for lvl, msg, _, _ in self.records if lvl == level]

    def payloads(self, level: str, msg: str) -> list[dict]:
        return [
            args[0]
            for lvl, m, args, _ in self.records
            if lvl == level and m == msg and args and isinstance(args[0], dict)
        ]


@pytest.fixture
def recording_logger() -> RecordingLogger:
    """Logger capturing client log calls."""
    return RecordingLogger()


@pytest.fixture(autouse=True)
def _reset_logging_config():
    """Keep RobustLogger.configure() and the log context from leaking between tests."""
    yield
    clear_log_context()
    for logger in RobustLogger._loggers.values():
        logger.handlers.clear()
        logger.setLevel(logging.NOTSET)
        logger.propagate = True
    RobustLogger._handler = None
    RobustLogger._level = LogLevel.INFO
