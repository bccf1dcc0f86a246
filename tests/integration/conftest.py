"""
Integration test helper utilities.

Shared fixtures for integration tests.
"""

from __future__ import annotations

from typing import Any, Callable

import pytest

from robust_httpx import BackoffStrategy, ClientConfig, RetryConfig

BASE_URL = "https://api.example.com"


@pytest.fixture
def fast_retry() -> Callable[..., RetryConfig]:
    """Factory for retry configs with zero backoff so tests never sleep."""

    def factory(**overrides: Any) -> RetryConfig:
        settings: dict[str, Any] = {
            "max_retries": 3,
            "backoff_strategy": BackoffStrategy.CUSTOM,
            "custom_backoff": lambda retry_count, error: 0.0,
        }
        settings.update(overrides)
        return RetryConfig(**settings)

    return factory


@pytest.fixture
def client_config(fast_retry) -> Callable[..., ClientConfig]:
    """Factory for client configs against the mocked API with fast retries."""

    def factory(**overrides: Any) -> ClientConfig:
        settings: dict[str, Any] = {"base_url": BASE_URL, "retry": fast_retry()}
        settings.update(overrides)
        return ClientConfig(**settings)

    return factory
