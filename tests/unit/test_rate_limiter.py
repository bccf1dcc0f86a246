"""Tests for the token bucket rate limiter."""

import pytest

from robust_httpx.resilience import rate_limiter as rate_limiter_module
from robust_httpx.resilience import RateLimitConfig, TokenBucketRateLimiter


@pytest.fixture
def clock(fake_clock, monkeypatch):
    monkeypatch.setattr(rate_limiter_module, "time", fake_clock)
    return fake_clock


class TestRateLimitConfig:
    """Tests for RateLimitConfig."""

    def test_rate(self) -> None:
        """Test refill rate derivation."""
        config = RateLimitConfig(max_requests=10, window_seconds=2.0)
        assert config.rate == 5.0

    @pytest.mark.parametrize(
        ("max_requests", "window_seconds"),
        [(0, 1.0), (-1, 1.0), (5, 0.0), (5, -2.0)],
    )
    def test_invalid_values(self, max_requests: int, window_seconds: float) -> None:
        """Test that non-positive values are rejected."""
        with pytest.raises(ValueError):
            RateLimitConfig(max_requests=max_requests, window_seconds=window_seconds)

    def test_from_env(self, monkeypatch) -> None:
        """Test creating config from environment."""
        monkeypatch.setenv("ROBUST_HTTPX_RATE_LIMIT_MAX", "20")
        monkeypatch.setenv("ROBUST_HTTPX_RATE_LIMIT_WINDOW_SECS", "2.5")
        config = RateLimitConfig.from_env()
        assert config is not None
        assert config.max_requests == 20
        assert config.window_seconds == 2.5

    def test_from_env_unset(self, monkeypatch) -> None:
        """Test that rate limiting stays off without configuration."""
        monkeypatch.delenv("ROBUST_HTTPX_RATE_LIMIT_MAX", raising=False)
        assert RateLimitConfig.from_env() is None


class TestTokenBucketRateLimiter:
    """Tests for TokenBucketRateLimiter."""

    def test_starts_full(self, clock) -> None:
        """Test that the bucket starts with max_requests tokens."""
        limiter = TokenBucketRateLimiter(max_requests=5, window_seconds=1.0)
        assert limiter.available_tokens == 5.0

    def test_two_of_five_admitted(self, clock) -> None:
        """Test burst admission up to capacity, then rejection."""
        limiter = TokenBucketRateLimiter(max_requests=2, window_seconds=1.0)
        results = [limiter.try_acquire() for _ in range(5)]
        assert results == [True, True, False, False, False]

    def test_refill_after_window(self, clock) -> None:
        """Test that a full window restores the bucket."""
        limiter = TokenBucketRateLimiter(max_requests=2, window_seconds=1.0)
        assert limiter.try_acquire()
        assert limiter.try_acquire()
        assert not limiter.try_acquire()

        clock.advance(1.0)
        assert limiter.try_acquire()
        assert limiter.try_acquire()
        assert not limiter.try_acquire()

    def test_continuous_refill(self, clock) -> None:
        """Test that tokens refill proportionally to elapsed time."""
        limiter = TokenBucketRateLimiter(max_requests=2, window_seconds=1.0)
        limiter.try_acquire()
        limiter.try_acquire()

        clock.advance(0.25)
        assert not limiter.try_acquire()
        clock.advance(0.25)
        assert limiter.try_acquire()

    def test_refill_capped_at_capacity(self, clock) -> None:
        """Test that idle time never overfills the bucket."""
        limiter = TokenBucketRateLimiter(max_requests=3, window_seconds=1.0)
        limiter.try_acquire()
        clock.advance(60.0)
        assert limiter.available_tokens == 3.0

    def test_wait_time(self, clock) -> None:
        """Test wait time estimate."""
        limiter = TokenBucketRateLimiter(max_requests=2, window_seconds=1.0)
        assert limiter.get_wait_time() == 0.0
        limiter.try_acquire()
        limiter.try_acquire()
        assert limiter.get_wait_time() == pytest.approx(0.5)

    def test_from_config(self, clock) -> None:
        """Test creating a limiter from config."""
        limiter = TokenBucketRateLimiter.from_config(
            RateLimitConfig(max_requests=4, window_seconds=2.0)
        )
        assert limiter.config.max_requests == 4
        assert limiter.available_tokens == 4.0
