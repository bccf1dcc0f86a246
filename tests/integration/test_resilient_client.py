"""
Integration tests for the resilient client.

Runs full request pipelines against mocked httpx transports: retries,
rate limiting, circuit breaking, cancellation and error classification.
"""

import asyncio
import io
import json
import time

import httpx
import pytest

from robust_httpx import (
    CancellationError,
    CategorySettings,
    CircuitBreakerConfig,
    CircuitBreakerState,
    CircuitOpenError,
    ClientError,
    NetworkError,
    RateLimitConfig,
    RateLimitError,
    RequestCategory,
    RequestConfig,
    ResilientClient,
    ServerError,
    TimeoutError,
    ValidationError,
)
from robust_httpx.client import CancelToken
from robust_httpx.telemetry import REDACTED, LogLevel, RobustLogger, get_log_context
from robust_httpx.transport import HttpRequestError

BASE_URL = "https://api.example.com"


class TestRetries:
    """Tests for retry behaviour."""

    @pytest.mark.asyncio
    async def test_recovers_after_server_errors(self, httpx_mock, client_config, fast_retry) -> None:
        """Test 500, 500, 200 resolves with the final response."""
        httpx_mock.add_response(url=f"{BASE_URL}/flaky", status_code=500)
        httpx_mock.add_response(url=f"{BASE_URL}/flaky", status_code=500)
        httpx_mock.add_response(url=f"{BASE_URL}/flaky", json={"ok": True})

        retries: list[int] = []
        successes: list[int] = []
        config = client_config(
            retry=fast_retry(
                on_retry=lambda context: retries.append(context.retry_count),
                on_success=lambda response, context: successes.append(context.retry_count),
            )
        )

        async with ResilientClient(config) as client:
            response = await client.get("/flaky")

            assert response.status == 200
            assert response.data == {"ok": True}
            assert len(client.retry_contexts) == 0

        assert retries == [1, 2]
        assert successes == [2]
        assert len(httpx_mock.get_requests()) == 3

    @pytest.mark.asyncio
    async def test_exhausted_retries(self, httpx_mock, client_config, fast_retry) -> None:
        """Test the terminal error after max_retries + 1 attempts."""
        httpx_mock.add_response(url=f"{BASE_URL}/down", status_code=500, is_reusable=True)

        failures: list = []

        async def on_failed(error, context) -> None:
            failures.append((error, context))

        config = client_config(retry=fast_retry(max_retries=2, on_failed=on_failed))

        async with ResilientClient(config) as client:
            with pytest.raises(ServerError) as exc_info:
                await client.get("/down")
            assert len(client.retry_contexts) == 0

        error = exc_info.value
        assert error.status_code == 500
        assert error.message == "Request failed with status code 500"
        assert isinstance(error.__cause__, HttpRequestError)
        assert len(httpx_mock.get_requests()) == 3

        assert len(failures) == 1
        raw, context = failures[0]
        assert raw.status == 500
        assert context.retry_count == 2
        assert len(context.attempts) == 3

    @pytest.mark.asyncio
    async def test_client_errors_not_retried(self, httpx_mock, client_config) -> None:
        """Test 4xx responses fail immediately."""
        httpx_mock.add_response(url=f"{BASE_URL}/missing", status_code=404)

        async with ResilientClient(client_config()) as client:
            with pytest.raises(ClientError, match="Resource not found: /missing"):
                await client.get("/missing")

        assert len(httpx_mock.get_requests()) == 1

    @pytest.mark.asyncio
    async def test_validation_error(self, httpx_mock, client_config) -> None:
        """Test 422 bodies surface their validation details."""
        httpx_mock.add_response(
            method="POST",
            url=f"{BASE_URL}/users",
            status_code=422,
            json={"errors": {"email": "invalid"}},
        )

        async with ResilientClient(client_config()) as client:
            with pytest.raises(ValidationError) as exc_info:
                await client.post("/users", {"email": "nope"})

        assert exc_info.value.details == {"email": "invalid"}

    @pytest.mark.asyncio
    async def test_retry_after_zero(self, httpx_mock, client_config, fast_retry) -> None:
        """Test a 429 is retried after the server-provided delay."""
        httpx_mock.add_response(
            url=f"{BASE_URL}/limited", status_code=429, headers={"Retry-After": "0"}
        )
        httpx_mock.add_response(url=f"{BASE_URL}/limited", json={"ok": True})

        # An exponential strategy would wait 2s without the header
        config = client_config(retry=fast_retry(backoff_strategy="exponential"))

        async with ResilientClient(config) as client:
            start = time.monotonic()
            response = await client.get("/limited")

        assert response.status == 200
        assert time.monotonic() - start < 1.0

    @pytest.mark.asyncio
    @pytest.mark.slow
    async def test_retry_after_is_honoured(self, httpx_mock, client_config) -> None:
        """Test a 429 with Retry-After: 2 waits at least two seconds."""
        httpx_mock.add_response(
            url=f"{BASE_URL}/limited", status_code=429, headers={"Retry-After": "2"}
        )
        httpx_mock.add_response(url=f"{BASE_URL}/limited", json={"ok": True})

        async with ResilientClient(client_config()) as client:
            start = time.monotonic()
            response = await client.get("/limited")

        assert response.status == 200
        assert time.monotonic() - start >= 1.9

    @pytest.mark.asyncio
    async def test_rate_limited_remote_exhausted(self, httpx_mock, client_config, fast_retry) -> None:
        """Test a 429 that outlives the budget becomes a RateLimitError."""
        httpx_mock.add_response(
            url=f"{BASE_URL}/limited",
            status_code=429,
            headers={"Retry-After": "0"},
            is_reusable=True,
        )

        async with ResilientClient(client_config(retry=fast_retry(max_retries=1))) as client:
            with pytest.raises(RateLimitError) as exc_info:
                await client.get("/limited")

        assert exc_info.value.retry_after == 0.0
        assert len(httpx_mock.get_requests()) == 2

    @pytest.mark.asyncio
    async def test_timeout_decays(self, httpx_mock, client_config, fast_retry) -> None:
        """Test each retry gets a longer timeout."""
        httpx_mock.add_exception(httpx.ReadTimeout("read timed out"))
        httpx_mock.add_exception(httpx.ReadTimeout("read timed out"))
        httpx_mock.add_response(url=f"{BASE_URL}/slow", json={"ok": True})

        config = client_config(timeout=2.0, retry=fast_retry(timeout_multiplier=1.5))

        async with ResilientClient(config) as client:
            response = await client.get("/slow")

        assert response.status == 200
        timeouts = [r.extensions["timeout"]["read"] for r in httpx_mock.get_requests()]
        assert timeouts == [2.0, 3.0, 4.5]

    @pytest.mark.asyncio
    async def test_timeout_terminal(self, httpx_mock, client_config, fast_retry) -> None:
        """Test a client-side timeout without retries."""
        httpx_mock.add_exception(httpx.ReadTimeout("read timed out"))

        config = client_config(timeout=2.0, retry=fast_retry(max_retries=0))

        async with ResilientClient(config) as client:
            with pytest.raises(TimeoutError, match="Request timed out after 2.0s"):
                await client.get("/slow")

    @pytest.mark.asyncio
    async def test_network_error(self, httpx_mock, client_config, fast_retry) -> None:
        """Test connection failures are classified as NetworkError."""
        httpx_mock.add_exception(httpx.ConnectError("[Errno 111] Connection refused"))

        async with ResilientClient(client_config(retry=fast_retry(max_retries=0))) as client:
            with pytest.raises(NetworkError) as exc_info:
                await client.get("/x")

        assert exc_info.value.message == f"Connection refused to {BASE_URL}/x"

    @pytest.mark.asyncio
    async def test_async_retry_condition(self, httpx_mock, client_config, fast_retry) -> None:
        """Test async predicates decide retry eligibility."""
        httpx_mock.add_response(url=f"{BASE_URL}/x", status_code=409)
        httpx_mock.add_response(url=f"{BASE_URL}/x", json={"ok": True})

        async def retry_conflicts(error) -> bool:
            return error.status == 409

        config = client_config(retry=fast_retry(retry_condition=retry_conflicts))

        async with ResilientClient(config) as client:
            response = await client.get("/x")

        assert response.status == 200

    @pytest.mark.asyncio
    async def test_category_overrides(self, httpx_mock, client_config, fast_retry) -> None:
        """Test that a matching category applies its own retry budget."""
        httpx_mock.add_response(url=f"{BASE_URL}/payments/1", status_code=500)
        httpx_mock.add_response(url=f"{BASE_URL}/users/1", status_code=500)
        httpx_mock.add_response(url=f"{BASE_URL}/users/1", json={"id": 1})

        failed_categories: list = []
        config = client_config(
            retry=fast_retry(
                request_categories=[
                    RequestCategory(
                        "payments",
                        lambda c: c.url.startswith("/payments"),
                        CategorySettings(max_retries=0),
                    )
                ],
                on_failed=lambda error, context: failed_categories.append(context.category),
            )
        )

        async with ResilientClient(config) as client:
            with pytest.raises(ServerError):
                await client.get("/payments/1")
            response = await client.get("/users/1")

        assert response.data == {"id": 1}
        assert failed_categories == ["payments"]

    @pytest.mark.asyncio
    async def test_evicted_context_restarts_budget(self, httpx_mock, client_config, fast_retry) -> None:
        """Test a retry whose context vanished starts over at retry_count 0."""
        httpx_mock.add_response(url=f"{BASE_URL}/x", status_code=500)
        httpx_mock.add_response(url=f"{BASE_URL}/x", status_code=500)
        httpx_mock.add_response(url=f"{BASE_URL}/x", json={"ok": True})

        client: ResilientClient
        cleared: list[bool] = []

        def evict_once(context) -> None:
            if not cleared:
                client.retry_contexts.clear()
                cleared.append(True)

        config = client_config(retry=fast_retry(max_retries=1, on_retry=evict_once))

        async with ResilientClient(config) as client:
            response = await client.get("/x")

        assert response.status == 200
        assert len(httpx_mock.get_requests()) == 3

    @pytest.mark.asyncio
    async def test_context_visible_during_retry(self, httpx_mock, client_config, fast_retry) -> None:
        """Test the live context can be looked up while a retry is pending."""
        httpx_mock.add_response(url=f"{BASE_URL}/x", status_code=503)
        httpx_mock.add_response(url=f"{BASE_URL}/x", json={"ok": True})

        client: ResilientClient
        seen: list = []

        def on_retry(context) -> None:
            seen.append(client.get_retry_context(RequestConfig(url="/x")) is context)

        async with ResilientClient(client_config(retry=fast_retry(on_retry=on_retry))) as client:
            await client.get("/x")
            assert client.get_retry_context(RequestConfig(url="/x")) is None

        assert seen == [True]

    @pytest.mark.asyncio
    async def test_failing_success_hook_drops_context(self, httpx_mock, client_config, fast_retry) -> None:
        """Test the context is removed even when on_success raises."""
        httpx_mock.add_response(url=f"{BASE_URL}/x")

        def on_success(response, context) -> None:
            raise RuntimeError("hook failed")

        async with ResilientClient(client_config(retry=fast_retry(on_success=on_success))) as client:
            with pytest.raises(RuntimeError, match="hook failed"):
                await client.get("/x")
            assert len(client.retry_contexts) == 0

    @pytest.mark.asyncio
    async def test_failing_failed_hook_drops_context(self, httpx_mock, client_config, fast_retry) -> None:
        """Test the context is removed even when on_failed raises."""
        httpx_mock.add_response(url=f"{BASE_URL}/x", status_code=500)

        async def on_failed(error, context) -> None:
            raise RuntimeError("hook failed")

        config = client_config(retry=fast_retry(max_retries=0, on_failed=on_failed))

        async with ResilientClient(config) as client:
            with pytest.raises(RuntimeError, match="hook failed"):
                await client.get("/x")
            assert len(client.retry_contexts) == 0

    @pytest.mark.asyncio
    async def test_failing_retry_hook_drops_context(self, httpx_mock, client_config, fast_retry) -> None:
        """Test the context is removed even when on_retry raises."""
        httpx_mock.add_response(url=f"{BASE_URL}/x", status_code=500)

        def on_retry(context) -> None:
            raise RuntimeError("hook failed")

        async with ResilientClient(client_config(retry=fast_retry(on_retry=on_retry))) as client:
            with pytest.raises(RuntimeError, match="hook failed"):
                await client.get("/x")
            assert len(client.retry_contexts) == 0


class TestRateLimiting:
    """Tests for local rate limiting."""

    @pytest.mark.asyncio
    async def test_burst_is_limited(self, httpx_mock, client_config, recording_logger) -> None:
        """Test only max_requests of a concurrent burst reach the transport."""
        httpx_mock.add_response(url=f"{BASE_URL}/x", json={"ok": True}, is_reusable=True)

        config = client_config(
            rate_limit=RateLimitConfig(max_requests=2, window_seconds=1.0),
            logger=recording_logger,
        )

        async with ResilientClient(config) as client:
            results = await asyncio.gather(
                *(client.get("/x") for _ in range(5)), return_exceptions=True
            )

        succeeded = [r for r in results if not isinstance(r, BaseException)]
        limited = [r for r in results if isinstance(r, RateLimitError)]
        assert len(succeeded) == 2
        assert len(limited) == 3
        assert all(r.retry_after > 0 for r in limited)
        assert len(httpx_mock.get_requests()) == 2
        assert recording_logger.messages("warning").count(
            "Rate limit exceeded, request rejected"
        ) == 3


class TestCircuitBreaking:
    """Tests for the circuit breaker in the pipeline."""

    @pytest.mark.asyncio
    async def test_opens_after_terminal_failures(self, httpx_mock, client_config, fast_retry) -> None:
        """Test that the breaker rejects requests once opened."""
        httpx_mock.add_response(url=f"{BASE_URL}/x", status_code=500, is_reusable=True)

        transitions: list[CircuitBreakerState] = []
        config = client_config(
            retry=fast_retry(
                max_retries=0,
                circuit_breaker=CircuitBreakerConfig(failure_threshold=2, reset_timeout=60.0),
                on_circuit_breaker_state_change=transitions.append,
            )
        )

        async with ResilientClient(config) as client:
            for _ in range(2):
                with pytest.raises(ServerError):
                    await client.get("/x")

            assert client.circuit_state == CircuitBreakerState.OPEN

            with pytest.raises(CircuitOpenError) as exc_info:
                await client.get("/x")

        assert exc_info.value.time_until_retry > 0
        assert transitions == [CircuitBreakerState.OPEN]
        assert len(httpx_mock.get_requests()) == 2

    @pytest.mark.asyncio
    async def test_retries_count_once(self, httpx_mock, client_config, fast_retry) -> None:
        """Test that a retried request records a single failure."""
        httpx_mock.add_response(url=f"{BASE_URL}/x", status_code=500, is_reusable=True)

        config = client_config(
            retry=fast_retry(
                max_retries=3,
                circuit_breaker=CircuitBreakerConfig(failure_threshold=2),
            )
        )

        async with ResilientClient(config) as client:
            with pytest.raises(ServerError):
                await client.get("/x")

            assert client.circuit_state == CircuitBreakerState.CLOSED
            assert client.circuit_breaker.failure_count == 1

    @pytest.mark.asyncio
    async def test_disabled_breaker(self, httpx_mock, client_config, fast_retry) -> None:
        """Test that without a breaker failures never short-circuit."""
        httpx_mock.add_response(url=f"{BASE_URL}/x", status_code=500, is_reusable=True)

        config = client_config(retry=fast_retry(max_retries=0, circuit_breaker=None))

        async with ResilientClient(config) as client:
            for _ in range(6):
                with pytest.raises(ServerError):
                    await client.get("/x")
            assert client.circuit_state is None

        assert len(httpx_mock.get_requests()) == 6

    @pytest.mark.asyncio
    async def test_half_open_recovery(self, httpx_mock, client_config, fast_retry) -> None:
        """Test successful trials after the reset timeout close the circuit."""
        httpx_mock.add_response(url=f"{BASE_URL}/x", status_code=500)
        httpx_mock.add_response(url=f"{BASE_URL}/x", json={"ok": True}, is_reusable=True)

        transitions: list[CircuitBreakerState] = []
        config = client_config(
            retry=fast_retry(
                max_retries=0,
                circuit_breaker=CircuitBreakerConfig(
                    failure_threshold=1, reset_timeout=0.05, half_open_max_requests=2
                ),
                on_circuit_breaker_state_change=transitions.append,
            )
        )

        async with ResilientClient(config) as client:
            with pytest.raises(ServerError):
                await client.get("/x")
            with pytest.raises(CircuitOpenError):
                await client.get("/x")

            await asyncio.sleep(0.1)
            await client.get("/x")
            assert client.circuit_state == CircuitBreakerState.HALF_OPEN
            await client.get("/x")
            assert client.circuit_state == CircuitBreakerState.CLOSED

        assert transitions == [
            CircuitBreakerState.OPEN,
            CircuitBreakerState.HALF_OPEN,
            CircuitBreakerState.CLOSED,
        ]
        assert len(httpx_mock.get_requests()) == 3

    @pytest.mark.asyncio
    async def test_half_open_trial_failure_reopens(self, httpx_mock, client_config, fast_retry) -> None:
        """Test a failed trial sends the circuit back to open."""
        httpx_mock.add_response(url=f"{BASE_URL}/x", status_code=500, is_reusable=True)

        transitions: list[CircuitBreakerState] = []
        config = client_config(
            retry=fast_retry(
                max_retries=0,
                circuit_breaker=CircuitBreakerConfig(failure_threshold=1, reset_timeout=0.05),
                on_circuit_breaker_state_change=transitions.append,
            )
        )

        async with ResilientClient(config) as client:
            with pytest.raises(ServerError):
                await client.get("/x")
            await asyncio.sleep(0.1)
            with pytest.raises(ServerError):
                await client.get("/x")

            assert client.circuit_state == CircuitBreakerState.OPEN
            with pytest.raises(CircuitOpenError):
                await client.get("/x")

        assert transitions == [
            CircuitBreakerState.OPEN,
            CircuitBreakerState.HALF_OPEN,
            CircuitBreakerState.OPEN,
        ]

    @pytest.mark.asyncio
    async def test_cancelled_trial_frees_slot(self, httpx_mock, client_config, fast_retry) -> None:
        """Test a cancelled half-open trial does not block later trials."""
        httpx_mock.add_response(url=f"{BASE_URL}/x", status_code=500)
        httpx_mock.add_response(url=f"{BASE_URL}/x", json={"ok": True})

        config = client_config(
            retry=fast_retry(
                max_retries=0,
                circuit_breaker=CircuitBreakerConfig(
                    failure_threshold=1, reset_timeout=0.05, half_open_max_requests=1
                ),
            )
        )
        token = CancelToken()
        token.cancel()

        async with ResilientClient(config) as client:
            with pytest.raises(ServerError):
                await client.get("/x")
            await asyncio.sleep(0.1)

            with pytest.raises(CancellationError):
                await client.get("/x", RequestConfig(cancel_token=token))
            assert client.circuit_state == CircuitBreakerState.HALF_OPEN

            response = await client.get("/x")
            assert response.status == 200
            assert client.circuit_state == CircuitBreakerState.CLOSED

    @pytest.mark.asyncio
    async def test_rate_limited_trial_frees_slot(self, httpx_mock, client_config, fast_retry) -> None:
        """Test a half-open trial rejected by the rate limiter does not block later trials."""
        httpx_mock.add_response(url=f"{BASE_URL}/x", status_code=500)
        httpx_mock.add_response(url=f"{BASE_URL}/x", json={"ok": True})

        config = client_config(
            retry=fast_retry(
                max_retries=0,
                circuit_breaker=CircuitBreakerConfig(
                    failure_threshold=1, reset_timeout=0.05, half_open_max_requests=1
                ),
            ),
            rate_limit=RateLimitConfig(max_requests=1, window_seconds=0.5),
        )

        async with ResilientClient(config) as client:
            with pytest.raises(ServerError):
                await client.get("/x")
            await asyncio.sleep(0.1)

            with pytest.raises(RateLimitError):
                await client.get("/x")
            assert client.circuit_state == CircuitBreakerState.HALF_OPEN

            await asyncio.sleep(0.6)
            response = await client.get("/x")
            assert response.status == 200
            assert client.circuit_state == CircuitBreakerState.CLOSED

    @pytest.mark.asyncio
    async def test_timed_out_trial_reopens(self, httpx_mock, client_config, fast_retry) -> None:
        """Test a half-open trial that times out counts as a failure."""
        httpx_mock.add_response(url=f"{BASE_URL}/x", status_code=500)
        httpx_mock.add_exception(httpx.ReadTimeout("read timed out"), url=f"{BASE_URL}/x")

        config = client_config(
            timeout=1.0,
            retry=fast_retry(
                max_retries=0,
                circuit_breaker=CircuitBreakerConfig(
                    failure_threshold=1, reset_timeout=0.05, half_open_max_requests=1
                ),
            ),
        )

        async with ResilientClient(config) as client:
            with pytest.raises(ServerError):
                await client.get("/x")
            await asyncio.sleep(0.1)

            with pytest.raises(TimeoutError):
                await client.get("/x")
            assert client.circuit_state == CircuitBreakerState.OPEN
            assert client.circuit_breaker.get_time_until_retry() is not None

    @pytest.mark.asyncio
    async def test_retried_trial_keeps_its_slot(self, httpx_mock, client_config, fast_retry) -> None:
        """Test a half-open trial can be retried without a second slot."""
        httpx_mock.add_response(url=f"{BASE_URL}/x", status_code=500)
        httpx_mock.add_response(url=f"{BASE_URL}/x", status_code=500)
        httpx_mock.add_response(url=f"{BASE_URL}/x", status_code=500)
        httpx_mock.add_response(url=f"{BASE_URL}/x", json={"ok": True})

        config = client_config(
            retry=fast_retry(
                max_retries=1,
                circuit_breaker=CircuitBreakerConfig(
                    failure_threshold=1, reset_timeout=0.05, half_open_max_requests=1
                ),
            )
        )

        async with ResilientClient(config) as client:
            with pytest.raises(ServerError):
                await client.get("/x")
            assert client.circuit_state == CircuitBreakerState.OPEN
            await asyncio.sleep(0.1)

            response = await client.get("/x")

            assert response.status == 200
            assert client.circuit_state == CircuitBreakerState.CLOSED

        assert len(httpx_mock.get_requests()) == 4


class TestCancellation:
    """Tests for cancellation through the client."""

    @pytest.mark.asyncio
    async def test_cancelled_before_sending(self, httpx_mock, client_config) -> None:
        """Test a cancelled token fails fast without traffic."""
        token = CancelToken()
        token.cancel()

        async with ResilientClient(client_config()) as client:
            with pytest.raises(CancellationError) as exc_info:
                await client.get("/x", RequestConfig(cancel_token=token))
            assert len(client.retry_contexts) == 0

        assert exc_info.value.reason == "user_request"
        assert httpx_mock.get_requests() == []

    @pytest.mark.asyncio
    async def test_cancelled_during_retry_delay(self, httpx_mock, client_config, fast_retry) -> None:
        """Test cancelling while waiting out the backoff."""
        httpx_mock.add_response(url=f"{BASE_URL}/x", status_code=500)

        token = CancelToken()
        config = client_config(retry=fast_retry(custom_backoff=lambda n, e: 5.0))

        async with ResilientClient(config) as client:
            asyncio.get_running_loop().call_later(0.05, token.cancel)
            start = time.monotonic()
            with pytest.raises(CancellationError, match="during retry delay"):
                await client.get("/x", RequestConfig(cancel_token=token))
            assert len(client.retry_contexts) == 0

        assert time.monotonic() - start < 2.0
        assert len(httpx_mock.get_requests()) == 1

    @pytest.mark.asyncio
    @pytest.mark.httpx_mock(assert_all_responses_were_requested=False)
    async def test_cancelled_in_flight(self, httpx_mock, client_config) -> None:
        """Test cancelling a request that is waiting on the remote."""

        async def slow(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(5)
            return httpx.Response(200)

        httpx_mock.add_callback(slow)
        token = CancelToken()

        async with ResilientClient(client_config()) as client:
            asyncio.get_running_loop().call_later(0.05, token.cancel)
            with pytest.raises(CancellationError):
                await client.get("/slow", RequestConfig(cancel_token=token))


class TestClientFeatures:
    """Tests for client-level features."""

    @pytest.mark.asyncio
    async def test_dry_run(self, httpx_mock, client_config) -> None:
        """Test dry run returns a canned response without traffic."""
        async with ResilientClient(client_config(dry_run=True)) as client:
            response = await client.post("/users", {"name": "a"})

        assert response.status == 200
        assert response.data == {}
        assert response.headers["content-type"] == "application/json"
        assert response.config.full_url == f"{BASE_URL}/users"
        assert httpx_mock.get_requests() == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("method", ["get", "delete", "head", "options"])
    async def test_methods_without_body(self, httpx_mock, client_config, method: str) -> None:
        """Test helpers for body-less methods."""
        httpx_mock.add_response(method=method.upper(), url=f"{BASE_URL}/items/1")

        async with ResilientClient(client_config()) as client:
            response = await getattr(client, method)("/items/1")

        assert response.status == 200

    @pytest.mark.asyncio
    @pytest.mark.parametrize("method", ["post", "put", "patch"])
    async def test_methods_with_body(self, httpx_mock, client_config, method: str) -> None:
        """Test helpers for methods carrying a body."""
        httpx_mock.add_response(method=method.upper(), url=f"{BASE_URL}/items")

        async with ResilientClient(client_config()) as client:
            await getattr(client, method)("/items", {"name": "a"})

        assert json.loads(httpx_mock.get_request().content) == {"name": "a"}

    @pytest.mark.asyncio
    async def test_default_headers_and_config_updates(self, httpx_mock, client_config) -> None:
        """Test default headers and runtime config changes."""
        httpx_mock.add_response(url="https://staging.example.com/x")

        async with ResilientClient(client_config(headers={"Accept": "application/json"})) as client:
            client.set_default_header("X-Api-Version", "2")
            client.update_config(base_url="https://staging.example.com")
            await client.get("/x")

        request = httpx_mock.get_request()
        assert request.headers["Accept"] == "application/json"
        assert request.headers["X-Api-Version"] == "2"

    @pytest.mark.asyncio
    async def test_external_http_client_left_open(self, httpx_mock, client_config) -> None:
        """Test a caller-supplied httpx client is used but not closed."""
        httpx_mock.add_response(url=f"{BASE_URL}/x")

        async with httpx.AsyncClient() as http:
            async with ResilientClient(client_config(), http_client=http) as client:
                await client.get("/x")
            assert not http.is_closed

    @pytest.mark.asyncio
    async def test_custom_error_handler(self, httpx_mock, client_config) -> None:
        """Test a handler-supplied error is raised instead of the taxonomy."""
        httpx_mock.add_response(url=f"{BASE_URL}/x", status_code=403)

        class Forbidden(Exception):
            pass

        config = client_config(custom_error_handler=lambda error: Forbidden("no access"))

        async with ResilientClient(config) as client:
            with pytest.raises(Forbidden) as exc_info:
                await client.get("/x")

        assert isinstance(exc_info.value.__cause__, HttpRequestError)

    @pytest.mark.asyncio
    async def test_debug_logging_redacts_authorization(
        self, httpx_mock, client_config, recording_logger
    ) -> None:
        """Test request and response logs, with credentials hidden."""
        httpx_mock.add_response(url=f"{BASE_URL}/me", json={"id": 7})

        config = client_config(
            headers={"Authorization": "Bearer secret-token"},
            logger=recording_logger,
            debug=True,
        )

        async with ResilientClient(config) as client:
            await client.get("/me")

        (info,) = recording_logger.payloads("info", "Request")
        assert info == {"base_url": BASE_URL, "method": "GET", "url": "/me"}

        (debug,) = recording_logger.payloads("debug", "Request")
        assert debug["headers"]["Authorization"] == REDACTED

        (response,) = recording_logger.payloads("info", "Response")
        assert response["status"] == 200
        (response_debug,) = recording_logger.payloads("debug", "Response")
        assert response_debug["data"] == {"id": 7}

    @pytest.mark.asyncio
    async def test_no_debug_logs_by_default(self, httpx_mock, client_config, recording_logger) -> None:
        """Test headers and bodies stay out of logs unless debug is on."""
        httpx_mock.add_response(url=f"{BASE_URL}/me")

        async with ResilientClient(client_config(logger=recording_logger)) as client:
            await client.get("/me")

        assert recording_logger.messages("debug") == []

    @pytest.mark.asyncio
    async def test_log_lines_carry_request_context(self, httpx_mock, client_config) -> None:
        """Test formatted client logs include the request key and attempt."""
        httpx_mock.add_response(url=f"{BASE_URL}/x", status_code=500)
        httpx_mock.add_response(url=f"{BASE_URL}/x", json={"ok": True})

        stream = io.StringIO()
        RobustLogger.configure(level=LogLevel.INFO, format="json", stream=stream)

        async with ResilientClient(client_config()) as client:
            await client.get("/x")

        lines = [json.loads(line) for line in stream.getvalue().splitlines()]
        requests = [line for line in lines if line["message"] == "Request"]
        assert [line["context"]["attempt"] for line in requests] == [0, 1]
        for line in requests:
            assert line["context"]["method"] == "GET"
            assert line["context"]["url"] == f"{BASE_URL}/x"
            assert line["context"]["request_key"].startswith(f"GET::{BASE_URL}/x::")

        (retrying,) = [line for line in lines if line["message"] == "Retrying request"]
        assert retrying["context"]["attempt"] == 1
        assert get_log_context().to_dict() == {}


class TestUserInterceptors:
    """Tests for user interceptors around the resilience layer."""

    @pytest.mark.asyncio
    async def test_observe_every_attempt(self, httpx_mock, client_config) -> None:
        """Test user interceptors observe every attempt."""
        httpx_mock.add_response(url=f"{BASE_URL}/x", status_code=500)
        httpx_mock.add_response(url=f"{BASE_URL}/x", json={"ok": True})

        retried_flags: list[bool] = []
        statuses: list[int] = []

        def track_request(config: RequestConfig) -> RequestConfig:
            retried_flags.append(config.is_retry)
            return config

        def track_response(response):
            statuses.append(response.status)
            return response

        async with ResilientClient(client_config()) as client:
            client.add_request_interceptor(track_request)
            client.add_response_interceptor(track_response)
            await client.get("/x")

        assert retried_flags == [False, True]
        # Once inside the re-issued pipeline, once in the original one
        assert statuses == [200, 200]

    @pytest.mark.asyncio
    async def test_config_changes_keep_retries(self, httpx_mock, client_config) -> None:
        """Test a request interceptor that adds a query parameter is still retried."""
        httpx_mock.add_response(url=f"{BASE_URL}/x?api_key=k", status_code=500)
        httpx_mock.add_response(url=f"{BASE_URL}/x?api_key=k", json={"ok": True})

        def add_api_key(config: RequestConfig) -> RequestConfig:
            return config.merge(params={**(config.params or {}), "api_key": "k"})

        async with ResilientClient(client_config()) as client:
            client.add_request_interceptor(add_api_key)
            response = await client.get("/x")
            assert len(client.retry_contexts) == 0

        assert response.data == {"ok": True}
        requests = httpx_mock.get_requests()
        assert len(requests) == 2
        assert all(request.url.params["api_key"] == "k" for request in requests)

    @pytest.mark.asyncio
    async def test_resilience_sees_final_config(self, httpx_mock, client_config, fast_retry) -> None:
        """Test the retry context is keyed on the config as sent."""
        httpx_mock.add_response(url=f"{BASE_URL}/v2/x", status_code=503)
        httpx_mock.add_response(url=f"{BASE_URL}/v2/x", json={"ok": True})

        client: ResilientClient
        seen: list = []

        def on_retry(context) -> None:
            seen.append(client.get_retry_context(RequestConfig(url="/v2/x")) is context)

        def versioned(config: RequestConfig) -> RequestConfig:
            if config.url.startswith("/v2"):
                return config
            return config.merge(url=f"/v2{config.url}")

        async with ResilientClient(client_config(retry=fast_retry(on_retry=on_retry))) as client:
            client.add_request_interceptor(versioned)
            await client.get("/x")

        assert seen == [True]

    @pytest.mark.asyncio
    async def test_rejection_handler_sees_classified_error(
        self, httpx_mock, client_config, fast_retry
    ) -> None:
        """Test user rejection handlers receive the taxonomy error."""
        httpx_mock.add_response(url=f"{BASE_URL}/x", status_code=502)

        seen: list[BaseException] = []

        def observe(error: Exception):
            seen.append(error)
            raise error

        async with ResilientClient(client_config(retry=fast_retry(max_retries=0))) as client:
            client.add_response_interceptor(None, observe)
            with pytest.raises(ServerError):
                await client.get("/x")

        assert len(seen) == 1
        assert isinstance(seen[0], ServerError)

    @pytest.mark.asyncio
    async def test_removed_interceptor_not_called(self, httpx_mock, client_config) -> None:
        """Test interceptor removal by id."""
        httpx_mock.add_response(url=f"{BASE_URL}/x")
        calls: list[str] = []

        async with ResilientClient(client_config()) as client:
            interceptor_id = client.add_request_interceptor(
                lambda config: calls.append("called") or config
            )
            assert client.remove_request_interceptor(interceptor_id)
            assert not client.remove_request_interceptor(interceptor_id)
            await client.get("/x")

        assert calls == []
