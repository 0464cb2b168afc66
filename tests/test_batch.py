"""Tests for sequential batch execution."""

from unittest.mock import AsyncMock

import httpx
import pytest

from relay.app.exceptions import RetryCancelledError
from relay.app.resilience.batch import BatchExecutor
from relay.app.resilience.rate_limit import RateLimiter
from relay.app.resilience.retry import (
    CancellationToken,
    RetryOrchestrator,
    RetryPolicy,
)


class SleepRecorder:
    def __init__(self):
        self.calls = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def _status_error(status: int) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", "https://api.tumblr.com/v2/blog/staff/posts")
    response = httpx.Response(status, request=request)
    return httpx.HTTPStatusError(f"HTTP {status}", request=request, response=response)


@pytest.fixture
def sleep():
    return SleepRecorder()


@pytest.fixture
def limiter():
    return RateLimiter(limit=1000, window_seconds=3600, clock=lambda: 0.0)


@pytest.fixture
def executor(limiter, sleep):
    orchestrator = RetryOrchestrator(rate_limiter=limiter, sleep=sleep, rng=lambda: 0.0)
    return BatchExecutor(orchestrator, inter_op_delay_ms=100)


class TestExecuteBatch:
    """Test batch sequencing, pacing and failure policy."""

    @pytest.mark.asyncio
    async def test_results_in_order(self, executor):
        operations = [AsyncMock(return_value=i) for i in range(3)]

        results = await executor.execute_batch(operations, tenant_id="acct-1")

        assert results == [0, 1, 2]
        for op in operations:
            assert op.call_count == 1

    @pytest.mark.asyncio
    async def test_delay_between_operations_only(self, executor, sleep):
        operations = [AsyncMock(return_value=i) for i in range(3)]

        await executor.execute_batch(operations)

        assert sleep.calls == [0.1, 0.1]

    @pytest.mark.asyncio
    async def test_single_operation_has_no_delay(self, executor, sleep):
        await executor.execute_batch([AsyncMock(return_value="only")])
        assert sleep.calls == []

    @pytest.mark.asyncio
    async def test_custom_inter_op_delay(self, executor, sleep):
        operations = [AsyncMock(return_value=i) for i in range(2)]

        await executor.execute_batch(operations, inter_op_delay_ms=250)

        assert sleep.calls == [0.25]

    @pytest.mark.asyncio
    async def test_empty_batch(self, executor):
        assert await executor.execute_batch([]) == []

    @pytest.mark.asyncio
    async def test_runs_sequentially(self, executor):
        events = []

        def make_op(i):
            async def op():
                events.append(("start", i))
                events.append(("end", i))
                return i
            return op

        await executor.execute_batch([make_op(i) for i in range(3)])

        assert events == [
            ("start", 0), ("end", 0),
            ("start", 1), ("end", 1),
            ("start", 2), ("end", 2),
        ]

    @pytest.mark.asyncio
    async def test_fail_fast_on_non_retryable(self, executor):
        error = _status_error(404)
        first = AsyncMock(return_value="a")
        second = AsyncMock(side_effect=error)
        third = AsyncMock(return_value="c")

        with pytest.raises(httpx.HTTPStatusError) as exc_info:
            await executor.execute_batch([first, second, third], tenant_id="acct-1")

        assert exc_info.value is error
        assert first.call_count == 1
        assert second.call_count == 1
        assert third.call_count == 0

    @pytest.mark.asyncio
    async def test_retries_within_batch(self, executor, limiter):
        flaky = AsyncMock(side_effect=[httpx.ConnectError("refused"), "ok"])

        results = await executor.execute_batch(
            [AsyncMock(return_value="first"), flaky], RetryPolicy(), "acct-1"
        )

        assert results == ["first", "ok"]
        assert limiter.get_status("acct-1").request_count == 3

    @pytest.mark.asyncio
    async def test_cancelled_batch_stops(self, executor):
        token = CancellationToken()
        token.cancel()
        operation = AsyncMock(return_value="never")

        with pytest.raises(RetryCancelledError):
            await executor.execute_batch([operation], cancel_token=token)

        assert operation.call_count == 0

    @pytest.mark.asyncio
    async def test_cancel_during_pacing_names_operation(self, executor):
        token = CancellationToken()

        async def first():
            token.cancel()
            return "a"

        second = AsyncMock(return_value="b")

        with pytest.raises(RetryCancelledError) as exc_info:
            await executor.execute_batch(
                [first, second, AsyncMock()], cancel_token=token
            )

        assert exc_info.value.message == "Batch cancelled before operation 2/3"
        assert second.call_count == 0

    def test_default_delay_from_settings(self, limiter):
        executor = BatchExecutor(RetryOrchestrator(rate_limiter=limiter))
        assert executor.inter_op_delay_ms == 100


class TestCreateRateLimitedFunction:
    """Test wrapping functions so every call is retried and rate limited."""

    @pytest.mark.asyncio
    async def test_passes_arguments(self, executor, limiter):
        fn = AsyncMock(return_value={"posts": []})
        wrapped = executor.create_rate_limited_function(fn, tenant_id="acct-1")

        result = await wrapped("staff", limit=20)

        assert result == {"posts": []}
        fn.assert_called_once_with("staff", limit=20)
        assert limiter.get_status("acct-1").request_count == 1

    @pytest.mark.asyncio
    async def test_retries_each_invocation(self, executor):
        fn = AsyncMock(side_effect=[httpx.ReadError("reset"), "ok", "again"])
        wrapped = executor.create_rate_limited_function(fn, RetryPolicy(max_retries=1))

        assert await wrapped() == "ok"
        assert await wrapped() == "again"
        assert fn.call_count == 3

    @pytest.mark.asyncio
    async def test_preserves_function_metadata(self, executor):

        async def get_blog_info(blog):
            """Fetch blog info."""
            return blog

        wrapped = executor.create_rate_limited_function(get_blog_info)

        assert wrapped.__name__ == "get_blog_info"
        assert wrapped.__doc__ == "Fetch blog info."
        assert await wrapped("staff") == "staff"
