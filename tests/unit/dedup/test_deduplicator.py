"""Tests for the request deduplicator."""

import asyncio
from typing import Any

import httpx
import pytest

from concord.dedup import RequestConfig, RequestDeduplicator, query_key
from concord.errors import (
    DeduplicatorClosedError,
    ProviderError,
    RequestCancelledError,
    RequestTimeoutError,
)


class Gate:
    """Operation factory that blocks until released and counts invocations."""

    def __init__(self, result: Any = "ok", error: Exception | None = None) -> None:
        self.result = result
        self.error = error
        self.calls = 0
        self.cancelled = False
        self.released = asyncio.Event()

    async def __call__(self) -> Any:
        self.calls += 1
        try:
            await self.released.wait()
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        if self.error is not None:
            raise self.error
        return self.result


class TestCollapsing:
    """Test at-most-one-in-flight behaviour."""

    @pytest.fixture
    def dedup(self) -> RequestDeduplicator:
        return RequestDeduplicator(default_config=RequestConfig(timeout=5.0))

    async def test_concurrent_callers_share_one_invocation(
        self, dedup: RequestDeduplicator
    ) -> None:
        """N callers with the same key trigger the operation once."""
        gate = Gate(result=["topic-1", "topic-2"])

        callers = [asyncio.create_task(dedup.run(gate, "GET:/topics:{}")) for _ in range(5)]
        await asyncio.sleep(0)
        assert dedup.is_pending("GET:/topics:{}")

        gate.released.set()
        results = await asyncio.gather(*callers)

        assert gate.calls == 1
        assert results == [["topic-1", "topic-2"]] * 5
        assert all(result is results[0] for result in results)
        assert dedup.pending_count == 0

    async def test_waiters_are_released_in_join_order(self, dedup: RequestDeduplicator) -> None:
        gate = Gate()
        released: list[int] = []

        async def caller(index: int) -> None:
            await dedup.run(gate, "k")
            released.append(index)

        callers = []
        for index in range(4):
            callers.append(asyncio.create_task(caller(index)))
            await asyncio.sleep(0)

        gate.released.set()
        await asyncio.gather(*callers)

        assert gate.calls == 1
        assert released == [0, 1, 2, 3]

    async def test_error_reaches_every_waiter(self, dedup: RequestDeduplicator) -> None:
        """All waiters observe the same failure."""
        gate = Gate(error=ProviderError("boom"))

        callers = [asyncio.create_task(dedup.run(gate, "k")) for _ in range(3)]
        await asyncio.sleep(0)
        gate.released.set()
        results = await asyncio.gather(*callers, return_exceptions=True)

        assert gate.calls == 1
        assert all(isinstance(result, ProviderError) for result in results)

    async def test_sequential_calls_run_again(self, dedup: RequestDeduplicator) -> None:
        """The entry is removed once settled, so the next call starts fresh."""
        calls = 0

        async def operation() -> int:
            nonlocal calls
            calls += 1
            return calls

        assert await dedup.run(operation, "k") == 1
        assert await dedup.run(operation, "k") == 2
        assert not dedup.is_pending("k")

    async def test_distinct_keys_are_independent(self, dedup: RequestDeduplicator) -> None:
        gate_a = Gate(result="a")
        gate_b = Gate(result="b")

        task_a = asyncio.create_task(dedup.run(gate_a, "a"))
        task_b = asyncio.create_task(dedup.run(gate_b, "b"))
        await asyncio.sleep(0)
        assert dedup.pending_count == 2

        gate_a.released.set()
        gate_b.released.set()

        assert await task_a == "a"
        assert await task_b == "b"

    async def test_jittered_coordinates_collapse(self, dedup: RequestDeduplicator) -> None:
        """Queries differing only by GPS jitter share one invocation."""
        gate = Gate(result=[])

        first = asyncio.create_task(
            dedup.query(
                gate, "topics.nearby", {"latitude": 35.6895, "longitude": 139.6917, "page": 0}
            )
        )
        second = asyncio.create_task(
            dedup.query(
                gate, "topics.nearby", {"latitude": 35.68951, "longitude": 139.69172, "page": 0}
            )
        )
        await asyncio.sleep(0)
        gate.released.set()
        await asyncio.gather(first, second)

        assert gate.calls == 1


class TestTimeoutAndRetry:
    """Test deadlines and retries."""

    async def test_timeout_raises_request_timeout(self) -> None:
        """An operation exceeding its timeout fails with RequestTimeoutError."""
        dedup = RequestDeduplicator()
        gate = Gate()

        with pytest.raises(RequestTimeoutError) as exc_info:
            await dedup.run(gate, "slow", RequestConfig(timeout=0.05))

        assert exc_info.value.key == "slow"
        assert gate.cancelled
        assert not dedup.is_pending("slow")

    async def test_retryable_operation_is_retried(self) -> None:
        """A retryable failure starts a fresh attempt."""
        dedup = RequestDeduplicator()
        attempts = 0

        async def flaky() -> str:
            nonlocal attempts
            attempts += 1
            if attempts < 3:
                raise ProviderError("temporary", transient=True)
            return "done"

        config = RequestConfig(timeout=1.0, retryable=True, max_retries=3, retry_delay=0)
        assert await dedup.run(flaky, "flaky", config) == "done"
        assert attempts == 3

    async def test_retries_are_bounded(self) -> None:
        """After max_retries the last error is delivered."""
        dedup = RequestDeduplicator()
        attempts = 0

        async def failing() -> None:
            nonlocal attempts
            attempts += 1
            raise ProviderError("down")

        config = RequestConfig(timeout=1.0, retryable=True, max_retries=2, retry_delay=0)
        with pytest.raises(ProviderError):
            await dedup.run(failing, "down", config)

        assert attempts == 3

    async def test_non_retryable_fails_once(self) -> None:
        dedup = RequestDeduplicator()
        attempts = 0

        async def failing() -> None:
            nonlocal attempts
            attempts += 1
            raise ValueError("bad")

        with pytest.raises(ValueError):
            await dedup.run(failing, "bad", RequestConfig(timeout=1.0))

        assert attempts == 1


class TestCancellation:
    """Test explicit cancellation and shutdown."""

    async def test_cancel_rejects_waiters_and_stops_operation(self) -> None:
        """Cancelled waiters get RequestCancelledError; the operation sees CancelledError."""
        dedup = RequestDeduplicator()
        gate = Gate()

        callers = [asyncio.create_task(dedup.run(gate, "k")) for _ in range(2)]
        await asyncio.sleep(0)

        assert dedup.cancel("k") is True
        results = await asyncio.gather(*callers, return_exceptions=True)
        await asyncio.sleep(0)

        assert all(isinstance(result, RequestCancelledError) for result in results)
        assert not any(isinstance(result, RequestTimeoutError) for result in results)
        assert gate.cancelled
        assert not dedup.is_pending("k")

    async def test_cancellation_is_not_retried(self) -> None:
        """A cancelled operation settles at once even with retries enabled."""
        dedup = RequestDeduplicator()
        gate = Gate(error=RequestCancelledError("k"))
        config = RequestConfig(timeout=1.0, retryable=True, max_retries=3, retry_delay=0)

        callers = [asyncio.create_task(dedup.run(gate, "k", config)) for _ in range(3)]
        await asyncio.sleep(0)
        gate.released.set()
        results = await asyncio.gather(*callers, return_exceptions=True)

        assert gate.calls == 1
        assert all(isinstance(result, RequestCancelledError) for result in results)
        assert not dedup.is_pending("k")

    async def test_cancel_unknown_key(self) -> None:
        assert RequestDeduplicator().cancel("missing") is False

    async def test_cancel_all(self) -> None:
        dedup = RequestDeduplicator()
        gates = [Gate(), Gate()]
        callers = [
            asyncio.create_task(dedup.run(gate, f"k{i}")) for i, gate in enumerate(gates)
        ]
        await asyncio.sleep(0)

        assert dedup.cancel_all() == 2
        results = await asyncio.gather(*callers, return_exceptions=True)

        assert all(isinstance(result, RequestCancelledError) for result in results)
        assert dedup.pending_count == 0

    async def test_shutdown_refuses_new_work(self) -> None:
        """After shutdown every run fails with DeduplicatorClosedError."""
        dedup = RequestDeduplicator()
        gate = Gate()
        caller = asyncio.create_task(dedup.run(gate, "k"))
        await asyncio.sleep(0)

        await dedup.shutdown()

        with pytest.raises(RequestCancelledError):
            await caller
        with pytest.raises(DeduplicatorClosedError):
            await dedup.run(gate, "k")
        assert dedup.closed


class TestStaleSweep:
    """Test the stale-entry sweep."""

    async def test_sweep_times_out_old_entries(self, clock) -> None:
        """Entries older than stale_after are timed out."""
        dedup = RequestDeduplicator(stale_after=60.0, clock=clock)
        gate = Gate()
        caller = asyncio.create_task(dedup.run(gate, "stuck"))
        await asyncio.sleep(0)

        assert dedup.sweep_stale() == 0
        clock.advance(61)
        assert dedup.sweep_stale() == 1

        with pytest.raises(RequestTimeoutError):
            await caller
        assert not dedup.is_pending("stuck")

    async def test_start_and_stop_sweep_task(self) -> None:
        dedup = RequestDeduplicator(sweep_interval=0.01)
        await dedup.start()
        assert dedup._sweep_task is not None

        await asyncio.sleep(0.03)
        await dedup.stop()

        assert dedup._sweep_task is None


class TestStats:
    """Test statistics."""

    async def test_stats_track_outcomes_and_collapses(self, metrics) -> None:
        dedup = RequestDeduplicator(metrics=metrics)
        gate = Gate(result=1)

        callers = [asyncio.create_task(dedup.run(gate, "k")) for _ in range(3)]
        await asyncio.sleep(0)
        gate.released.set()
        await asyncio.gather(*callers)

        async def failing() -> None:
            raise ValueError("bad")

        with pytest.raises(ValueError):
            await dedup.run(failing, "other")

        stats = dedup.get_stats()
        assert stats.total_requests == 2
        assert stats.success_rate == 0.5
        assert stats.collapsed_count == 2
        assert stats.pending_count == 0
        assert {entry.key for entry in stats.top_requests} == {"k", "other"}

        output = metrics.render().decode()
        assert 'outcome="success"' in output
        assert 'outcome="error"' in output

    async def test_latency_is_measured_per_attempt(self, clock) -> None:
        """Retried attempts do not inherit time spent in earlier ones."""
        dedup = RequestDeduplicator(clock=clock)
        durations = iter([5.0, 2.0])
        attempts = 0

        async def flaky() -> str:
            nonlocal attempts
            attempts += 1
            clock.advance(next(durations))
            if attempts == 1:
                raise ProviderError("temporary", transient=True)
            return "done"

        config = RequestConfig(timeout=10.0, retryable=True, max_retries=1, retry_delay=0)
        assert await dedup.run(flaky, "k", config) == "done"

        stats = dedup.get_stats()
        assert stats.total_requests == 2
        assert stats.average_response_time == pytest.approx(3.5)

    async def test_clear_stats(self) -> None:
        dedup = RequestDeduplicator()

        async def operation() -> int:
            return 1

        await dedup.run(operation, "k")
        dedup.clear_stats()

        assert dedup.get_stats().total_requests == 0


class TestFetchJson:
    """Test the HTTP convenience wrapper."""

    async def test_concurrent_fetches_share_one_request(self) -> None:
        requests: list[httpx.Request] = []

        async def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            await asyncio.sleep(0.01)
            return httpx.Response(200, json={"items": [1, 2]})

        dedup = RequestDeduplicator()
        async with httpx.AsyncClient(
            transport=httpx.MockTransport(handler), base_url="https://api.example.com"
        ) as client:
            results = await asyncio.gather(
                dedup.fetch_json(client, "/topics", params={"page": 0}),
                dedup.fetch_json(client, "/topics", params={"page": 0}),
            )

        assert len(requests) == 1
        assert results == [{"items": [1, 2]}, {"items": [1, 2]}]

    async def test_error_status_raises_provider_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404, json={"message": "not found"})

        dedup = RequestDeduplicator()
        async with httpx.AsyncClient(
            transport=httpx.MockTransport(handler), base_url="https://api.example.com"
        ) as client:
            with pytest.raises(ProviderError) as exc_info:
                await dedup.fetch_json(client, "/missing")

        assert exc_info.value.status_code == 404
        assert not exc_info.value.transient


def test_query_key_is_stable() -> None:
    """Parameter order does not affect the key."""
    assert query_key("feed", {"b": 1, "a": 2}) == query_key("feed", {"a": 2, "b": 1})
