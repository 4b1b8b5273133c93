"""Request collapsing for concurrent identical reads.

Every caller presenting a key while a request for it is in flight becomes a
waiter on that request instead of starting a new one. Waiters are released
in join order with the same result or error.

Example:
    dedup = RequestDeduplicator()
    await dedup.start()  # background stale sweep

    key = query_key("topics.nearby", {"latitude": 35.6895, "longitude": 139.6917, "page": 0})
    topics = await dedup.run(lambda: provider.rpc("get_nearby_topics", params), key)

    await dedup.stop()
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, TypeVar

import httpx

from concord.dedup.keys import build_request_key, query_key
from concord.errors import (
    DeduplicatorClosedError,
    ProviderError,
    RequestCancelledError,
    RequestTimeoutError,
)
from concord.observability.logging import LogContext
from concord.observability.metrics import MetricsRegistry, disabled_metrics

if TYPE_CHECKING:
    from concord.config import Settings

T = TypeVar("T")

logger = logging.getLogger(__name__)

Operation = Callable[[], Awaitable[T]]

DEFAULT_SWEEP_INTERVAL = 30.0
DEFAULT_STALE_AFTER = 60.0
TOP_REQUESTS_LIMIT = 10


@dataclass(frozen=True, slots=True)
class RequestConfig:
    """Per-call timeout and retry settings (seconds)."""

    timeout: float = 30.0
    retryable: bool = False
    max_retries: int = 3
    retry_delay: float = 1.0


QUERY_CONFIG = RequestConfig(timeout=15.0, retryable=True, max_retries=2, retry_delay=1.0)
FETCH_CONFIG = RequestConfig(timeout=10.0, retryable=True, max_retries=2, retry_delay=1.0)


@dataclass
class PendingRequest:
    """In-flight entry; one per key."""

    key: str
    started_at: float
    deadline: float
    waiters: list[asyncio.Future[Any]] = field(default_factory=list)
    task: asyncio.Task[None] | None = None
    attempts: int = 0


@dataclass
class RequestStats:
    """Running counters for one key."""

    count: int = 0
    success_count: int = 0
    error_count: int = 0
    average_time: float = 0.0
    last_request_time: float = 0.0

    def record(self, success: bool, duration: float, now: float) -> None:
        self.count += 1
        self.last_request_time = now
        if success:
            self.success_count += 1
        else:
            self.error_count += 1
        self.average_time = (self.average_time * (self.count - 1) + duration) / self.count


@dataclass(frozen=True, slots=True)
class KeyStats:
    key: str
    count: int
    success_rate: float
    average_time: float


@dataclass(frozen=True, slots=True)
class DedupStats:
    """Read-only snapshot of deduplicator activity."""

    pending_count: int
    total_requests: int
    success_rate: float
    average_response_time: float
    collapsed_count: int
    top_requests: tuple[KeyStats, ...]


class RequestDeduplicator:
    """Collapses concurrent identical asynchronous operations by key.

    Owns the pending-entry registry. Operations are zero-argument coroutine
    factories so that retries can start a fresh attempt; cancellation reaches
    the operation as CancelledError at its current suspension point.
    """

    def __init__(
        self,
        *,
        default_config: RequestConfig | None = None,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL,
        stale_after: float = DEFAULT_STALE_AFTER,
        clock: Callable[[], float] = time.monotonic,
        metrics: MetricsRegistry | None = None,
    ):
        self.default_config = default_config or RequestConfig()
        self.sweep_interval = sweep_interval
        self.stale_after = stale_after
        self._clock = clock
        self._metrics = metrics or disabled_metrics()
        self._pending: dict[str, PendingRequest] = {}
        self._stats: dict[str, RequestStats] = {}
        self._collapsed = 0
        self._closed = False
        self._running = False
        self._sweep_task: asyncio.Task[None] | None = None

    @classmethod
    def from_settings(
        cls, settings: Settings, metrics: MetricsRegistry | None = None
    ) -> RequestDeduplicator:
        return cls(
            default_config=RequestConfig(
                timeout=settings.dedup_timeout,
                retryable=settings.dedup_retryable,
                max_retries=settings.dedup_max_retries,
                retry_delay=settings.dedup_retry_delay,
            ),
            sweep_interval=settings.dedup_sweep_interval,
            stale_after=settings.dedup_stale_after,
            metrics=metrics,
        )

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    async def run(
        self,
        operation: Operation[T],
        key: str,
        config: RequestConfig | None = None,
    ) -> T:
        """Run ``operation`` unless an identical request is already in flight."""
        if self._closed:
            raise DeduplicatorClosedError(key)

        waiter: asyncio.Future[T] = asyncio.get_running_loop().create_future()
        entry = self._pending.get(key)

        if entry is not None:
            entry.waiters.append(waiter)
            self._collapsed += 1
            self._metrics.record_dedup_collapsed()
            logger.debug("Joined in-flight request %s (%d waiters)", key, len(entry.waiters))
        else:
            config = config or self.default_config
            now = self._clock()
            entry = PendingRequest(
                key=key, started_at=now, deadline=now + config.timeout, waiters=[waiter]
            )
            self._pending[key] = entry
            self._metrics.set_dedup_pending(len(self._pending))
            entry.task = asyncio.create_task(
                self._drive(entry, operation, config), name=f"dedup:{key}"
            )

        return await waiter

    async def query(
        self,
        operation: Operation[T],
        identifier: str,
        params: Mapping[str, Any] | None = None,
        config: RequestConfig = QUERY_CONFIG,
    ) -> T:
        """Deduplicated data-provider read keyed by identifier and params."""
        return await self.run(operation, query_key(identifier, params), config)

    async def fetch_json(
        self,
        client: httpx.AsyncClient,
        url: str,
        method: str = "GET",
        params: Mapping[str, Any] | None = None,
        **request_kwargs: Any,
    ) -> Any:
        """Deduplicated HTTP request returning the decoded JSON body.

        Only GET requests are retried.
        """
        method = method.upper()
        key = build_request_key(url, method, params)
        config = FETCH_CONFIG if method == "GET" else RequestConfig(timeout=FETCH_CONFIG.timeout)

        async def send() -> Any:
            try:
                response = await client.request(
                    method, url, params=dict(params or {}), **request_kwargs
                )
            except httpx.TransportError as e:
                raise ProviderError(f"Network error: {e}", transient=True) from e
            if response.is_error:
                raise ProviderError(
                    f"HTTP error! status: {response.status_code}",
                    status_code=response.status_code,
                    transient=response.status_code >= 500,
                )
            return response.json()

        return await self.run(send, key, config)

    async def _drive(
        self, entry: PendingRequest, operation: Operation[Any], config: RequestConfig
    ) -> None:
        key = entry.key
        try:
            with LogContext(request_key=key):
                while True:
                    attempt_started = self._clock()
                    entry.deadline = attempt_started + config.timeout
                    entry.attempts += 1
                    error: Exception
                    try:
                        result = await asyncio.wait_for(operation(), timeout=config.timeout)
                    except TimeoutError:
                        error = RequestTimeoutError(key, config.timeout)
                    except RequestCancelledError as e:
                        self._settle(entry, error=e, outcome="cancelled")
                        return
                    except Exception as e:
                        error = e
                    else:
                        self._record(key, True, attempt_started)
                        self._settle(entry, result=result, outcome="success")
                        return

                    self._record(key, False, attempt_started)
                    if not config.retryable or entry.attempts > config.max_retries:
                        outcome = "timeout" if isinstance(error, RequestTimeoutError) else "error"
                        self._settle(entry, error=error, outcome=outcome)
                        return

                    logger.warning(
                        "Request failed, retrying in %.2fs (%d/%d): %s",
                        config.retry_delay,
                        entry.attempts,
                        config.max_retries,
                        error,
                    )
                    await asyncio.sleep(config.retry_delay)
        except asyncio.CancelledError:
            # cancel() and the stale sweep settle waiters before cancelling
            self._settle(entry, error=RequestCancelledError(key), outcome="cancelled")
            raise
        finally:
            if self._pending.get(key) is entry:
                del self._pending[key]
                self._metrics.set_dedup_pending(len(self._pending))

    def _settle(
        self,
        entry: PendingRequest,
        *,
        result: Any = None,
        error: BaseException | None = None,
        outcome: str,
    ) -> None:
        """Release waiters in join order; a no-op once they are released."""
        released = False
        for waiter in entry.waiters:
            if waiter.done():
                continue
            released = True
            if error is not None:
                waiter.set_exception(error)
            else:
                waiter.set_result(result)
        entry.waiters.clear()
        if released:
            self._metrics.record_dedup_outcome(outcome)

    def _record(self, key: str, success: bool, started_at: float) -> None:
        now = self._clock()
        self._stats.setdefault(key, RequestStats()).record(success, now - started_at, now)

    # -------------------------------------------------------------------------
    # Cancellation
    # -------------------------------------------------------------------------

    def cancel(self, key: str) -> bool:
        """Abort one in-flight request; its waiters get RequestCancelledError."""
        entry = self._pending.pop(key, None)
        if entry is None:
            return False
        self._abort(entry, RequestCancelledError(key), "cancelled")
        self._metrics.set_dedup_pending(len(self._pending))
        return True

    def cancel_all(self) -> int:
        """Abort every in-flight request. Returns how many were cancelled."""
        entries = list(self._pending.values())
        self._pending.clear()
        for entry in entries:
            error = RequestCancelledError(entry.key, "cancelled (all requests)")
            self._abort(entry, error, "cancelled")
        self._metrics.set_dedup_pending(0)
        if entries:
            logger.info("Cancelled %d in-flight requests", len(entries))
        return len(entries)

    def _abort(self, entry: PendingRequest, error: Exception, outcome: str) -> None:
        self._settle(entry, error=error, outcome=outcome)
        if entry.task is not None and not entry.task.done():
            entry.task.cancel()

    # -------------------------------------------------------------------------
    # Stale sweep
    # -------------------------------------------------------------------------

    def sweep_stale(self) -> int:
        """Time out entries older than ``stale_after`` even if no deadline fired."""
        now = self._clock()
        expired = [
            entry for entry in self._pending.values() if now - entry.started_at > self.stale_after
        ]
        for entry in expired:
            del self._pending[entry.key]
            self._abort(entry, RequestTimeoutError(entry.key, self.stale_after), "timeout")
        if expired:
            self._metrics.set_dedup_pending(len(self._pending))
            logger.warning("Swept %d stale requests", len(expired))
        return len(expired)

    async def start(self) -> None:
        """Start the background stale sweep."""
        if self._running or self._closed:
            return
        self._running = True
        self._sweep_task = asyncio.create_task(self._sweep_loop(), name="dedup-sweep")

    async def stop(self) -> None:
        """Stop the background stale sweep."""
        self._running = False
        if self._sweep_task:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None

    async def _sweep_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.sweep_interval)
                self.sweep_stale()
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("Error in stale request sweep")

    async def shutdown(self) -> None:
        """Cancel everything, stop the sweep and refuse further work."""
        self._closed = True
        self.cancel_all()
        await self.stop()
        logger.info("Request deduplicator shut down")

    # -------------------------------------------------------------------------
    # Statistics
    # -------------------------------------------------------------------------

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def closed(self) -> bool:
        return self._closed

    def is_pending(self, key: str) -> bool:
        return key in self._pending

    def get_stats(self) -> DedupStats:
        total = sum(stats.count for stats in self._stats.values())
        successes = sum(stats.success_count for stats in self._stats.values())
        total_time = sum(stats.average_time * stats.count for stats in self._stats.values())

        ranked = sorted(self._stats.items(), key=lambda item: item[1].count, reverse=True)
        top = tuple(
            KeyStats(
                key=key,
                count=stats.count,
                success_rate=stats.success_count / stats.count if stats.count else 0.0,
                average_time=stats.average_time,
            )
            for key, stats in ranked[:TOP_REQUESTS_LIMIT]
        )

        return DedupStats(
            pending_count=len(self._pending),
            total_requests=total,
            success_rate=successes / total if total else 0.0,
            average_response_time=total_time / total if total else 0.0,
            collapsed_count=self._collapsed,
            top_requests=top,
        )

    def clear_stats(self) -> None:
        self._stats.clear()
        self._collapsed = 0
