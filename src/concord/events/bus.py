"""Event bus implementation for concord.

In-process topic pub/sub that keeps independent views consistent:
- emit: synchronous fan-out over a snapshot of the current subscribers
- emit_debounced: trailing-edge coalescing per topic on the event loop timer
- loop guard: a topic already mid-emission cannot be re-emitted, and at most
  ``max_active_topics`` distinct topics may be mid-emission at once

Handler failures are logged per handler and never reach the emitter.
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
import logging
from collections import deque
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from concord.events.schemas import (
    DEBOUNCED_TOPICS,
    PAGE_TOPIC_RELEVANCE,
    EmissionMode,
    Page,
    Topic,
    payload_matches,
)
from concord.observability.metrics import MetricsRegistry, disabled_metrics

if TYPE_CHECKING:
    from concord.config import Settings

logger = logging.getLogger(__name__)


Handler = Callable[[Any], Any]
Unsubscribe = Callable[[], None]

DEFAULT_DEBOUNCE_DELAY = 0.3
DEFAULT_MAX_ACTIVE_TOPICS = 10

_DEBOUNCED_KEYS = frozenset(topic.value for topic in DEBOUNCED_TOPICS)


def _topic_key(topic: Topic | str) -> str:
    return topic.value if isinstance(topic, Enum) else str(topic)


class DropReason(str, Enum):
    """Why an emission was dropped."""

    CIRCULAR = "circular"
    MAX_ACTIVE_TOPICS = "max_active_topics"
    PAYLOAD_TYPE = "payload_type"
    NO_EVENT_LOOP = "no_event_loop"


@dataclass(frozen=True, slots=True)
class DroppedEmission:
    """Diagnostic record for an emission the bus refused."""

    topic: str
    reason: DropReason
    mode: EmissionMode
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass(frozen=True, slots=True)
class BusDebugInfo:
    """Point-in-time view of the bus state."""

    active_topics: list[str]
    debounced_topics: list[str]
    emission_stack: list[str]
    total_handlers: int


@dataclass(slots=True)
class _PendingDebounce:
    handle: asyncio.TimerHandle
    payload: Any


class EventBus:
    """Topic-based publish/subscribe with loop protection and debouncing.

    Owns its subscriber registry; consumers interact only through
    subscribe/emit. One instance is shared per process via the composition
    root (see concord.runtime).
    """

    def __init__(
        self,
        *,
        default_delay: float = DEFAULT_DEBOUNCE_DELAY,
        max_active_topics: int = DEFAULT_MAX_ACTIVE_TOPICS,
        diagnostics_limit: int = 100,
        metrics: MetricsRegistry | None = None,
    ):
        self.default_delay = default_delay
        self.max_active_topics = max_active_topics
        self._metrics = metrics or disabled_metrics()
        self._handlers: dict[str, dict[int, Handler]] = {}
        self._debounced: dict[str, _PendingDebounce] = {}
        self._emission_stack: set[str] = set()
        self._ids = itertools.count(1)
        self._diagnostics: deque[DroppedEmission] = deque(maxlen=diagnostics_limit)
        self._handler_tasks: set[asyncio.Task[Any]] = set()

    @classmethod
    def from_settings(cls, settings: Settings, metrics: MetricsRegistry | None = None) -> EventBus:
        return cls(
            default_delay=settings.event_debounce_delay,
            max_active_topics=settings.event_max_active_topics,
            diagnostics_limit=settings.event_diagnostics_limit,
            metrics=metrics,
        )

    # -------------------------------------------------------------------------
    # Subscription
    # -------------------------------------------------------------------------

    def subscribe(self, topic: Topic | str, handler: Handler) -> Unsubscribe:
        """Register a handler and return a callable that removes exactly it."""
        key = _topic_key(topic)
        subscription_id = next(self._ids)
        self._handlers.setdefault(key, {})[subscription_id] = handler

        def unsubscribe() -> None:
            handlers = self._handlers.get(key)
            if handlers is None or subscription_id not in handlers:
                return
            del handlers[subscription_id]
            if not handlers:
                del self._handlers[key]
                self._cancel_debounced(key)

        return unsubscribe

    def subscribe_page(self, page: Page, handlers: Mapping[Topic, Handler]) -> Unsubscribe:
        """Subscribe a screen's handlers, keeping only topics relevant to it."""
        relevant = PAGE_TOPIC_RELEVANCE[page]
        unsubscribers: list[Unsubscribe] = []
        for topic, handler in handlers.items():
            if Topic(topic) not in relevant:
                logger.debug("Topic %s is not relevant to page %s, skipping", topic, page.value)
                continue
            unsubscribers.append(self.subscribe(topic, handler))

        def unsubscribe_page() -> None:
            for unsubscribe in unsubscribers:
                unsubscribe()

        return unsubscribe_page

    def unsubscribe_all(self, topic: Topic | str) -> None:
        """Remove every handler for a topic and cancel its pending emission."""
        key = _topic_key(topic)
        self._handlers.pop(key, None)
        self._cancel_debounced(key)

    def reset(self) -> None:
        """Remove all handlers and cancel all pending debounced emissions."""
        for pending in self._debounced.values():
            pending.handle.cancel()
        self._debounced.clear()
        self._handlers.clear()
        self._emission_stack.clear()
        logger.info("Event bus reset")

    # -------------------------------------------------------------------------
    # Emission
    # -------------------------------------------------------------------------

    def emit(self, topic: Topic | str, payload: Any = None) -> None:
        """Deliver ``payload`` to every handler subscribed right now."""
        key = _topic_key(topic)
        if not self._admit(key, payload, EmissionMode.IMMEDIATE):
            return
        self._execute(key, payload, EmissionMode.IMMEDIATE)

    def emit_debounced(
        self, topic: Topic | str, payload: Any = None, delay: float | None = None
    ) -> None:
        """Schedule an emission, replacing any pending one for the topic."""
        key = _topic_key(topic)
        if not self._admit(key, payload, EmissionMode.DEBOUNCED):
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._drop(key, DropReason.NO_EVENT_LOOP, EmissionMode.DEBOUNCED)
            return

        self._cancel_debounced(key)
        delay = self.default_delay if delay is None else delay
        handle = loop.call_later(delay, self._fire_debounced, key)
        self._debounced[key] = _PendingDebounce(handle=handle, payload=payload)

    def publish(self, topic: Topic | str, payload: Any = None) -> None:
        """Emit using the topic's default mode (see DEBOUNCED_TOPICS)."""
        if _topic_key(topic) in _DEBOUNCED_KEYS:
            self.emit_debounced(topic, payload)
        else:
            self.emit(topic, payload)

    async def drain(self) -> None:
        """Wait for coroutine handlers started by past emissions."""
        while self._handler_tasks:
            await asyncio.gather(*list(self._handler_tasks), return_exceptions=True)

    def _admit(self, key: str, payload: Any, mode: EmissionMode) -> bool:
        if key in self._emission_stack:
            self._drop(key, DropReason.CIRCULAR, mode)
            return False
        if len(self._emission_stack) >= self.max_active_topics:
            self._drop(key, DropReason.MAX_ACTIVE_TOPICS, mode)
            return False
        if not payload_matches(key, payload):
            self._drop(key, DropReason.PAYLOAD_TYPE, mode)
            return False
        return True

    def _drop(self, key: str, reason: DropReason, mode: EmissionMode) -> None:
        self._diagnostics.append(DroppedEmission(topic=key, reason=reason, mode=mode))
        self._metrics.record_event_dropped(reason.value)
        logger.warning("Dropped %s emission for %r (%s)", mode.value, key, reason.value)

    def _fire_debounced(self, key: str) -> None:
        pending = self._debounced.pop(key, None)
        if pending is None:
            return
        self._execute(key, pending.payload, EmissionMode.DEBOUNCED)

    def _execute(self, key: str, payload: Any, mode: EmissionMode) -> None:
        handlers = self._handlers.get(key)
        if not handlers:
            return

        self._emission_stack.add(key)
        try:
            # Snapshot: handlers added or removed during fan-out wait for the next round
            for handler in list(handlers.values()):
                try:
                    result = handler(payload)
                except Exception:
                    logger.exception("Error in event handler for %r", key)
                    continue
                if inspect.isawaitable(result):
                    self._schedule_handler(key, result)
            self._metrics.record_event_emitted(key, mode.value)
        finally:
            self._emission_stack.discard(key)

    def _schedule_handler(self, key: str, awaitable: Awaitable[Any]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            logger.error("Coroutine handler for %r needs a running event loop", key)
            return

        task = asyncio.ensure_future(awaitable, loop=loop)

        self._handler_tasks.add(task)

        def _done(finished: asyncio.Future[Any]) -> None:
            self._handler_tasks.discard(task)
            if finished.cancelled():
                return
            error = finished.exception()
            if error is not None:
                logger.error("Error in async event handler for %r", key, exc_info=error)

        task.add_done_callback(_done)

    def _cancel_debounced(self, key: str) -> None:
        pending = self._debounced.pop(key, None)
        if pending is not None:
            pending.handle.cancel()

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    def subscriber_count(self, topic: Topic | str) -> int:
        return len(self._handlers.get(_topic_key(topic), {}))

    def has_pending(self, topic: Topic | str) -> bool:
        """True while a debounced emission for the topic is scheduled."""
        return _topic_key(topic) in self._debounced

    @property
    def diagnostics(self) -> list[DroppedEmission]:
        """Most recent dropped emissions, oldest first."""
        return list(self._diagnostics)

    def get_debug_info(self) -> BusDebugInfo:
        return BusDebugInfo(
            active_topics=list(self._handlers),
            debounced_topics=list(self._debounced),
            emission_stack=sorted(self._emission_stack),
            total_handlers=sum(len(handlers) for handlers in self._handlers.values()),
        )
