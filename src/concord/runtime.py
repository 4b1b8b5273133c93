"""Composition root wiring the core components together.

Example:
    async with core_lifespan(Settings()) as core:
        core.bus.subscribe(Topic.TOPIC_LIKED, on_liked)
        rows = await core.dedup.query(fetch, "get_nearby_topics", params)

On exit every component is torn down through the ShutdownCoordinator:
- HIGH:   event bus reset, deduplicator shutdown
- MEDIUM: cache sweeper stop, cache clear
- LOW:    term list memory cache, provider and store connections
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from concord.cache import BoundedCache
from concord.config import Settings
from concord.dedup import RequestDeduplicator
from concord.events import EventBus
from concord.moderation import ContentFilterPipeline
from concord.observability.logging import configure_logging
from concord.observability.metrics import MetricsRegistry
from concord.providers import HttpRemoteProvider, KeyValueStore, RemoteDataProvider, create_store
from concord.shutdown import CleanupResult, Priority, ShutdownCoordinator

logger = logging.getLogger(__name__)


class ConcordCore:
    """Owns one instance of every component and their background tasks."""

    def __init__(
        self,
        settings: Settings,
        provider: RemoteDataProvider,
        store: KeyValueStore,
        metrics: MetricsRegistry,
    ):
        self.settings = settings
        self.provider = provider
        self.store = store
        self.metrics = metrics

        self.bus = EventBus.from_settings(settings, metrics)
        self.dedup = RequestDeduplicator.from_settings(settings, metrics)
        self.cache = BoundedCache.from_settings(settings, metrics)
        self.moderation = ContentFilterPipeline.from_settings(settings, provider, store, metrics)
        self.coordinator = ShutdownCoordinator()

        self._cache_sweep_task: asyncio.Task[None] | None = None
        self._started = False
        self._register_cleanups()

    def _register_cleanups(self) -> None:
        register = self.coordinator.register
        register("event-bus", self.bus.reset, Priority.HIGH)
        register("request-deduplicator", self.dedup.shutdown, Priority.HIGH)
        register("cache-sweeper", self._stop_cache_sweep, Priority.MEDIUM)
        register("record-cache", self.cache.clear, Priority.MEDIUM)
        register("term-list-cache", self.moderation.terms.invalidate, Priority.LOW)

        for name, resource in (("remote-provider", self.provider), ("kv-store", self.store)):
            close = getattr(resource, "close", None)
            if callable(close):
                register(name, close, Priority.LOW)

    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> None:
        """Start the deduplicator and cache sweeps."""
        if self._started:
            return
        self._started = True
        await self.dedup.start()
        self._cache_sweep_task = asyncio.create_task(
            self._cache_sweep_loop(), name="cache-sweep"
        )
        logger.info("Concord core started")

    async def shutdown(self) -> list[CleanupResult]:
        """Tear everything down once; later calls return an empty list."""
        results = await self.coordinator.run_all()
        self._started = False
        return results

    async def _cache_sweep_loop(self) -> None:
        while True:
            try:
                await asyncio.sleep(self.settings.cache_sweep_interval)
                removed = self.cache.sweep_expired()
                if removed:
                    logger.debug("Swept %d expired cache entries", removed)
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("Error in cache sweep")

    async def _stop_cache_sweep(self) -> None:
        if self._cache_sweep_task:
            self._cache_sweep_task.cancel()
            try:
                await self._cache_sweep_task
            except asyncio.CancelledError:
                pass
            self._cache_sweep_task = None


def create_core(
    settings: Settings | None = None,
    provider: RemoteDataProvider | None = None,
    store: KeyValueStore | None = None,
) -> ConcordCore:
    """Build a core, creating the provider, store and metrics from settings."""
    settings = settings or Settings()
    metrics = MetricsRegistry.create(enabled=settings.enable_metrics, namespace=settings.app_name)
    if provider is None:
        provider = HttpRemoteProvider.from_settings(settings)
    if store is None:
        store = create_store(settings)
    return ConcordCore(settings, provider, store, metrics)


@asynccontextmanager
async def core_lifespan(
    settings: Settings | None = None,
    provider: RemoteDataProvider | None = None,
    store: KeyValueStore | None = None,
    *,
    configure_logs: bool = True,
) -> AsyncIterator[ConcordCore]:
    """Run a core for the duration of the ``async with`` block."""
    settings = settings or Settings()
    if configure_logs:
        configure_logging(json_format=settings.log_json, level=settings.log_level)

    core = create_core(settings, provider, store)
    await core.start()
    try:
        yield core
    finally:
        await core.shutdown()
        logger.info("Concord core shut down")
