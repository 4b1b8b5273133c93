"""Prometheus metrics for concord.

Provides counters for the consistency core:
- Event bus metrics (emitted, dropped)
- Request deduplication metrics (runs, collapsed waiters, outcomes)
- Record cache metrics (hits, misses, evictions)
- Moderation metrics (verdicts by status and reason)

Each registry owns its own CollectorRegistry so several cores (and tests) can
coexist in one process.

Usage:
    metrics = MetricsRegistry.create(enabled=True)
    metrics.record_cache_hit()
    print(metrics.render().decode())
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from prometheus_client import CollectorRegistry, Counter, Gauge, generate_latest

logger = logging.getLogger(__name__)


class NoOpMetric:
    """No-op metric for when metrics are disabled."""

    def labels(self, **kwargs: Any) -> "NoOpMetric":
        """Return self for chaining."""
        return self

    def inc(self, amount: float = 1) -> None:
        pass

    def dec(self, amount: float = 1) -> None:
        pass

    def set(self, value: float) -> None:
        pass


_NOOP = NoOpMetric()


@dataclass
class MetricsRegistry:
    """Registry for Prometheus metrics."""

    # Event bus metrics
    events_emitted_total: Any = _NOOP
    events_dropped_total: Any = _NOOP

    # Deduplication metrics
    dedup_runs_total: Any = _NOOP
    dedup_collapsed_total: Any = _NOOP
    dedup_pending: Any = _NOOP

    # Cache metrics
    cache_hits_total: Any = _NOOP
    cache_misses_total: Any = _NOOP
    cache_evictions_total: Any = _NOOP

    # Moderation metrics
    moderation_verdicts_total: Any = _NOOP

    enabled: bool = False
    _registry: CollectorRegistry | None = field(default=None, repr=False)

    @classmethod
    def create(cls, enabled: bool = True, namespace: str = "concord") -> MetricsRegistry:
        """Build a registry; a disabled one records nothing."""
        registry = cls()
        if enabled:
            registry.initialize(namespace)
        else:
            logger.info("Metrics are disabled")
        return registry

    def initialize(self, namespace: str = "concord") -> None:
        """Initialize Prometheus metrics."""
        if self.enabled:
            return

        self._registry = CollectorRegistry()

        self.events_emitted_total = Counter(
            f"{namespace}_events_emitted_total",
            "Events delivered to subscribers",
            ["topic", "mode"],
            registry=self._registry,
        )
        self.events_dropped_total = Counter(
            f"{namespace}_events_dropped_total",
            "Emissions dropped by the event bus",
            ["reason"],
            registry=self._registry,
        )

        self.dedup_runs_total = Counter(
            f"{namespace}_dedup_runs_total",
            "Underlying operations settled by the deduplicator",
            ["outcome"],
            registry=self._registry,
        )
        self.dedup_collapsed_total = Counter(
            f"{namespace}_dedup_collapsed_total",
            "Callers that joined an in-flight request",
            registry=self._registry,
        )
        self.dedup_pending = Gauge(
            f"{namespace}_dedup_pending",
            "Requests currently in flight",
            registry=self._registry,
        )

        self.cache_hits_total = Counter(
            f"{namespace}_cache_hits_total",
            "Cache hits",
            ["cache"],
            registry=self._registry,
        )
        self.cache_misses_total = Counter(
            f"{namespace}_cache_misses_total",
            "Cache misses",
            ["cache"],
            registry=self._registry,
        )
        self.cache_evictions_total = Counter(
            f"{namespace}_cache_evictions_total",
            "Cache evictions",
            ["cache", "reason"],
            registry=self._registry,
        )

        self.moderation_verdicts_total = Counter(
            f"{namespace}_moderation_verdicts_total",
            "Moderation verdicts",
            ["status", "reason"],
            registry=self._registry,
        )

        self.enabled = True
        logger.info("Prometheus metrics initialized")

    def render(self) -> bytes:
        """Generate Prometheus metrics in exposition format."""
        if self._registry is None:
            return b"# Metrics disabled\n"
        return generate_latest(self._registry)

    def record_event_emitted(self, topic: str, mode: str = "immediate") -> None:
        self.events_emitted_total.labels(topic=topic, mode=mode).inc()

    def record_event_dropped(self, reason: str) -> None:
        self.events_dropped_total.labels(reason=reason).inc()

    def record_dedup_outcome(self, outcome: str) -> None:
        """Record a settled deduplicated request (success, error, timeout, cancelled)."""
        self.dedup_runs_total.labels(outcome=outcome).inc()

    def record_dedup_collapsed(self) -> None:
        self.dedup_collapsed_total.inc()

    def set_dedup_pending(self, count: int) -> None:
        self.dedup_pending.set(count)

    def record_cache_hit(self, cache: str = "records") -> None:
        self.cache_hits_total.labels(cache=cache).inc()

    def record_cache_miss(self, cache: str = "records") -> None:
        self.cache_misses_total.labels(cache=cache).inc()

    def record_cache_eviction(self, reason: str, cache: str = "records") -> None:
        """Record an eviction (lru, expired, sweep)."""
        self.cache_evictions_total.labels(cache=cache, reason=reason).inc()

    def record_verdict(self, status: str, reason: str) -> None:
        self.moderation_verdicts_total.labels(status=status, reason=reason).inc()


def disabled_metrics() -> MetricsRegistry:
    """A registry that records nothing; the default for standalone components."""
    return MetricsRegistry()
