"""Bounded in-memory cache for frequently viewed records.

Fixed capacity with least-recently-used eviction and a TTL counted from
insertion. Reads of expired entries evict them; ``sweep_expired`` removes
entries nobody reads again. All operations are synchronous.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from concord.observability.metrics import MetricsRegistry, disabled_metrics

if TYPE_CHECKING:
    from concord.config import Settings

logger = logging.getLogger(__name__)

Record = dict[str, Any]

DEFAULT_CAPACITY = 50
DEFAULT_TTL = 300.0  # 5 minutes


@dataclass
class CacheEntry:
    """Cached record plus bookkeeping that never leaves the cache."""

    value: Record
    cached_at: float
    last_accessed_at: float
    access_count: int = 1


@dataclass(frozen=True, slots=True)
class CacheStats:
    size: int
    capacity: int
    hits: int
    misses: int
    evictions: int

    @property
    def hit_rate(self) -> float:
        lookups = self.hits + self.misses
        return self.hits / lookups if lookups else 0.0


class BoundedCache:
    """Fixed-capacity, TTL-bounded LRU store keyed by record ``id``."""

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        ttl: float = DEFAULT_TTL,
        *,
        name: str = "records",
        clock: Callable[[], float] = time.monotonic,
        metrics: MetricsRegistry | None = None,
    ):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self.ttl = ttl
        self.name = name
        self._clock = clock
        self._metrics = metrics or disabled_metrics()
        self._entries: dict[str, CacheEntry] = {}
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    @classmethod
    def from_settings(
        cls, settings: Settings, metrics: MetricsRegistry | None = None
    ) -> BoundedCache:
        return cls(settings.cache_capacity, settings.cache_ttl, metrics=metrics)

    def _expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.cached_at > self.ttl

    def get(self, record_id: str) -> Record | None:
        """Return a copy of the record, or None if missing or expired."""
        entry = self._entries.get(record_id)
        if entry is None:
            self._miss()
            return None

        now = self._clock()
        if self._expired(entry, now):
            del self._entries[record_id]
            self._evicted("expired")
            self._miss()
            return None

        entry.access_count += 1
        entry.last_accessed_at = now
        self._hits += 1
        self._metrics.record_cache_hit(self.name)
        return dict(entry.value)

    def put(self, record: Mapping[str, Any]) -> None:
        """Insert or replace a record, evicting the least recently used when full."""
        record_id = str(record["id"])
        if record_id not in self._entries and len(self._entries) >= self.capacity:
            self._evict_lru()

        now = self._clock()
        self._entries[record_id] = CacheEntry(
            value=dict(record), cached_at=now, last_accessed_at=now
        )

    def update(self, record_id: str, **fields: Any) -> bool:
        """Merge fields into a live entry; TTL still counts from insertion."""
        entry = self._entries.get(record_id)
        if entry is None or self._expired(entry, self._clock()):
            return False
        entry.value.update(fields)
        return True

    def remove(self, record_id: str) -> None:
        self._entries.pop(record_id, None)

    def clear(self) -> None:
        self._entries.clear()

    def get_many(self, record_ids: Iterable[str]) -> list[Record | None]:
        return [self.get(record_id) for record_id in record_ids]

    def put_many(self, records: Iterable[Mapping[str, Any]]) -> None:
        for record in records:
            self.put(record)

    def sweep_expired(self) -> int:
        """Remove every expired entry. Returns the number removed."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if self._expired(entry, now)]
        for key in expired:
            del self._entries[key]
            self._evicted("sweep")
        if expired:
            logger.debug("Swept %d expired entries from %s cache", len(expired), self.name)
        return len(expired)

    def most_popular(self, limit: int = 10) -> list[Record]:
        """Records sorted by access count, most accessed first."""
        ranked = sorted(self._entries.values(), key=lambda e: e.access_count, reverse=True)
        return [dict(entry.value) for entry in ranked[:limit]]

    def most_recent(self, limit: int = 10) -> list[Record]:
        """Records sorted by last access, most recent first."""
        ranked = sorted(self._entries.values(), key=lambda e: e.last_accessed_at, reverse=True)
        return [dict(entry.value) for entry in ranked[:limit]]

    def stats(self) -> CacheStats:
        return CacheStats(
            size=len(self._entries),
            capacity=self.capacity,
            hits=self._hits,
            misses=self._misses,
            evictions=self._evictions,
        )

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, record_id: object) -> bool:
        """Liveness check that does not count as an access."""
        entry = self._entries.get(record_id)  # type: ignore[call-overload]
        return entry is not None and not self._expired(entry, self._clock())

    def _evict_lru(self) -> None:
        oldest_id = min(self._entries, key=lambda key: self._entries[key].last_accessed_at)
        del self._entries[oldest_id]
        self._evicted("lru")
        logger.debug("Evicted %s from %s cache (lru)", oldest_id, self.name)

    def _evicted(self, reason: str) -> None:
        self._evictions += 1
        self._metrics.record_cache_eviction(reason, self.name)

    def _miss(self) -> None:
        self._misses += 1
        self._metrics.record_cache_miss(self.name)
