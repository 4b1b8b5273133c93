"""Record cache for concord.

Serves detail views from memory between fetches:
- Fixed capacity with LRU eviction
- TTL counted from insertion, lazy eviction on read plus periodic sweep
- Popularity and recency views for "recently viewed" style screens
"""

from concord.cache.bounded import (
    DEFAULT_CAPACITY,
    DEFAULT_TTL,
    BoundedCache,
    CacheEntry,
    CacheStats,
    Record,
)
from concord.cache.keys import merge_cached_and_fresh, should_cache, topic_query_key

__all__ = [
    "BoundedCache",
    "CacheEntry",
    "CacheStats",
    "Record",
    "DEFAULT_CAPACITY",
    "DEFAULT_TTL",
    "topic_query_key",
    "should_cache",
    "merge_cached_and_fresh",
]
