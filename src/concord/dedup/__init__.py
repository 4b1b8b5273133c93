"""Request deduplication for concord.

Read paths go through the RequestDeduplicator:
- Concurrent identical requests collapse into one underlying call
- Per-attempt timeouts, optional fixed-delay retry
- Background sweep of stale entries
- Running per-key statistics
"""

from concord.dedup.deduplicator import (
    FETCH_CONFIG,
    QUERY_CONFIG,
    DedupStats,
    KeyStats,
    Operation,
    RequestConfig,
    RequestDeduplicator,
)
from concord.dedup.keys import (
    COORDINATE_PRECISION,
    build_request_key,
    canonical_params,
    parse_key,
    query_key,
    round_coordinate,
)

__all__ = [
    "RequestDeduplicator",
    "RequestConfig",
    "QUERY_CONFIG",
    "FETCH_CONFIG",
    "Operation",
    "DedupStats",
    "KeyStats",
    # Keys
    "build_request_key",
    "query_key",
    "parse_key",
    "canonical_params",
    "round_coordinate",
    "COORDINATE_PRECISION",
]
