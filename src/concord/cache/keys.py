"""Topic list query keys and cache merge helpers.

Key format: {list_type}_{latitude}_{longitude}_{page}_{search}

Where:
- list_type: "nearby", "search", "map", ...
- latitude / longitude: as given, 0 when absent
- page: zero-based page index
- search: free-text filter, empty when absent
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

REQUIRED_FIELDS = ("id", "title", "author")


def topic_query_key(
    latitude: float | None = None,
    longitude: float | None = None,
    page: int = 0,
    search: str = "",
    list_type: str = "nearby",
) -> str:
    """Key identifying one page of a topic list query."""
    return f"{list_type}_{latitude or 0}_{longitude or 0}_{page}_{search}"


def should_cache(record: Mapping[str, Any]) -> bool:
    """Only records carrying id, title and author are worth caching."""
    return all(record.get(name) for name in REQUIRED_FIELDS)


def merge_cached_and_fresh(
    cached: Iterable[Mapping[str, Any] | None],
    fresh: Iterable[Mapping[str, Any]],
) -> list[dict[str, Any]]:
    """Fresh records first, then cached records the fresh page lacks."""
    merged = [dict(record) for record in fresh]
    fresh_ids = {record["id"] for record in merged}
    for record in cached:
        if record is not None and record["id"] not in fresh_ids:
            merged.append(dict(record))
    return merged
