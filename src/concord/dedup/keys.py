"""Request key schema for the deduplicator.

Key format: {METHOD}:{target}:{params_json}

Where:
- METHOD: upper-cased verb ("GET", "POST") or "QUERY" for data-provider reads
- target: URL or query identifier
- params_json: parameters serialized with sorted keys; coordinates rounded
  to COORDINATE_PRECISION decimals so GPS jitter maps to the same key
"""

from __future__ import annotations

from collections.abc import Mapping
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

import orjson

COORDINATE_PRECISION = 3
COORDINATE_PARAMS = frozenset({"latitude", "longitude"})

_QUANTUM = Decimal(1).scaleb(-COORDINATE_PRECISION)


def round_coordinate(value: float) -> float:
    """Round half-up on the decimal representation (35.6895 -> 35.69)."""
    return float(Decimal(str(value)).quantize(_QUANTUM, rounding=ROUND_HALF_UP))


def canonical_params(params: Mapping[str, Any] | None) -> dict[str, Any]:
    """Copy params in sorted key order with coordinates rounded."""
    if not params:
        return {}
    result: dict[str, Any] = {}
    for name in sorted(params):
        value = params[name]
        if name in COORDINATE_PARAMS and isinstance(value, (int, float)):
            value = round_coordinate(value)
        result[name] = value
    return result


def build_request_key(
    target: str,
    method: str = "GET",
    params: Mapping[str, Any] | None = None,
) -> str:
    """Build the deduplication key for a request."""
    encoded = orjson.dumps(canonical_params(params), option=orjson.OPT_SORT_KEYS, default=str)
    return f"{method.upper()}:{target}:{encoded.decode()}"


def query_key(identifier: str, params: Mapping[str, Any] | None = None) -> str:
    """Key for a data-provider query identified by ``identifier``."""
    return build_request_key(identifier, "QUERY", params)


def parse_key(key: str) -> dict[str, str] | None:
    """Split a key into method, target and params.

    Returns None if the key doesn't match the expected format. Targets may
    contain ':' (URLs), so params start at the first ':{'.
    """
    method, sep, rest = key.partition(":")
    brace = rest.find(":{")
    if not sep or brace < 0:
        return None
    return {"method": method, "target": rest[:brace], "params": rest[brace + 1 :]}
