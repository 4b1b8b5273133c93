"""Contracts for the collaborators the core consumes but does not implement."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class RemoteDataProvider(Protocol):
    """Remote data service.

    Both calls raise ProviderError on failure and stop at their next
    suspension point when the awaiting task is cancelled.
    """

    async def rpc(self, name: str, params: Mapping[str, Any] | None = None) -> Any:
        """Invoke a remote procedure and return its decoded result."""
        ...

    async def select_one(self, table: str, filters: Mapping[str, Any]) -> dict[str, Any] | None:
        """Return the single row matching equality ``filters``, or None."""
        ...


@runtime_checkable
class KeyValueStore(Protocol):
    """Persistent store for string blobs that survives process restarts."""

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str) -> None: ...

    async def remove(self, key: str) -> None: ...
