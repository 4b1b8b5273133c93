"""Ordered, run-once teardown of the core's components.

Example:
    coordinator = ShutdownCoordinator()
    coordinator.register("event-bus", bus.reset, Priority.HIGH)
    coordinator.register("dedup", dedup.shutdown, Priority.HIGH)

    results = await coordinator.run_all()
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)

Cleanup = Callable[[], Awaitable[object] | object]


class Priority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {Priority.HIGH: 0, Priority.MEDIUM: 1, Priority.LOW: 2}


@dataclass(frozen=True, slots=True)
class CleanupResult:
    name: str
    success: bool
    error: BaseException | None = None


@dataclass(eq=False, slots=True)
class _Registration:
    name: str
    cleanup: Cleanup
    priority: Priority


class ShutdownCoordinator:
    """Runs registered cleanups once, high priority first.

    A failing cleanup is recorded and the remaining ones still run. After
    ``run_all`` the coordinator is drained for good: further registrations
    are refused and further ``run_all`` calls return an empty list.
    """

    def __init__(self) -> None:
        self._registrations: list[_Registration] = []
        self._results: list[CleanupResult] = []
        self._drained = False
        self._running = False

    @property
    def is_drained(self) -> bool:
        return self._drained

    @property
    def results(self) -> list[CleanupResult]:
        return list(self._results)

    def register(
        self, name: str, cleanup: Cleanup, priority: Priority = Priority.MEDIUM
    ) -> Callable[[], None]:
        """Register ``cleanup`` and return a function that unregisters it."""
        if self._drained:
            logger.warning("Cannot register cleanup %r: coordinator already drained", name)
            return lambda: None

        registration = _Registration(name=name, cleanup=cleanup, priority=priority)
        self._registrations.append(registration)

        def unregister() -> None:
            if registration in self._registrations:
                self._registrations.remove(registration)

        return unregister

    def unregister(self, name: str) -> bool:
        """Remove every cleanup registered under ``name``."""
        before = len(self._registrations)
        self._registrations = [r for r in self._registrations if r.name != name]
        return len(self._registrations) != before

    def list_registered(self) -> list[tuple[str, Priority]]:
        return [(r.name, r.priority) for r in self._ordered()]

    async def run_all(self) -> list[CleanupResult]:
        if self._drained or self._running:
            return []
        self._running = True

        logger.info("Starting shutdown of %d components", len(self._registrations))
        results: list[CleanupResult] = []
        try:
            for registration in self._ordered():
                results.append(await self._invoke(registration))
        finally:
            self._registrations.clear()
            self._results = results
            self._drained = True
            self._running = False

        failed = [r for r in results if not r.success]
        logger.info(
            "Shutdown completed: %d successful, %d failed", len(results) - len(failed), len(failed)
        )
        if failed:
            logger.warning("Failed cleanups: %s", ", ".join(r.name for r in failed))
        return results

    async def run_one(self, name: str) -> bool:
        """Invoke a single cleanup by name without draining the coordinator."""
        for registration in self._registrations:
            if registration.name == name:
                return (await self._invoke(registration)).success
        logger.warning("Cleanup not found: %s", name)
        return False

    def _ordered(self) -> list[_Registration]:
        # sorted() is stable, so registration order holds within a priority
        return sorted(self._registrations, key=lambda r: r.priority.rank)

    async def _invoke(self, registration: _Registration) -> CleanupResult:
        try:
            outcome = registration.cleanup()
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            logger.error("Cleanup %s failed: %s", registration.name, e, exc_info=True)
            return CleanupResult(registration.name, False, e)
        logger.debug("Cleaned up %s", registration.name)
        return CleanupResult(registration.name, True)
