"""Global pytest configuration and fixtures."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from fakes import FakeClock, make_provider

from concord.observability.metrics import MetricsRegistry
from concord.providers.memory import InMemoryKeyValueStore


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def metrics() -> MetricsRegistry:
    """Enabled metrics in a private registry."""
    return MetricsRegistry.create(enabled=True, namespace="concord_test")


@pytest.fixture
def provider() -> AsyncMock:
    return make_provider()
