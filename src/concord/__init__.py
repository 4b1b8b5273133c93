"""Concord: client-side state consistency core.

Components:
- EventBus: topic-keyed publish/subscribe with debouncing and a loop guard
- RequestDeduplicator: one in-flight operation per request key
- BoundedCache: LRU record cache with TTL expiry
- ContentFilterPipeline: moderation of user-generated text
- ShutdownCoordinator: ordered, run-once teardown
"""

from concord.cache import BoundedCache
from concord.config import Settings
from concord.dedup import RequestDeduplicator
from concord.events import EventBus, Topic
from concord.moderation import ContentFilterPipeline, ModerationVerdict
from concord.runtime import ConcordCore, core_lifespan, create_core
from concord.shutdown import Priority, ShutdownCoordinator

__version__ = "0.1.0"

__all__ = [
    "BoundedCache",
    "ConcordCore",
    "ContentFilterPipeline",
    "EventBus",
    "ModerationVerdict",
    "Priority",
    "RequestDeduplicator",
    "Settings",
    "ShutdownCoordinator",
    "Topic",
    "core_lifespan",
    "create_core",
]
