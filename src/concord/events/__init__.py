"""Event system for concord.

Views stay consistent by subscribing to well-known topics instead of
re-fetching:
- Interactions (like/favorite/comment) are emitted after the remote mutation
- Frequent topics (likes, messages, location, viewport) are debounced
- The bus guards against emission cycles and runaway fan-out
"""

from concord.events.bus import (
    BusDebugInfo,
    DroppedEmission,
    DropReason,
    EventBus,
    Handler,
    Unsubscribe,
)
from concord.events.schemas import (
    DEBOUNCED_TOPICS,
    PAGE_TOPIC_RELEVANCE,
    TOPIC_PAYLOADS,
    CommentEvent,
    EmissionMode,
    EventPayload,
    GeoPoint,
    InteractionEvent,
    JoinEvent,
    LocationEvent,
    MessageEvent,
    Page,
    Topic,
    TopicDeletedEvent,
    TopicEvent,
    TopicSnapshot,
    ViewportEvent,
)

__all__ = [
    # Topics and payloads
    "Topic",
    "Page",
    "EmissionMode",
    "EventPayload",
    "InteractionEvent",
    "CommentEvent",
    "MessageEvent",
    "JoinEvent",
    "GeoPoint",
    "TopicSnapshot",
    "TopicEvent",
    "TopicDeletedEvent",
    "LocationEvent",
    "ViewportEvent",
    "TOPIC_PAYLOADS",
    "DEBOUNCED_TOPICS",
    "PAGE_TOPIC_RELEVANCE",
    # Bus
    "EventBus",
    "Handler",
    "Unsubscribe",
    "BusDebugInfo",
    "DroppedEmission",
    "DropReason",
]
