"""Event schemas for concord.

Defines the well-known topics and one typed payload per topic. Payloads carry
everything a subscribed view needs to patch its local state without a
re-fetch.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum


class Topic(str, Enum):
    """Well-known event topics."""

    # Topic interactions
    TOPIC_LIKED = "topic:liked"
    TOPIC_UNLIKED = "topic:unliked"
    TOPIC_FAVORITED = "topic:favorited"
    TOPIC_UNFAVORITED = "topic:unfavorited"
    TOPIC_COMMENTED = "topic:commented"

    # Chat interactions
    MESSAGE_SENT = "chat:message_sent"
    TOPIC_JOINED = "chat:topic_joined"

    # Topic lifecycle
    TOPIC_CREATED = "topic:created"
    TOPIC_UPDATED = "topic:updated"
    TOPIC_DELETED = "topic:deleted"

    # Location / map
    LOCATION_CHANGED = "location:changed"
    MAP_VIEWPORT_CHANGED = "map:viewport_changed"


class EmissionMode(str, Enum):
    """How an event record is delivered."""

    IMMEDIATE = "immediate"
    DEBOUNCED = "debounced"


class Page(str, Enum):
    """Screens that listen to the bus."""

    HOME = "home"
    EXPLORE = "explore"
    CHAT = "chat"
    PROFILE = "profile"


@dataclass(frozen=True, slots=True)
class InteractionEvent:
    """Like / unlike / favorite / unfavorite on a topic."""

    topic_id: str
    user_id: str
    count: int | None = None  # New like/favorite count when known


@dataclass(frozen=True, slots=True)
class CommentEvent:
    """A comment was added to a topic."""

    topic_id: str
    user_id: str
    comment_count: int


@dataclass(frozen=True, slots=True)
class MessageEvent:
    """A chat message was sent in a topic room."""

    topic_id: str
    user_id: str
    message_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    participant_count: int | None = None


@dataclass(frozen=True, slots=True)
class JoinEvent:
    """A user joined a topic chat room."""

    topic_id: str
    user_id: str


@dataclass(frozen=True, slots=True)
class GeoPoint:
    latitude: float
    longitude: float
    name: str | None = None


@dataclass(frozen=True, slots=True)
class TopicSnapshot:
    """Denormalized topic as shown in lists."""

    id: str
    title: str
    description: str
    author_id: str
    author_name: str
    location: GeoPoint
    created_at: datetime
    author_avatar: str | None = None
    image_url: str | None = None
    aspect_ratio: str | None = None  # "1:1", "4:5" or "1.91:1"


@dataclass(frozen=True, slots=True)
class TopicEvent:
    """A topic was created or updated."""

    topic: TopicSnapshot


@dataclass(frozen=True, slots=True)
class TopicDeletedEvent:
    topic_id: str
    user_id: str | None = None


@dataclass(frozen=True, slots=True)
class LocationEvent:
    """The user's location changed."""

    location: GeoPoint


@dataclass(frozen=True, slots=True)
class ViewportEvent:
    """The visible map region changed."""

    latitude: float
    longitude: float
    latitude_delta: float
    longitude_delta: float


# Union type for all payloads
EventPayload = (
    InteractionEvent
    | CommentEvent
    | MessageEvent
    | JoinEvent
    | TopicEvent
    | TopicDeletedEvent
    | LocationEvent
    | ViewportEvent
)


TOPIC_PAYLOADS: dict[Topic, type] = {
    Topic.TOPIC_LIKED: InteractionEvent,
    Topic.TOPIC_UNLIKED: InteractionEvent,
    Topic.TOPIC_FAVORITED: InteractionEvent,
    Topic.TOPIC_UNFAVORITED: InteractionEvent,
    Topic.TOPIC_COMMENTED: CommentEvent,
    Topic.MESSAGE_SENT: MessageEvent,
    Topic.TOPIC_JOINED: JoinEvent,
    Topic.TOPIC_CREATED: TopicEvent,
    Topic.TOPIC_UPDATED: TopicEvent,
    Topic.TOPIC_DELETED: TopicDeletedEvent,
    Topic.LOCATION_CHANGED: LocationEvent,
    Topic.MAP_VIEWPORT_CHANGED: ViewportEvent,
}

# Topics that are debounced when published through EventBus.publish
DEBOUNCED_TOPICS: frozenset[Topic] = frozenset(
    {
        Topic.TOPIC_LIKED,
        Topic.TOPIC_UNLIKED,
        Topic.MESSAGE_SENT,
        Topic.LOCATION_CHANGED,
        Topic.MAP_VIEWPORT_CHANGED,
    }
)

_INTERACTIONS = frozenset(
    {
        Topic.TOPIC_LIKED,
        Topic.TOPIC_UNLIKED,
        Topic.TOPIC_FAVORITED,
        Topic.TOPIC_UNFAVORITED,
    }
)

PAGE_TOPIC_RELEVANCE: dict[Page, frozenset[Topic]] = {
    Page.HOME: _INTERACTIONS
    | {
        Topic.TOPIC_COMMENTED,
        Topic.TOPIC_CREATED,
        Topic.TOPIC_UPDATED,
        Topic.TOPIC_DELETED,
        Topic.LOCATION_CHANGED,
    },
    Page.EXPLORE: _INTERACTIONS
    | {
        Topic.TOPIC_COMMENTED,
        Topic.TOPIC_CREATED,
        Topic.TOPIC_UPDATED,
        Topic.TOPIC_DELETED,
        Topic.MAP_VIEWPORT_CHANGED,
        Topic.LOCATION_CHANGED,
    },
    Page.CHAT: _INTERACTIONS
    | {
        Topic.MESSAGE_SENT,
        Topic.TOPIC_JOINED,
        Topic.TOPIC_UPDATED,
        Topic.TOPIC_DELETED,
    },
    Page.PROFILE: _INTERACTIONS
    | {
        Topic.TOPIC_COMMENTED,
        Topic.TOPIC_CREATED,
        Topic.TOPIC_DELETED,
    },
}


def payload_matches(topic: Topic | str, payload: object) -> bool:
    """Check a payload against its topic's declared type.

    Free-form string topics accept anything.
    """
    try:
        known = Topic(topic)
    except ValueError:
        return True
    return isinstance(payload, TOPIC_PAYLOADS[known])
