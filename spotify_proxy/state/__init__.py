"""Live state caching and broadcast module."""

from .broadcast import (
    DEFAULT_TOPIC,
    BroadcastEvent,
    Broadcaster,
    EventType,
    Subscription,
)
from .cache import CachedState, CacheKind, StateCache

__all__ = [
    # Broadcast
    "DEFAULT_TOPIC",
    "BroadcastEvent",
    "Broadcaster",
    "EventType",
    "Subscription",
    # Cache
    "CachedState",
    "CacheKind",
    "StateCache",
]
