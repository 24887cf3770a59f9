"""
Fan-out of live updates to connected browsers.

Fire-and-forget: events go to whoever is subscribed at publish time, with no
backlog or replay for late joiners.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_TOPIC = "music-updates"
DEFAULT_QUEUE_SIZE = 100


class EventType(str, Enum):
    """Broadcast event types (values are the wire names)."""

    PLAYBACK_UPDATE = "playback_update"
    QUEUE_UPDATE = "queue_update"
    AUTH_UPDATE = "auth_update"
    CONTROL_ACTION = "control_action"
    STATUS_MESSAGE = "status_message"


@dataclass
class BroadcastEvent:
    """A single update pushed to subscribers."""

    type: EventType
    data: Any
    timestamp: int = field(default_factory=lambda: int(time.time() * 1000))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "type": self.type.value,
            "data": self.data,
            "timestamp": self.timestamp,
        }


class Subscription:
    """A subscriber's view of one topic."""

    def __init__(self, topic: str, max_queue_size: int = DEFAULT_QUEUE_SIZE):
        self.topic = topic
        self.queue: asyncio.Queue[BroadcastEvent] = asyncio.Queue(maxsize=max_queue_size)
        self.dropped = 0

    async def get(self) -> BroadcastEvent:
        """Wait for the next event."""
        return await self.queue.get()

    def offer(self, event: BroadcastEvent) -> bool:
        """Enqueue without waiting; returns False if the subscriber is full."""
        try:
            self.queue.put_nowait(event)
            return True
        except asyncio.QueueFull:
            self.dropped += 1
            return False


class Broadcaster:
    """
    Topic-based publish/subscribe hub.

    Publishing never blocks: a subscriber whose queue is full misses that
    event rather than slowing the publisher down.
    """

    def __init__(self, max_queue_size: int = DEFAULT_QUEUE_SIZE):
        """
        Initialize broadcaster.

        Args:
            max_queue_size: Per-subscriber buffer before events are dropped
        """
        self._max_queue_size = max_queue_size
        self._subscribers: dict[str, set[Subscription]] = {}

    def subscribe(self, topic: str = DEFAULT_TOPIC) -> Subscription:
        """Attach a new subscriber to a topic."""
        subscription = Subscription(topic, self._max_queue_size)
        self._subscribers.setdefault(topic, set()).add(subscription)
        logger.debug(f"Subscriber added to {topic} ({self.subscriber_count(topic)} total)")
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        """Detach a subscriber. Safe to call more than once."""
        subscribers = self._subscribers.get(subscription.topic)
        if subscribers is None:
            return
        subscribers.discard(subscription)
        if not subscribers:
            del self._subscribers[subscription.topic]
        logger.debug(f"Subscriber removed from {subscription.topic}")

    def subscriber_count(self, topic: str = DEFAULT_TOPIC) -> int:
        return len(self._subscribers.get(topic, ()))

    def publish(self, topic: str, event: BroadcastEvent) -> int:
        """
        Deliver an event to every current subscriber of a topic.

        Returns:
            Number of subscribers that received the event
        """
        delivered = 0
        for subscription in list(self._subscribers.get(topic, ())):
            if subscription.offer(event):
                delivered += 1
            else:
                logger.debug(f"Subscriber queue full, dropped {event.type.value} event")
        return delivered

    # -------------------------------------------------------------------------
    # Convenience publishers
    # -------------------------------------------------------------------------

    def broadcast_playback_update(self, playback_state: str) -> int:
        return self._emit(EventType.PLAYBACK_UPDATE, playback_state)

    def broadcast_queue_update(self, queue_state: str) -> int:
        return self._emit(EventType.QUEUE_UPDATE, queue_state)

    def broadcast_auth_update(self, is_authenticated: bool) -> int:
        return self._emit(EventType.AUTH_UPDATE, is_authenticated)

    def broadcast_control_action(self, action: str, result: str) -> int:
        return self._emit(EventType.CONTROL_ACTION, {"action": action, "result": result})

    def broadcast_status_message(self, message: str) -> int:
        return self._emit(EventType.STATUS_MESSAGE, message)

    def _emit(self, event_type: EventType, data: Any) -> int:
        delivered = self.publish(DEFAULT_TOPIC, BroadcastEvent(event_type, data))
        logger.debug(f"Broadcast {event_type.value} to {delivered} subscriber(s)")
        return delivered
