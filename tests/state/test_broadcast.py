"""Tests for the live update broadcaster."""

import asyncio

from spotify_proxy.state.broadcast import (
    DEFAULT_TOPIC,
    BroadcastEvent,
    Broadcaster,
    EventType,
)


class TestBroadcastEvent:
    """Tests for event serialization."""

    def test_to_dict(self) -> None:
        event = BroadcastEvent(EventType.PLAYBACK_UPDATE, '{"is_playing": true}', timestamp=123)

        assert event.to_dict() == {
            "type": "playback_update",
            "data": '{"is_playing": true}',
            "timestamp": 123,
        }

    def test_timestamp_defaults_to_epoch_millis(self) -> None:
        event = BroadcastEvent(EventType.STATUS_MESSAGE, "hi")

        assert event.timestamp > 1_600_000_000_000


class TestBroadcaster:
    """Tests for publish/subscribe."""

    async def test_every_subscriber_receives_event(self) -> None:
        broadcaster = Broadcaster()
        first = broadcaster.subscribe()
        second = broadcaster.subscribe()

        delivered = broadcaster.broadcast_status_message("hello")

        assert delivered == 2
        for subscription in (first, second):
            event = await asyncio.wait_for(subscription.get(), timeout=1)
            assert event.type == EventType.STATUS_MESSAGE
            assert event.data == "hello"

    async def test_no_replay_for_late_subscriber(self) -> None:
        broadcaster = Broadcaster()
        broadcaster.broadcast_auth_update(True)

        late = broadcaster.subscribe()

        assert late.queue.empty()

    async def test_no_subscribers(self) -> None:
        assert Broadcaster().broadcast_queue_update("{}") == 0

    async def test_unsubscribe(self) -> None:
        broadcaster = Broadcaster()
        subscription = broadcaster.subscribe()

        broadcaster.unsubscribe(subscription)
        broadcaster.unsubscribe(subscription)

        assert broadcaster.subscriber_count() == 0
        assert broadcaster.broadcast_status_message("x") == 0

    async def test_topics_are_isolated(self) -> None:
        broadcaster = Broadcaster()
        other = broadcaster.subscribe("other-topic")

        broadcaster.broadcast_status_message("x")

        assert other.queue.empty()
        assert broadcaster.subscriber_count("other-topic") == 1
        assert broadcaster.subscriber_count(DEFAULT_TOPIC) == 0

    async def test_full_subscriber_drops_events(self) -> None:
        """Test that a slow subscriber misses events instead of blocking others."""
        broadcaster = Broadcaster(max_queue_size=1)
        slow = broadcaster.subscribe()
        broadcaster.broadcast_status_message("first")

        fast = broadcaster.subscribe()
        delivered = broadcaster.broadcast_status_message("second")

        assert delivered == 1
        assert slow.dropped == 1
        assert (await slow.get()).data == "first"
        assert (await fast.get()).data == "second"

    async def test_control_action_payload(self) -> None:
        broadcaster = Broadcaster()
        subscription = broadcaster.subscribe()

        broadcaster.broadcast_control_action("pause", "success")

        event = await subscription.get()
        assert event.to_dict()["type"] == "control_action"
        assert event.data == {"action": "pause", "result": "success"}

    async def test_auth_update_payload(self) -> None:
        broadcaster = Broadcaster()
        subscription = broadcaster.subscribe()

        broadcaster.broadcast_auth_update(False)

        event = await subscription.get()
        assert event.type == EventType.AUTH_UPDATE
        assert event.data is False
