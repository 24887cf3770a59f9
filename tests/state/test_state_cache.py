"""Tests for the polling state cache."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from spotify_proxy.api.client import SpotifyAPIError, UnauthorizedError
from spotify_proxy.auth.coordinator import TokenCoordinator
from spotify_proxy.auth.oauth_client import SpotifyAuthClient, TokenResponse
from spotify_proxy.auth.token_store import TokenStore
from spotify_proxy.state.broadcast import Broadcaster, EventType
from spotify_proxy.state.cache import CacheKind, StateCache

USER = "default_user"


@pytest.fixture
def store() -> TokenStore:
    s = TokenStore()
    s.put(USER, "A", "R")
    return s


@pytest.fixture
def auth_client() -> MagicMock:
    client = MagicMock(spec=SpotifyAuthClient)
    client.exchange_refresh_token = AsyncMock(return_value=TokenResponse(access_token="B"))
    return client


@pytest.fixture
def fetchers() -> dict[CacheKind, AsyncMock]:
    return {
        CacheKind.PLAYBACK: AsyncMock(return_value='{"is_playing": true}'),
        CacheKind.QUEUE: AsyncMock(return_value='{"queue": []}'),
    }


@pytest.fixture
def broadcaster() -> Broadcaster:
    return Broadcaster()


@pytest.fixture
def cache(
    store: TokenStore,
    auth_client: MagicMock,
    fetchers: dict[CacheKind, AsyncMock],
    broadcaster: Broadcaster,
) -> StateCache:
    coordinator = TokenCoordinator(store, auth_client)
    return StateCache(coordinator, fetchers, broadcaster, USER, fresh_window=30.0)


def _drain(subscription) -> list:
    events = []
    while not subscription.queue.empty():
        events.append(subscription.queue.get_nowait())
    return events


class TestInitialState:
    """Tests for an empty cache."""

    def test_empty(self, cache: StateCache) -> None:
        for kind in CacheKind:
            assert cache.get_cached(kind) is None
            assert cache.get_state(kind) is None
            assert cache.last_updated(kind) is None
            assert cache.is_fresh(kind) is False

    def test_kinds(self, cache: StateCache) -> None:
        assert cache.kinds == [CacheKind.PLAYBACK, CacheKind.QUEUE]


class TestPoll:
    """Tests for a poll cycle."""

    async def test_first_fetch_populates_and_broadcasts(
        self, cache: StateCache, broadcaster: Broadcaster, fetchers: dict
    ) -> None:
        subscription = broadcaster.subscribe()

        changed = await cache.poll_playback()

        assert changed is True
        assert cache.get_cached(CacheKind.PLAYBACK) == '{"is_playing": true}'
        assert cache.is_fresh(CacheKind.PLAYBACK) is True
        fetchers[CacheKind.PLAYBACK].assert_awaited_once_with("A")
        events = _drain(subscription)
        assert [e.type for e in events] == [EventType.PLAYBACK_UPDATE]
        assert events[0].data == '{"is_playing": true}'

    async def test_identical_payload_is_not_broadcast(
        self, cache: StateCache, broadcaster: Broadcaster
    ) -> None:
        subscription = broadcaster.subscribe()

        assert await cache.poll_playback() is True
        assert await cache.poll_playback() is False

        assert len(_drain(subscription)) == 1

    async def test_identical_payload_keeps_timestamp(self, cache: StateCache) -> None:
        await cache.poll_queue()
        first = cache.last_updated(CacheKind.QUEUE)

        await cache.poll_queue()

        assert cache.last_updated(CacheKind.QUEUE) == first

    async def test_changed_payload_replaces_and_broadcasts(
        self, cache: StateCache, broadcaster: Broadcaster, fetchers: dict
    ) -> None:
        await cache.poll_queue()
        subscription = broadcaster.subscribe()
        fetchers[CacheKind.QUEUE].return_value = '{"queue": [1]}'

        assert await cache.poll_queue() is True

        assert cache.get_cached(CacheKind.QUEUE) == '{"queue": [1]}'
        events = _drain(subscription)
        assert [e.type for e in events] == [EventType.QUEUE_UPDATE]

    async def test_get_cached_is_idempotent(self, cache: StateCache) -> None:
        await cache.poll_playback()

        first = cache.get_cached(CacheKind.PLAYBACK)
        second = cache.get_cached(CacheKind.PLAYBACK)

        assert first == second

    async def test_kinds_are_independent(self, cache: StateCache) -> None:
        await cache.poll_playback()

        assert cache.get_cached(CacheKind.QUEUE) is None

    async def test_empty_payload_is_cached(
        self, cache: StateCache, fetchers: dict
    ) -> None:
        """Test that "nothing playing" is a valid snapshot."""
        fetchers[CacheKind.PLAYBACK].return_value = ""

        assert await cache.poll_playback() is True
        assert cache.get_cached(CacheKind.PLAYBACK) == ""


class TestPollWithoutLogin:
    """Tests for polling before anyone has logged in."""

    async def test_skips_upstream_call(
        self, cache: StateCache, store: TokenStore, fetchers: dict, auth_client: MagicMock
    ) -> None:
        store.remove(USER)

        assert await cache.poll_playback() is False

        fetchers[CacheKind.PLAYBACK].assert_not_awaited()
        auth_client.exchange_refresh_token.assert_not_awaited()
        assert cache.get_cached(CacheKind.PLAYBACK) is None


class TestPollFailures:
    """Tests for failed fetches."""

    async def test_failure_keeps_previous_payload(
        self, cache: StateCache, broadcaster: Broadcaster, fetchers: dict
    ) -> None:
        await cache.poll_playback()
        subscription = broadcaster.subscribe()
        fetchers[CacheKind.PLAYBACK].side_effect = SpotifyAPIError("boom", status=503)

        assert await cache.poll_playback() is False

        assert cache.get_cached(CacheKind.PLAYBACK) == '{"is_playing": true}'
        assert _drain(subscription) == []

    async def test_failure_on_empty_cache(self, cache: StateCache, fetchers: dict) -> None:
        fetchers[CacheKind.QUEUE].side_effect = SpotifyAPIError("boom", status=500)

        assert await cache.poll_queue() is False
        assert cache.get_cached(CacheKind.QUEUE) is None

    async def test_unauthorized_is_refreshed(
        self, cache: StateCache, fetchers: dict, store: TokenStore
    ) -> None:
        fetchers[CacheKind.PLAYBACK].side_effect = [UnauthorizedError(), '{"is_playing": false}']

        assert await cache.poll_playback() is True

        assert store.get(USER) == "B"
        assert cache.get_cached(CacheKind.PLAYBACK) == '{"is_playing": false}'

    async def test_cancellation_propagates(self, cache: StateCache, fetchers: dict) -> None:
        fetchers[CacheKind.PLAYBACK].side_effect = asyncio.CancelledError()

        with pytest.raises(asyncio.CancelledError):
            await cache.poll_playback()


class TestFreshness:
    """Tests for the fresh window."""

    async def test_stale_after_window(self, cache: StateCache) -> None:
        with patch("spotify_proxy.state.cache.time.monotonic", return_value=1000.0):
            await cache.poll_playback()

        with patch("spotify_proxy.state.cache.time.monotonic", return_value=1029.0):
            assert cache.is_fresh(CacheKind.PLAYBACK) is True

        with patch("spotify_proxy.state.cache.time.monotonic", return_value=1031.0):
            assert cache.is_fresh(CacheKind.PLAYBACK) is False
            # Stale data is still served
            assert cache.get_cached(CacheKind.PLAYBACK) == '{"is_playing": true}'

    async def test_unchanged_polls_do_not_extend_freshness(self, cache: StateCache) -> None:
        with patch("spotify_proxy.state.cache.time.monotonic", return_value=1000.0):
            await cache.poll_playback()

        with patch("spotify_proxy.state.cache.time.monotonic", return_value=1020.0):
            await cache.poll_playback()

        with patch("spotify_proxy.state.cache.time.monotonic", return_value=1031.0):
            assert cache.is_fresh(CacheKind.PLAYBACK) is False
