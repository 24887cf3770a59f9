"""
Polling cache for upstream playback and queue state.

One upstream call per poll regardless of how many browsers are watching:
readers only ever see the cached copy, and changes are pushed through the
broadcaster.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Awaitable, Callable, Mapping, Optional

from .broadcast import DEFAULT_TOPIC, BroadcastEvent, Broadcaster, EventType

if TYPE_CHECKING:
    from spotify_proxy.auth.coordinator import TokenCoordinator

logger = logging.getLogger(__name__)

# Cache counts as fresh if updated within this many seconds
DEFAULT_FRESH_WINDOW_SECONDS = 30.0

# Fetches a payload given an access token
Fetcher = Callable[[str], Awaitable[str]]


class CacheKind(str, Enum):
    """Kinds of cached upstream state."""

    PLAYBACK = "playback"
    QUEUE = "queue"


_EVENT_TYPES = {
    CacheKind.PLAYBACK: EventType.PLAYBACK_UPDATE,
    CacheKind.QUEUE: EventType.QUEUE_UPDATE,
}


@dataclass(frozen=True)
class CachedState:
    """Last distinct payload seen for a kind."""

    kind: CacheKind
    payload: str
    last_updated_at: float  # time.monotonic()
    updated_at_ms: int  # wall clock, for clients


class StateCache:
    """
    Diff-gated cache of upstream state.

    Per kind the cache starts empty, becomes populated on the first
    successful fetch, and from then on is only ever replaced by a payload
    that differs from the current one. Fetch failures leave the previous
    payload in place; the cache never goes back to empty.
    """

    def __init__(
        self,
        coordinator: "TokenCoordinator",
        fetchers: Mapping[CacheKind, Fetcher],
        broadcaster: Broadcaster,
        user_id: str,
        fresh_window: float = DEFAULT_FRESH_WINDOW_SECONDS,
        topic: str = DEFAULT_TOPIC,
    ):
        """
        Initialize state cache.

        Args:
            coordinator: Token coordinator used for every upstream fetch
            fetchers: Upstream fetch function per cache kind
            broadcaster: Where changes are published
            user_id: User whose playback is mirrored
            fresh_window: Seconds after an update during which the cache is fresh
            topic: Broadcast topic for change events
        """
        self._coordinator = coordinator
        self._fetchers = dict(fetchers)
        self._broadcaster = broadcaster
        self._user_id = user_id
        self._fresh_window = fresh_window
        self._topic = topic

        self._states: dict[CacheKind, CachedState] = {}
        self._locks = {kind: asyncio.Lock() for kind in self._fetchers}

    @property
    def kinds(self) -> list[CacheKind]:
        return list(self._fetchers)

    async def poll(self, kind: CacheKind) -> bool:
        """
        Run one poll cycle for a kind.

        Skips the upstream call entirely when the user is not logged in.
        Overlapping polls of the same kind are serialised.

        Returns:
            True if the cache changed and an update was broadcast
        """
        if not self._coordinator.is_authenticated(self._user_id):
            logger.debug(f"Skipping {kind.value} poll: user not authenticated")
            return False

        fetcher = self._fetchers[kind]
        async with self._locks[kind]:
            try:
                payload = await self._coordinator.with_auto_refresh(self._user_id, fetcher)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"Failed to update {kind.value} cache: {e}")
                return False

            previous = self._states.get(kind)
            if previous is not None and previous.payload == payload:
                return False

            self._states[kind] = CachedState(
                kind=kind,
                payload=payload,
                last_updated_at=time.monotonic(),
                updated_at_ms=int(time.time() * 1000),
            )

        self._broadcaster.publish(self._topic, BroadcastEvent(_EVENT_TYPES[kind], payload))
        logger.debug(f"{kind.value.capitalize()} state updated and broadcast")
        return True

    async def poll_playback(self) -> bool:
        return await self.poll(CacheKind.PLAYBACK)

    async def poll_queue(self) -> bool:
        return await self.poll(CacheKind.QUEUE)

    def get_cached(self, kind: CacheKind) -> Optional[str]:
        """Cached payload, or None if nothing has been fetched yet. No I/O."""
        state = self._states.get(kind)
        return state.payload if state else None

    def get_state(self, kind: CacheKind) -> Optional[CachedState]:
        return self._states.get(kind)

    def last_updated(self, kind: CacheKind) -> Optional[float]:
        """Monotonic timestamp of the last change, or None if empty."""
        state = self._states.get(kind)
        return state.last_updated_at if state else None

    def is_fresh(self, kind: CacheKind) -> bool:
        """
        Check whether the cache changed within the fresh window.

        A stale cache is still served; staleness alone is not an error.
        """
        state = self._states.get(kind)
        if state is None:
            return False
        return time.monotonic() - state.last_updated_at < self._fresh_window
