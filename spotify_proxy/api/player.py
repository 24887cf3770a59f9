"""
User-scoped player operations.

Every call goes through the token coordinator so a rejected token is
refreshed and the call retried once. Control actions report their outcome
to connected browsers.
"""

import logging
from functools import partial
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional, TypeVar

from spotify_proxy.state.broadcast import Broadcaster

from .client import SpotifyAPIClient

if TYPE_CHECKING:
    from spotify_proxy.auth.coordinator import TokenCoordinator
    from spotify_proxy.auth.oauth_client import SpotifyAuthClient

logger = logging.getLogger(__name__)

RESULT_SUCCESS = "success"
RESULT_ERROR = "error"

T = TypeVar("T")

# Called after a successful control action (e.g. to re-poll playback state)
StateChangedCallback = Callable[[], Awaitable[Any]]


class PlayerService:
    """Player facade for one user, with auto-refresh on every call."""

    def __init__(
        self,
        api: SpotifyAPIClient,
        coordinator: "TokenCoordinator",
        auth_client: "SpotifyAuthClient",
        broadcaster: Broadcaster,
        user_id: str,
        on_state_changed: Optional[StateChangedCallback] = None,
    ):
        """
        Initialize player service.

        Args:
            api: Web API client
            coordinator: Token coordinator for the user's token
            auth_client: Accounts client (app-only token for catalogue calls)
            broadcaster: Where control action results are published
            user_id: User whose player is controlled
            on_state_changed: Awaited after each successful control action
        """
        self._api = api
        self._coordinator = coordinator
        self._auth = auth_client
        self._broadcaster = broadcaster
        self.user_id = user_id
        self._on_state_changed = on_state_changed

    def set_state_changed_callback(self, callback: Optional[StateChangedCallback]) -> None:
        self._on_state_changed = callback

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get_playback_state(self) -> str:
        return await self._call(self._api.get_playback_state)

    async def get_queue(self) -> str:
        return await self._call(self._api.get_queue)

    async def get_devices(self) -> str:
        return await self._call(self._api.get_devices)

    # -------------------------------------------------------------------------
    # Control actions
    # -------------------------------------------------------------------------

    async def play(self, track_uri: Optional[str] = None) -> None:
        uris = [track_uri] if track_uri else None
        await self._control("play", partial(self._api.play, uris))

    async def pause(self) -> None:
        await self._control("pause", self._api.pause)

    async def resume(self) -> None:
        await self._control("resume", self._api.resume)

    async def next_track(self) -> None:
        await self._control("next", self._api.next_track)

    async def previous_track(self) -> None:
        await self._control("previous", self._api.previous_track)

    async def seek(self, position_ms: int) -> None:
        await self._control("seek", partial(self._api.seek, position_ms))

    async def set_volume(self, volume_percent: int) -> None:
        await self._control("volume", partial(self._api.set_volume, volume_percent))

    async def transfer_playback(self, device_id: str, play: bool = True) -> None:
        await self._control(
            "transfer", partial(self._api.transfer_playback, device_id, play=play)
        )

    async def add_to_queue(self, track_uri: str) -> None:
        await self._control("queue_add", partial(self._api.add_to_queue, track_uri))

    # -------------------------------------------------------------------------
    # Catalogue (app-only token, no login required)
    # -------------------------------------------------------------------------

    async def search_tracks(self, query: str, limit: int = 20) -> list[dict]:
        token = await self._auth.get_client_credentials_token()
        return await self._api.search_tracks(query, token, limit=limit)

    async def get_track(self, track_id: str) -> dict:
        token = await self._auth.get_client_credentials_token()
        return await self._api.get_track(track_id, token)

    async def _call(self, operation: Callable[[str], Awaitable[T]]) -> T:
        return await self._coordinator.with_auto_refresh(self.user_id, operation)

    async def _control(self, action: str, operation: Callable[[str], Awaitable[None]]) -> None:
        """Run a control action, broadcast its result, and re-raise failures."""
        try:
            await self._call(operation)
        except Exception as e:
            logger.error(f"Control action '{action}' failed for user {self.user_id}: {e}")
            self._broadcaster.broadcast_control_action(action, RESULT_ERROR)
            raise

        self._broadcaster.broadcast_control_action(action, RESULT_SUCCESS)
        if self._on_state_changed:
            try:
                await self._on_state_changed()
            except Exception as e:
                logger.warning(f"State refresh after '{action}' failed: {e}")
