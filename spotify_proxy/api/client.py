"""
Spotify Web API client.

Thin bearer-token wrapper over the player, queue and catalogue endpoints.
Payloads are returned as raw JSON text so they can be cached and compared
byte-for-byte.
"""

import json
import logging
from typing import Any, Optional

import aiohttp

logger = logging.getLogger(__name__)

# Spotify caps search results per page
MAX_SEARCH_LIMIT = 50

STATUS_MESSAGES = {
    400: "Invalid request to Spotify API",
    401: "Authentication failed. Please check your Spotify credentials.",
    403: "Access forbidden. Please ensure you have the required Spotify permissions.",
    404: "Requested Spotify resource not found.",
    429: "Rate limit exceeded. Please try again later.",
}


class SpotifyAPIError(Exception):
    """Spotify Web API returned an error status."""

    def __init__(self, message: str, status: int = 0, body: str = ""):
        super().__init__(message)
        self.status = status
        self.body = body

    @classmethod
    def from_response(cls, status: int, body: str) -> "SpotifyAPIError":
        """Build the error (or its 401 subclass) for a failed response."""
        message = STATUS_MESSAGES.get(status, f"Spotify API error ({status})")
        detail = parse_error_message(body)
        if status == 400 and detail:
            message = f"{message}: {detail}"
        error_cls = UnauthorizedError if status == 401 else cls
        return error_cls(message, status=status, body=body)


class UnauthorizedError(SpotifyAPIError):
    """The access token was rejected (HTTP 401)."""

    def __init__(self, message: str = STATUS_MESSAGES[401], status: int = 401, body: str = ""):
        super().__init__(message, status=status, body=body)


def parse_error_message(body: str) -> str:
    """Pull the human-readable message out of a Spotify error body."""
    if not body:
        return ""
    try:
        payload = json.loads(body)
    except ValueError:
        return body
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict):
            return str(error.get("message") or "")
        if isinstance(error, str):
            return payload.get("error_description") or error
    return body


class SpotifyAPIClient:
    """Spotify Web API client authenticating with user or app bearer tokens."""

    def __init__(self, api_base: str = "https://api.spotify.com/v1", timeout: float = 10.0):
        """
        Initialize API client.

        Args:
            api_base: Base URL of the Web API
            timeout: Per-request timeout in seconds
        """
        self.api_base = api_base.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: Optional[aiohttp.ClientSession] = None

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None

    async def request(
        self,
        method: str,
        path: str,
        access_token: str,
        *,
        params: Optional[dict[str, Any]] = None,
        json_body: Optional[Any] = None,
    ) -> str:
        """
        Make an authenticated request.

        Args:
            method: HTTP method
            path: Path below the API base, e.g. "/me/player"
            access_token: Bearer token
            params: Query parameters
            json_body: JSON request body

        Returns:
            Response body text ("" when the response has no content)

        Raises:
            UnauthorizedError: On HTTP 401
            SpotifyAPIError: On any other error status
        """
        url = f"{self.api_base}{path}"
        headers = {"Authorization": f"Bearer {access_token}"}
        session = self._get_session()

        async with session.request(
            method, url, headers=headers, params=params, json=json_body
        ) as resp:
            body = await resp.text()
            if resp.status >= 400:
                logger.debug(f"{method} {path} failed: {resp.status} {body[:200]}")
                raise SpotifyAPIError.from_response(resp.status, body)
            return body

    # -------------------------------------------------------------------------
    # Player state
    # -------------------------------------------------------------------------

    async def get_playback_state(self, access_token: str) -> str:
        """Current playback state ("" when nothing is active)."""
        return await self.request("GET", "/me/player", access_token)

    async def get_queue(self, access_token: str) -> str:
        """Currently playing item and upcoming queue."""
        return await self.request("GET", "/me/player/queue", access_token)

    async def get_devices(self, access_token: str) -> str:
        return await self.request("GET", "/me/player/devices", access_token)

    # -------------------------------------------------------------------------
    # Player control
    # -------------------------------------------------------------------------

    async def play(self, uris: Optional[list[str]], access_token: str) -> None:
        """Start playback, optionally of specific track URIs."""
        body = {"uris": uris} if uris else None
        await self.request("PUT", "/me/player/play", access_token, json_body=body)
        logger.info(f"Started playback{f' of {uris[0]}' if uris else ''}")

    async def resume(self, access_token: str) -> None:
        await self.request("PUT", "/me/player/play", access_token)
        logger.info("Playback resumed")

    async def pause(self, access_token: str) -> None:
        await self.request("PUT", "/me/player/pause", access_token)
        logger.info("Playback paused")

    async def next_track(self, access_token: str) -> None:
        await self.request("POST", "/me/player/next", access_token)
        logger.info("Skipped to next track")

    async def previous_track(self, access_token: str) -> None:
        await self.request("POST", "/me/player/previous", access_token)
        logger.info("Skipped to previous track")

    async def seek(self, position_ms: int, access_token: str) -> None:
        position_ms = max(0, int(position_ms))
        await self.request(
            "PUT", "/me/player/seek", access_token, params={"position_ms": position_ms}
        )
        logger.info(f"Seeked to {position_ms}ms")

    async def set_volume(self, volume_percent: int, access_token: str) -> None:
        volume_percent = max(0, min(100, int(volume_percent)))
        await self.request(
            "PUT", "/me/player/volume", access_token, params={"volume_percent": volume_percent}
        )
        logger.info(f"Set volume to {volume_percent}%")

    async def transfer_playback(self, device_id: str, access_token: str, play: bool = True) -> None:
        await self.request(
            "PUT",
            "/me/player",
            access_token,
            json_body={"device_ids": [device_id], "play": play},
        )
        logger.info(f"Transferred playback to device: {device_id}")

    async def add_to_queue(self, track_uri: str, access_token: str) -> None:
        await self.request("POST", "/me/player/queue", access_token, params={"uri": track_uri})
        logger.info(f"Added track to queue: {track_uri}")

    # -------------------------------------------------------------------------
    # Catalogue
    # -------------------------------------------------------------------------

    async def search_tracks(self, query: str, access_token: str, limit: int = 20) -> list[dict]:
        """
        Search the catalogue for tracks.

        Args:
            query: Search text
            access_token: User or app token
            limit: Max results (clamped to 1-50)

        Returns:
            Track objects (empty list when none found)
        """
        limit = max(1, min(MAX_SEARCH_LIMIT, int(limit)))
        body = await self.request(
            "GET",
            "/search",
            access_token,
            params={"q": query, "type": "track", "limit": limit},
        )
        data = json.loads(body) if body else {}
        tracks = (data.get("tracks") or {}).get("items") or []
        logger.info(f"Found {len(tracks)} tracks for query: {query}")
        return tracks

    async def get_track(self, track_id: str, access_token: str) -> dict:
        body = await self.request("GET", f"/tracks/{track_id}", access_token)
        track: dict = json.loads(body) if body else {}
        return track

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session
