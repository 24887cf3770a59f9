"""
HTTP and WebSocket endpoints for the browser client.

Thin layer over the player service, token coordinator and state cache.
"""

import asyncio
import logging
import uuid
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional
from urllib.parse import urlencode

from aiohttp import WSMsgType, web

from spotify_proxy.api import PlayerService, SpotifyAPIError
from spotify_proxy.auth import (
    AuthenticationError,
    SpotifyAuthClient,
    TokenCoordinator,
    UnauthenticatedError,
    mask_token,
)
from spotify_proxy.config import Config
from spotify_proxy.state import Broadcaster, CacheKind, StateCache, Subscription

logger = logging.getLogger(__name__)

API_PREFIX = "/api/spotify"
WS_HEARTBEAT_SECONDS = 30.0

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


def _error_body(request: web.Request, status: int, error: str, message: str) -> dict[str, Any]:
    return {
        "timestamp": datetime.now().isoformat(),
        "status": status,
        "error": error,
        "message": message,
        "path": request.path,
    }


@web.middleware
async def error_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    """Translate service exceptions into JSON error responses."""
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except UnauthenticatedError as e:
        logger.info(f"{request.method} {request.path}: {e}")
        return web.json_response(
            _error_body(request, 401, "UNAUTHENTICATED", "Not authenticated - please login first"),
            status=401,
        )
    except AuthenticationError as e:
        logger.warning(f"{request.method} {request.path}: {e}")
        return web.json_response(
            _error_body(request, 401, "AUTHENTICATION_FAILED", str(e)),
            status=401,
        )
    except SpotifyAPIError as e:
        status = e.status if e.status >= 400 else 502
        logger.error(f"Spotify API error on {request.path}: {status} {e}")
        return web.json_response(
            _error_body(request, status, "EXTERNAL_API_ERROR", str(e)),
            status=status,
        )
    except ValueError as e:
        logger.warning(f"Invalid argument on {request.path}: {e}")
        return web.json_response(
            _error_body(request, 400, "INVALID_ARGUMENT", str(e)),
            status=400,
        )
    except Exception as e:
        logger.exception(f"Unexpected error on {request.path}: {e}")
        return web.json_response(
            _error_body(request, 500, "INTERNAL_SERVER_ERROR", "An unexpected error occurred"),
            status=500,
        )


def cors_middleware(allowed_origins: list[str]) -> Callable:
    """Build a middleware allowing credentialed requests from known origins."""
    allow_all = "*" in allowed_origins

    def _apply(response: web.StreamResponse, origin: str) -> None:
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Credentials"] = "true"
        response.headers["Vary"] = "Origin"

    @web.middleware
    async def middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
        origin = request.headers.get("Origin")
        allowed = bool(origin) and (allow_all or origin in allowed_origins)

        if request.method == "OPTIONS" and allowed:
            response = web.Response(status=204)
            _apply(response, origin)  # type: ignore[arg-type]
            response.headers["Access-Control-Allow-Methods"] = "GET, POST, PUT, DELETE, OPTIONS"
            response.headers["Access-Control-Allow-Headers"] = request.headers.get(
                "Access-Control-Request-Headers", "*"
            )
            return response

        response = await handler(request)
        if allowed and not response.prepared:
            _apply(response, origin)  # type: ignore[arg-type]
        return response

    return middleware


class HttpServer:
    """
    aiohttp server exposing login, token admin, playback control and live
    updates to the browser client.

    All user-scoped routes act on the configured default user.
    """

    def __init__(
        self,
        config: Config,
        coordinator: TokenCoordinator,
        auth_client: SpotifyAuthClient,
        player: PlayerService,
        cache: StateCache,
        broadcaster: Broadcaster,
    ):
        """
        Initialize HTTP server.

        Args:
            config: Application configuration
            coordinator: Token coordinator (owns the token store)
            auth_client: Accounts client for login and code exchange
            player: Player service for the default user
            cache: Polling state cache
            broadcaster: Live update hub for WebSocket clients
        """
        self.config = config
        self._coordinator = coordinator
        self._store = coordinator.store
        self._auth = auth_client
        self._player = player
        self._cache = cache
        self._broadcaster = broadcaster
        self._user_id = config.spotify.default_user

        self._app: Optional[web.Application] = None
        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None
        self._websockets: set[web.WebSocketResponse] = set()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def create_app(self) -> web.Application:
        """Build the aiohttp application with all routes."""
        app = web.Application(
            middlewares=[cors_middleware(self.config.server.allowed_origins), error_middleware]
        )
        app.router.add_get("/", self._handle_root)
        app.router.add_get("/callback", self._handle_root_callback)
        app.router.add_get("/ws", self._handle_ws)

        p = API_PREFIX
        # Auth
        app.router.add_get(f"{p}/auth/login", self._handle_auth_login)
        app.router.add_get(f"{p}/login", self._handle_login)
        app.router.add_get(f"{p}/callback", self._handle_callback)
        app.router.add_get(f"{p}/auth/status", self._handle_auth_status)
        app.router.add_get(f"{p}/token", self._handle_token)
        # Token admin
        app.router.add_post(f"{p}/admin/set-token", self._handle_set_token)
        app.router.add_get(f"{p}/admin/get-token", self._handle_get_token)
        app.router.add_post(f"{p}/admin/refresh-token", self._handle_refresh_token)
        app.router.add_get(f"{p}/admin/test-token", self._handle_test_token)
        # Catalogue
        app.router.add_get(f"{p}/search", self._handle_search)
        app.router.add_get(f"{p}/track/{{track_id}}", self._handle_track)
        # Player reads
        app.router.add_get(f"{p}/player", self._handle_player)
        app.router.add_get(f"{p}/devices", self._handle_devices)
        app.router.add_get(f"{p}/queue", self._handle_queue)
        # Player control
        app.router.add_post(f"{p}/play", self._handle_play)
        app.router.add_post(f"{p}/pause", self._handle_pause)
        app.router.add_post(f"{p}/resume", self._handle_resume)
        app.router.add_post(f"{p}/next", self._handle_next)
        app.router.add_post(f"{p}/previous", self._handle_previous)
        app.router.add_post(f"{p}/seek", self._handle_seek)
        app.router.add_post(f"{p}/volume", self._handle_volume)
        app.router.add_post(f"{p}/transfer", self._handle_transfer)
        app.router.add_post(f"{p}/queue/add", self._handle_queue_add)
        # Cached state and broadcast
        app.router.add_get(f"{p}/cached/playback", self._handle_cached_playback)
        app.router.add_get(f"{p}/cached/queue", self._handle_cached_queue)
        app.router.add_post(f"{p}/broadcast/test", self._handle_test_broadcast)
        return app

    async def start(self) -> None:
        """Start listening."""
        self._app = self.create_app()
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()

        self._site = web.TCPSite(
            self._runner,
            self.config.server.bind_address,
            self.config.server.http_port,
        )
        await self._site.start()
        logger.info(
            f"HTTP server listening on "
            f"{self.config.server.bind_address}:{self.config.server.http_port}"
        )

    async def stop(self) -> None:
        """Close WebSocket clients and stop listening."""
        for ws in list(self._websockets):
            await ws.close(message=b"Server shutdown")
        if self._site:
            await self._site.stop()
            self._site = None
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
        logger.info("HTTP server stopped")

    # -------------------------------------------------------------------------
    # Auth
    # -------------------------------------------------------------------------

    async def _handle_root(self, request: web.Request) -> web.Response:
        """Health check endpoint."""
        return web.Response(text="SpotifyProxy", content_type="text/plain")

    async def _handle_root_callback(self, request: web.Request) -> web.Response:
        """
        GET /callback

        Registered redirect URI; forwards to the API callback.
        """
        error = request.query.get("error")
        code = request.query.get("code")
        state = request.query.get("state")

        if error:
            raise web.HTTPFound(self._frontend_url(error=error))
        if code and state:
            query = urlencode({"code": code, "state": state})
            raise web.HTTPFound(f"{API_PREFIX}/callback?{query}")
        raise web.HTTPFound(self._frontend_url(error="missing_params"))

    async def _handle_auth_login(self, request: web.Request) -> web.Response:
        state = str(uuid.uuid4())
        logger.info(f"Generated auth URL for state: {state}")
        return web.json_response(
            {"authUrl": self._auth.get_authorization_url(state), "state": state}
        )

    async def _handle_login(self, request: web.Request) -> web.Response:
        state = str(uuid.uuid4())
        logger.info(f"Redirecting to Spotify login for state: {state}")
        raise web.HTTPFound(self._auth.get_authorization_url(state))

    async def _handle_callback(self, request: web.Request) -> web.Response:
        """
        GET /api/spotify/callback

        Exchanges the authorization code and stores the user's tokens.
        """
        code = request.query.get("code")
        if request.query.get("error") or not code:
            raise web.HTTPFound(
                self._frontend_url(error=request.query.get("error", "missing_params"))
            )

        try:
            tokens = await self._auth.exchange_authorization_code(code)
        except Exception as e:
            logger.error(f"Authorization code exchange failed: {e}")
            raise web.HTTPFound(self._frontend_url(error="auth_failed"))

        self._store.put(self._user_id, tokens.access_token, tokens.refresh_token)
        self._broadcaster.broadcast_auth_update(True)
        logger.info("Authentication successful, redirecting to frontend")
        raise web.HTTPFound(self._frontend_url())

    async def _handle_auth_status(self, request: web.Request) -> web.Response:
        record = self._store.get_record(self._user_id)
        response: dict[str, Any] = {
            "authenticated": self._coordinator.is_authenticated(self._user_id),
            "hasAccessToken": record is not None,
            "hasRefreshToken": bool(record and record.refresh_token),
        }
        if record:
            response["accessTokenPreview"] = record.access_preview
        return web.json_response(response)

    async def _handle_token(self, request: web.Request) -> web.Response:
        access_token = self._store.get(self._user_id)
        if access_token is None:
            return web.json_response({"error": "No access token available"}, status=401)
        return web.json_response({"access_token": access_token})

    # -------------------------------------------------------------------------
    # Token admin
    # -------------------------------------------------------------------------

    async def _handle_set_token(self, request: web.Request) -> web.Response:
        data = await self._json_body(request)
        access_token = (data.get("accessToken") or "").strip()
        refresh_token = (data.get("refreshToken") or "").strip() or None

        if not access_token:
            return web.json_response({"error": "Access token is required"}, status=400)

        self._store.put(self._user_id, access_token, refresh_token)
        self._broadcaster.broadcast_auth_update(True)
        logger.info("Tokens set manually via admin endpoint")
        return web.json_response({"message": "Tokens set successfully"})

    async def _handle_get_token(self, request: web.Request) -> web.Response:
        record = self._store.get_record(self._user_id)
        response: dict[str, Any] = {
            "hasAccessToken": record is not None,
            "hasRefreshToken": bool(record and record.refresh_token),
        }
        if record:
            response["accessTokenPreview"] = record.access_preview
        return web.json_response(response)

    async def _handle_refresh_token(self, request: web.Request) -> web.Response:
        if not self._store.has(self._user_id):
            return web.json_response({"success": False, "error": "No token stored"})

        try:
            new_token = await self._coordinator.refresh(self._user_id)
        except Exception as e:
            return web.json_response(
                {"success": False, "error": "Failed to refresh token", "details": str(e)}
            )
        return web.json_response(
            {
                "success": True,
                "message": "Token refreshed successfully",
                "newTokenPreview": mask_token(new_token),
            }
        )

    async def _handle_test_token(self, request: web.Request) -> web.Response:
        if not self._coordinator.is_authenticated(self._user_id):
            return web.json_response({"valid": False, "error": "No token stored or invalid"})

        old_preview = mask_token(self._store.get(self._user_id))
        try:
            playback = await self._player.get_playback_state()
        except Exception as e:
            return web.json_response(
                {"valid": False, "error": "Token invalid or expired", "details": str(e)}
            )
        new_preview = mask_token(self._store.get(self._user_id))
        return web.json_response(
            {
                "valid": True,
                "message": "Token is working!",
                "hasPlayback": bool(playback),
                "tokenChanged": old_preview != new_preview,
            }
        )

    # -------------------------------------------------------------------------
    # Catalogue
    # -------------------------------------------------------------------------

    async def _handle_search(self, request: web.Request) -> web.Response:
        query = request.query.get("q", "").strip()
        if not query:
            raise ValueError("Query parameter 'q' is required")
        limit = int(request.query.get("limit", "20"))
        tracks = await self._player.search_tracks(query, limit=limit)
        return web.json_response(tracks)

    async def _handle_track(self, request: web.Request) -> web.Response:
        track = await self._player.get_track(request.match_info["track_id"])
        return web.json_response(track)

    # -------------------------------------------------------------------------
    # Player reads
    # -------------------------------------------------------------------------

    async def _handle_player(self, request: web.Request) -> web.Response:
        return self._raw_json(await self._player.get_playback_state())

    async def _handle_devices(self, request: web.Request) -> web.Response:
        return self._raw_json(await self._player.get_devices())

    async def _handle_queue(self, request: web.Request) -> web.Response:
        return self._raw_json(await self._player.get_queue())

    # -------------------------------------------------------------------------
    # Player control
    # -------------------------------------------------------------------------

    async def _handle_play(self, request: web.Request) -> web.Response:
        data = await self._json_body(request)
        track_uri = self._require(data, "trackUri")
        logger.info(f"Playing track: {track_uri}")
        await self._player.play(track_uri)
        return web.json_response({"message": "Track playing"})

    async def _handle_pause(self, request: web.Request) -> web.Response:
        await self._player.pause()
        return web.json_response({"message": "Playback paused"})

    async def _handle_resume(self, request: web.Request) -> web.Response:
        await self._player.resume()
        return web.json_response({"message": "Playback resumed"})

    async def _handle_next(self, request: web.Request) -> web.Response:
        await self._player.next_track()
        return web.json_response({"message": "Skipped to next track"})

    async def _handle_previous(self, request: web.Request) -> web.Response:
        await self._player.previous_track()
        return web.json_response({"message": "Skipped to previous track"})

    async def _handle_seek(self, request: web.Request) -> web.Response:
        data = await self._json_body(request)
        position_ms = int(self._require(data, "positionMs"))
        await self._player.seek(position_ms)
        return web.json_response({"message": f"Seeked to {position_ms}ms"})

    async def _handle_volume(self, request: web.Request) -> web.Response:
        data = await self._json_body(request)
        volume = int(self._require(data, "volumePercent"))
        await self._player.set_volume(volume)
        return web.json_response({"message": f"Volume set to {max(0, min(100, volume))}%"})

    async def _handle_transfer(self, request: web.Request) -> web.Response:
        data = await self._json_body(request)
        device_id = self._require(data, "deviceId")
        await self._player.transfer_playback(device_id, play=bool(data.get("play", True)))
        return web.json_response({"message": "Playback transferred"})

    async def _handle_queue_add(self, request: web.Request) -> web.Response:
        data = await self._json_body(request)
        track_uri = self._require(data, "trackUri")
        await self._player.add_to_queue(track_uri)
        return web.json_response({"message": "Track added to queue"})

    # -------------------------------------------------------------------------
    # Cached state and broadcast
    # -------------------------------------------------------------------------

    async def _handle_cached_playback(self, request: web.Request) -> web.Response:
        return self._cached_response(CacheKind.PLAYBACK)

    async def _handle_cached_queue(self, request: web.Request) -> web.Response:
        return self._cached_response(CacheKind.QUEUE)

    async def _handle_test_broadcast(self, request: web.Request) -> web.Response:
        delivered = self._broadcaster.broadcast_status_message(
            f"WebSocket test message - {datetime.now().isoformat()}"
        )
        return web.json_response({"message": "Broadcast sent", "subscribers": delivered})

    async def _handle_ws(self, request: web.Request) -> web.WebSocketResponse:
        """
        GET /ws

        Streams every broadcast event to the client as JSON.
        """
        ws = web.WebSocketResponse(heartbeat=WS_HEARTBEAT_SECONDS)
        await ws.prepare(request)

        subscription = self._broadcaster.subscribe()
        self._websockets.add(ws)
        sender = asyncio.create_task(self._forward_events(ws, subscription))
        logger.info(f"WebSocket client connected ({len(self._websockets)} total)")

        try:
            async for msg in ws:
                if msg.type == WSMsgType.TEXT and msg.data == "ping":
                    await ws.send_str("pong")
                elif msg.type == WSMsgType.ERROR:
                    logger.warning(f"WebSocket error: {ws.exception()}")
        finally:
            # Release the subscription before awaiting; the handler may be cancelled here
            self._broadcaster.unsubscribe(subscription)
            self._websockets.discard(ws)
            sender.cancel()
            logger.info(f"WebSocket client disconnected ({len(self._websockets)} remaining)")
            await asyncio.gather(sender, return_exceptions=True)

        return ws

    async def _forward_events(self, ws: web.WebSocketResponse, subscription: Subscription) -> None:
        while not ws.closed:
            event = await subscription.get()
            try:
                await ws.send_json(event.to_dict())
            except ConnectionResetError:
                return

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _cached_response(self, kind: CacheKind) -> web.Response:
        state = self._cache.get_state(kind)
        if state is None:
            return web.Response(status=204)
        response = web.Response(text=state.payload, content_type="application/json")
        response.headers["X-Cache-Fresh"] = "true" if self._cache.is_fresh(kind) else "false"
        response.headers["X-Cache-Updated-At"] = str(state.updated_at_ms)
        return response

    @staticmethod
    def _raw_json(body: str) -> web.Response:
        if not body:
            return web.Response(status=204)
        return web.Response(text=body, content_type="application/json")

    @staticmethod
    async def _json_body(request: web.Request) -> dict[str, Any]:
        if not request.can_read_body:
            return {}
        data = await request.json()
        if not isinstance(data, dict):
            raise ValueError("Request body must be a JSON object")
        return data

    @staticmethod
    def _require(data: dict[str, Any], key: str) -> Any:
        value = data.get(key)
        if value is None or (isinstance(value, str) and not value.strip()):
            raise ValueError(f"Missing {key}")
        return value

    def _frontend_url(self, error: Optional[str] = None) -> str:
        base = self.config.spotify.frontend_url
        if error:
            return f"{base}?{urlencode({'error': error})}"
        return base
