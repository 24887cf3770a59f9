"""
SpotifyProxy Application.

Main orchestrator that wires together all components and manages lifecycle.
"""

import asyncio
import logging
import signal
from typing import Optional

from spotify_proxy.api import PlayerService, SpotifyAPIClient
from spotify_proxy.auth import SpotifyAuthClient, TokenCoordinator, TokenStore
from spotify_proxy.config import Config
from spotify_proxy.scheduler import Scheduler
from spotify_proxy.server import HttpServer
from spotify_proxy.state import Broadcaster, CacheKind, StateCache

logger = logging.getLogger(__name__)

TASK_TOKEN_SWEEP = "token-sweep"
TASK_PLAYBACK_POLL = "playback-poll"
TASK_QUEUE_POLL = "queue-poll"


class SpotifyProxy:
    """
    Main SpotifyProxy application.

    Orchestrates all components:
    - Tokens (TokenStore, SpotifyAuthClient, TokenCoordinator)
    - Spotify Web API (SpotifyAPIClient, PlayerService)
    - Live state (StateCache, Broadcaster)
    - Background tasks (Scheduler)
    - Browser-facing server (HttpServer)

    Usage:
        config = load_config(...)
        app = SpotifyProxy(config)
        await app.run()
    """

    def __init__(self, config: Config):
        """
        Initialize SpotifyProxy.

        Args:
            config: Validated configuration
        """
        self._config = config
        self._is_running = False
        self._shutdown_event = asyncio.Event()

        # Components (initialized in start())
        self._store: Optional[TokenStore] = None
        self._auth_client: Optional[SpotifyAuthClient] = None
        self._api_client: Optional[SpotifyAPIClient] = None
        self._broadcaster: Optional[Broadcaster] = None
        self._coordinator: Optional[TokenCoordinator] = None
        self._player: Optional[PlayerService] = None
        self._cache: Optional[StateCache] = None
        self._scheduler: Optional[Scheduler] = None
        self._http_server: Optional[HttpServer] = None

    async def start(self) -> None:
        """
        Start SpotifyProxy and all components.

        Startup order:
        1. Token store and accounts client
        2. Web API client and broadcaster
        3. Token coordinator
        4. Player service and state cache
        5. Background tasks (token sweep, playback and queue polling)
        6. HTTP server

        Raises:
            OSError: If the HTTP port cannot be bound
        """
        logger.info("Starting SpotifyProxy...")
        spotify = self._config.spotify
        polling = self._config.polling
        user_id = spotify.default_user

        # 1. Tokens
        self._store = TokenStore()
        self._auth_client = SpotifyAuthClient(
            client_id=spotify.client_id,
            client_secret=spotify.client_secret,
            redirect_uri=spotify.redirect_uri,
            scopes=spotify.scopes,
            accounts_url=spotify.accounts_url,
            timeout=spotify.request_timeout,
        )

        # 2. Upstream API and live updates
        self._api_client = SpotifyAPIClient(
            api_base=spotify.api_base_url,
            timeout=spotify.request_timeout,
        )
        self._broadcaster = Broadcaster()

        # 3. Refresh policy
        self._coordinator = TokenCoordinator(
            store=self._store,
            auth_client=self._auth_client,
            sweep_timeout=polling.task_timeout,
            on_tokens_revoked=self._on_tokens_revoked,
        )

        # 4. Player and cache
        self._player = PlayerService(
            api=self._api_client,
            coordinator=self._coordinator,
            auth_client=self._auth_client,
            broadcaster=self._broadcaster,
            user_id=user_id,
        )
        self._cache = StateCache(
            coordinator=self._coordinator,
            fetchers={
                CacheKind.PLAYBACK: self._api_client.get_playback_state,
                CacheKind.QUEUE: self._api_client.get_queue,
            },
            broadcaster=self._broadcaster,
            user_id=user_id,
            fresh_window=polling.fresh_window,
        )
        # Controls change playback; re-poll rather than wait for the next tick
        self._player.set_state_changed_callback(self._cache.poll_playback)

        # 5. Background tasks
        self._scheduler = Scheduler()
        self._scheduler.add(
            TASK_TOKEN_SWEEP,
            polling.token_refresh_interval,
            self._sweep_tokens,
            timeout=polling.task_timeout,
            initial_delay=polling.token_refresh_interval,
        )
        self._scheduler.add(
            TASK_PLAYBACK_POLL,
            polling.playback_interval,
            self._cache.poll_playback,
            timeout=polling.task_timeout,
        )
        self._scheduler.add(
            TASK_QUEUE_POLL,
            polling.queue_interval,
            self._cache.poll_queue,
            timeout=polling.task_timeout,
        )
        self._scheduler.start()

        # 6. HTTP server
        self._http_server = HttpServer(
            config=self._config,
            coordinator=self._coordinator,
            auth_client=self._auth_client,
            player=self._player,
            cache=self._cache,
            broadcaster=self._broadcaster,
        )
        await self._http_server.start()

        self._is_running = True
        logger.info(
            f"SpotifyProxy ready on port {self._config.server.http_port} "
            f"(login at /api/spotify/login)"
        )

    async def _sweep_tokens(self) -> None:
        assert self._coordinator is not None
        tasks = self._coordinator.sweep_all_users()
        if tasks:
            logger.info(f"Scheduled token refresh for {len(tasks)} user(s)")

    def _on_tokens_revoked(self, user_id: str) -> None:
        logger.warning(f"Tokens revoked for user {user_id}; login required")
        if self._broadcaster and user_id == self._config.spotify.default_user:
            self._broadcaster.broadcast_auth_update(False)

    async def stop(self) -> None:
        """
        Stop SpotifyProxy and all components.

        Shutdown order (reverse of startup):
        1. Stop HTTP server
        2. Stop background tasks
        3. Cancel in-flight token refreshes
        4. Close upstream HTTP sessions
        """
        if not self._is_running:
            return

        logger.info("Stopping SpotifyProxy...")
        self._is_running = False

        # 1. Stop HTTP server
        if self._http_server:
            try:
                await self._http_server.stop()
            except Exception as e:
                logger.warning(f"Error stopping HTTP server: {e}")

        # 2. Stop background tasks
        if self._scheduler:
            try:
                await self._scheduler.stop()
            except Exception as e:
                logger.warning(f"Error stopping scheduler: {e}")

        # 3. Cancel in-flight refreshes
        if self._coordinator:
            try:
                await self._coordinator.close()
            except Exception as e:
                logger.warning(f"Error stopping token coordinator: {e}")

        # 4. Close upstream sessions
        if self._api_client:
            try:
                await self._api_client.close()
            except Exception as e:
                logger.warning(f"Error closing API client: {e}")

        if self._auth_client:
            try:
                await self._auth_client.close()
            except Exception as e:
                logger.warning(f"Error closing auth client: {e}")

        logger.info("SpotifyProxy stopped")

    async def run(self) -> None:
        """
        Run SpotifyProxy until interrupted.

        Sets up signal handlers for graceful shutdown on SIGINT/SIGTERM.
        """
        loop = asyncio.get_running_loop()

        def handle_signal() -> None:
            logger.info("Shutdown signal received")
            self._shutdown_event.set()

        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, handle_signal)

        try:
            await self.start()

            # Wait for shutdown signal
            await self._shutdown_event.wait()

        finally:
            await self.stop()

    @property
    def is_running(self) -> bool:
        """Check if the application is running."""
        return self._is_running

    @property
    def cache(self) -> Optional[StateCache]:
        return self._cache

    @property
    def scheduler(self) -> Optional[Scheduler]:
        return self._scheduler
