"""
Token lifecycle coordination.

Runs upstream operations with the user's current access token, refreshing
once and retrying when the upstream rejects the token, and periodically
refreshes every known user's token ahead of expiry.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from spotify_proxy.api.client import UnauthorizedError

from .exceptions import NoRefreshTokenError, UnauthenticatedError
from .oauth_client import SpotifyAuthClient
from .token_store import TokenStore, mask_token

logger = logging.getLogger(__name__)

# Upper bound for a single user's refresh during a sweep
DEFAULT_SWEEP_TIMEOUT_SECONDS = 30.0

T = TypeVar("T")

# An upstream call parameterised by access token
Operation = Callable[[str], Awaitable[T]]

RevokedCallback = Callable[[str], None]


class TokenCoordinator:
    """
    Owns the refresh policy for stored user tokens.

    Freshness is reactive: a token is assumed valid until the upstream
    answers 401, at which point it is refreshed exactly once and the call
    is retried. The periodic sweep only reduces how often a live request
    sees that 401.

    A sweep refresh and a request-triggered refresh for the same user may
    run concurrently. Both write complete records, so the store simply keeps
    whichever lands last.
    """

    def __init__(
        self,
        store: TokenStore,
        auth_client: SpotifyAuthClient,
        sweep_timeout: float = DEFAULT_SWEEP_TIMEOUT_SECONDS,
        on_tokens_revoked: Optional[RevokedCallback] = None,
    ):
        """
        Initialize coordinator.

        Args:
            store: Token store shared with the HTTP layer
            auth_client: Accounts service client used for refreshes
            sweep_timeout: Per-user refresh timeout during a sweep
            on_tokens_revoked: Called with the user id after a failed refresh
                removed that user's tokens
        """
        self._store = store
        self._auth = auth_client
        self._sweep_timeout = sweep_timeout
        self._on_tokens_revoked = on_tokens_revoked
        self._sweep_tasks: set[asyncio.Task] = set()

    @property
    def store(self) -> TokenStore:
        return self._store

    def is_authenticated(self, user_id: str) -> bool:
        """
        Check whether the user has an access token.

        This is a presence check only; an expired token still counts until
        an upstream call proves otherwise.
        """
        return self._store.has(user_id)

    async def with_auto_refresh(self, user_id: str, operation: Operation[T]) -> T:
        """
        Run an upstream operation with the user's access token.

        On UnauthorizedError the token is refreshed once and the operation is
        retried once with the new token. Whatever the retry raises is final.
        Any other error from the first attempt propagates without a refresh.

        Args:
            user_id: User whose token to use
            operation: Coroutine function taking an access token

        Returns:
            The operation's result

        Raises:
            UnauthenticatedError: If no token is stored for the user
            NoRefreshTokenError: If a refresh was needed but is impossible
        """
        access_token = self._store.get(user_id)
        if access_token is None:
            raise UnauthenticatedError(user_id)

        try:
            return await operation(access_token)
        except UnauthorizedError:
            logger.info(f"Received 401 for user {user_id}, attempting token refresh")

        new_token = await self.refresh(user_id)
        logger.debug(f"Retrying operation for user {user_id} with refreshed token")
        return await operation(new_token)

    async def refresh(self, user_id: str, *, revoke_on_failure: bool = True) -> str:
        """
        Refresh the user's access token.

        Keeps the stored refresh token when the accounts service does not
        issue a new one.

        Args:
            user_id: User to refresh
            revoke_on_failure: Remove the user's tokens if the exchange fails

        Returns:
            The new access token

        Raises:
            NoRefreshTokenError: If no refresh token is stored (tokens untouched)
        """
        refresh_token = self._store.get_refresh(user_id)
        if refresh_token is None:
            logger.warning(f"No refresh token found for user: {user_id}")
            raise NoRefreshTokenError(user_id)

        try:
            response = await self._auth.exchange_refresh_token(refresh_token)
        except Exception as e:
            logger.error(f"Failed to refresh token for user {user_id}: {e}")
            if revoke_on_failure:
                self._revoke(user_id)
            raise

        self._store.put(
            user_id,
            response.access_token,
            response.refresh_token if response.refresh_token is not None else refresh_token,
        )
        logger.info(
            f"Refreshed token for user {user_id} ({mask_token(response.access_token)})"
        )
        return response.access_token

    def sweep_all_users(self) -> list[asyncio.Task]:
        """
        Dispatch a proactive refresh for every user with stored tokens.

        Each refresh runs as its own task bounded by the sweep timeout.
        Failures are logged and leave the user's tokens in place, so a
        transient outage does not log everyone out. The sweep does not wait
        for the refreshes to finish.

        Returns:
            The dispatched refresh tasks
        """
        user_ids = self._store.list_active_users()
        if not user_ids:
            logger.debug("Token sweep: no active users")
            return []

        logger.info(f"Token sweep: refreshing {len(user_ids)} user(s)")
        tasks = []
        for user_id in sorted(user_ids):
            task = asyncio.create_task(
                self._sweep_refresh(user_id), name=f"token-sweep-{user_id}"
            )
            self._sweep_tasks.add(task)
            task.add_done_callback(self._sweep_tasks.discard)
            tasks.append(task)
        return tasks

    async def close(self) -> None:
        """Cancel refreshes still running from a previous sweep."""
        tasks = list(self._sweep_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _sweep_refresh(self, user_id: str) -> None:
        try:
            await asyncio.wait_for(
                self.refresh(user_id, revoke_on_failure=False),
                timeout=self._sweep_timeout,
            )
        except asyncio.TimeoutError:
            logger.error(f"Token sweep: refresh for user {user_id} timed out")
        except NoRefreshTokenError:
            logger.warning(f"Token sweep: user {user_id} has no refresh token, skipping")
        except Exception as e:
            logger.error(f"Token sweep: failed to refresh user {user_id}: {e}")

    def _revoke(self, user_id: str) -> None:
        self._store.remove(user_id)
        if self._on_tokens_revoked:
            try:
                self._on_tokens_revoked(user_id)
            except Exception as e:
                logger.warning(f"Token revoked callback failed: {e}")
