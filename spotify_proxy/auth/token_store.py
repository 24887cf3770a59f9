"""
In-memory token storage keyed by user id.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenRecord:
    """Access/refresh token pair for one user."""

    user_id: str
    access_token: str
    refresh_token: Optional[str] = None

    @property
    def access_preview(self) -> str:
        """Shortened access token, safe to log or return to clients."""
        return mask_token(self.access_token)


def mask_token(token: Optional[str], visible: int = 10) -> str:
    """Show only the first and last few characters of a token."""
    if not token:
        return ""
    if len(token) <= visible * 2:
        return token[:visible] + "..."
    return f"{token[:visible]}...{token[-visible:]}"


class TokenStore:
    """
    Thread-safe token map.

    Records are replaced wholesale on every write, so readers never see a
    half-updated token pair. Last writer wins; there are no multi-key
    transactions. No expiry is tracked here: stale tokens are detected by
    the upstream rejecting them.
    """

    def __init__(self) -> None:
        self._records: dict[str, TokenRecord] = {}
        self._lock = threading.Lock()

    def put(self, user_id: str, access_token: str, refresh_token: Optional[str] = None) -> TokenRecord:
        """
        Store tokens for a user.

        Args:
            user_id: User key
            access_token: New access token (must not be empty)
            refresh_token: New refresh token, or None to keep the stored one

        Returns:
            The record now stored for the user
        """
        if not access_token:
            raise ValueError("access_token must not be empty")

        with self._lock:
            if refresh_token is None:
                previous = self._records.get(user_id)
                refresh_token = previous.refresh_token if previous else None
            record = TokenRecord(user_id, access_token, refresh_token)
            self._records[user_id] = record

        logger.debug(f"Stored tokens for user {user_id} ({record.access_preview})")
        return record

    def get(self, user_id: str) -> Optional[str]:
        """Get the access token for a user."""
        record = self.get_record(user_id)
        return record.access_token if record else None

    def get_refresh(self, user_id: str) -> Optional[str]:
        """Get the refresh token for a user."""
        record = self.get_record(user_id)
        return record.refresh_token if record else None

    def get_record(self, user_id: str) -> Optional[TokenRecord]:
        with self._lock:
            return self._records.get(user_id)

    def has(self, user_id: str) -> bool:
        """Check whether an access token is stored for a user."""
        with self._lock:
            return user_id in self._records

    def remove(self, user_id: str) -> None:
        """Forget both tokens for a user."""
        with self._lock:
            removed = self._records.pop(user_id, None)
        if removed:
            logger.debug(f"Removed tokens for user {user_id}")

    def list_active_users(self) -> set[str]:
        """Snapshot of every user id with a stored access token."""
        with self._lock:
            return set(self._records)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
