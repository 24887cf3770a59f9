"""
Spotify authentication module.

Handles OAuth token exchange, token storage and the refresh policy.
"""

from .coordinator import TokenCoordinator
from .exceptions import (
    AuthenticationError,
    NoRefreshTokenError,
    TokenExchangeError,
    UnauthenticatedError,
)
from .oauth_client import SpotifyAuthClient, TokenResponse
from .token_store import TokenRecord, TokenStore, mask_token

__all__ = [
    "AuthenticationError",
    "NoRefreshTokenError",
    "SpotifyAuthClient",
    "TokenCoordinator",
    "TokenExchangeError",
    "TokenRecord",
    "TokenResponse",
    "TokenStore",
    "UnauthenticatedError",
    "mask_token",
]
