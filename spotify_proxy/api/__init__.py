"""Spotify Web API module."""

from .client import (
    SpotifyAPIClient,
    SpotifyAPIError,
    UnauthorizedError,
    parse_error_message,
)
from .player import PlayerService

__all__ = [
    "PlayerService",
    "SpotifyAPIClient",
    "SpotifyAPIError",
    "UnauthorizedError",
    "parse_error_message",
]
