"""
SpotifyProxy - Spotify backend-for-frontend.

Holds OAuth tokens on behalf of a browser client, refreshes them, and
pushes live playback and queue state over a WebSocket.
"""

__version__ = "0.1.0"

from .app import SpotifyProxy
from .config import Config, ConfigError, load_config

__all__ = [
    "__version__",
    "SpotifyProxy",
    "Config",
    "load_config",
    "ConfigError",
]
