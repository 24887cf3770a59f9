"""
SpotifyProxy CLI entry point.

Provides command-line interface for running SpotifyProxy.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Any, Optional, Sequence

from spotify_proxy import __version__
from spotify_proxy.app import SpotifyProxy
from spotify_proxy.config import Config, ConfigError, load_config

logger = logging.getLogger(__name__)

# Exit codes
EXIT_SUCCESS = 0
EXIT_CONFIG_ERROR = 1
EXIT_NETWORK_ERROR = 3


def setup_logging(level: str = "info") -> None:
    """Configure logging to stdout."""
    log_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stdout,
        force=True,
    )


def _parse_origins(value: str) -> list[str]:
    """Parse a comma-separated origin list."""
    origins = [origin.strip() for origin in value.split(",") if origin.strip()]
    if not origins:
        raise argparse.ArgumentTypeError("At least one origin is required")
    return origins


def _positive_float(value: str) -> float:
    try:
        v = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid number: {value}")
    if v <= 0:
        raise argparse.ArgumentTypeError(f"Must be > 0: {value}")
    return v


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="spotify-proxy",
        description="Spotify backend-for-frontend with live playback updates",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  spotify-proxy --config config.yaml
  spotify-proxy --client-id ID --client-secret SECRET --http-port 8080

Environment Variables:
  SPOTIFY_CLIENT_ID, SPOTIFY_CLIENT_SECRET, SPOTIFY_REDIRECT_URI
  SPOTIFYPROXY_DEFAULT_USER, SPOTIFYPROXY_FRONTEND_URL
  SPOTIFYPROXY_HTTP_PORT, SPOTIFYPROXY_BIND, SPOTIFYPROXY_ALLOWED_ORIGINS
  SPOTIFYPROXY_PLAYBACK_INTERVAL, SPOTIFYPROXY_QUEUE_INTERVAL
  SPOTIFYPROXY_TOKEN_REFRESH_INTERVAL, SPOTIFYPROXY_LOG_LEVEL
""",
    )

    # General
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    # Configuration
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("./config.yaml"),
        metavar="PATH",
        help="Path to config file (default: ./config.yaml)",
    )

    # Spotify application
    spotify_group = parser.add_argument_group("Spotify")
    spotify_group.add_argument(
        "--client-id",
        metavar="TEXT",
        help="Spotify application client id",
    )
    spotify_group.add_argument(
        "--client-secret",
        metavar="TEXT",
        help="Spotify application client secret",
    )
    spotify_group.add_argument(
        "--redirect-uri",
        metavar="URL",
        help="OAuth redirect URI registered with Spotify",
    )
    spotify_group.add_argument(
        "--default-user",
        metavar="TEXT",
        help="User id tokens are stored under (default: default_user)",
    )
    spotify_group.add_argument(
        "--frontend-url",
        metavar="URL",
        help="Where the browser is sent after login",
    )
    spotify_group.add_argument(
        "--scopes",
        metavar="TEXT",
        help="Space-separated OAuth scopes to request",
    )
    spotify_group.add_argument(
        "--accounts-url",
        metavar="URL",
        help="Spotify Accounts service base URL",
    )
    spotify_group.add_argument(
        "--api-base-url",
        metavar="URL",
        help="Spotify Web API base URL",
    )
    spotify_group.add_argument(
        "--request-timeout",
        type=_positive_float,
        metavar="SECONDS",
        help="Upstream HTTP request timeout (default: 10)",
    )

    # Server
    server_group = parser.add_argument_group("Server")
    server_group.add_argument(
        "--http-port",
        type=int,
        metavar="INT",
        help="HTTP server port (default: 8080)",
    )
    server_group.add_argument(
        "--bind",
        metavar="TEXT",
        help="Bind address (default: 0.0.0.0)",
    )
    server_group.add_argument(
        "--allowed-origins",
        type=_parse_origins,
        metavar="LIST",
        help="Comma-separated CORS origins",
    )

    # Polling
    polling_group = parser.add_argument_group("Polling")
    polling_group.add_argument(
        "--playback-interval",
        type=_positive_float,
        metavar="SECONDS",
        help="Playback poll interval (default: 3)",
    )
    polling_group.add_argument(
        "--queue-interval",
        type=_positive_float,
        metavar="SECONDS",
        help="Queue poll interval (default: 10)",
    )
    polling_group.add_argument(
        "--token-refresh-interval",
        type=_positive_float,
        metavar="SECONDS",
        help="Token sweep interval (default: 1500)",
    )
    polling_group.add_argument(
        "--task-timeout",
        type=_positive_float,
        metavar="SECONDS",
        help="Max duration of a single background run (default: 30)",
    )
    polling_group.add_argument(
        "--fresh-window",
        type=_positive_float,
        metavar="SECONDS",
        help="Age after which cached state is reported stale (default: 30)",
    )

    # Logging
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error"],
        metavar="LEVEL",
        help="Log level: debug, info, warning, error",
    )

    return parser.parse_args(argv)


def _set_nested(d: dict, path: tuple, value: Any) -> None:
    """Set a nested dictionary value."""
    for key in path[:-1]:
        d = d.setdefault(key, {})
    d[path[-1]] = value


def args_to_dict(args: argparse.Namespace) -> dict:
    """Convert argparse namespace to nested config dict."""
    result: dict = {}

    # Map CLI args to config paths
    mappings = {
        "client_id": ("spotify", "client_id"),
        "client_secret": ("spotify", "client_secret"),
        "redirect_uri": ("spotify", "redirect_uri"),
        "default_user": ("spotify", "default_user"),
        "frontend_url": ("spotify", "frontend_url"),
        "scopes": ("spotify", "scopes"),
        "accounts_url": ("spotify", "accounts_url"),
        "api_base_url": ("spotify", "api_base_url"),
        "request_timeout": ("spotify", "request_timeout"),
        "http_port": ("server", "http_port"),
        "bind": ("server", "bind_address"),
        "allowed_origins": ("server", "allowed_origins"),
        "playback_interval": ("polling", "playback_interval"),
        "queue_interval": ("polling", "queue_interval"),
        "token_refresh_interval": ("polling", "token_refresh_interval"),
        "task_timeout": ("polling", "task_timeout"),
        "fresh_window": ("polling", "fresh_window"),
        "log_level": ("logging", "level"),
    }

    for arg_name, path in mappings.items():
        value = getattr(args, arg_name, None)
        if value is None:
            continue
        _set_nested(result, path, value)

    return result


def log_config(config: Config) -> None:
    """Log configuration summary (without sensitive data)."""
    logger.info(f"Client id: {config.spotify.client_id[:8]}...")
    logger.info(f"Redirect URI: {config.spotify.redirect_uri}")
    logger.info(f"HTTP server: {config.server.bind_address}:{config.server.http_port}")
    logger.info(f"Allowed origins: {', '.join(config.server.allowed_origins)}")
    logger.info(
        f"Polling: playback every {config.polling.playback_interval}s, "
        f"queue every {config.polling.queue_interval}s, "
        f"token sweep every {config.polling.token_refresh_interval}s"
    )


def run_serve(args: argparse.Namespace) -> int:
    """
    Run the proxy server.

    Args:
        args: Parsed arguments

    Returns:
        Exit code
    """
    # Setup basic logging first (will be reconfigured after config load)
    setup_logging("info")

    logger.info(f"SpotifyProxy v{__version__}")

    try:
        cli_config = args_to_dict(args)
        config = load_config(args.config, cli_config)

        # Reconfigure logging with loaded level
        setup_logging(config.logging.level)

        log_config(config)

    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return EXIT_CONFIG_ERROR

    try:
        app = SpotifyProxy(config)
        asyncio.run(app.run())
        return EXIT_SUCCESS

    except (ConnectionError, OSError) as e:
        logger.error(f"Network error: {e}")
        return EXIT_NETWORK_ERROR

    except KeyboardInterrupt:
        logger.info("Interrupted")
        return EXIT_SUCCESS

    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        return EXIT_NETWORK_ERROR


def main(argv: Optional[Sequence[str]] = None) -> int:
    """
    Main entry point.

    Returns:
        Exit code: 0=success, 1=config error, 3=network error
    """
    return run_serve(parse_args(argv))


if __name__ == "__main__":
    sys.exit(main())
