"""
SpotifyProxy Configuration System.

Priority order (highest to lowest):
1. Command-line arguments
2. Environment variables
3. Configuration file (YAML)
4. Default values
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

logger = logging.getLogger(__name__)


DEFAULT_SCOPES = "user-read-playback-state user-modify-playback-state user-read-currently-playing"

# Valid log levels
VALID_LOG_LEVELS = {"debug", "info", "warning", "error"}

# Environment variable mappings
ENV_MAPPINGS = {
    # Spotify
    "SPOTIFY_CLIENT_ID": ("spotify", "client_id"),
    "SPOTIFY_CLIENT_SECRET": ("spotify", "client_secret"),
    "SPOTIFY_REDIRECT_URI": ("spotify", "redirect_uri"),
    "SPOTIFYPROXY_DEFAULT_USER": ("spotify", "default_user"),
    "SPOTIFYPROXY_FRONTEND_URL": ("spotify", "frontend_url"),
    "SPOTIFY_SCOPES": ("spotify", "scopes"),
    "SPOTIFYPROXY_ACCOUNTS_URL": ("spotify", "accounts_url"),
    "SPOTIFYPROXY_API_BASE_URL": ("spotify", "api_base_url"),
    "SPOTIFYPROXY_REQUEST_TIMEOUT": ("spotify", "request_timeout"),
    # Server
    "SPOTIFYPROXY_HTTP_PORT": ("server", "http_port"),
    "SPOTIFYPROXY_BIND": ("server", "bind_address"),
    "SPOTIFYPROXY_ALLOWED_ORIGINS": ("server", "allowed_origins"),
    # Polling
    "SPOTIFYPROXY_PLAYBACK_INTERVAL": ("polling", "playback_interval"),
    "SPOTIFYPROXY_QUEUE_INTERVAL": ("polling", "queue_interval"),
    "SPOTIFYPROXY_TOKEN_REFRESH_INTERVAL": ("polling", "token_refresh_interval"),
    "SPOTIFYPROXY_TASK_TIMEOUT": ("polling", "task_timeout"),
    "SPOTIFYPROXY_FRESH_WINDOW": ("polling", "fresh_window"),
    # Logging
    "SPOTIFYPROXY_LOG_LEVEL": ("logging", "level"),
}

_INT_ENV_VARS = {"SPOTIFYPROXY_HTTP_PORT"}
_FLOAT_ENV_VARS = {
    "SPOTIFYPROXY_REQUEST_TIMEOUT",
    "SPOTIFYPROXY_PLAYBACK_INTERVAL",
    "SPOTIFYPROXY_QUEUE_INTERVAL",
    "SPOTIFYPROXY_TOKEN_REFRESH_INTERVAL",
    "SPOTIFYPROXY_TASK_TIMEOUT",
    "SPOTIFYPROXY_FRESH_WINDOW",
}


class ConfigError(Exception):
    """Configuration error."""

    pass


@dataclass
class SpotifyConfig:
    """Spotify application and account configuration."""

    client_id: str = ""
    client_secret: str = ""
    redirect_uri: str = "http://localhost:8080/callback"
    scopes: str = DEFAULT_SCOPES
    default_user: str = "default_user"
    frontend_url: str = "http://localhost:5173/"
    accounts_url: str = "https://accounts.spotify.com"
    api_base_url: str = "https://api.spotify.com/v1"
    request_timeout: float = 10.0


@dataclass
class ServerConfig:
    """HTTP server configuration."""

    http_port: int = 8080
    bind_address: str = "0.0.0.0"
    allowed_origins: list[str] = field(default_factory=lambda: ["http://localhost:5173"])


@dataclass
class PollingConfig:
    """Background task cadence (seconds)."""

    playback_interval: float = 3.0
    queue_interval: float = 10.0
    token_refresh_interval: float = 1500.0  # 25 minutes, tokens live for 60
    task_timeout: float = 30.0
    fresh_window: float = 30.0


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "info"


@dataclass
class Config:
    """Complete SpotifyProxy configuration."""

    spotify: SpotifyConfig = field(default_factory=SpotifyConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    polling: PollingConfig = field(default_factory=PollingConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def validate_port(port: int) -> bool:
    """Validate port number."""
    return 1 <= port <= 65535


def validate_config(config: Config) -> None:
    """
    Validate configuration.

    Raises:
        ConfigError: If configuration is invalid
    """
    errors = []

    # Spotify application credentials
    if not config.spotify.client_id:
        errors.append("Spotify client_id is required")
    if not config.spotify.client_secret:
        errors.append("Spotify client_secret is required")
    if not config.spotify.redirect_uri:
        errors.append("Spotify redirect_uri is required")
    if not config.spotify.default_user:
        errors.append("default_user must not be empty")
    if config.spotify.request_timeout <= 0:
        errors.append(f"Invalid request_timeout: {config.spotify.request_timeout}")

    # Server
    if not validate_port(config.server.http_port):
        errors.append(f"Invalid HTTP port: {config.server.http_port}")

    # Polling
    for name in (
        "playback_interval",
        "queue_interval",
        "token_refresh_interval",
        "task_timeout",
        "fresh_window",
    ):
        value = getattr(config.polling, name)
        if value <= 0:
            errors.append(f"Invalid {name}: {value} (must be > 0)")

    # Logging
    if config.logging.level.lower() not in VALID_LOG_LEVELS:
        errors.append(
            f"Invalid log level: {config.logging.level}. "
            f"Valid values: {sorted(VALID_LOG_LEVELS)}"
        )

    if errors:
        raise ConfigError("Configuration validation failed:\n  - " + "\n  - ".join(errors))


def load_yaml_config(path: Path) -> dict:
    """
    Load configuration from YAML file.

    Args:
        path: Path to YAML file

    Returns:
        Configuration dictionary

    Raises:
        ConfigError: If file cannot be read or parsed
    """
    if not path.exists():
        logger.debug(f"Config file not found: {path}")
        return {}

    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Error parsing YAML config: {e}")
    except IOError as e:
        raise ConfigError(f"Error reading config file: {e}")

    if not data:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file must contain a mapping: {path}")
    return data


def _set_nested(d: dict, path: tuple, value: Any) -> None:
    """Set a nested dictionary value using a path tuple."""
    for key in path[:-1]:
        d = d.setdefault(key, {})
    d[path[-1]] = value


def load_env_config() -> dict:
    """
    Load configuration from environment variables.

    Returns:
        Configuration dictionary with values from environment
    """
    result: dict = {}

    for env_var, path in ENV_MAPPINGS.items():
        value: Any = os.environ.get(env_var)
        if value is None:
            continue

        if env_var in _INT_ENV_VARS:
            try:
                value = int(value)
            except ValueError:
                logger.warning(f"Invalid integer for {env_var}: {value}")
                continue
        elif env_var in _FLOAT_ENV_VARS:
            try:
                value = float(value)
            except ValueError:
                logger.warning(f"Invalid number for {env_var}: {value}")
                continue
        elif env_var == "SPOTIFYPROXY_ALLOWED_ORIGINS":
            value = [origin.strip() for origin in value.split(",") if origin.strip()]

        _set_nested(result, path, value)

    return result


def _deep_merge(base: dict, override: dict) -> None:
    """Recursively merge override into base."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value


def merge_configs(*configs: dict) -> dict:
    """
    Deep merge multiple configuration dictionaries.
    Later configs override earlier ones.
    """
    result: dict = {}
    for config in configs:
        _deep_merge(result, config)
    return result


def _coerce(current: Any, value: Any) -> Any:
    """Convert a raw value to the type of the field it replaces."""
    if isinstance(current, list):
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        if isinstance(value, list):
            return [str(item) for item in value]
        raise ValueError("expected a list or comma-separated string")
    if isinstance(current, (int, float)) and isinstance(value, bool):
        raise ValueError("expected a number")
    if isinstance(current, int):
        if isinstance(value, float) and not value.is_integer():
            raise ValueError("expected an integer")
        return int(value)
    if isinstance(current, float):
        return float(value)
    if isinstance(current, str):
        if isinstance(value, (dict, list)):
            raise ValueError("expected a string")
        return str(value)
    return value


def _apply_section(name: str, section: Any, values: Any, errors: list[str]) -> None:
    """Copy known keys from a dict onto a config dataclass section."""
    if values is None:
        return
    if not isinstance(values, dict):
        errors.append(f"Section '{name}' must be a mapping")
        return
    for key, value in values.items():
        if not hasattr(section, key):
            logger.warning(f"Ignoring unknown config key: {name}.{key}")
            continue
        if value is None:
            continue
        try:
            setattr(section, key, _coerce(getattr(section, key), value))
        except (TypeError, ValueError) as e:
            errors.append(f"Invalid {name}.{key}: {value!r} ({e})")


def dict_to_config(d: dict) -> Config:
    """
    Convert a dictionary to Config dataclass.

    Raises:
        ConfigError: If a value has the wrong type
    """
    config = Config()
    errors: list[str] = []

    for name in ("spotify", "server", "polling", "logging"):
        if name in d:
            _apply_section(name, getattr(config, name), d[name], errors)

    if errors:
        raise ConfigError("Configuration validation failed:\n  - " + "\n  - ".join(errors))

    return config


def load_config(
    config_path: Optional[Path] = None,
    cli_args: Optional[dict] = None,
) -> Config:
    """
    Load configuration from all sources.

    Priority (highest to lowest):
    1. CLI arguments
    2. Environment variables
    3. Config file
    4. Defaults

    Args:
        config_path: Path to YAML config file
        cli_args: Dictionary of CLI arguments

    Returns:
        Merged Config object

    Raises:
        ConfigError: If configuration is invalid
    """
    configs = []

    if config_path:
        file_config = load_yaml_config(config_path)
        if file_config:
            configs.append(file_config)
            logger.debug(f"Loaded config from {config_path}")

    env_config = load_env_config()
    if env_config:
        configs.append(env_config)
        logger.debug("Loaded config from environment variables")

    if cli_args:
        configs.append(cli_args)
        logger.debug("Loaded config from CLI arguments")

    merged = merge_configs(*configs) if configs else {}

    # Defaults come from the dataclasses
    config = dict_to_config(merged)

    validate_config(config)

    return config
