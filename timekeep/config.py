"""Configuration loading for timekeep."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


@dataclass
class ClientConfig:
    """Configuration for the syncing client."""

    api_base: str = "http://localhost:4000"
    cache_path: str = "~/.timekeep/cache.db"
    debounce_ms: int = 500
    timeout_seconds: float = 10.0

    @property
    def debounce_seconds(self) -> float:
        return self.debounce_ms / 1000


@dataclass
class ServerConfig:
    """Configuration for the backend document store and auth provider."""

    host: str = "0.0.0.0"
    port: int = 4000
    db_path: str = "~/.timekeep/server.db"
    jwt_secret: str = "change-me"
    token_expire_days: int = 365


@dataclass
class Config:
    client: ClientConfig = field(default_factory=ClientConfig)
    server: ServerConfig = field(default_factory=ServerConfig)


def _get_env(key: str, default: Any = None) -> Any:
    """Get environment variable with TIMEKEEP_ prefix."""
    return os.environ.get(f"TIMEKEEP_{key}", default)


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides to config."""
    # Client overrides
    if api_base := _get_env("API_BASE"):
        config.client.api_base = api_base
    if cache_path := _get_env("CACHE_PATH"):
        config.client.cache_path = cache_path
    if debounce := _get_env("DEBOUNCE_MS"):
        config.client.debounce_ms = int(debounce)

    # Server overrides
    if host := _get_env("SERVER_HOST"):
        config.server.host = host
    if port := _get_env("SERVER_PORT"):
        config.server.port = int(port)
    if db_path := _get_env("SERVER_DB_PATH"):
        config.server.db_path = db_path
    if secret := _get_env("JWT_SECRET"):
        config.server.jwt_secret = secret

    return config


def load_config(config_path: str | Path | None = None) -> Config:
    """Load configuration from YAML file with environment variable overrides.

    Args:
        config_path: Path to YAML config file. If None, uses default config.

    Returns:
        Loaded Config object.
    """
    config = Config()

    if config_path:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                data = yaml.safe_load(f) or {}

            # Parse client config
            if "client" in data:
                client_data = data["client"]
                config.client = ClientConfig(
                    api_base=client_data.get("api_base", config.client.api_base),
                    cache_path=client_data.get("cache_path", config.client.cache_path),
                    debounce_ms=client_data.get("debounce_ms", config.client.debounce_ms),
                    timeout_seconds=client_data.get(
                        "timeout_seconds", config.client.timeout_seconds
                    ),
                )

            # Parse server config
            if "server" in data:
                server_data = data["server"]
                config.server = ServerConfig(
                    host=server_data.get("host", config.server.host),
                    port=server_data.get("port", config.server.port),
                    db_path=server_data.get("db_path", config.server.db_path),
                    jwt_secret=server_data.get("jwt_secret", config.server.jwt_secret),
                    token_expire_days=server_data.get(
                        "token_expire_days", config.server.token_expire_days
                    ),
                )

    return _apply_env_overrides(config)
