"""Configuration loading for Speak-EZ sync."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


@dataclass
class DeviceConfig:
    name: str = "speakez-device"


@dataclass
class StoreConfig:
    """Configuration for the local snapshot store."""

    db_path: str = "~/.speakez/state.db"


@dataclass
class SyncConfig:
    """Configuration for push/pull sync with the server."""

    enabled: bool = True
    server_url: str = ""
    api_prefix: str = "/api"
    session_token: str | None = None  # session cookie from the magic-link login
    debounce_seconds: float = 2.0
    timeout_seconds: float = 30.0
    max_retries: int = 2
    incremental_pull: bool = False


@dataclass
class ServerConfig:
    """Configuration for the reference sync server."""

    host: str = "127.0.0.1"
    port: int = 8787
    sessions: dict[str, str] = field(default_factory=dict)
    """Session token -> user id"""


@dataclass
class Config:
    device: DeviceConfig = field(default_factory=DeviceConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    server: ServerConfig = field(default_factory=ServerConfig)


def _get_env(key: str, default: Any = None) -> Any:
    """Get environment variable with SPEAKEZ_ prefix."""
    return os.environ.get(f"SPEAKEZ_{key}", default)


def _as_bool(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides to config."""
    if name := _get_env("DEVICE_NAME"):
        config.device.name = name

    if db_path := _get_env("STORE_DB_PATH"):
        config.store.db_path = db_path

    # Sync overrides
    if sync_enabled := _get_env("SYNC_ENABLED"):
        config.sync.enabled = _as_bool(sync_enabled)
    if server_url := _get_env("SYNC_SERVER_URL"):
        config.sync.server_url = server_url
    if token := _get_env("SESSION_TOKEN"):
        config.sync.session_token = token
    if debounce := _get_env("SYNC_DEBOUNCE_SECONDS"):
        config.sync.debounce_seconds = float(debounce)
    if incremental := _get_env("SYNC_INCREMENTAL_PULL"):
        config.sync.incremental_pull = _as_bool(incremental)

    # Server overrides
    if host := _get_env("SERVER_HOST"):
        config.server.host = host
    if port := _get_env("SERVER_PORT"):
        config.server.port = int(port)

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

            if "device" in data:
                config.device = DeviceConfig(
                    name=data["device"].get("name", config.device.name)
                )

            if "store" in data:
                config.store = StoreConfig(
                    db_path=data["store"].get("db_path", config.store.db_path)
                )

            # Parse sync config
            if "sync" in data:
                sync_data = data["sync"]
                config.sync = SyncConfig(
                    enabled=sync_data.get("enabled", config.sync.enabled),
                    server_url=sync_data.get("server_url", config.sync.server_url),
                    api_prefix=sync_data.get("api_prefix", config.sync.api_prefix),
                    session_token=sync_data.get(
                        "session_token", config.sync.session_token
                    ),
                    debounce_seconds=float(
                        sync_data.get("debounce_seconds", config.sync.debounce_seconds)
                    ),
                    timeout_seconds=float(
                        sync_data.get("timeout_seconds", config.sync.timeout_seconds)
                    ),
                    max_retries=sync_data.get("max_retries", config.sync.max_retries),
                    incremental_pull=sync_data.get(
                        "incremental_pull", config.sync.incremental_pull
                    ),
                )

            # Parse server config
            if "server" in data:
                server_data = data["server"]
                config.server = ServerConfig(
                    host=server_data.get("host", config.server.host),
                    port=server_data.get("port", config.server.port),
                    sessions={
                        str(token): str(user_id)
                        for token, user_id in (server_data.get("sessions") or {}).items()
                    },
                )

    return _apply_env_overrides(config)
