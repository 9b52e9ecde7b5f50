"""
Configuration management for a watchsync store.

The configuration is stored as a TOML file in the store directory. It
names the remote table endpoint and the owner whose list is synced.
Environment variables override the file for credentials and owner.
"""

import os
import tomllib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import tomli_w  # tomllib is read-only


CONFIG_FILENAME = "watchsync.toml"
CONFIG_VERSION = 1

DEFAULT_TABLE = "watchlist"
DEFAULT_POLL_INTERVAL = 15.0


@dataclass
class RemoteConfig:
    """Where the remote watchlist table lives."""
    api_url: str = ""
    api_key: str = ""
    table: str = DEFAULT_TABLE
    poll_interval: float = DEFAULT_POLL_INTERVAL

    @property
    def configured(self) -> bool:
        return bool(self.api_url and self.api_key)


@dataclass
class StoreConfig:
    """Complete store configuration."""
    path: Path
    version: int = CONFIG_VERSION
    created: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    remote: RemoteConfig = field(default_factory=RemoteConfig)
    owner_id: str = ""

    @property
    def config_path(self) -> Path:
        """Path to the TOML config file."""
        return self.path / CONFIG_FILENAME

    @property
    def database_path(self) -> Path:
        """Path to the local SQLite store."""
        return self.path / "watchsync.db"

    def exists(self) -> bool:
        """Check if config file exists."""
        return self.config_path.exists()


def default_store_path() -> Path:
    """Store directory: WATCHSYNC_STORE_PATH, else ~/.watchsync."""
    env_path = os.environ.get("WATCHSYNC_STORE_PATH")
    if env_path:
        return Path(env_path).expanduser()
    return Path.home() / ".watchsync"


def apply_env_overrides(config: StoreConfig) -> StoreConfig:
    """Let environment variables override credentials and owner."""
    api_url = os.environ.get("WATCHSYNC_API_URL")
    if api_url:
        config.remote.api_url = api_url
    api_key = os.environ.get("WATCHSYNC_API_KEY")
    if api_key:
        config.remote.api_key = api_key
    owner_id = os.environ.get("WATCHSYNC_OWNER_ID")
    if owner_id:
        config.owner_id = owner_id
    return config


def load_config(store_path: Path) -> StoreConfig:
    """
    Load configuration from a store directory.

    Raises:
        FileNotFoundError: If config doesn't exist
        ValueError: If config is invalid
    """
    config_path = store_path / CONFIG_FILENAME

    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    with open(config_path, "rb") as f:
        data = tomllib.load(f)

    # Validate version
    version = data.get("store", {}).get("version", 1)
    if version > CONFIG_VERSION:
        raise ValueError(f"Config version {version} is newer than supported ({CONFIG_VERSION})")

    remote = data.get("remote", {})
    try:
        poll_interval = float(remote.get("poll_interval", DEFAULT_POLL_INTERVAL))
    except (TypeError, ValueError):
        raise ValueError(f"Invalid remote.poll_interval: {remote.get('poll_interval')!r}") from None

    return StoreConfig(
        path=store_path,
        version=version,
        created=data.get("store", {}).get("created", ""),
        remote=RemoteConfig(
            api_url=remote.get("api_url", ""),
            api_key=remote.get("api_key", ""),
            table=remote.get("table", DEFAULT_TABLE),
            poll_interval=poll_interval,
        ),
        owner_id=data.get("owner", {}).get("id", ""),
    )


def save_config(config: StoreConfig) -> None:
    """
    Save configuration to the store directory.

    Creates the directory if it doesn't exist.
    """
    config.path.mkdir(parents=True, exist_ok=True)

    data = {
        "store": {
            "version": config.version,
            "created": config.created,
        },
        "remote": {
            "api_url": config.remote.api_url,
            "api_key": config.remote.api_key,
            "table": config.remote.table,
            "poll_interval": config.remote.poll_interval,
        },
        "owner": {
            "id": config.owner_id,
        },
    }

    with open(config.config_path, "wb") as f:
        tomli_w.dump(data, f)


def load_or_create_config(store_path: Optional[Path] = None) -> StoreConfig:
    """
    Load existing config or create a new one with defaults.

    This is the main entry point for config management. Environment
    overrides are applied to the returned config but never written back.
    """
    store_path = store_path or default_store_path()
    config_path = store_path / CONFIG_FILENAME

    if config_path.exists():
        config = load_config(store_path)
    else:
        config = StoreConfig(path=store_path)
        save_config(config)
    return apply_env_overrides(config)
