"""Tests for store configuration."""

import pytest

from watchsync.config import (
    CONFIG_FILENAME,
    RemoteConfig,
    StoreConfig,
    load_config,
    load_or_create_config,
    save_config,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("WATCHSYNC_API_URL", "WATCHSYNC_API_KEY", "WATCHSYNC_OWNER_ID", "WATCHSYNC_STORE_PATH"):
        monkeypatch.delenv(name, raising=False)


class TestConfig:

    def test_create_writes_defaults(self, tmp_path):
        config = load_or_create_config(tmp_path)
        assert (tmp_path / CONFIG_FILENAME).exists()
        assert config.remote.table == "watchlist"
        assert config.remote.poll_interval == 15.0
        assert not config.remote.configured
        assert config.database_path == tmp_path / "watchsync.db"

    def test_save_and_load_round_trip(self, tmp_path):
        config = StoreConfig(
            path=tmp_path,
            remote=RemoteConfig(api_url="https://db.example.com", api_key="k", poll_interval=5),
            owner_id="owner-1",
        )
        save_config(config)
        loaded = load_config(tmp_path)
        assert loaded.remote.api_url == "https://db.example.com"
        assert loaded.remote.configured
        assert loaded.remote.poll_interval == 5.0
        assert loaded.owner_id == "owner-1"
        assert loaded.created == config.created

    def test_env_overrides_file(self, tmp_path, monkeypatch):
        save_config(StoreConfig(path=tmp_path, owner_id="from-file"))
        monkeypatch.setenv("WATCHSYNC_OWNER_ID", "from-env")
        monkeypatch.setenv("WATCHSYNC_API_URL", "https://env.example.com")
        monkeypatch.setenv("WATCHSYNC_API_KEY", "env-key")

        config = load_or_create_config(tmp_path)
        assert config.owner_id == "from-env"
        assert config.remote.configured
        # Overrides are never written back
        assert load_config(tmp_path).owner_id == "from-file"

    def test_store_path_from_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("WATCHSYNC_STORE_PATH", str(tmp_path / "store"))
        config = load_or_create_config()
        assert config.path == tmp_path / "store"

    def test_missing_config(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path)

    def test_newer_version_rejected(self, tmp_path):
        (tmp_path / CONFIG_FILENAME).write_text("[store]\nversion = 99\n")
        with pytest.raises(ValueError, match="newer"):
            load_config(tmp_path)

    def test_bad_poll_interval_rejected(self, tmp_path):
        (tmp_path / CONFIG_FILENAME).write_text('[remote]\npoll_interval = "often"\n')
        with pytest.raises(ValueError, match="poll_interval"):
            load_config(tmp_path)
