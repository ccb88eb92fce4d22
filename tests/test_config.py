"""Tests for configuration loading."""

import pytest

from speakez.config import Config, load_config


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in (
        "SPEAKEZ_SYNC_SERVER_URL",
        "SPEAKEZ_SESSION_TOKEN",
        "SPEAKEZ_SYNC_ENABLED",
        "SPEAKEZ_SYNC_DEBOUNCE_SECONDS",
        "SPEAKEZ_SERVER_PORT",
    ):
        monkeypatch.delenv(key, raising=False)


def test_defaults_without_file():
    config = load_config(None)

    assert config == Config()
    assert config.sync.debounce_seconds == 2.0
    assert config.sync.incremental_pull is False


def test_missing_file_uses_defaults(tmp_path):
    assert load_config(tmp_path / "absent.yaml") == Config()


def test_yaml_sections(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        """
device:
  name: phone
store:
  db_path: /tmp/speakez.db
sync:
  server_url: https://speakez.example
  session_token: abc
  debounce_seconds: 5
server:
  port: 9000
  sessions:
    tok-1: user-1
"""
    )

    config = load_config(path)

    assert config.device.name == "phone"
    assert config.store.db_path == "/tmp/speakez.db"
    assert config.sync.server_url == "https://speakez.example"
    assert config.sync.session_token == "abc"
    assert config.sync.debounce_seconds == 5.0
    assert config.sync.api_prefix == "/api"
    assert config.server.port == 9000
    assert config.server.sessions == {"tok-1": "user-1"}


def test_env_overrides(tmp_path, monkeypatch):
    monkeypatch.setenv("SPEAKEZ_SYNC_SERVER_URL", "http://localhost:8787")
    monkeypatch.setenv("SPEAKEZ_SESSION_TOKEN", "from-env")
    monkeypatch.setenv("SPEAKEZ_SYNC_ENABLED", "no")
    monkeypatch.setenv("SPEAKEZ_SYNC_DEBOUNCE_SECONDS", "0.5")
    monkeypatch.setenv("SPEAKEZ_SERVER_PORT", "9100")

    config = load_config(None)

    assert config.sync.server_url == "http://localhost:8787"
    assert config.sync.session_token == "from-env"
    assert config.sync.enabled is False
    assert config.sync.debounce_seconds == 0.5
    assert config.server.port == 9100
