from __future__ import annotations

from pathlib import Path

import pytest

from liftsync.core.config import ConfigError, Settings


def test_defaults() -> None:
    settings = Settings()
    assert settings.sync_interval_sec == 30
    assert settings.stale_check_interval_sec == 60
    assert settings.inactivity_threshold_min == 30
    assert (settings.reconnect_base_sec, settings.reconnect_max_sec) == (1.0, 30.0)


def test_load_yaml_with_env_override(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = tmp_path / "config.yaml"
    path.write_text("server_url: https://lift.example.com\nsync_interval_sec: 10\n", encoding="utf-8")
    monkeypatch.setenv("LIFTSYNC_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.delenv("LIFTSYNC_SERVER_URL", raising=False)

    settings = Settings.load(path)

    assert settings.server_url == "https://lift.example.com"
    assert settings.sync_interval_sec == 10.0
    assert settings.state_path == tmp_path / "data" / "state.json"
    assert settings.ws_url("a b") == "wss://lift.example.com/ws?token=a%20b"


def test_plain_http_uses_plain_ws() -> None:
    assert Settings().ws_url("t") == "ws://127.0.0.1:3000/ws?token=t"


@pytest.mark.parametrize(
    "content",
    [
        "unknown_key: 1\n",
        "sync_interval_sec: soon\n",
        "sync_interval_sec: 0\n",
        "server_url: ftp://x\n",
        "reconnect_base_sec: 5\nreconnect_max_sec: 2\n",
        "- just\n- a list\n",
        "server_url: [unclosed\n",
    ],
)
def test_bad_config_is_rejected(tmp_path: Path, content: str) -> None:
    path = tmp_path / "config.yaml"
    path.write_text(content, encoding="utf-8")
    with pytest.raises(ConfigError):
        Settings.load(path)


def test_explicit_missing_file_is_an_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigError):
        Settings.load(tmp_path / "nope.yaml")


def test_bad_env_server_url_is_rejected(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = tmp_path / "config.yaml"
    path.write_text("sync_interval_sec: 10\n", encoding="utf-8")
    monkeypatch.setenv("LIFTSYNC_SERVER_URL", "lift.example.com")

    with pytest.raises(ConfigError):
        Settings.load(path)
