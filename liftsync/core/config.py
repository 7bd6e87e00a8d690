"""Client settings loaded from an optional YAML file plus environment overrides."""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any
from urllib.parse import quote, urlsplit, urlunsplit

import yaml

DEFAULT_CONFIG_PATH = Path.home() / ".liftsync" / "config.yaml"

ENV_SERVER_URL = "LIFTSYNC_SERVER_URL"
ENV_DATA_DIR = "LIFTSYNC_DATA_DIR"


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class Settings:
    server_url: str = "http://127.0.0.1:3000"
    data_dir: str = "~/.liftsync"
    sync_interval_sec: float = 30.0
    stale_check_interval_sec: float = 60.0
    inactivity_threshold_min: float = 30.0
    reconnect_base_sec: float = 1.0
    reconnect_max_sec: float = 30.0
    reconnect_jitter: float = 0.1
    http_timeout_sec: float = 15.0
    default_rest_sec: int = 120

    @property
    def state_path(self) -> Path:
        return Path(self.data_dir).expanduser() / "state.json"

    def ws_url(self, token: str) -> str:
        """Realtime endpoint for ``token`` on the same host as the REST API."""
        parts = urlsplit(self.server_url)
        scheme = "wss" if parts.scheme == "https" else "ws"
        return urlunsplit((scheme, parts.netloc, "/ws", f"token={quote(token)}", ""))

    @classmethod
    def load(cls, path: str | Path | None = None) -> Settings:
        """Read settings from YAML (if present) and apply environment overrides.

        An explicit ``path`` must exist. The default path is optional.
        """
        config_path = Path(path).expanduser() if path is not None else DEFAULT_CONFIG_PATH
        data: dict[str, Any] = {}
        if config_path.exists():
            try:
                with open(config_path, "r", encoding="utf-8") as f:
                    loaded = yaml.safe_load(f)
            except yaml.YAMLError as exc:
                raise ConfigError(f"Invalid YAML in {config_path}: {exc}") from exc
            if loaded is not None and not isinstance(loaded, dict):
                raise ConfigError(f"{config_path} must contain a mapping")
            data = loaded or {}
        elif path is not None:
            raise ConfigError(f"Config file not found: {config_path}")

        settings = cls.from_dict(data)
        overrides: dict[str, Any] = {}
        if os.environ.get(ENV_SERVER_URL):
            overrides["server_url"] = os.environ[ENV_SERVER_URL]
        if os.environ.get(ENV_DATA_DIR):
            overrides["data_dir"] = os.environ[ENV_DATA_DIR]
        if not overrides:
            return settings
        settings = replace(settings, **overrides)
        settings.validate()
        return settings

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Settings:
        known = {f.name: f for f in fields(cls)}
        unknown = sorted(set(data) - set(known))
        if unknown:
            raise ConfigError(f"Unknown config keys: {', '.join(unknown)}")

        values: dict[str, Any] = {}
        for key, raw in data.items():
            default = getattr(cls, key)
            try:
                values[key] = type(default)(raw)
            except (TypeError, ValueError) as exc:
                raise ConfigError(f"Invalid value for {key}: {raw!r}") from exc

        settings = cls(**values)
        settings.validate()
        return settings

    def validate(self) -> None:
        if not self.server_url.startswith(("http://", "https://")):
            raise ConfigError("server_url must be an http(s) URL")
        for name in ("sync_interval_sec", "stale_check_interval_sec", "inactivity_threshold_min",
                     "reconnect_base_sec", "http_timeout_sec"):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be positive")
        if self.reconnect_max_sec < self.reconnect_base_sec:
            raise ConfigError("reconnect_max_sec must be >= reconnect_base_sec")
        if not 0 <= self.reconnect_jitter < 1:
            raise ConfigError("reconnect_jitter must be in [0, 1)")
