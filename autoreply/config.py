"""Config loader. Loads config.local.yaml, provides get()/require()/settings()."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

from autoreply.common import (
    DEFAULT_GREETING,
    INBOX_DIR,
    LOGS_DIR,
    OUTBOX_DIR,
    REPLIED_FILE_NAME,
    STATE_DIR,
)

PROJECT_DIR = Path(__file__).parent.parent
LOCAL_CONFIG_FILE = PROJECT_DIR / "config.local.yaml"

_config: dict = {}
_loaded = False


class ResponderSettings(BaseModel, frozen=True):
    """Runtime settings for the responder. All policy constants in one place."""

    greeting: str = DEFAULT_GREETING
    reconnect_base_delay: float = Field(default=5.0, ge=0)
    max_reconnect_attempts: int = Field(default=5, ge=0)

    data_dir: Path = STATE_DIR
    replied_file: str = REPLIED_FILE_NAME
    logs_dir: Path = LOGS_DIR

    host: str = "0.0.0.0"
    port: int = Field(default=3002, ge=0, le=65535)
    status_refresh_seconds: int = Field(default=5, ge=1)

    inbox_dir: Path = INBOX_DIR
    outbox_dir: Path = OUTBOX_DIR

    shutdown_timeout: float = Field(default=5.0, gt=0)
    version: str = "0.1.0"

    @property
    def replied_path(self) -> Path:
        return self.data_dir / self.replied_file


def load() -> dict:
    """Load config.local.yaml. Safe to call multiple times (cached)."""
    global _config, _loaded
    if _loaded:
        return _config

    if not LOCAL_CONFIG_FILE.exists():
        raise FileNotFoundError(
            f"Required config file not found: {LOCAL_CONFIG_FILE}\n"
            f"Copy config.example.yaml to config.local.yaml and fill in your values."
        )

    with open(LOCAL_CONFIG_FILE) as f:
        _config = yaml.safe_load(f) or {}

    _loaded = True
    return _config


def get(dotpath: str, default: Any = None) -> Any:
    """Get a config value by dot-separated path. e.g. get('server.port')"""
    load()
    keys = dotpath.split(".")
    node = _config
    for key in keys:
        if isinstance(node, dict) and key in node:
            node = node[key]
        else:
            return default
    return node


def require(dotpath: str) -> Any:
    """Get a config value or raise if missing/falsy (None, '', 0, False)."""
    value = get(dotpath)
    if not value:
        raise ValueError(
            f"Required config '{dotpath}' is missing or falsy (got {value!r}). "
            f"Check config.local.yaml."
        )
    return value


def reload() -> dict:
    """Force reload from disk (useful for tests)."""
    global _loaded
    _loaded = False
    return load()


# (settings field, config dotpath)
_SETTINGS_KEYS: list[tuple[str, str]] = [
    ("greeting", "responder.greeting"),
    ("reconnect_base_delay", "responder.reconnect_base_delay"),
    ("max_reconnect_attempts", "responder.max_reconnect_attempts"),
    ("data_dir", "storage.data_dir"),
    ("replied_file", "storage.replied_file"),
    ("logs_dir", "storage.logs_dir"),
    ("host", "server.host"),
    ("port", "server.port"),
    ("status_refresh_seconds", "server.status_refresh_seconds"),
    ("inbox_dir", "client.inbox_dir"),
    ("outbox_dir", "client.outbox_dir"),
    ("shutdown_timeout", "shutdown_timeout"),
]


def settings() -> ResponderSettings:
    """Build ResponderSettings from config.local.yaml plus env overrides.

    Env overrides: PORT, AUTOREPLY_DATA_DIR.
    """
    values: dict[str, Any] = {}
    for field_name, dotpath in _SETTINGS_KEYS:
        value = get(dotpath)
        if value is not None:
            values[field_name] = value

    for path_field in ("data_dir", "logs_dir", "inbox_dir", "outbox_dir"):
        if path_field in values:
            values[path_field] = Path(str(values[path_field])).expanduser()

    port = os.environ.get("PORT", "").strip()
    if port:
        values["port"] = int(port)
    data_dir = os.environ.get("AUTOREPLY_DATA_DIR", "").strip()
    if data_dir:
        values["data_dir"] = Path(data_dir).expanduser()

    return ResponderSettings(**values)
