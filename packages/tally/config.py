"""Persisted CLI settings (auth token, API URL).

Stored as JSON at ``~/.tally/config.json`` using camelCase keys
(``authToken``, ``apiUrl``). ``TALLY_CONFIG_DIR`` relocates the directory.
Environment variables ``TALLY_TOKEN`` and ``TALLY_API_URL`` take precedence
over the file when set.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from .logging_setup import get_logger

logger = get_logger(__name__)

DEFAULT_API_URL = "http://localhost:3000"
_CONFIG_FILE = "config.json"


def config_dir() -> Path:
    root = os.getenv("TALLY_CONFIG_DIR")
    if root and root.strip():
        return Path(root).expanduser().resolve()
    return Path.home() / ".tally"


def config_path() -> Path:
    return config_dir() / _CONFIG_FILE


def get_config() -> dict[str, Any]:
    path = config_path()
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("ignoring unreadable config file %s: %s", path, e)
        return {}
    return data if isinstance(data, dict) else {}


def save_config(updates: dict[str, Any]) -> dict[str, Any]:
    """Merge ``updates`` into the stored config and return the result."""

    merged = {**get_config(), **updates}
    path = config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(merged, indent=2) + "\n", encoding="utf-8")
    return merged


def get_auth_token() -> str | None:
    env = os.getenv("TALLY_TOKEN")
    if env and env.strip():
        return env.strip()
    token = get_config().get("authToken")
    return token or None


def set_auth_token(token: str) -> None:
    save_config({"authToken": token})


def get_api_url() -> str:
    env = os.getenv("TALLY_API_URL")
    if env and env.strip():
        return env.strip()
    return get_config().get("apiUrl") or DEFAULT_API_URL


def set_api_url(url: str) -> None:
    save_config({"apiUrl": url})


__all__ = [
    "DEFAULT_API_URL",
    "config_dir",
    "config_path",
    "get_config",
    "save_config",
    "get_auth_token",
    "set_auth_token",
    "get_api_url",
    "set_api_url",
]
