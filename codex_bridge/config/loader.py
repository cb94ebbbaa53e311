"""Load codex-bridge settings from an optional JSON file plus environment."""

from __future__ import annotations

import json
from pathlib import Path

from loguru import logger

from codex_bridge.config.schema import BridgeSettings


def get_config_path() -> Path:
    """Default settings file location."""
    return Path.home() / ".codex-bridge" / "config.json"


def _read_json(path: Path) -> dict:
    if not path.is_file():
        return {}
    try:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning(f"Ignoring unreadable config file {path}: {exc}")
        return {}
    if not isinstance(data, dict):
        logger.warning(f"Ignoring config file {path}: top-level value is not an object")
        return {}
    return data


def load_settings(path: Path | None = None) -> BridgeSettings:
    """Build settings from ``path`` (or the default location) and the environment."""
    config_path = path or get_config_path()
    return BridgeSettings(**_read_json(config_path))
