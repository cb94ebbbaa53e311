"""Configuration module for codex-bridge."""

from codex_bridge.config.loader import get_config_path, load_settings
from codex_bridge.config.schema import BridgeSettings, RuntimeConfig

__all__ = ["BridgeSettings", "RuntimeConfig", "get_config_path", "load_settings"]
