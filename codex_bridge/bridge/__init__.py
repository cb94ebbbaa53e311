"""Caller-facing side of the bridge."""

from codex_bridge.bridge.server import BridgeServer
from codex_bridge.bridge.state import BridgeState, ThreadState

__all__ = ["BridgeServer", "BridgeState", "ThreadState"]
