"""App-server subprocess lifecycle, request correlation and turn tracking."""

from codex_bridge.runtime.process import AppServerRuntime
from codex_bridge.runtime.supervisor import RuntimeSupervisor

__all__ = ["AppServerRuntime", "RuntimeSupervisor"]
