"""codex-bridge - line-delimited JSON bridge for the Codex app-server."""

__version__ = "0.1.0"
