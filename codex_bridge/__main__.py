"""Entry point for running codex-bridge as a module."""

from codex_bridge.cli.commands import app

if __name__ == "__main__":
    app()
