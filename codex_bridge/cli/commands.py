"""CLI commands for codex-bridge."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import typer
from loguru import logger
from rich.console import Console

from codex_bridge import __version__

app = typer.Typer(
    name="codex-bridge",
    help="codex-bridge - line-delimited JSON bridge to the Codex app-server",
    no_args_is_help=True,
)
# stdout carries the protocol; anything human-facing goes to stderr.
console = Console(stderr=True)


def version_callback(value: bool) -> None:
    if value:
        console.print(f"codex-bridge v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """codex-bridge entrypoint."""
    del version


def configure_logging(level: str) -> None:
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format="{time:HH:mm:ss.SSS} | {level: <7} | {message}",
        backtrace=False,
        diagnose=False,
    )


@app.command()
def serve(
    config: Path | None = typer.Option(
        None,
        "--config",
        "-c",
        help="Settings file (default: ~/.codex-bridge/config.json).",
    ),
    binary: str | None = typer.Option(
        None,
        "--binary",
        help="Codex binary to launch (overrides CODEX_BRIDGE_BIN).",
    ),
    log_level: str | None = typer.Option(
        None,
        "--log-level",
        help="Log level for stderr output.",
    ),
) -> None:
    """Serve the bridge protocol on stdin/stdout."""
    from codex_bridge.bridge.server import BridgeServer
    from codex_bridge.config.loader import load_settings
    from codex_bridge.protocol.framing import StdinLineSource, StdoutStream

    settings = load_settings(config)
    if binary:
        settings.defaults = settings.defaults.merged({"binary": binary})
    configure_logging(log_level or settings.log_level)
    logger.info(f"codex-bridge v{__version__} starting (binary: {settings.defaults.binary})")

    async def _serve() -> int:
        server = BridgeServer(settings, readline=StdinLineSource().readline, stream=StdoutStream())
        return await server.run()

    try:
        code = asyncio.run(_serve())
    except KeyboardInterrupt:
        logger.info("codex-bridge interrupted")
        code = 130
    raise typer.Exit(code)
