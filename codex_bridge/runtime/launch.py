"""Resolve which app-server binary to launch and how to launch it."""

from __future__ import annotations

import os
import shutil
import sys
from dataclasses import dataclass
from pathlib import Path

from codex_bridge.errors import RuntimeStartupError

BINARY_ENV_VAR = "CODEX_BRIDGE_BIN"
DEFAULT_BINARY = "codex"
APP_SERVER_SUBCOMMAND = "app-server"

_DEFAULT_SENTINELS = {"auto", "default", "codex"}
_NODE_EXTENSIONS = {".js", ".mjs", ".cjs"}
_PYTHON_EXTENSIONS = {".py"}
_SHELL_EXTENSIONS = {".cmd", ".bat"}


@dataclass(frozen=True)
class LaunchSpec:
    """Fully resolved launch command for the app-server."""

    binary: str
    argv: tuple[str, ...]

    @property
    def program(self) -> str:
        return self.argv[0]


def normalize_binary_override(value: object) -> str | None:
    """Return an explicit binary, or None when ``value`` means "use default"."""
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    if not stripped or stripped.lower() in _DEFAULT_SENTINELS:
        return None
    return stripped


def resolve_binary(override: object = None) -> str:
    """Per-call override, then ``CODEX_BRIDGE_BIN``, then ``codex``."""
    explicit = normalize_binary_override(override)
    if explicit:
        return explicit
    from_env = normalize_binary_override(os.getenv(BINARY_ENV_VAR, ""))
    if from_env:
        return from_env
    return DEFAULT_BINARY


def _binary_candidates(binary: str) -> list[str]:
    if os.name == "nt" and not Path(binary).suffix:
        # npm installs extensionless shell scripts next to the real launchers.
        return [f"{binary}.exe", f"{binary}.cmd", f"{binary}.bat"]
    return [binary]


def locate_binary(binary: str) -> Path | None:
    """Find ``binary`` as a path or on PATH."""
    path = Path(binary).expanduser()
    if len(path.parts) > 1:
        for candidate in [str(path), *_binary_candidates(str(path))]:
            if Path(candidate).is_file():
                return Path(candidate)
        return None
    for candidate in _binary_candidates(binary):
        found = shutil.which(candidate)
        if found:
            return Path(found)
    return None


def build_launch(override: object = None) -> LaunchSpec:
    """Resolve the binary and wrap it in an interpreter when needed.

    Raises:
        RuntimeStartupError: the binary or its interpreter cannot be found.
    """
    binary = resolve_binary(override)
    located = locate_binary(binary)
    if located is None:
        raise RuntimeStartupError(
            f"failed to locate codex binary `{binary}`. "
            f"Install Codex CLI, ensure it is on PATH, or set {BINARY_ENV_VAR} to the executable path."
        )

    suffix = located.suffix.lower()
    target = str(located)
    if suffix in _NODE_EXTENSIONS:
        node = shutil.which("node")
        if node is None:
            raise RuntimeStartupError(
                "node runtime not found. Install Node.js or point "
                f"{BINARY_ENV_VAR} at a Codex executable."
            )
        argv: tuple[str, ...] = (node, target, APP_SERVER_SUBCOMMAND)
    elif suffix in _PYTHON_EXTENSIONS:
        argv = (sys.executable, target, APP_SERVER_SUBCOMMAND)
    elif os.name == "nt" and suffix in _SHELL_EXTENSIONS:
        argv = ("cmd", "/C", target, APP_SERVER_SUBCOMMAND)
    else:
        argv = (target, APP_SERVER_SUBCOMMAND)
    return LaunchSpec(binary=binary, argv=argv)
