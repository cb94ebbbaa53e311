"""Shared fixtures for the codex-bridge test suite."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

FAKE_APP_SERVER = Path(__file__).with_name("fake_app_server.py")


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch):
    for name in list(os.environ):
        if name.startswith("CODEX_BRIDGE_") or name.startswith("FAKE_APP_SERVER_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture
def fake_app_server(monkeypatch) -> str:
    """Path to the scripted app-server, launched through the ``.py`` rule."""
    monkeypatch.setenv("FAKE_APP_SERVER_MODE", "normal")
    return str(FAKE_APP_SERVER)
