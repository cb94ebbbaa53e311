import sys

import pytest

from codex_bridge.errors import RuntimeStartupError
from codex_bridge.runtime import launch
from codex_bridge.runtime.launch import build_launch, normalize_binary_override, resolve_binary


@pytest.mark.parametrize("value", [None, "", "  ", "auto", "Default", "CODEX", 42])
def test_sentinels_mean_default(value):
    assert normalize_binary_override(value) is None


def test_resolve_binary_precedence(monkeypatch):
    assert resolve_binary() == "codex"

    monkeypatch.setenv("CODEX_BRIDGE_BIN", " /opt/env-codex ")
    assert resolve_binary() == "/opt/env-codex"
    assert resolve_binary("auto") == "/opt/env-codex"
    assert resolve_binary("/opt/call-codex") == "/opt/call-codex"


def test_python_scripts_run_through_current_interpreter(tmp_path):
    script = tmp_path / "server.py"
    script.write_text("", encoding="utf-8")

    spec = build_launch(str(script))

    assert spec.argv == (sys.executable, str(script), "app-server")
    assert spec.binary == str(script)


def test_node_scripts_need_node(tmp_path, monkeypatch):
    script = tmp_path / "codex.js"
    script.write_text("", encoding="utf-8")

    monkeypatch.setattr(launch.shutil, "which", lambda name: None)
    with pytest.raises(RuntimeStartupError, match="node runtime not found"):
        build_launch(str(script))

    monkeypatch.setattr(launch.shutil, "which", lambda name: "/usr/bin/node" if name == "node" else None)
    assert build_launch(str(script)).argv == ("/usr/bin/node", str(script), "app-server")


def test_binary_on_path_is_executed_directly(monkeypatch):
    monkeypatch.setattr(launch.shutil, "which", lambda name: "/usr/local/bin/codex" if name == "codex" else None)

    spec = build_launch()

    assert spec.argv == ("/usr/local/bin/codex", "app-server")
    assert spec.program == "/usr/local/bin/codex"


def test_missing_binary_names_the_override_variable(monkeypatch):
    monkeypatch.setattr(launch.shutil, "which", lambda name: None)

    with pytest.raises(RuntimeStartupError, match="CODEX_BRIDGE_BIN"):
        build_launch("codex-nightly")
