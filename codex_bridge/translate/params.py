"""Build ``thread/start``, ``thread/resume`` and ``turn/start`` parameters."""

from __future__ import annotations

import re
from typing import Any

from codex_bridge.config.schema import DEFAULT_SENTINEL, RuntimeConfig
from codex_bridge.errors import RequestValidationError

_SANDBOX_POLICY_TYPES = {
    "readonly": "readOnly",
    "workspacewrite": "workspaceWrite",
    "dangerfullaccess": "dangerFullAccess",
    "externalsandbox": "externalSandbox",
}
_NO_REASONING = {DEFAULT_SENTINEL, "none"}


def sandbox_policy(mode: str) -> dict[str, str]:
    """Map a sandbox mode (``read-only``, ``workspace-write``...) to the tagged policy."""
    cleaned = re.sub(r"[^a-zA-Z0-9]+", "", (mode or "").strip()).lower()
    return {"type": _SANDBOX_POLICY_TYPES.get(cleaned, "readOnly")}


def reasoning_effort(config: RuntimeConfig) -> str | None:
    value = config.reasoning.strip()
    return None if value.lower() in _NO_REASONING else value


def config_overrides(config: RuntimeConfig) -> dict[str, str]:
    """Overrides that only exist as app-server ``config`` keys."""
    overrides: dict[str, str] = {}
    effort = reasoning_effort(config)
    if effort:
        overrides["model_reasoning_effort"] = effort
    if config.web_search_mode.strip().lower() != DEFAULT_SENTINEL:
        overrides["web_search"] = config.web_search_mode.strip()
    return overrides


def thread_params(config: RuntimeConfig, workspace: str) -> dict[str, Any]:
    params: dict[str, Any] = {
        "cwd": workspace,
        "approvalPolicy": config.approval_policy,
        "sandboxPolicy": sandbox_policy(config.sandbox),
    }
    if config.model.strip().lower() != DEFAULT_SENTINEL:
        params["model"] = config.model
    overrides = config_overrides(config)
    if overrides:
        params["config"] = overrides
    return params


def output_schema_from(params: dict[str, Any]) -> dict[str, Any] | None:
    """Return ``params["outputSchema"]`` when present; it must be a plain object.

    An explicit ``null`` counts as present and is rejected.
    """
    if "outputSchema" not in params:
        return None
    schema = params["outputSchema"]
    if not isinstance(schema, dict):
        raise RequestValidationError("outputSchema must be a plain JSON object")
    return schema


def turn_params(
    codex_thread_id: str,
    input_items: list[dict[str, Any]],
    config: RuntimeConfig,
    workspace: str,
    output_schema: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """``turn/start`` has no ``config`` member; web search rides on the thread."""
    params: dict[str, Any] = {
        "threadId": codex_thread_id,
        "input": input_items,
        "cwd": workspace,
        "approvalPolicy": config.approval_policy,
        "sandboxPolicy": sandbox_policy(config.sandbox),
    }
    if config.model.strip().lower() != DEFAULT_SENTINEL:
        params["model"] = config.model
    effort = reasoning_effort(config)
    if effort:
        params["effort"] = effort
    if output_schema is not None:
        params["outputSchema"] = output_schema
    return params
