"""Convert app-server thread items into the flatter legacy item shapes the GUI renders.

Each recognized ``type`` has one converter; anything else passes through
verbatim so newer app-server item kinds still reach the caller.
"""

from __future__ import annotations

import re
from typing import Any, Callable

AGENT_MESSAGE = "agentMessage"

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")
_PLAN_BULLET = re.compile(r"^\s*(?:[-*+]|\d+[.)])\s*")
_PLAN_CHECKBOX = re.compile(r"^\[( |x|X)\]\s*")


def snake_status(status: Any) -> Any:
    """``inProgress`` -> ``in_progress``; non-strings are returned unchanged."""
    if not isinstance(status, str):
        return status
    return _CAMEL_BOUNDARY.sub("_", status).lower()


def _text_parts(value: Any) -> list[str]:
    if isinstance(value, str):
        return [value] if value else []
    parts: list[str] = []
    if isinstance(value, list):
        for entry in value:
            if isinstance(entry, str) and entry:
                parts.append(entry)
            elif isinstance(entry, dict) and isinstance(entry.get("text"), str) and entry["text"]:
                parts.append(entry["text"])
    return parts


def agent_message_text(item: dict[str, Any]) -> str:
    text = item.get("text")
    if isinstance(text, str):
        return text
    return "".join(_text_parts(item.get("content")))


def _agent_message(item: dict[str, Any]) -> dict[str, Any]:
    return {"id": item.get("id"), "type": "agent_message", "text": agent_message_text(item)}


def _command_execution(item: dict[str, Any]) -> dict[str, Any]:
    command = item.get("command")
    if isinstance(command, list):
        command = " ".join(str(part) for part in command)
    output = item.get("aggregatedOutput")
    return {
        "id": item.get("id"),
        "type": "command_execution",
        "command": command if isinstance(command, str) else "",
        "aggregated_output": output if isinstance(output, str) else "",
        "exit_code": item.get("exitCode"),
        "status": snake_status(item.get("status")),
    }


def _mcp_tool_call(item: dict[str, Any]) -> dict[str, Any]:
    converted: dict[str, Any] = {
        "id": item.get("id"),
        "type": "mcp_tool_call",
        "server": item.get("server"),
        "tool": item.get("tool"),
        "arguments": item.get("arguments"),
        "status": snake_status(item.get("status")),
    }
    if item.get("result") is not None:
        converted["result"] = item["result"]
    error = item.get("error")
    if isinstance(error, dict):
        converted["error"] = {"message": str(error.get("message") or "")}
    elif isinstance(error, str) and error:
        converted["error"] = {"message": error}
    return converted


def _change_kind(kind: Any) -> str:
    if isinstance(kind, dict):
        kind = kind.get("type")
    return snake_status(kind) if isinstance(kind, str) and kind else "update"


def _file_change(item: dict[str, Any]) -> dict[str, Any]:
    changes = []
    for change in item.get("changes") or []:
        if isinstance(change, dict) and isinstance(change.get("path"), str):
            changes.append({"path": change["path"], "kind": _change_kind(change.get("kind"))})
    return {
        "id": item.get("id"),
        "type": "file_change",
        "changes": changes,
        "status": snake_status(item.get("status")),
    }


def _reasoning(item: dict[str, Any]) -> dict[str, Any]:
    parts = _text_parts(item.get("summary")) + _text_parts(item.get("content"))
    if not parts:
        parts = _text_parts(item.get("text"))
    return {"id": item.get("id"), "type": "reasoning", "text": "\n".join(parts)}


def _plan_entries(text: str) -> list[dict[str, Any]]:
    entries = []
    for line in text.splitlines():
        body = _PLAN_BULLET.sub("", line).strip()
        completed = False
        checkbox = _PLAN_CHECKBOX.match(body)
        if checkbox:
            completed = checkbox.group(1).lower() == "x"
            body = body[checkbox.end():].strip()
        if body:
            entries.append({"text": body, "completed": completed})
    return entries


def _plan(item: dict[str, Any]) -> dict[str, Any]:
    text = item.get("text")
    return {
        "id": item.get("id"),
        "type": "todo_list",
        "items": _plan_entries(text) if isinstance(text, str) else [],
    }


def _web_search(item: dict[str, Any]) -> dict[str, Any]:
    query = item.get("query")
    return {"id": item.get("id"), "type": "web_search", "query": query if isinstance(query, str) else ""}


_CONVERTERS: dict[str, Callable[[dict[str, Any]], dict[str, Any]]] = {
    AGENT_MESSAGE: _agent_message,
    "commandExecution": _command_execution,
    "mcpToolCall": _mcp_tool_call,
    "fileChange": _file_change,
    "reasoning": _reasoning,
    "plan": _plan,
    "webSearch": _web_search,
}


def convert_item(item: Any) -> Any:
    """Return the legacy shape for ``item``; unknown kinds pass through verbatim."""
    if not isinstance(item, dict):
        return item
    converter = _CONVERTERS.get(item.get("type"))  # type: ignore[arg-type]
    if converter is None:
        return item
    return converter(item)
