"""Envelope builders for the two channels.

Caller channel::

    {"type": "request", "id": 1, "method": "health", "params": {}}
    {"type": "response", "id": 1, "ok": true, "result": {...}}
    {"type": "response", "id": 1, "ok": false, "error": "..."}
    {"type": "event", "event": {...}}

App-server channel (JSON-RPC without the ``jsonrpc`` member)::

    {"id": 1, "method": "thread/start", "params": {...}}
    {"method": "initialized", "params": {}}
    {"id": 1, "result": {...}}  /  {"id": 1, "error": {"code": -32601, "message": "..."}}
"""

from __future__ import annotations

from typing import Any

# JSON-RPC error codes used when answering server-initiated requests.
METHOD_NOT_FOUND = -32601
INTERNAL_ERROR = -32603


def caller_response(request_id: int | None, result: Any) -> dict[str, Any]:
    return {"type": "response", "id": request_id, "ok": True, "result": result}


def caller_error(request_id: int | None, error: BaseException | str) -> dict[str, Any]:
    message = str(error) if str(error) else type(error).__name__
    return {"type": "response", "id": request_id, "ok": False, "error": message}


def caller_event(event: dict[str, Any]) -> dict[str, Any]:
    return {"type": "event", "event": event}


def rpc_request(request_id: int, method: str, params: Any) -> dict[str, Any]:
    return {"id": request_id, "method": method, "params": params if params is not None else {}}


def rpc_notification(method: str, params: Any = None) -> dict[str, Any]:
    return {"method": method, "params": params if params is not None else {}}


def rpc_result(request_id: Any, result: Any) -> dict[str, Any]:
    return {"id": request_id, "result": result}


def rpc_error(request_id: Any, code: int, message: str) -> dict[str, Any]:
    return {"id": request_id, "error": {"code": code, "message": message}}


def remote_error_message(error: Any) -> str:
    """Extract the human-readable message from an app-server error payload."""
    if isinstance(error, dict):
        message = error.get("message")
        if isinstance(message, str) and message.strip():
            details = error.get("additionalDetails") or error.get("details")
            if isinstance(details, str) and details.strip() and details.strip() != message.strip():
                return f"{message.strip()} ({details.strip()})"
            return message.strip()
    if isinstance(error, str) and error.strip():
        return error.strip()
    return "app-server request failed"
