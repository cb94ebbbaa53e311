"""Fixed answers to requests the app-server sends to the bridge.

The bridge has no user to ask, so approvals are declined, user-input prompts
pick the first offered option, and everything else is refused explicitly.
"""

from __future__ import annotations

from typing import Any, Callable

from loguru import logger

from codex_bridge.protocol.envelopes import INTERNAL_ERROR, METHOD_NOT_FOUND, rpc_error, rpc_result

DYNAMIC_TOOL_MESSAGE = "dynamic tool calls are not supported by codex-bridge"


class UnsupportedServerRequest(Exception):
    """Answered with a ``-32601`` error instead of a result."""


def _decline(params: dict[str, Any]) -> dict[str, Any]:
    return {"decision": "decline"}


def _legacy_denied(params: dict[str, Any]) -> dict[str, Any]:
    return {"decision": "denied"}


def _first_option_answers(params: dict[str, Any]) -> dict[str, Any]:
    answers: dict[str, Any] = {}
    for question in params.get("questions") or []:
        if not isinstance(question, dict):
            continue
        question_id = question.get("id")
        if not isinstance(question_id, str) or not question_id:
            continue
        selected: list[str] = []
        for option in question.get("options") or []:
            label = option.get("label") if isinstance(option, dict) else option
            if isinstance(label, str) and label:
                selected.append(label)
                break
        answers[question_id] = {"answers": selected}
    return {"answers": answers}


def _refuse_tool_call(params: dict[str, Any]) -> dict[str, Any]:
    return {
        "success": False,
        "contentItems": [{"type": "inputText", "text": DYNAMIC_TOOL_MESSAGE}],
    }


def _refuse_token_refresh(params: dict[str, Any]) -> dict[str, Any]:
    raise UnsupportedServerRequest("chatgpt auth token refresh is not supported by codex-bridge")


_RESPONDERS: dict[str, Callable[[dict[str, Any]], dict[str, Any]]] = {
    "item/commandExecution/requestApproval": _decline,
    "item/fileChange/requestApproval": _decline,
    "execCommandApproval": _legacy_denied,
    "applyPatchApproval": _legacy_denied,
    "item/tool/requestUserInput": _first_option_answers,
    "item/tool/call": _refuse_tool_call,
    "account/chatgptAuthTokens/refresh": _refuse_token_refresh,
}


def build_server_response(request_id: Any, method: str, params: Any) -> dict[str, Any]:
    """Return the envelope answering one server-initiated request; never raises."""
    responder = _RESPONDERS.get(method)
    if responder is None:
        logger.warning(f"[app-server] unsupported server request: {method}")
        return rpc_error(request_id, METHOD_NOT_FOUND, f"unsupported server request: {method}")
    try:
        result = responder(params if isinstance(params, dict) else {})
    except UnsupportedServerRequest as exc:
        return rpc_error(request_id, METHOD_NOT_FOUND, str(exc))
    except Exception as exc:
        logger.exception(f"[app-server] failed to answer server request {method}")
        return rpc_error(request_id, INTERNAL_ERROR, str(exc) or type(exc).__name__)
    logger.debug(f"[app-server] answered {method} (id {request_id})")
    return rpc_result(request_id, result)
