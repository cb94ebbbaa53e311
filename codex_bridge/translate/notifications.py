"""Translate app-server notifications into caller events.

The translator is installed as the runtime's notification handler. It runs on
the stdout-drain task, so updates to the runtime's turn tracker and text
buffers happen in wire order.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable

from loguru import logger

from codex_bridge.runtime.turns import STATUS_COMPLETED, STATUS_FAILED, STATUS_INTERRUPTED
from codex_bridge.translate.items import AGENT_MESSAGE, agent_message_text, convert_item

if TYPE_CHECKING:
    from codex_bridge.runtime.process import AppServerRuntime

EventSink = Callable[[dict[str, Any]], None]

_FAILED_TURN_STATUSES = {STATUS_FAILED, STATUS_INTERRUPTED}


def _str_or_none(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _int(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    return 0


def convert_token_usage(token_usage: Any) -> dict[str, int] | None:
    """``{inputTokens, cachedInputTokens, outputTokens}`` -> legacy snake-case usage.

    Prefers the thread-wide ``total`` breakdown and falls back to ``last``.
    """
    usage = _as_dict(token_usage)
    breakdown = usage.get("total") or usage.get("last") or usage
    if not isinstance(breakdown, dict) or not breakdown:
        return None
    return {
        "input_tokens": _int(breakdown.get("inputTokens")),
        "cached_input_tokens": _int(breakdown.get("cachedInputTokens")),
        "output_tokens": _int(breakdown.get("outputTokens")),
    }


def _error_message(error: Any, fallback: str) -> str:
    if isinstance(error, dict):
        message = error.get("message")
        if isinstance(message, str) and message.strip():
            return message.strip()
    if isinstance(error, str) and error.strip():
        return error.strip()
    return fallback


class NotificationTranslator:
    """Stateless dispatcher; per-runtime state lives on the runtime itself."""

    def __init__(self, emit: EventSink) -> None:
        self._emit = emit
        self._handlers: dict[str, Callable[["AppServerRuntime", dict[str, Any]], None]] = {
            "thread/started": self._thread_started,
            "turn/started": self._turn_started,
            "turn/completed": self._turn_completed,
            "thread/tokenUsage/updated": self._token_usage,
            "item/started": self._item_started,
            "item/completed": self._item_completed,
            "item/agentMessage/delta": self._agent_message_delta,
            "error": self._error,
        }

    def __call__(self, runtime: "AppServerRuntime", method: str, params: dict[str, Any]) -> None:
        handler = self._handlers.get(method)
        if handler is None:
            logger.debug(f"[bridge] ignoring notification {method}")
            return
        handler(runtime, params)

    # ── Thread / turn lifecycle ───────────────────────────────────────

    def _thread_started(self, runtime: "AppServerRuntime", params: dict[str, Any]) -> None:
        thread_id = _str_or_none(_as_dict(params.get("thread")).get("id")) or _str_or_none(
            params.get("threadId")
        )
        self._emit({"type": "thread.started", "thread_id": thread_id})

    def _turn_started(self, runtime: "AppServerRuntime", params: dict[str, Any]) -> None:
        turn_id = _str_or_none(_as_dict(params.get("turn")).get("id")) or _str_or_none(params.get("turnId"))
        if turn_id:
            runtime.turns.ensure(turn_id)
        self._emit({"type": "turn.started", "thread_id": _str_or_none(params.get("threadId")), "turn_id": turn_id})

    def _turn_completed(self, runtime: "AppServerRuntime", params: dict[str, Any]) -> None:
        turn = _as_dict(params.get("turn"))
        turn_id = _str_or_none(turn.get("id")) or _str_or_none(params.get("turnId"))
        status = _str_or_none(turn.get("status")) or STATUS_COMPLETED
        usage = convert_token_usage(params.get("usage")) if params.get("usage") else None

        if status in _FAILED_TURN_STATUSES:
            message = _error_message(turn.get("error"), f"turn {status}")
            self._emit({"type": "turn.failed", "error": {"message": message}})
            if turn_id:
                runtime.turns.complete(turn_id, usage=usage, status=status, error=message)
            return

        if turn_id:
            snapshot = runtime.turns.complete(turn_id, usage=usage, status=status)
            usage = snapshot.usage
        self._emit({"type": "turn.completed", "usage": usage})

    def _token_usage(self, runtime: "AppServerRuntime", params: dict[str, Any]) -> None:
        turn_id = _str_or_none(params.get("turnId"))
        usage = convert_token_usage(params.get("tokenUsage"))
        if turn_id and usage is not None:
            runtime.turns.update(turn_id, usage=usage)

    def _error(self, runtime: "AppServerRuntime", params: dict[str, Any]) -> None:
        message = _error_message(params.get("error"), "codex app-server reported an error")
        self._emit({"type": "turn.failed", "error": {"message": message}})
        turn_id = _str_or_none(params.get("turnId"))
        if turn_id and params.get("willRetry") is not True:
            runtime.turns.complete(turn_id, status=STATUS_FAILED, error=message)

    # ── Items ─────────────────────────────────────────────────────────

    def _item_started(self, runtime: "AppServerRuntime", params: dict[str, Any]) -> None:
        item = params.get("item")
        self._mirror_agent_text(runtime, params, item, final=False)
        self._emit({"type": "item.started", "item": convert_item(item)})

    def _item_completed(self, runtime: "AppServerRuntime", params: dict[str, Any]) -> None:
        item = params.get("item")
        text = self._mirror_agent_text(runtime, params, item, final=True)
        converted = convert_item(item)
        if text and isinstance(converted, dict) and converted.get("type") == "agent_message":
            converted["text"] = text
        self._emit({"type": "item.completed", "item": converted})

    def _agent_message_delta(self, runtime: "AppServerRuntime", params: dict[str, Any]) -> None:
        item_id = _str_or_none(params.get("itemId"))
        delta = params.get("delta")
        if not item_id or not isinstance(delta, str):
            return
        text = runtime.agent_text.get(item_id, "") + delta
        runtime.agent_text[item_id] = text
        turn_id = _str_or_none(params.get("turnId"))
        if turn_id:
            runtime.turns.update(turn_id, final_response=text)
        self._emit({"type": "item.updated", "item": {"id": item_id, "type": "agent_message", "text": text}})

    def _mirror_agent_text(
        self, runtime: "AppServerRuntime", params: dict[str, Any], item: Any, *, final: bool
    ) -> str | None:
        if not isinstance(item, dict) or item.get("type") != AGENT_MESSAGE:
            return None
        item_id = _str_or_none(item.get("id"))
        text = agent_message_text(item)
        if item_id:
            if final:
                text = text or runtime.agent_text.get(item_id, "")
                runtime.agent_text.pop(item_id, None)
            elif text:
                runtime.agent_text[item_id] = text
        turn_id = _str_or_none(params.get("turnId"))
        if turn_id and text:
            runtime.turns.update(turn_id, final_response=text)
        return text
