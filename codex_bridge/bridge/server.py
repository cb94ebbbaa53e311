"""Caller-facing loop: read requests from stdin, answer on stdout.

Lines are read and validated strictly in order. Each valid request then runs
as its own task so a long ``turn.run`` does not hold up ``health`` or
``mcp.list``. Every outgoing message (responses and events alike) goes
through one queue, so events emitted during a turn reach the caller before
that turn's response.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any

from loguru import logger

from codex_bridge.bridge.handlers import BridgeHandlers, Handler
from codex_bridge.bridge.state import BridgeState
from codex_bridge.config.schema import BridgeSettings
from codex_bridge.errors import BridgeError
from codex_bridge.protocol.envelopes import caller_error, caller_event, caller_response
from codex_bridge.protocol.framing import Frame, JsonLineWriter, Readline, WritableStream, read_frames
from codex_bridge.runtime.supervisor import RuntimeSupervisor
from codex_bridge.server_requests import build_server_response
from codex_bridge.translate.notifications import NotificationTranslator

SHUTDOWN_METHOD = "shutdown"
_DRAIN_GRACE_S = 5.0


def _request_id(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    return None


class BridgeServer:
    def __init__(self, settings: BridgeSettings, *, readline: Readline, stream: WritableStream) -> None:
        self.settings = settings
        self._readline = readline
        self._writer = JsonLineWriter(stream, name="caller stdout")
        self._outbox: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue()
        self._tasks: set[asyncio.Task] = set()

        supervisor = RuntimeSupervisor(
            on_notification=NotificationTranslator(self.emit_event),
            on_server_request=build_server_response,
            request_timeout_s=settings.request_timeout_s,
            initialize_timeout_s=settings.initialize_timeout_s,
            shutdown_timeout_s=settings.shutdown_timeout_s,
        )
        self.state = BridgeState(supervisor=supervisor, config=settings.defaults)
        self.handlers = BridgeHandlers(self.state, settings)

    # ── Outgoing ──────────────────────────────────────────────────────

    def send(self, message: dict[str, Any]) -> None:
        self._outbox.put_nowait(message)

    def emit_event(self, event: dict[str, Any]) -> None:
        self.send(caller_event(event))

    async def _pump_outbox(self) -> None:
        while True:
            message = await self._outbox.get()
            if message is None:
                return
            try:
                await self._writer.write(message)
            except BridgeError as exc:
                logger.warning(f"[bridge] dropping outgoing message: {exc}")

    # ── Main loop ─────────────────────────────────────────────────────

    async def run(self) -> int:
        """Serve until ``shutdown`` or stdin EOF; returns the process exit code."""
        pump = asyncio.create_task(self._pump_outbox(), name="caller-outbox")
        self.emit_event({"type": "bridge.ready", "timestamp": datetime.now(timezone.utc).isoformat()})
        logger.info("[bridge] ready")
        try:
            async for frame in read_frames(self._readline):
                if await self._handle_frame(frame):
                    break
            else:
                logger.info("[bridge] stdin closed; shutting down")
        finally:
            await self._teardown()
            self._outbox.put_nowait(None)
            await pump
        return 0

    async def _handle_frame(self, frame: Frame) -> bool:
        """Validate one line and dispatch it; returns True after ``shutdown``."""
        if not frame.ok:
            message = f"failed to parse bridge request: {frame.error}"
            self.emit_event({"type": "error", "message": message})
            self.send(caller_error(None, message))
            return False

        request = frame.payload
        if not isinstance(request, dict) or request.get("type") != "request":
            self.emit_event({"type": "error", "message": "invalid bridge message type"})
            request_id = _request_id(request.get("id")) if isinstance(request, dict) else None
            if request_id is not None:
                self.send(caller_error(request_id, "invalid bridge message type"))
            return False

        request_id = _request_id(request.get("id"))
        method = request.get("method")
        if request_id is None or not isinstance(method, str) or not method:
            self.send(caller_error(request_id, "invalid request shape"))
            return False
        params = request.get("params")
        params = params if isinstance(params, dict) else {}

        handler = self.handlers.methods.get(method)
        if handler is None:
            self.send(caller_error(request_id, f"unsupported method: {method}"))
            return False

        if method == SHUTDOWN_METHOD:
            await self._respond(request_id, method, handler, params)
            return True

        task = asyncio.create_task(
            self._respond(request_id, method, handler, params),
            name=f"caller-{method}-{request_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return False

    async def _respond(
        self, request_id: int, method: str, handler: Handler, params: dict[str, Any]
    ) -> None:
        try:
            result = await handler(params)
        except BridgeError as exc:
            logger.warning(f"[bridge] {method} (id {request_id}) failed: {exc}")
            self.send(caller_error(request_id, exc))
        except Exception as exc:
            logger.exception(f"[bridge] {method} (id {request_id}) raised unexpectedly")
            self.send(caller_error(request_id, exc))
        else:
            self.send(caller_response(request_id, result))

    async def _teardown(self) -> None:
        await self.state.supervisor.shutdown()
        if not self._tasks:
            return
        # Runtime loss has already failed their app-server calls; give them a
        # moment to write their error responses.
        _, pending = await asyncio.wait(set(self._tasks), timeout=_DRAIN_GRACE_S)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
