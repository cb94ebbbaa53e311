"""Caller method handlers.

Each handler takes the request ``params`` object and returns the ``result``
object; raising turns into an ``ok: false`` response.
"""

from __future__ import annotations

import os
from typing import Any, Awaitable, Callable

from loguru import logger

from codex_bridge.bridge.state import BridgeState, ThreadState
from codex_bridge.config.schema import BridgeSettings, RuntimeConfig
from codex_bridge.errors import BridgeError
from codex_bridge.runtime.process import AppServerRuntime
from codex_bridge.translate.inputs import normalize_input_items
from codex_bridge.translate.items import snake_status
from codex_bridge.translate.mcp import list_servers, warmup_servers
from codex_bridge.translate.params import config_overrides, output_schema_from, thread_params, turn_params

Handler = Callable[[dict[str, Any]], Awaitable[dict[str, Any]]]

PROTOCOL_VERSION = 1


def _non_empty_str(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


def _response_id(result: Any, key: str) -> str | None:
    """``result[key]["id"]`` when it is a non-empty string."""
    if not isinstance(result, dict):
        return None
    inner = result.get(key)
    return _non_empty_str(inner.get("id")) if isinstance(inner, dict) else None


class BridgeHandlers:
    def __init__(self, state: BridgeState, settings: BridgeSettings) -> None:
        self.state = state
        self.settings = settings
        self.methods: dict[str, Handler] = {
            "health": self.health,
            "thread.open": self.thread_open,
            "thread.close": self.thread_close,
            "turn.run": self.turn_run,
            "mcp.warmup": self.mcp_warmup,
            "mcp.list": self.mcp_list,
            "config.get": self.config_get,
            "config.set": self.config_set,
            "shutdown": self.shutdown,
        }

    async def _runtime(self, config: RuntimeConfig | None = None) -> AppServerRuntime:
        config = config or self.state.config
        return await self.state.supervisor.ensure(config.binary)

    # ── health / config ───────────────────────────────────────────────

    async def health(self, params: dict[str, Any]) -> dict[str, Any]:
        runtime = await self._runtime()
        return {
            "ok": True,
            "version": PROTOCOL_VERSION,
            "runtime": {
                "pid": runtime.pid,
                "command": list(runtime.launch.argv),
                "generation": runtime.generation,
            },
        }

    async def config_get(self, params: dict[str, Any]) -> dict[str, Any]:
        return self.state.config.to_wire()

    async def config_set(self, params: dict[str, Any]) -> dict[str, Any]:
        self.state.config = self.state.config.merged(params.get("patch"))
        return self.state.config.to_wire()

    # ── threads ───────────────────────────────────────────────────────

    async def thread_open(self, params: dict[str, Any]) -> dict[str, Any]:
        """Open (or return) a caller thread backed by an app-server thread.

        Re-opening an existing id returns the stored triple without touching
        the app-server.
        """
        async with self.state.thread_lock:
            thread_id = _non_empty_str(params.get("threadId")) or self.state.allocate_thread_id()
            existing = self.state.threads.get(thread_id)
            if existing is not None:
                return existing.describe()

            thread = ThreadState(
                thread_id=thread_id,
                workspace=_non_empty_str(params.get("workspace")) or os.getcwd(),
                codex_thread_id=_non_empty_str(params.get("codexThreadId")),
            )
            config = self.state.config.merged(params.get("runtimeConfig"))
            runtime = await self._runtime(config)
            await self._attach(runtime, thread, config, thread.workspace)
            self.state.threads[thread_id] = thread
            logger.info(f"[bridge] opened {thread_id} -> {thread.codex_thread_id}")
            return thread.describe()

    async def thread_close(self, params: dict[str, Any]) -> dict[str, Any]:
        thread = self.state.get_thread(params.get("threadId"))
        self.state.threads.pop(thread.thread_id, None)
        return {"threadId": thread.thread_id, "removed": True}

    async def _attach(
        self, runtime: AppServerRuntime, thread: ThreadState, config: RuntimeConfig, workspace: str
    ) -> str:
        """Make sure ``thread`` has an app-server thread in ``runtime`` using ``config``."""
        overrides = config_overrides(config)
        if (
            thread.codex_thread_id
            and thread.runtime_generation == runtime.generation
            and thread.config_overrides == overrides
        ):
            return thread.codex_thread_id

        params = thread_params(config, workspace)
        if thread.codex_thread_id:
            method = "thread/resume"
            params["threadId"] = thread.codex_thread_id
        else:
            method = "thread/start"
        result = await runtime.request(method, params)
        codex_thread_id = _response_id(result, "thread")
        if codex_thread_id is None:
            raise BridgeError(f"{method} response did not include a thread id")
        thread.codex_thread_id = codex_thread_id
        thread.runtime_generation = runtime.generation
        thread.config_overrides = overrides
        return codex_thread_id

    # ── turns ─────────────────────────────────────────────────────────

    async def turn_run(self, params: dict[str, Any]) -> dict[str, Any]:
        output_schema = output_schema_from(params)
        thread = self.state.get_thread(params.get("threadId"))
        config = self.state.config.merged(params.get("runtimeConfig"))
        workspace = _non_empty_str(params.get("workspace")) or thread.workspace

        runtime = await self._runtime(config)
        async with self.state.thread_lock:
            codex_thread_id = await self._attach(runtime, thread, config, workspace)

        input_items = normalize_input_items(params.get("inputItems"))
        result = await runtime.request(
            "turn/start",
            turn_params(codex_thread_id, input_items, config, workspace, output_schema),
        )
        turn_id = _response_id(result, "turn")
        if turn_id is None:
            raise BridgeError("turn/start response did not include a turn id")

        snapshot = await runtime.turns.wait(turn_id, self.settings.turn_timeout_s)
        if snapshot.failed:
            raise BridgeError(snapshot.error or f"turn {snake_status(snapshot.status)}")
        return {
            "threadId": thread.thread_id,
            "codexThreadId": codex_thread_id,
            "turnId": turn_id,
            "status": snake_status(snapshot.status),
            "finalResponse": snapshot.final_response,
            "usage": snapshot.usage,
        }

    # ── MCP ───────────────────────────────────────────────────────────

    async def mcp_list(self, params: dict[str, Any]) -> dict[str, Any]:
        runtime = await self._runtime()
        return await list_servers(runtime, self.settings.mcp_list_timeout_s)

    async def mcp_warmup(self, params: dict[str, Any]) -> dict[str, Any]:
        runtime = await self._runtime()
        result = await warmup_servers(runtime, self.settings.mcp_list_timeout_s)
        logger.info(f"[bridge] MCP warmup: {result['totalReady']} server(s) in {result['elapsedMs']}ms")
        return result

    # ── shutdown ──────────────────────────────────────────────────────

    async def shutdown(self, params: dict[str, Any]) -> dict[str, Any]:
        await self.state.supervisor.shutdown()
        return {"ok": True}
