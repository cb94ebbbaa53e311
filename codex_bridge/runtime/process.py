"""One live ``codex app-server`` subprocess and its communication tables."""

from __future__ import annotations

import asyncio
import subprocess
from typing import Any, Callable

from loguru import logger

from codex_bridge import __version__
from codex_bridge.errors import BridgeError, RemoteError, RuntimeClosedError, RuntimeStartupError
from codex_bridge.protocol.envelopes import remote_error_message, rpc_notification, rpc_request
from codex_bridge.protocol.framing import JsonLineWriter, read_frames
from codex_bridge.runtime.correlator import RequestCorrelator
from codex_bridge.runtime.launch import LaunchSpec
from codex_bridge.runtime.turns import TurnTracker

NotificationHandler = Callable[["AppServerRuntime", str, dict], None]
ServerRequestHandler = Callable[[Any, str, Any], dict]
ClosedHandler = Callable[["AppServerRuntime", str], None]

STATE_STARTING = "starting"
STATE_READY = "ready"
STATE_CLOSED = "closed"

# Large aggregated command output arrives as a single line.
_STREAM_LIMIT = 32 * 1024 * 1024
_EXIT_GRACE_S = 1.0
_KILL_WAIT_S = 3.0

CLIENT_INFO = {
    "name": "codex_bridge",
    "title": "Codex Bridge",
    "version": __version__,
}


class AppServerRuntime:
    """Own one app-server process: its stdin writer, pending requests, turns.

    Termination (stdout EOF, reader failure, process exit, explicit shutdown)
    funnels into a single cleanup that rejects every pending request and fails
    every open turn exactly once.
    """

    def __init__(
        self,
        launch: LaunchSpec,
        *,
        generation: int,
        on_notification: NotificationHandler,
        on_server_request: ServerRequestHandler,
        on_closed: ClosedHandler | None = None,
        request_timeout_s: float = 120.0,
        initialize_timeout_s: float = 20.0,
        cwd: str | None = None,
    ) -> None:
        self.launch = launch
        self.generation = generation
        self.request_timeout_s = request_timeout_s
        self.initialize_timeout_s = initialize_timeout_s
        self.cwd = cwd

        self.turns = TurnTracker()
        self.agent_text: dict[str, str] = {}
        self.state = STATE_STARTING

        self._on_notification = on_notification
        self._on_server_request = on_server_request
        self._on_closed = on_closed
        self._correlator = RequestCorrelator()
        self._process: asyncio.subprocess.Process | None = None
        self._writer: JsonLineWriter | None = None
        self._tasks: list[asyncio.Task] = []
        self._close_reason = ""
        self._closed_event = asyncio.Event()

    # ── Lifecycle ─────────────────────────────────────────────────────

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process is not None else None

    @property
    def ready(self) -> bool:
        return self.state == STATE_READY

    @property
    def closed(self) -> bool:
        return self.state == STATE_CLOSED

    @property
    def close_reason(self) -> str:
        return self._close_reason

    @property
    def pending_requests(self) -> int:
        return len(self._correlator)

    async def start(self) -> None:
        """Spawn the process and run the ``initialize`` handshake.

        Raises:
            RuntimeStartupError: spawn failed, a pipe is missing, or the
                handshake failed. The process is terminated first.
        """
        await self._spawn()
        try:
            await self.request(
                "initialize",
                {"clientInfo": dict(CLIENT_INFO), "capabilities": {"experimentalApi": False}},
                timeout_s=self.initialize_timeout_s,
            )
            await self.notify("initialized", {})
        except BridgeError as exc:
            await self.terminate(f"codex app-server failed to initialize: {exc}")
            raise RuntimeStartupError(f"codex app-server failed to initialize: {exc}") from exc
        if self.closed:
            raise RuntimeStartupError(self._close_reason or "codex app-server closed during startup")
        self.state = STATE_READY
        logger.info(f"[app-server] runtime #{self.generation} ready (pid {self.pid})")

    async def _spawn(self) -> None:
        logger.info(f"[app-server] starting runtime #{self.generation}: {' '.join(self.launch.argv)}")
        try:
            process = await asyncio.create_subprocess_exec(
                *self.launch.argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.cwd,
                limit=_STREAM_LIMIT,
                creationflags=getattr(subprocess, "CREATE_NO_WINDOW", 0),
            )
        except OSError as exc:
            self._finalize(f"failed to spawn codex app-server: {exc}")
            raise RuntimeStartupError(f"failed to spawn codex app-server: {exc}") from exc

        self._process = process
        if process.stdin is None or process.stdout is None or process.stderr is None:
            await self.terminate("failed to capture codex app-server stdio")
            raise RuntimeStartupError("failed to capture codex app-server stdio")

        self._writer = JsonLineWriter(process.stdin, name="codex app-server stdin")
        self._tasks = [
            asyncio.create_task(self._read_stdout(), name=f"app-server-{self.generation}-stdout"),
            asyncio.create_task(self._read_stderr(), name=f"app-server-{self.generation}-stderr"),
            asyncio.create_task(self._watch_exit(), name=f"app-server-{self.generation}-exit"),
        ]

    async def shutdown(self, timeout_s: float = 2.0) -> None:
        """Best-effort ``shutdown`` request, then kill the process."""
        if self.ready:
            try:
                await self.request("shutdown", {}, timeout_s=timeout_s)
            except BridgeError as exc:
                logger.debug(f"[app-server] shutdown request ignored: {exc}")
        await self.terminate("codex app-server was shut down")

    async def terminate(self, reason: str) -> None:
        process = self._process
        if process is not None and process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass
            try:
                await asyncio.wait_for(process.wait(), _KILL_WAIT_S)
            except asyncio.TimeoutError:
                logger.warning(f"[app-server] pid {process.pid} did not exit after kill")
        self._finalize(reason)

        current = asyncio.current_task()
        leftovers = [task for task in self._tasks if task is not current and not task.done()]
        for task in leftovers:
            task.cancel()
        if leftovers:
            await asyncio.gather(*leftovers, return_exceptions=True)

    async def wait_closed(self) -> str:
        await self._closed_event.wait()
        return self._close_reason

    def _finalize(self, reason: str) -> None:
        if self.state == STATE_CLOSED:
            return
        self.state = STATE_CLOSED
        self._close_reason = reason
        if self._writer is not None:
            self._writer.close()

        rejected = self._correlator.fail_all(RuntimeClosedError(reason))
        failed_turns = self.turns.fail_all(reason)
        self.agent_text.clear()
        logger.warning(
            f"[app-server] runtime #{self.generation} closed: {reason} "
            f"(rejected {rejected} request(s), failed {failed_turns} turn(s))"
        )
        self._closed_event.set()
        if self._on_closed is not None:
            self._on_closed(self, reason)

    # ── Outgoing ──────────────────────────────────────────────────────

    async def request(self, method: str, params: Any = None, timeout_s: float | None = None) -> Any:
        """Send one request and await its result.

        Raises:
            RuntimeClosedError: the runtime is closed (raised before any write).
            RequestTimeoutError: no response within the timeout.
            RemoteError: the app-server answered with an error.
        """
        if self.closed or self._writer is None:
            raise RuntimeClosedError(self._close_reason or "codex app-server is not running")
        timeout = self.request_timeout_s if timeout_s is None else timeout_s
        entry = self._correlator.register(method, timeout)
        try:
            await self._writer.write(rpc_request(entry.request_id, method, params))
            return await entry.future
        finally:
            self._correlator.discard(entry.request_id)

    async def notify(self, method: str, params: Any = None) -> None:
        if self.closed or self._writer is None:
            raise RuntimeClosedError(self._close_reason or "codex app-server is not running")
        await self._writer.write(rpc_notification(method, params))

    # ── Incoming ──────────────────────────────────────────────────────

    async def _read_stdout(self) -> None:
        assert self._process is not None and self._process.stdout is not None
        reason = "codex app-server closed its stdout"
        try:
            async for frame in read_frames(self._process.stdout.readline):
                if not frame.ok:
                    logger.warning(f"[app-server] {frame.error}: {frame.raw[:200]!r}")
                    continue
                await self._route(frame.payload)
        except Exception as exc:
            logger.exception("[app-server] stdout reader failed")
            reason = f"codex app-server stdout reader failed: {exc}"
        else:
            try:
                code = await asyncio.wait_for(self._process.wait(), _EXIT_GRACE_S)
                reason = f"codex app-server exited (code {code})"
            except asyncio.TimeoutError:
                pass
        self._finalize(reason)

    async def _read_stderr(self) -> None:
        assert self._process is not None and self._process.stderr is not None
        stream = self._process.stderr
        while True:
            try:
                line = await stream.readline()
            except ValueError:
                continue
            if not line:
                return
            text = line.decode("utf-8", errors="replace").strip()
            if text:
                logger.info(f"[app-server] {text}")

    async def _watch_exit(self) -> None:
        assert self._process is not None
        code = await self._process.wait()
        self._finalize(f"codex app-server exited (code {code})")

    async def _route(self, message: Any) -> None:
        if not isinstance(message, dict):
            logger.warning(f"[app-server] ignoring non-object message: {message!r:.200}")
            return

        method = message.get("method")
        request_id = message.get("id")

        if request_id is not None and not isinstance(method, str):
            error = message.get("error")
            if error is not None:
                code = error.get("code") if isinstance(error, dict) else None
                self._correlator.reject(
                    request_id,
                    RemoteError(
                        remote_error_message(error),
                        method=self._correlator.method_for(request_id),
                        code=code if isinstance(code, int) else None,
                    ),
                )
            else:
                self._correlator.resolve(request_id, message.get("result"))
            return

        if not isinstance(method, str):
            logger.debug(f"[app-server] ignoring message without method or id: {message!r:.200}")
            return

        params = message.get("params")
        if request_id is not None:
            response = self._on_server_request(request_id, method, params)
            try:
                await self._writer.write(response)
            except RuntimeClosedError as exc:
                logger.warning(f"[app-server] could not answer {method} (id {request_id}): {exc}")
            return

        try:
            self._on_notification(self, method, params if isinstance(params, dict) else {})
        except Exception:
            logger.exception(f"[app-server] failed to translate notification {method}")
