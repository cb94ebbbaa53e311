"""Keep at most one current app-server runtime and start it on demand."""

from __future__ import annotations

import asyncio

from loguru import logger

from codex_bridge.errors import RuntimeStartupError
from codex_bridge.runtime.launch import LaunchSpec, build_launch
from codex_bridge.runtime.process import AppServerRuntime, NotificationHandler, ServerRequestHandler


class RuntimeSupervisor:
    """Ensure-available access to the app-server.

    - a ready runtime is reused;
    - callers arriving during startup join the in-flight start task;
    - a missing, closed, or failed runtime is replaced by a fresh spawn;
    - a runtime launched with a different command is retired (fully drained)
      before its replacement becomes current.
    """

    def __init__(
        self,
        *,
        on_notification: NotificationHandler,
        on_server_request: ServerRequestHandler,
        request_timeout_s: float = 120.0,
        initialize_timeout_s: float = 20.0,
        shutdown_timeout_s: float = 2.0,
    ) -> None:
        self._on_notification = on_notification
        self._on_server_request = on_server_request
        self.request_timeout_s = request_timeout_s
        self.initialize_timeout_s = initialize_timeout_s
        self.shutdown_timeout_s = shutdown_timeout_s

        self._current: AppServerRuntime | None = None
        self._starting: asyncio.Task | None = None
        self._starting_launch: LaunchSpec | None = None
        self._generation = 0
        self._closed = False

    @property
    def current(self) -> AppServerRuntime | None:
        return self._current

    @property
    def generation(self) -> int:
        return self._generation

    async def ensure(self, binary_override: object = None) -> AppServerRuntime:
        """Return a ready runtime, starting one if needed.

        Raises:
            RuntimeStartupError: the binary could not be resolved or startup
                failed. No runtime is left behind, so the next call retries.
        """
        if self._closed:
            raise RuntimeStartupError("bridge is shutting down")
        launch = build_launch(binary_override)

        starting = self._starting
        if starting is not None and not starting.done():
            if self._starting_launch == launch:
                return await asyncio.shield(starting)
            # A different binary was requested mid-startup: let that start
            # settle, then fall through and retire it below.
            try:
                await asyncio.shield(starting)
            except RuntimeStartupError:
                pass

        current = self._current
        if current is not None and not current.closed:
            if current.launch == launch:
                if current.ready:
                    return current
            else:
                logger.info(
                    f"[bridge] binary changed ({current.launch.binary} -> {launch.binary}); "
                    f"retiring runtime #{current.generation}"
                )
                await current.shutdown(self.shutdown_timeout_s)

        starting = self._starting
        if starting is None or starting.done():
            starting = asyncio.create_task(self._start(launch), name="app-server-start")
            self._starting = starting
            self._starting_launch = launch
            starting.add_done_callback(self._clear_starting)
        return await asyncio.shield(starting)

    async def _start(self, launch: LaunchSpec) -> AppServerRuntime:
        self._generation += 1
        runtime = AppServerRuntime(
            launch,
            generation=self._generation,
            on_notification=self._on_notification,
            on_server_request=self._on_server_request,
            on_closed=self._runtime_closed,
            request_timeout_s=self.request_timeout_s,
            initialize_timeout_s=self.initialize_timeout_s,
        )
        self._current = runtime
        try:
            await runtime.start()
        except RuntimeStartupError:
            if self._current is runtime:
                self._current = None
            raise
        return runtime

    def _clear_starting(self, task: asyncio.Task) -> None:
        if self._starting is task:
            self._starting = None
            self._starting_launch = None
        if not task.cancelled():
            # Mark the exception as retrieved; joined callers re-raise it.
            task.exception()

    def _runtime_closed(self, runtime: AppServerRuntime, reason: str) -> None:
        if self._current is runtime:
            self._current = None
            logger.info(f"[bridge] runtime #{runtime.generation} is no longer current: {reason}")

    async def shutdown(self) -> None:
        """Tear down the current runtime; further ``ensure`` calls fail."""
        self._closed = True
        starting = self._starting
        if starting is not None and not starting.done():
            try:
                await asyncio.shield(starting)
            except RuntimeStartupError:
                pass
        runtime = self._current
        if runtime is not None:
            await runtime.shutdown(self.shutdown_timeout_s)
        self._current = None
