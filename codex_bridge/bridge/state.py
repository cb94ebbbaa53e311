"""Bridge-wide state: runtime configuration and the caller's threads."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

from codex_bridge.config.schema import RuntimeConfig
from codex_bridge.errors import RequestValidationError
from codex_bridge.runtime.supervisor import RuntimeSupervisor


@dataclass
class ThreadState:
    """A caller-facing thread and the app-server thread backing it.

    ``runtime_generation`` records which runtime the app-server thread was
    started or resumed in; after a respawn the thread is resumed again before
    its next turn. ``config_overrides`` are the thread-scoped ``config`` keys
    (``web_search``, ``model_reasoning_effort``) it was attached with; a turn
    asking for different ones resumes the thread with them first.
    """

    thread_id: str
    workspace: str
    codex_thread_id: str | None = None
    runtime_generation: int | None = None
    config_overrides: dict[str, str] = field(default_factory=dict)

    def describe(self) -> dict[str, Any]:
        return {
            "threadId": self.thread_id,
            "codexThreadId": self.codex_thread_id,
            "workspace": self.workspace,
        }


@dataclass
class BridgeState:
    supervisor: RuntimeSupervisor
    config: RuntimeConfig = field(default_factory=RuntimeConfig)
    next_thread_number: int = 1
    threads: dict[str, ThreadState] = field(default_factory=dict)
    # Serializes thread open/attach so one caller thread maps to one app-server thread.
    thread_lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    def allocate_thread_id(self) -> str:
        thread_id = f"thread-{self.next_thread_number}"
        self.next_thread_number += 1
        return thread_id

    def get_thread(self, thread_id: Any) -> ThreadState:
        if not isinstance(thread_id, str) or not thread_id:
            raise RequestValidationError("threadId is required")
        thread = self.threads.get(thread_id)
        if thread is None:
            raise RequestValidationError(f"thread not found: {thread_id}")
        return thread
