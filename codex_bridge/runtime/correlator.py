"""Pending-request table for calls issued toward the app-server."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

from loguru import logger

from codex_bridge.errors import RequestTimeoutError


@dataclass
class PendingRequest:
    request_id: int
    method: str
    future: asyncio.Future
    timer: asyncio.TimerHandle | None = None


class RequestCorrelator:
    """Match app-server responses to outgoing requests by numeric id.

    Each entry is settled exactly once (result, error, or timeout) and removed
    from the table at that moment, so a late response finds nothing.
    """

    def __init__(self, first_id: int = 1) -> None:
        self._next_id = first_id
        self._pending: dict[int, PendingRequest] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._pending

    def register(self, method: str, timeout_s: float | None) -> PendingRequest:
        loop = asyncio.get_running_loop()
        request_id = self._next_id
        self._next_id += 1
        entry = PendingRequest(request_id=request_id, method=method, future=loop.create_future())
        if timeout_s is not None:
            entry.timer = loop.call_later(max(0.0, timeout_s), self._expire, request_id, timeout_s)
        self._pending[request_id] = entry
        return entry

    def resolve(self, request_id: Any, result: Any) -> bool:
        entry = self._take(request_id)
        if entry is None:
            return False
        entry.future.set_result(result)
        return True

    def reject(self, request_id: Any, error: BaseException) -> bool:
        entry = self._take(request_id)
        if entry is None:
            return False
        entry.future.set_exception(error)
        return True

    def discard(self, request_id: Any) -> None:
        """Drop an entry whose caller stopped waiting or whose write failed."""
        entry = self._pending.pop(_normalize_id(request_id), None)
        if entry is not None and entry.timer is not None:
            entry.timer.cancel()

    def method_for(self, request_id: Any) -> str | None:
        entry = self._pending.get(_normalize_id(request_id))
        return entry.method if entry else None

    def fail_all(self, error: BaseException) -> int:
        """Reject every outstanding entry with ``error``; returns how many."""
        ids = list(self._pending)
        for request_id in ids:
            self.reject(request_id, error)
        return len(ids)

    def _expire(self, request_id: int, timeout_s: float) -> None:
        entry = self._pending.get(request_id)
        if entry is None:
            return
        self.reject(
            request_id,
            RequestTimeoutError(f"app-server request `{entry.method}` timed out after {timeout_s:g}s"),
        )

    def _take(self, request_id: Any) -> PendingRequest | None:
        key = _normalize_id(request_id)
        entry = self._pending.pop(key, None) if key is not None else None
        if entry is None:
            logger.debug(f"[app-server] dropping response for unknown request id {request_id!r}")
            return None
        if entry.timer is not None:
            entry.timer.cancel()
        if entry.future.done():
            # The awaiting side was cancelled; nothing left to settle.
            return None
        return entry


def _normalize_id(request_id: Any) -> int | None:
    if isinstance(request_id, bool):
        return None
    if isinstance(request_id, int):
        return request_id
    if isinstance(request_id, str) and request_id.strip().isdigit():
        return int(request_id.strip())
    return None
