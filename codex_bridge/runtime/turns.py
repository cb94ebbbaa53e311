"""Turn tracking: accumulate per-turn results and let callers await completion.

A turn spans many app-server notifications (``turn/started``, item events,
``turn/completed``). Notifications feed the tracker from the stdout reader;
``turn.run`` handlers await it.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

from codex_bridge.errors import RequestValidationError, TurnTimeoutError

STATUS_IN_PROGRESS = "inProgress"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
STATUS_INTERRUPTED = "interrupted"
STATUS_DECLINED = "declined"

FAILED_STATUSES = frozenset({STATUS_FAILED, STATUS_INTERRUPTED, STATUS_DECLINED})


@dataclass(frozen=True)
class TurnSnapshot:
    """Immutable view of a turn handed to waiters."""

    turn_id: str
    final_response: str
    usage: Any
    status: str
    error: str | None
    completed: bool

    @property
    def failed(self) -> bool:
        return self.status in FAILED_STATUSES


@dataclass
class _Waiter:
    future: asyncio.Future
    timer: asyncio.TimerHandle | None = None


@dataclass
class TurnState:
    turn_id: str
    final_response: str = ""
    usage: Any = None
    status: str = STATUS_IN_PROGRESS
    error: str | None = None
    completed: bool = False
    waiters: list[_Waiter] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return self.completed and self.status in FAILED_STATUSES

    def snapshot(self) -> TurnSnapshot:
        return TurnSnapshot(
            turn_id=self.turn_id,
            final_response=self.final_response,
            usage=self.usage,
            status=self.status,
            error=self.error,
            completed=self.completed,
        )

    def merge(
        self,
        *,
        final_response: str | None = None,
        usage: Any = None,
        status: str | None = None,
        error: str | None = None,
    ) -> None:
        if isinstance(final_response, str) and final_response:
            self.final_response = final_response
        if usage is not None:
            self.usage = usage
        if status:
            self.status = status
        if error:
            self.error = error


def _require_turn_id(turn_id: object) -> str:
    if not isinstance(turn_id, str) or not turn_id.strip():
        raise RequestValidationError("turn id is required")
    return turn_id


class TurnTracker:
    """Turn table owned by one app-server runtime.

    At most ``max_completed`` finished turns are kept for late waiters; older
    ones are dropped. Once ``fail_all`` has run, the tracker is closed: turns
    seen afterwards are born failed with the close reason.
    """

    def __init__(self, max_completed: int = 64) -> None:
        self._turns: dict[str, TurnState] = {}
        self._max_completed = max_completed
        self._closed_reason: str | None = None

    @property
    def closed(self) -> bool:
        return self._closed_reason is not None

    def __contains__(self, turn_id: object) -> bool:
        return turn_id in self._turns

    def get(self, turn_id: str) -> TurnState | None:
        return self._turns.get(turn_id)

    def ensure(self, turn_id: str) -> TurnState:
        key = _require_turn_id(turn_id)
        state = self._turns.get(key)
        if state is None:
            state = TurnState(turn_id=key)
            if self._closed_reason is not None:
                state.status = STATUS_FAILED
                state.error = self._closed_reason
                state.completed = True
            self._turns[key] = state
        return state

    def update(self, turn_id: str, **patch: Any) -> TurnState:
        """Merge streamed data (usage, text) without completing the turn."""
        state = self.ensure(turn_id)
        if not state.completed:
            state.merge(**patch)
        elif patch.get("usage") is not None and state.usage is None:
            state.usage = patch["usage"]
        return state

    def complete(
        self,
        turn_id: str,
        *,
        final_response: str | None = None,
        usage: Any = None,
        status: str | None = STATUS_COMPLETED,
        error: str | None = None,
    ) -> TurnSnapshot:
        """Mark the turn terminal and release every queued waiter once.

        A second completion keeps the first terminal status and only fills
        fields that are still empty.
        """
        state = self.ensure(turn_id)
        if state.completed:
            if usage is not None and state.usage is None:
                state.usage = usage
            if final_response and not state.final_response:
                state.final_response = final_response
            return state.snapshot()

        state.merge(final_response=final_response, usage=usage, status=status, error=error)
        state.completed = True
        snapshot = state.snapshot()
        waiters, state.waiters = state.waiters, []
        for waiter in waiters:
            if waiter.timer is not None:
                waiter.timer.cancel()
            if not waiter.future.done():
                waiter.future.set_result(snapshot)
        self._prune_completed(keep=state.turn_id)
        return snapshot

    async def wait(self, turn_id: str, timeout_s: float | None) -> TurnSnapshot:
        """Return the terminal snapshot, waiting up to ``timeout_s`` seconds.

        Raises:
            TurnTimeoutError: the turn did not complete in time. The turn itself
                stays open so other waiters still see a later completion.
        """
        state = self.ensure(turn_id)
        if state.completed:
            return state.snapshot()

        loop = asyncio.get_running_loop()
        waiter = _Waiter(future=loop.create_future())
        state.waiters.append(waiter)
        if timeout_s is not None:
            waiter.timer = loop.call_later(max(0.0, timeout_s), self._expire, state, waiter, timeout_s)
        try:
            return await waiter.future
        finally:
            if waiter.timer is not None:
                waiter.timer.cancel()
            if waiter in state.waiters:
                state.waiters.remove(waiter)

    def fail_all(self, message: str) -> int:
        """Complete every open turn as failed and close the tracker.

        Returns how many turns were open.
        """
        self._closed_reason = message
        open_turns = [state.turn_id for state in self._turns.values() if not state.completed]
        for turn_id in open_turns:
            self.complete(turn_id, status=STATUS_FAILED, error=message)
        return len(open_turns)

    def pending_waiters(self) -> int:
        return sum(len(state.waiters) for state in self._turns.values())

    def _prune_completed(self, keep: str) -> None:
        finished = [
            turn_id
            for turn_id, state in self._turns.items()
            if state.completed and not state.waiters and turn_id != keep
        ]
        for turn_id in finished[: max(0, len(finished) - self._max_completed)]:
            del self._turns[turn_id]

    def _expire(self, state: TurnState, waiter: _Waiter, timeout_s: float) -> None:
        if waiter in state.waiters:
            state.waiters.remove(waiter)
        if not waiter.future.done():
            waiter.future.set_exception(
                TurnTimeoutError(f"turn {state.turn_id} did not complete within {timeout_s:g}s")
            )
