import asyncio

import pytest

from codex_bridge.errors import RequestValidationError, TurnTimeoutError
from codex_bridge.runtime.turns import TurnTracker


def test_complete_releases_every_waiter_with_the_same_snapshot():
    async def scenario():
        tracker = TurnTracker()
        waiters = [asyncio.create_task(tracker.wait("turn-1", 5)) for _ in range(3)]
        await asyncio.sleep(0)
        assert tracker.pending_waiters() == 3

        tracker.complete("turn-1", final_response="done", usage={"output_tokens": 1})
        snapshots = await asyncio.gather(*waiters)
        late = await tracker.wait("turn-1", 5)
        return snapshots, late, tracker.pending_waiters()

    snapshots, late, pending = asyncio.run(scenario())

    assert all(snapshot == snapshots[0] for snapshot in snapshots)
    assert snapshots[0].final_response == "done"
    assert snapshots[0].status == "completed"
    assert late == snapshots[0]
    assert pending == 0


def test_waiter_timeout_leaves_turn_open_for_others():
    async def scenario():
        tracker = TurnTracker()
        patient = asyncio.create_task(tracker.wait("turn-1", 5))
        with pytest.raises(TurnTimeoutError):
            await tracker.wait("turn-1", 0.01)
        assert tracker.get("turn-1").completed is False

        tracker.complete("turn-1", final_response="late but fine")
        return await patient

    snapshot = asyncio.run(scenario())

    assert snapshot.final_response == "late but fine"


def test_second_completion_keeps_first_terminal_status():
    tracker = TurnTracker()
    tracker.complete("turn-1", status="failed", error="boom")

    snapshot = tracker.complete("turn-1", status="completed", usage={"input_tokens": 3})

    assert snapshot.status == "failed"
    assert snapshot.failed is True
    assert snapshot.error == "boom"
    assert snapshot.usage == {"input_tokens": 3}


def test_update_merges_without_completing():
    tracker = TurnTracker()

    tracker.update("turn-1", final_response="partial", usage={"output_tokens": 1})
    state = tracker.get("turn-1")

    assert state.completed is False
    assert state.final_response == "partial"


def test_fail_all_marks_open_turns_failed():
    tracker = TurnTracker()
    tracker.ensure("turn-1")
    tracker.ensure("turn-2")
    tracker.complete("turn-2")

    assert tracker.fail_all("codex app-server exited (code 1)") == 1
    assert tracker.get("turn-1").error == "codex app-server exited (code 1)"
    assert tracker.get("turn-2").status == "completed"
    assert tracker.get("turn-1").failed is True
    assert tracker.get("turn-2").failed is False


def test_wait_after_fail_all_returns_failed_snapshot_immediately():
    tracker = TurnTracker()
    tracker.fail_all("codex app-server exited (code 1)")

    snapshot = asyncio.run(asyncio.wait_for(tracker.wait("turn-late", 30), 1.0))

    assert tracker.closed is True
    assert snapshot.completed is True
    assert snapshot.failed is True
    assert snapshot.error == "codex app-server exited (code 1)"
    assert tracker.pending_waiters() == 0


def test_completed_turns_are_pruned_beyond_the_limit():
    tracker = TurnTracker(max_completed=2)

    for index in range(1, 6):
        tracker.complete(f"turn-{index}", final_response=str(index))

    assert "turn-1" not in tracker
    assert "turn-2" not in tracker
    assert "turn-5" in tracker
    assert tracker.get("turn-5").final_response == "5"
    assert sum(f"turn-{index}" in tracker for index in range(1, 6)) == 3


def test_pruning_keeps_turns_with_waiters():
    async def scenario():
        tracker = TurnTracker(max_completed=1)
        waiter = asyncio.create_task(tracker.wait("turn-open", 5))
        await asyncio.sleep(0)
        for index in range(4):
            tracker.complete(f"turn-{index}")
        assert "turn-open" in tracker
        tracker.complete("turn-open", final_response="kept")
        return await waiter

    assert asyncio.run(scenario()).final_response == "kept"


@pytest.mark.parametrize("turn_id", ["", "   ", None, 7])
def test_missing_turn_ids_are_rejected(turn_id):
    with pytest.raises(RequestValidationError):
        TurnTracker().ensure(turn_id)
