import os
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pfm.completion import (
    Completion,
    CompletionDetector,
    gates_through,
    has_recent_handoff,
)
from pfm.state import Gate, GateStatus, Role, StateStore, WorkState, write_state


def _store_with_item(tmp_path: Path, work_id: str = "FEAT-001") -> StateStore:
    store = StateStore(tmp_path)
    store.handoffs_dir(work_id).mkdir(parents=True)
    write_state(store.state_path(work_id), WorkState.new(work_id, "Test", "repo"))
    return store


def _set_gate(store: StateStore, gate: Gate, status: GateStatus) -> None:
    store.update("FEAT-001", lambda s: s.set_gate(gate, status))


def _write_handoff(directory: Path, name: str, mtime: float) -> Path:
    path = directory / name
    path.write_text("# Handoff\n", encoding="utf-8")
    os.utime(path, (mtime, mtime))
    return path


class SleepRecorder:
    def __init__(self) -> None:
        self.calls: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def test_check_synchronous_terminal_and_pending(tmp_path: Path) -> None:
    store = _store_with_item(tmp_path)
    detector = CompletionDetector(store)

    assert detector.check_synchronous("FEAT-001", Gate.PRD).completion == Completion.INCOMPLETE
    _set_gate(store, Gate.PRD, GateStatus.FAIL)
    assert detector.check_synchronous("FEAT-001", Gate.PRD).complete


def test_handoff_must_be_newer_than_dispatch(tmp_path: Path) -> None:
    dispatched_at = datetime.now(UTC)
    handoffs = tmp_path / "handoffs"
    handoffs.mkdir()

    _write_handoff(handoffs, "20260101-prd.md", dispatched_at.timestamp() - 10)
    assert not has_recent_handoff(handoffs, Role.PRD, dispatched_at)

    _write_handoff(handoffs, "20260102-prd.txt", dispatched_at.timestamp() + 10)
    _write_handoff(handoffs, "20260102-qa.md", dispatched_at.timestamp() + 10)
    assert not has_recent_handoff(handoffs, Role.PRD, dispatched_at)

    _write_handoff(handoffs, "20260103-prd.md", dispatched_at.timestamp() + 10)
    assert has_recent_handoff(handoffs, Role.PRD, dispatched_at)


def test_missing_handoffs_dir_is_not_fresh(tmp_path: Path) -> None:
    assert not has_recent_handoff(tmp_path / "nope", Role.QA, datetime.now(UTC))


def test_wait_for_gate_needs_terminal_status_and_fresh_handoff(tmp_path: Path) -> None:
    store = _store_with_item(tmp_path)
    dispatched_at = datetime.now(UTC)
    _set_gate(store, Gate.PRD, GateStatus.PASS)
    _write_handoff(store.handoffs_dir("FEAT-001"), "old-prd.md", dispatched_at.timestamp() - 60)
    sleep = SleepRecorder()
    detector = CompletionDetector(store, stage_max_polls=3, sleep=sleep)

    result = detector.wait_for_gate("FEAT-001", Gate.PRD, Role.PRD, dispatched_at)

    assert result.completion == Completion.TIMEOUT
    assert result.polls == 3
    assert sleep.calls == [5.0, 5.0, 5.0]

    _write_handoff(store.handoffs_dir("FEAT-001"), "new-prd.md", dispatched_at.timestamp() + 1)
    result = detector.wait_for_gate("FEAT-001", Gate.PRD, Role.PRD, dispatched_at)

    assert result.complete
    assert result.polls == 1


def test_wait_for_gate_observes_agent_progress_between_polls(tmp_path: Path) -> None:
    store = _store_with_item(tmp_path)
    dispatched_at = datetime.now(UTC)

    def agent_finishes(_: float) -> None:
        _set_gate(store, Gate.ENV, GateStatus.PASS)
        _write_handoff(store.handoffs_dir("FEAT-001"), "x-env.md", dispatched_at.timestamp() + 5)

    detector = CompletionDetector(store, stage_max_polls=5, sleep=agent_finishes)
    result = detector.wait_for_gate("FEAT-001", Gate.ENV, Role.ENV, dispatched_at)

    assert result.complete
    assert result.polls == 2
    assert result.state.gate_status(Gate.ENV) == GateStatus.PASS


def test_wait_for_gate_emits_periodic_waiting_events(tmp_path: Path) -> None:
    store = _store_with_item(tmp_path)
    events: list[dict[str, Any]] = []
    detector = CompletionDetector(
        store, stage_max_polls=25, sleep=lambda _: None, progress_hook=events.append
    )

    detector.wait_for_gate("FEAT-001", Gate.PRD, Role.PRD, datetime.now(UTC))

    assert [event["elapsed_seconds"] for event in events] == [60.0, 120.0]
    assert all(event["event"] == "waiting" for event in events)


def test_gates_through_is_inclusive_prefix() -> None:
    assert gates_through(Gate.PRD) == [Gate.PRD]
    assert gates_through(Gate.ENV) == [Gate.PRD, Gate.PLAN, Gate.ENV]


def test_wait_for_gates_ignores_gates_past_target(tmp_path: Path) -> None:
    store = _store_with_item(tmp_path)
    for gate in gates_through(Gate.ENV):
        _set_gate(store, gate, GateStatus.PASS)
    _set_gate(store, Gate.QA, GateStatus.FAIL)
    detector = CompletionDetector(store, team_max_polls=2, sleep=lambda _: None)

    result = detector.wait_for_gates("FEAT-001", Gate.ENV)

    assert result.complete
    assert result.gates == [Gate.PRD, Gate.PLAN, Gate.ENV]


def test_wait_for_gates_requires_pass_not_just_terminal(tmp_path: Path) -> None:
    store = _store_with_item(tmp_path)
    _set_gate(store, Gate.PRD, GateStatus.PASS)
    _set_gate(store, Gate.PLAN, GateStatus.FAIL)
    sleep = SleepRecorder()
    detector = CompletionDetector(store, team_max_polls=4, poll_interval=0.5, sleep=sleep)

    result = detector.wait_for_gates("FEAT-001", Gate.PLAN)

    assert result.completion == Completion.TIMEOUT
    assert result.polls == 4
    assert sleep.calls == [0.5] * 4


class CountingStore(StateStore):
    def __init__(self, base: Path) -> None:
        super().__init__(base)
        self.reads = 0

    def read(self, work_id: str) -> WorkState:
        self.reads += 1
        return super().read(work_id)


def test_each_poll_reads_state_once(tmp_path: Path) -> None:
    _store_with_item(tmp_path)
    store = CountingStore(tmp_path)
    _set_gate(store, Gate.PRD, GateStatus.PASS)
    store.reads = 0
    detector = CompletionDetector(store, stage_max_polls=3, sleep=lambda _: None)

    detector.wait_for_gates("FEAT-001", Gate.PRD)
    assert store.reads == 1

    store.reads = 0
    result = detector.wait_for_gate("FEAT-001", Gate.PLAN, Role.ORCHESTRATOR, datetime.now(UTC))
    assert result.completion == Completion.TIMEOUT
    assert store.reads == 3


def test_zero_poll_budget_times_out_with_current_state(tmp_path: Path) -> None:
    store = _store_with_item(tmp_path)
    detector = CompletionDetector(
        store, stage_max_polls=0, team_max_polls=0, sleep=lambda _: None
    )

    single = detector.wait_for_gate("FEAT-001", Gate.PRD, Role.PRD, datetime.now(UTC))
    bulk = detector.wait_for_gates("FEAT-001", Gate.GIT)

    assert single.completion == Completion.TIMEOUT
    assert single.polls == 0
    assert single.state.id == "FEAT-001"
    assert bulk.completion == Completion.TIMEOUT
    assert bulk.state.gate_status(Gate.PRD) == GateStatus.TODO
