from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from pathlib import Path
from typing import Any

from pfm.state.gates import GATE_ORDER, Gate, GateStatus, Role, index_of
from pfm.state.store import StateStore, WorkState

logger = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = 5.0
STAGE_MAX_POLLS = 120
TEAM_MAX_POLLS = 360
PROGRESS_EVERY_POLLS = 12

ProgressHook = Callable[[dict[str, Any]], None]


class Completion(StrEnum):
    COMPLETE = "complete"
    INCOMPLETE = "incomplete"
    TIMEOUT = "timeout"


@dataclass(slots=True)
class CompletionResult:
    completion: Completion
    state: WorkState
    polls: int = 0
    gates: list[Gate] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return self.completion == Completion.COMPLETE


def has_recent_handoff(handoffs_dir: Path, role: Role, after: datetime) -> bool:
    """True when a ``*.md`` handoff naming ``role`` was modified strictly after ``after``."""
    if not handoffs_dir.is_dir():
        return False
    threshold = after.timestamp()
    for entry in handoffs_dir.iterdir():
        if role.value not in entry.name or not entry.name.endswith(".md"):
            continue
        try:
            if entry.stat().st_mtime > threshold:
                return True
        except OSError:
            continue
    return False


def gates_through(target: Gate) -> list[Gate]:
    return [gate for gate in GATE_ORDER if index_of(gate) <= index_of(target)]


class CompletionDetector:
    """Decides whether dispatched agents finished, by reading the state document.

    Single-stage waits require the gate to be terminal and a fresh handoff note;
    bulk waits only require ``pass`` on every gate through the target.
    """

    def __init__(
        self,
        store: StateStore,
        *,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        stage_max_polls: int = STAGE_MAX_POLLS,
        team_max_polls: int = TEAM_MAX_POLLS,
        sleep: Callable[[float], None] = time.sleep,
        progress_hook: ProgressHook | None = None,
    ) -> None:
        self.store = store
        self.poll_interval = poll_interval
        self.stage_max_polls = stage_max_polls
        self.team_max_polls = team_max_polls
        self.sleep = sleep
        self.progress_hook = progress_hook

    def _emit(self, event: dict[str, Any]) -> None:
        if self.progress_hook:
            self.progress_hook(event)

    def check_synchronous(self, work_id: str, gate: Gate) -> CompletionResult:
        state = self.store.read(work_id)
        if state.gate_status(gate).is_terminal:
            return CompletionResult(Completion.COMPLETE, state, gates=[gate])
        return CompletionResult(Completion.INCOMPLETE, state, gates=[gate])

    def wait_for_gate(
        self, work_id: str, gate: Gate, role: Role, dispatched_at: datetime
    ) -> CompletionResult:
        handoffs_dir = self.store.handoffs_dir(work_id)
        state: WorkState | None = None
        for attempt in range(self.stage_max_polls):
            state = self.store.read(work_id)
            if state.gate_status(gate).is_terminal and has_recent_handoff(
                handoffs_dir, role, dispatched_at
            ):
                return CompletionResult(Completion.COMPLETE, state, polls=attempt + 1, gates=[gate])
            if attempt > 0 and attempt % PROGRESS_EVERY_POLLS == 0:
                self._emit(
                    {
                        "event": "waiting",
                        "role": role.value,
                        "gate": gate.value,
                        "status": state.gate_status(gate).value,
                        "elapsed_seconds": attempt * self.poll_interval,
                    }
                )
            self.sleep(self.poll_interval)
        logger.info("gave up waiting for %s after %d polls", gate.value, self.stage_max_polls)
        if state is None:
            state = self.store.read(work_id)
        return CompletionResult(
            Completion.TIMEOUT, state, polls=self.stage_max_polls, gates=[gate]
        )

    def wait_for_gates(self, work_id: str, target: Gate) -> CompletionResult:
        gates = gates_through(target)
        state: WorkState | None = None
        for attempt in range(self.team_max_polls):
            state = self.store.read(work_id)
            if all(state.gate_status(gate) == GateStatus.PASS for gate in gates):
                return CompletionResult(Completion.COMPLETE, state, polls=attempt + 1, gates=gates)
            if attempt > 0 and attempt % PROGRESS_EVERY_POLLS == 0:
                self._emit(
                    {
                        "event": "progress",
                        "elapsed_seconds": attempt * self.poll_interval,
                        "gates": {gate.value: state.gate_status(gate).value for gate in gates},
                    }
                )
            self.sleep(self.poll_interval)
        logger.info("gave up waiting for gates through %s", target.value)
        if state is None:
            state = self.store.read(work_id)
        return CompletionResult(Completion.TIMEOUT, state, polls=self.team_max_polls, gates=gates)
