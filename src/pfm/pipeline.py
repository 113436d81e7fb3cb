from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from pfm.backends.base import AgentDispatcher, DispatchMode, ExitOutcome
from pfm.check import CheckError, CheckRunner
from pfm.completion import Completion, CompletionDetector, CompletionResult, gates_through
from pfm.prompts import render_team_prompt
from pfm.reroute import Escalate, Restart, decide
from pfm.state.gates import GATE_ORDER, Gate, GateStatus, Role, index_of, parse_gate, role_of
from pfm.state.runlog import log_event
from pfm.state.store import PfmStateError, StateStore, WorkState, WorkStatus

logger = logging.getLogger(__name__)

TEAMS_ENV_VAR = "CLAUDE_CODE_EXPERIMENTAL_AGENT_TEAMS"
CHECKED_GATES = frozenset({Gate.TESTS, Gate.IMPL})

PipelineEventHook = Callable[[dict[str, Any]], None]


class RunMode(StrEnum):
    AUTO = "auto"
    CLASSIC = "classic"
    TEAMS = "teams"


class StopReason(StrEnum):
    ALL_PASSED = "all_passed"
    TARGET_REACHED = "target_reached"
    NEEDS_MANUAL_RESUME = "needs_manual_resume"
    NEEDS_HUMAN = "needs_human"
    TIMEOUT = "timeout"


def parse_run_mode(value: str | RunMode) -> RunMode:
    try:
        return RunMode(value)
    except ValueError as exc:
        raise ValueError(f"unknown mode: {value} (use 'auto', 'classic', or 'teams')") from exc


def resolve_mode(
    mode: RunMode, environ: Mapping[str, str], env_var: str = TEAMS_ENV_VAR
) -> RunMode:
    """Turn ``auto`` into a concrete mode. Explicit modes pass through unchanged."""
    if mode != RunMode.AUTO:
        return mode
    value = environ.get(env_var, "")
    if value == "1" or value.lower() == "true":
        return RunMode.TEAMS
    return RunMode.CLASSIC


def select_next_gate(state: WorkState) -> Gate | None:
    return state.next_pending_gate()


def remaining_gates(state: WorkState, target: Gate | None) -> list[Gate]:
    gates = gates_through(target) if target else list(GATE_ORDER)
    return [gate for gate in gates if state.gate_status(gate) != GateStatus.PASS]


@dataclass(slots=True)
class RunSummary:
    work_id: str
    mode: RunMode
    reason: StopReason
    detail: str = ""
    dispatched: list[Role] = field(default_factory=list)
    gates: dict[str, str] = field(default_factory=dict)
    resume_hint: str | None = None


class PipelineDriver:
    """Drives a work item through the gate pipeline.

    Classic mode dispatches one role per gate and applies the reroute table
    after every terminal gate. Teams mode hands every remaining role to one
    lead session and only polls the state document for the outcome.
    """

    def __init__(
        self,
        store: StateStore,
        dispatcher: AgentDispatcher,
        detector: CompletionDetector,
        checker: CheckRunner | None = None,
        *,
        mode: RunMode = RunMode.CLASSIC,
        dispatch_mode: DispatchMode = DispatchMode.INTERACTIVE,
        event_hook: PipelineEventHook | None = None,
    ) -> None:
        if mode == RunMode.AUTO:
            raise ValueError("run mode must be resolved before building the driver")
        self.store = store
        self.dispatcher = dispatcher
        self.detector = detector
        self.checker = checker
        self.mode = mode
        self.dispatch_mode = dispatch_mode
        self.event_hook = event_hook
        self._dispatched: list[Role] = []

    def _emit(self, event: dict[str, Any]) -> None:
        logger.debug("pipeline event: %s", event)
        if self.event_hook:
            self.event_hook(event)

    def run(self, work_id: str, stop_at: str | Gate | None = None) -> RunSummary:
        self.store.require_work_dir(work_id)
        target = parse_gate(stop_at) if stop_at else None
        self._dispatched = []
        self._emit({"event": "pipeline_start", "work_id": work_id, "mode": self.mode.value})
        if self.mode == RunMode.TEAMS:
            return self._run_teams(work_id, target)
        return self._run_classic(work_id, target)

    def _summary(
        self,
        work_id: str,
        state: WorkState,
        reason: StopReason,
        detail: str = "",
        resume_hint: str | None = None,
    ) -> RunSummary:
        summary = RunSummary(
            work_id=work_id,
            mode=self.mode,
            reason=reason,
            detail=detail,
            dispatched=list(self._dispatched),
            gates={gate.value: state.gate_status(gate).value for gate in GATE_ORDER},
            resume_hint=resume_hint,
        )
        self._emit({"event": "pipeline_stop", "reason": reason.value, "detail": detail})
        return summary

    def _dispatch(self, role: Role, work_id: str) -> ExitOutcome:
        self._dispatched.append(role)
        return self.dispatcher.dispatch(role, work_id, self.dispatch_mode)

    def _await_completion(
        self, work_id: str, gate: Gate, role: Role, outcome: ExitOutcome
    ) -> CompletionResult:
        if outcome.detached:
            return self.detector.wait_for_gate(work_id, gate, role, outcome.started_at)
        return self.detector.check_synchronous(work_id, gate)

    def _run_check(self, work_id: str, gate: Gate) -> None:
        if self.checker is None:
            return
        try:
            report = self.checker.run(work_id)
        except (CheckError, PfmStateError, OSError) as exc:
            logger.warning("automatic check after %s failed to run: %s", gate.value, exc)
            self._emit({"event": "check_error", "gate": gate.value, "error": str(exc)})
            return
        self._emit({"event": "check", "gate": gate.value, "passed": report.passed})

    def _mark_done(self, work_id: str) -> WorkState:
        def _updater(state: WorkState) -> None:
            if state.all_passed():
                state.status = WorkStatus.DONE

        return self.store.update(work_id, _updater)

    def _mark_blocked(self, work_id: str, reason: str) -> WorkState:
        def _updater(state: WorkState) -> None:
            state.status = WorkStatus.BLOCKED
            state.notes.append(reason)

        return self.store.update(work_id, _updater)

    def _run_classic(self, work_id: str, target: Gate | None) -> RunSummary:
        while True:
            state = self.store.read(work_id)
            gate = select_next_gate(state)
            if gate is None:
                state = self._mark_done(work_id)
                return self._summary(work_id, state, StopReason.ALL_PASSED, "all gates passed")
            if target is not None and index_of(target) < index_of(gate):
                return self._summary(
                    work_id, state, StopReason.TARGET_REACHED, f"reached target gate '{target}'"
                )

            role = role_of(gate)
            self._emit({"event": "gate_start", "gate": gate.value, "role": role.value})
            outcome = self._dispatch(role, work_id)
            result = self._await_completion(work_id, gate, role, outcome)
            status = result.state.gate_status(gate)
            self._emit({"event": "gate_result", "gate": gate.value, "status": status.value})

            if result.completion == Completion.TIMEOUT:
                return self._summary(
                    work_id,
                    result.state,
                    StopReason.TIMEOUT,
                    f"timed out waiting for gate '{gate}' (still {status})",
                    resume_hint=f"pfm agent nudge {role} {work_id}",
                )
            if not result.complete:
                return self._summary(
                    work_id,
                    result.state,
                    StopReason.NEEDS_MANUAL_RESUME,
                    f"agent exited but gate '{gate}' is still {status}",
                    resume_hint=f"pfm agent start {role} {work_id}",
                )

            if gate in CHECKED_GATES:
                self._run_check(work_id, gate)

            state = self.store.read(work_id)
            decision = decide(state, gate)
            if isinstance(decision, Restart):
                self._emit(
                    {"event": "reroute", "gate": gate.value, "role": decision.role.value}
                )
                # The restarted role is not awaited here; the next pass through
                # Selecting picks up whatever gate is first non-pass.
                self._dispatch(decision.role, work_id)
                continue
            if isinstance(decision, Escalate):
                state = self._mark_blocked(work_id, decision.reason)
                return self._summary(
                    work_id, state, StopReason.NEEDS_HUMAN, decision.reason
                )
            if target is not None and gate == target:
                if state.all_passed():
                    state = self._mark_done(work_id)
                return self._summary(
                    work_id, state, StopReason.TARGET_REACHED, f"reached target gate '{target}'"
                )

    def _finish_bulk(self, work_id: str, state: WorkState, target: Gate | None) -> RunSummary:
        if state.all_passed():
            state = self._mark_done(work_id)
            return self._summary(work_id, state, StopReason.ALL_PASSED, "all gates passed")
        return self._summary(
            work_id, state, StopReason.TARGET_REACHED, f"all gates through '{target}' passed"
        )

    def _run_teams(self, work_id: str, target: Gate | None) -> RunSummary:
        work_dir = self.store.require_work_dir(work_id)
        state = self.store.read(work_id)
        gates = remaining_gates(state, target)
        if not gates:
            return self._finish_bulk(work_id, state, target)

        roles = [role_of(gate) for gate in gates]
        instruction = render_team_prompt(
            work_id, work_dir, self.store.roles_dir, gates, state.commands
        )
        log_event(
            work_dir,
            "Teams Run Start",
            work_id,
            "Roles: " + ", ".join(role.value for role in roles),
        )
        self._dispatched.extend(roles)
        outcome = self.dispatcher.dispatch_lead(work_id, instruction, DispatchMode.DETACHED)
        self._emit(
            {
                "event": "teams_start",
                "roles": [role.value for role in roles],
                "session": outcome.session,
            }
        )

        final_gate = target or GATE_ORDER[-1]
        if outcome.detached:
            result = self.detector.wait_for_gates(work_id, final_gate)
            if result.complete:
                return self._finish_bulk(work_id, result.state, target)
            return self._summary(
                work_id,
                result.state,
                StopReason.TIMEOUT,
                "timed out waiting for teams completion",
                resume_hint=f"tmux attach -t {outcome.session}",
            )

        state = self.store.read(work_id)
        if all(state.gate_status(gate) == GateStatus.PASS for gate in gates_through(final_gate)):
            return self._finish_bulk(work_id, state, target)
        pending = next(
            gate for gate in gates_through(final_gate) if state.gate_status(gate) != GateStatus.PASS
        )
        return self._summary(
            work_id,
            state,
            StopReason.NEEDS_MANUAL_RESUME,
            f"lead agent finished but gate '{pending}' is {state.gate_status(pending)}",
            resume_hint=f"pfm run {work_id} --to {final_gate}",
        )
