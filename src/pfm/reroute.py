"""Automatic recovery rules applied after a gate reaches a terminal status."""

from __future__ import annotations

from dataclasses import dataclass

from pfm.state.gates import Gate, GateStatus, Role
from pfm.state.store import WorkState


@dataclass(frozen=True, slots=True)
class Continue:
    pass


@dataclass(frozen=True, slots=True)
class Restart:
    role: Role


@dataclass(frozen=True, slots=True)
class Escalate:
    reason: str


RerouteDecision = Continue | Restart | Escalate

REROUTE_TABLE: dict[tuple[Gate, GateStatus], Role] = {
    (Gate.TESTS, GateStatus.FAIL): Role.IMPLEMENTATION,
    (Gate.REVIEW_SECURITY, GateStatus.CHANGES_REQUESTED): Role.IMPLEMENTATION,
    (Gate.QA, GateStatus.FAIL): Role.IMPLEMENTATION,
}


def decide(state: WorkState, gate: Gate) -> RerouteDecision:
    status = state.gates.get(gate)
    if status is None:
        return Continue()
    role = REROUTE_TABLE.get((gate, status))
    if role is not None:
        return Restart(role)
    if status == GateStatus.FAIL:
        return Escalate(f"gate '{gate.value}' failed")
    return Continue()
