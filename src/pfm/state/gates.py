from __future__ import annotations

from enum import StrEnum


class UnknownGate(ValueError):
    """Raised when a gate name is not part of the pipeline."""


class UnknownRole(ValueError):
    """Raised when a role name does not own any gate."""


class GateStatus(StrEnum):
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    PASS = "pass"
    FAIL = "fail"
    CHANGES_REQUESTED = "changes_requested"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATUSES


_TERMINAL_STATUSES = frozenset(
    {GateStatus.PASS, GateStatus.FAIL, GateStatus.CHANGES_REQUESTED}
)


class Gate(StrEnum):
    PRD = "prd"
    PLAN = "plan"
    ENV = "env"
    TESTS = "tests"
    IMPL = "impl"
    REVIEW_SECURITY = "review_security"
    QA = "qa"
    GIT = "git"


class Role(StrEnum):
    PRD = "prd"
    ORCHESTRATOR = "orchestrator"
    ENV = "env"
    TEST = "test"
    IMPLEMENTATION = "implementation"
    REVIEW_SECURITY = "review_security"
    QA = "qa"
    GIT = "git"


GATE_ORDER: tuple[Gate, ...] = tuple(Gate)

_GATE_ROLES: dict[Gate, Role] = {
    Gate.PRD: Role.PRD,
    Gate.PLAN: Role.ORCHESTRATOR,
    Gate.ENV: Role.ENV,
    Gate.TESTS: Role.TEST,
    Gate.IMPL: Role.IMPLEMENTATION,
    Gate.REVIEW_SECURITY: Role.REVIEW_SECURITY,
    Gate.QA: Role.QA,
    Gate.GIT: Role.GIT,
}
_ROLE_GATES: dict[Role, Gate] = {role: gate for gate, role in _GATE_ROLES.items()}
_GATE_INDEX: dict[Gate, int] = {gate: index for index, gate in enumerate(GATE_ORDER)}

# Unrecognized names sort after every known gate.
NOT_FOUND_INDEX = len(GATE_ORDER)


def order() -> tuple[Gate, ...]:
    return GATE_ORDER


def parse_gate(name: str | Gate) -> Gate:
    try:
        return Gate(name)
    except ValueError as exc:
        valid = ", ".join(gate.value for gate in GATE_ORDER)
        raise UnknownGate(f"unknown gate: {name} (valid: {valid})") from exc


def parse_role(name: str | Role) -> Role:
    try:
        return Role(name)
    except ValueError as exc:
        valid = ", ".join(role.value for role in Role)
        raise UnknownRole(f"unknown role: {name} (valid: {valid})") from exc


def role_of(gate: str | Gate) -> Role:
    return _GATE_ROLES[parse_gate(gate)]


def gate_of(role: str | Role) -> Gate:
    return _ROLE_GATES[parse_role(role)]


def index_of(gate: str | Gate) -> int:
    """Position of ``gate`` in the pipeline, or ``NOT_FOUND_INDEX`` if unknown."""
    try:
        return _GATE_INDEX[Gate(gate)]
    except ValueError:
        return NOT_FOUND_INDEX
