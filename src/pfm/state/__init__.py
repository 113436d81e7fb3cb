from pfm.state.gates import (
    GATE_ORDER,
    NOT_FOUND_INDEX,
    Gate,
    GateStatus,
    Role,
    UnknownGate,
    UnknownRole,
    gate_of,
    index_of,
    order,
    parse_gate,
    parse_role,
    role_of,
)
from pfm.state.runlog import append_runlog, log_event
from pfm.state.store import (
    Commands,
    PfmStateError,
    StateStore,
    WorkItemExists,
    WorkItemNotFound,
    WorkState,
    WorkStatus,
    Workspace,
    read_state,
    write_state,
)

__all__ = [
    "GATE_ORDER",
    "NOT_FOUND_INDEX",
    "Commands",
    "Gate",
    "GateStatus",
    "PfmStateError",
    "Role",
    "StateStore",
    "UnknownGate",
    "UnknownRole",
    "WorkItemExists",
    "WorkItemNotFound",
    "WorkState",
    "WorkStatus",
    "Workspace",
    "append_runlog",
    "gate_of",
    "index_of",
    "log_event",
    "order",
    "parse_gate",
    "parse_role",
    "read_state",
    "role_of",
    "write_state",
]
