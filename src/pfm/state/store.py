from __future__ import annotations

import json
import os
import tempfile
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path
from typing import Any

from pfm.state.gates import GATE_ORDER, Gate, GateStatus, Role, parse_role


class PfmStateError(RuntimeError):
    """Raised when a work-item state document cannot be read or written."""


class WorkItemNotFound(PfmStateError):
    """Raised when a work-item directory does not exist."""


class WorkItemExists(PfmStateError):
    """Raised when creating a work item whose directory already exists."""


class WorkStatus(StrEnum):
    IN_PROGRESS = "in_progress"
    BLOCKED = "blocked"
    DONE = "done"


def _utcnow_iso() -> str:
    return datetime.now(UTC).isoformat()


@dataclass(slots=True)
class Commands:
    verify: str = ""
    security: str = ""
    qa_smoke: str = ""


@dataclass(slots=True)
class Workspace:
    worktree: str = ""
    tmux_session: str = ""
    container: str = ""


def _default_gates() -> dict[Gate, GateStatus]:
    return {gate: GateStatus.TODO for gate in GATE_ORDER}


@dataclass(slots=True)
class WorkState:
    id: str
    title: str
    repo: str
    branch: str
    status: WorkStatus = WorkStatus.IN_PROGRESS
    owner: Role = Role.PRD
    updated_at: str = field(default_factory=_utcnow_iso)
    gates: dict[Gate, GateStatus] = field(default_factory=_default_gates)
    commands: Commands = field(default_factory=Commands)
    workspace: Workspace = field(default_factory=Workspace)
    notes: list[str] = field(default_factory=list)

    @classmethod
    def new(
        cls, work_id: str, title: str, repo: str, commands: Commands | None = None
    ) -> WorkState:
        return cls(
            id=work_id,
            title=title,
            repo=repo,
            branch=f"pfm/{work_id}",
            commands=commands or Commands(),
        )

    def gate_status(self, gate: Gate) -> GateStatus:
        return self.gates.get(gate, GateStatus.TODO)

    def set_gate(self, gate: Gate, status: GateStatus) -> None:
        self.gates[gate] = status

    def all_passed(self) -> bool:
        return all(self.gates.get(gate) == GateStatus.PASS for gate in GATE_ORDER)

    def next_pending_gate(self) -> Gate | None:
        for gate in GATE_ORDER:
            if self.gates.get(gate) != GateStatus.PASS:
                return gate
        return None

    def touch(self) -> None:
        """Refresh the timestamp and keep ``done`` consistent with the gates."""
        self.updated_at = _utcnow_iso()
        if self.status == WorkStatus.DONE and not self.all_passed():
            self.status = WorkStatus.IN_PROGRESS

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "repo": self.repo,
            "branch": self.branch,
            "status": self.status.value,
            "owner": self.owner.value,
            "updated_at": self.updated_at,
            "gates": {gate.value: self.gate_status(gate).value for gate in GATE_ORDER},
            "commands": {
                "verify": self.commands.verify,
                "security": self.commands.security,
                "qa_smoke": self.commands.qa_smoke,
            },
            "workspace": {
                "worktree": self.workspace.worktree,
                "tmux_session": self.workspace.tmux_session,
                "container": self.workspace.container,
            },
            "notes": list(self.notes),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WorkState:
        try:
            raw_gates = data["gates"]
            gates = {gate: GateStatus(raw_gates[gate.value]) for gate in GATE_ORDER}
            commands = data.get("commands", {})
            workspace = data.get("workspace", {})
            return cls(
                id=str(data["id"]),
                title=str(data["title"]),
                repo=str(data["repo"]),
                branch=str(data["branch"]),
                status=WorkStatus(data["status"]),
                owner=parse_role(data["owner"]),
                updated_at=str(data["updated_at"]),
                gates=gates,
                commands=Commands(
                    verify=str(commands.get("verify", "")),
                    security=str(commands.get("security", "")),
                    qa_smoke=str(commands.get("qa_smoke", "")),
                ),
                workspace=Workspace(
                    worktree=str(workspace.get("worktree", "")),
                    tmux_session=str(workspace.get("tmux_session", "")),
                    container=str(workspace.get("container", "")),
                ),
                notes=[str(note) for note in data.get("notes", [])],
            )
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise PfmStateError(f"invalid state document: {exc}") from exc


def read_state(path: Path) -> WorkState:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise PfmStateError(f"failed to read {path}: {exc}") from exc
    try:
        payload = json.loads(content)
    except json.JSONDecodeError as exc:
        raise PfmStateError(f"failed to parse {path}: {exc}") from exc
    if not isinstance(payload, dict):
        raise PfmStateError(f"failed to parse {path}: expected a JSON object")
    return WorkState.from_dict(payload)


def write_state(path: Path, state: WorkState) -> None:
    serialized = json.dumps(state.to_dict(), ensure_ascii=False, indent=2) + "\n"
    try:
        fd, temp_name = tempfile.mkstemp(prefix=".state-", suffix=".json", dir=path.parent)
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(serialized)
        os.replace(temp_name, path)
    except OSError as exc:
        raise PfmStateError(f"failed to write {path}: {exc}") from exc


class StateStore:
    """Locates and persists work-item documents under ``<base>/.pfm/work``."""

    STATE_FILE = "state.json"
    HANDOFFS_DIR = "handoffs"

    def __init__(self, base: Path) -> None:
        self.base = base.resolve()
        self.pfm_dir = self.base / ".pfm"
        self.work_root = self.pfm_dir / "work"
        self.roles_dir = self.pfm_dir / "roles"

    def work_dir(self, work_id: str) -> Path:
        return self.work_root / work_id

    def require_work_dir(self, work_id: str) -> Path:
        work_dir = self.work_dir(work_id)
        if not work_dir.is_dir():
            raise WorkItemNotFound(f"work item {work_id} not found")
        return work_dir

    def state_path(self, work_id: str) -> Path:
        return self.work_dir(work_id) / self.STATE_FILE

    def handoffs_dir(self, work_id: str) -> Path:
        return self.work_dir(work_id) / self.HANDOFFS_DIR

    def exists(self, work_id: str) -> bool:
        return self.work_dir(work_id).is_dir()

    def read(self, work_id: str) -> WorkState:
        return read_state(self.require_work_dir(work_id) / self.STATE_FILE)

    def write(self, work_id: str, state: WorkState) -> None:
        state.touch()
        write_state(self.require_work_dir(work_id) / self.STATE_FILE, state)

    def update(self, work_id: str, updater: Callable[[WorkState], None]) -> WorkState:
        """Re-read, mutate in place, write back. No locking."""
        state = self.read(work_id)
        updater(state)
        self.write(work_id, state)
        return state

    def execution_dir(self, state: WorkState) -> Path:
        if state.workspace.worktree:
            return Path(state.workspace.worktree)
        return self.base

    def list_ids(self) -> list[str]:
        if not self.work_root.is_dir():
            return []
        return sorted(entry.name for entry in self.work_root.iterdir() if entry.is_dir())
