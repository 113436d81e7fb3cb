from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum

from pfm.state.gates import Role


class DispatchError(RuntimeError):
    """Raised when an agent process cannot be started."""

    def __init__(
        self,
        message: str,
        *,
        backend: str | None = None,
        exit_code: int | None = None,
        retriable: bool = False,
    ) -> None:
        super().__init__(message)
        self.backend = backend
        self.exit_code = exit_code
        self.retriable = retriable


class DispatchMode(StrEnum):
    INTERACTIVE = "interactive"
    DETACHED = "detached"
    BATCH = "batch"


@dataclass(slots=True)
class ExitOutcome:
    """What a dispatch reports back; task effects live in the state document."""

    mode: DispatchMode
    exit_code: int | None = None
    session: str | None = None
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def detached(self) -> bool:
        return self.mode == DispatchMode.DETACHED

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0


class AgentDispatcher(ABC):
    @abstractmethod
    def dispatch(self, role: Role, work_id: str, mode: DispatchMode) -> ExitOutcome:
        """Start one role agent on a work item."""

    @abstractmethod
    def dispatch_lead(self, work_id: str, instruction: str, mode: DispatchMode) -> ExitOutcome:
        """Start a lead session that sequences several roles itself."""
