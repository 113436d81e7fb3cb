from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass, field
from pathlib import Path

from pfm.state.gates import Gate, GateStatus
from pfm.state.runlog import log_event
from pfm.state.store import StateStore

logger = logging.getLogger(__name__)

OUTPUT_LOG_LIMIT = 2000


class CheckError(RuntimeError):
    """Raised when a check command cannot be spawned."""


@dataclass(slots=True)
class CommandResult:
    name: str
    command: str
    exit_code: int | None = None
    output: str = ""

    @property
    def skipped(self) -> bool:
        return not self.command.strip()

    @property
    def passed(self) -> bool:
        return self.skipped or self.exit_code == 0


@dataclass(slots=True)
class CheckReport:
    work_id: str
    results: list[CommandResult] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return all(result.passed for result in self.results)

    @property
    def gate_status(self) -> GateStatus:
        return GateStatus.PASS if self.passed else GateStatus.FAIL


def run_shell(command: str, cwd: Path) -> tuple[int, str]:
    try:
        proc = subprocess.run(
            ["sh", "-c", command],
            cwd=cwd,
            text=True,
            capture_output=True,
        )
    except OSError as exc:
        raise CheckError(f"failed to run command '{command}': {exc}") from exc
    return proc.returncode, f"{proc.stdout}{proc.stderr}"


class CheckRunner:
    """Runs a work item's verify and security commands and sets the ``tests`` gate."""

    def __init__(self, store: StateStore) -> None:
        self.store = store

    def run(self, work_id: str) -> CheckReport:
        work_dir = self.store.require_work_dir(work_id)
        state = self.store.read(work_id)
        cwd = self.store.execution_dir(state)
        report = CheckReport(work_id=work_id)

        for name, command in (
            ("verify", state.commands.verify),
            ("security", state.commands.security),
        ):
            result = CommandResult(name=name, command=command)
            report.results.append(result)
            if result.skipped:
                continue
            logger.info("running %s: %s", name, command)
            result.exit_code, result.output = run_shell(command, cwd)
            log_event(
                work_dir,
                f"Check: {name}",
                work_id,
                f"Command: `{command}`\n"
                f"Result: {'PASS' if result.passed else 'FAIL'}\n\n"
                f"```\n{result.output[:OUTPUT_LOG_LIMIT]}\n```",
            )

        self.store.update(work_id, lambda s: s.set_gate(Gate.TESTS, report.gate_status))
        return report
