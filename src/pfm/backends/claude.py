from __future__ import annotations

import logging
import shlex
import subprocess
from datetime import UTC, datetime
from pathlib import Path

from pfm.adapters import AdapterError, TmuxAdapter
from pfm.backends.base import AgentDispatcher, DispatchError, DispatchMode, ExitOutcome
from pfm.prompts import render_bootstrap_prompt, render_nudge_message
from pfm.state.gates import GateStatus, Role, gate_of
from pfm.state.runlog import log_event
from pfm.state.store import StateStore, WorkState

logger = logging.getLogger(__name__)

LEAD_LABEL = "lead"


class ClaudeCodeDispatcher(AgentDispatcher):
    """Runs role agents through the ``claude`` CLI, optionally inside tmux."""

    def __init__(
        self,
        store: StateStore,
        binary: str = "claude",
        tmux: TmuxAdapter | None = None,
    ) -> None:
        self.store = store
        self.binary = binary
        self.tmux = tmux

    def build_command(self, prompt: str, mode: DispatchMode) -> list[str]:
        if mode == DispatchMode.BATCH:
            return [self.binary, "--print", prompt]
        return [self.binary, prompt]

    @staticmethod
    def session_name(work_id: str, label: str) -> str:
        return f"pfm-{work_id}-{label}"

    def dispatch(self, role: Role, work_id: str, mode: DispatchMode) -> ExitOutcome:
        work_dir = self.store.require_work_dir(work_id)
        (work_dir / StateStore.HANDOFFS_DIR).mkdir(parents=True, exist_ok=True)
        started_at = datetime.now(UTC)
        gate = gate_of(role)

        def _claim(state: WorkState) -> None:
            state.set_gate(gate, GateStatus.IN_PROGRESS)
            state.owner = role

        state = self.store.update(work_id, _claim)
        prompt = render_bootstrap_prompt(role, work_dir, self.store.roles_dir)
        log_event(work_dir, "Agent Start", role.value, f"Role: {role.value}\nGate: {gate.value}")
        cwd = self.store.execution_dir(state)

        if mode == DispatchMode.DETACHED:
            session = self._start_detached(work_id, role.value, cwd, prompt)
            if session is not None:
                self.store.update(work_id, lambda s: setattr(s.workspace, "tmux_session", session))
                return ExitOutcome(mode=mode, session=session, started_at=started_at)
            mode = DispatchMode.INTERACTIVE

        exit_code = self._run_attached(prompt, cwd, mode)
        if exit_code == 0:
            log_event(work_dir, "Agent Complete", role.value)
        else:
            log_event(work_dir, "Agent Exit (non-zero)", role.value, f"Exit code: {exit_code}")
        return ExitOutcome(mode=mode, exit_code=exit_code, started_at=started_at)

    def dispatch_lead(self, work_id: str, instruction: str, mode: DispatchMode) -> ExitOutcome:
        work_dir = self.store.require_work_dir(work_id)
        started_at = datetime.now(UTC)
        state = self.store.read(work_id)
        cwd = self.store.execution_dir(state)

        if mode == DispatchMode.DETACHED:
            command = shlex.join(self.build_command(instruction, DispatchMode.BATCH))
            session = self._start_detached(work_id, LEAD_LABEL, cwd, instruction, command=command)
            if session is not None:
                self.store.update(work_id, lambda s: setattr(s.workspace, "tmux_session", session))
                return ExitOutcome(mode=mode, session=session, started_at=started_at)
            mode = DispatchMode.BATCH

        exit_code = self._run_attached(instruction, cwd, mode)
        log_event(work_dir, "Lead Exit", work_id, f"Exit code: {exit_code}")
        return ExitOutcome(mode=mode, exit_code=exit_code, started_at=started_at)

    def nudge(self, role: Role, work_id: str) -> tuple[bool, str]:
        """Send a resume message to the role's session; returns (delivered, message)."""
        work_dir = self.store.require_work_dir(work_id)
        state = self.store.read(work_id)
        message = render_nudge_message(role, work_dir)
        if self.tmux is None:
            return False, message
        # The role's own session first, then whatever session was recorded last
        # (the lead session in teams mode).
        for session in (self.session_name(work_id, role.value), state.workspace.tmux_session):
            if session and self.tmux.session_exists(session):
                self.tmux.send_keys(session, message)
                return True, message
        return False, message

    def _start_detached(
        self,
        work_id: str,
        label: str,
        cwd: Path,
        prompt: str,
        *,
        command: str | None = None,
    ) -> str | None:
        if self.tmux is None or not self.tmux.is_available():
            logger.warning("tmux unavailable, running %s agent attached", label)
            return None
        session = self.session_name(work_id, label)
        command = command or shlex.join(self.build_command(prompt, DispatchMode.INTERACTIVE))
        try:
            # A new dispatch supersedes the previous session for this role.
            if self.tmux.session_exists(session):
                logger.info("replacing existing tmux session %s", session)
                self.tmux.kill_session(session)
            self.tmux.new_session(session, cwd, command)
        except AdapterError as exc:
            logger.warning("tmux session %s failed (%s), running attached", session, exc)
            return None
        logger.info("started %s agent in tmux session %s", label, session)
        return session

    def _run_attached(self, prompt: str, cwd: Path, mode: DispatchMode) -> int:
        command = self.build_command(prompt, mode)
        try:
            proc = subprocess.run(command, cwd=cwd)
        except FileNotFoundError as exc:
            raise DispatchError(
                f"agent binary not found: {self.binary}",
                backend="claude",
                retriable=False,
            ) from exc
        except OSError as exc:
            raise DispatchError(
                f"failed to start {self.binary}: {exc}",
                backend="claude",
                retriable=False,
            ) from exc
        logger.debug("%s exited with %s", self.binary, proc.returncode)
        return proc.returncode
