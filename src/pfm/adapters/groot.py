from __future__ import annotations

from pfm.adapters.base import CommandAdapter


class GrootAdapter(CommandAdapter):
    """Creates isolated working copies through the ``groot`` worktree tool."""

    def __init__(self, binary: str = "groot") -> None:
        super().__init__(binary)

    def create_worktree(self, branch: str) -> str:
        proc = self._run(["plant", "--branch", branch])
        return proc.stdout.strip()
