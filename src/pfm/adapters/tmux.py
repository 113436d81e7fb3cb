from __future__ import annotations

from pathlib import Path

from pfm.adapters.base import AdapterError, CommandAdapter


class TmuxAdapter(CommandAdapter):
    def __init__(self, binary: str = "tmux") -> None:
        super().__init__(binary)

    def session_exists(self, name: str) -> bool:
        try:
            return self._run(["has-session", "-t", name], check=False).returncode == 0
        except AdapterError:
            return False

    def new_session(self, name: str, working_dir: Path, command: str) -> None:
        self._run(["new-session", "-d", "-s", name, "-c", str(working_dir), command])

    def send_keys(self, session: str, keys: str) -> None:
        self._run(["send-keys", "-t", session, keys, "Enter"])

    def kill_session(self, name: str) -> None:
        self._run(["kill-session", "-t", name])
