from __future__ import annotations

import shutil
import subprocess


class AdapterError(RuntimeError):
    """Raised when an optional external tool fails or is unavailable."""

    def __init__(self, message: str, *, tool: str | None = None) -> None:
        super().__init__(message)
        self.tool = tool


class CommandAdapter:
    """Thin wrapper around one external executable."""

    def __init__(self, binary: str) -> None:
        self.binary = binary

    def is_available(self) -> bool:
        return shutil.which(self.binary) is not None

    def _run(self, args: list[str], check: bool = True) -> subprocess.CompletedProcess[str]:
        try:
            proc = subprocess.run(
                [self.binary, *args],
                text=True,
                capture_output=True,
            )
        except OSError as exc:
            raise AdapterError(f"failed to run {self.binary}: {exc}", tool=self.binary) from exc
        if check and proc.returncode != 0:
            raise AdapterError(
                proc.stderr.strip() or proc.stdout.strip() or f"{self.binary} {args[0]} failed",
                tool=self.binary,
            )
        return proc
