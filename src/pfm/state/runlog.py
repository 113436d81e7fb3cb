from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

from pfm.state.store import PfmStateError

RUNLOG_FILE = "runlog.md"


def runlog_timestamp() -> str:
    return datetime.now(UTC).strftime("%Y-%m-%d %H:%M:%S UTC")


def append_runlog(work_dir: Path, entry: str) -> None:
    """Append ``entry`` to the work item's run log. The log is never read back."""
    try:
        with (work_dir / RUNLOG_FILE).open("a", encoding="utf-8") as handle:
            handle.write(entry)
    except OSError as exc:
        raise PfmStateError(f"failed to write runlog: {exc}") from exc


def log_event(work_dir: Path, title: str, subject: str, body: str = "") -> None:
    entry = f"\n## {title}: {runlog_timestamp()} - {subject}\n"
    if body:
        entry += f"\n{body.rstrip()}\n"
    append_runlog(work_dir, entry)
