from __future__ import annotations

import logging
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path

from pfm.adapters import AdapterError, GrootAdapter
from pfm.config import PfmConfig, load_config, save_config
from pfm.roles import role_specs
from pfm.state.store import (
    Commands,
    PfmStateError,
    StateStore,
    WorkItemExists,
    WorkState,
    write_state,
)
from pfm.templates import TEMPLATES_DIR, WORK_TEMPLATES, fill_template, load_template

logger = logging.getLogger(__name__)

CONFIG_FILE = "config.toml"
WORK_SUBDIRS = ("handoffs", "artifacts")


@dataclass(slots=True)
class InitReport:
    pfm_dir: Path
    created: list[Path]
    existing: list[Path]


@dataclass(slots=True)
class NewWorkResult:
    state: WorkState
    work_dir: Path
    stack: str
    stack_source: str
    branch_created: bool
    worktree: str = ""


def config_path(base: Path) -> Path:
    return base / ".pfm" / CONFIG_FILE


def find_repo_root(start: Path) -> Path:
    current = start.resolve()
    for candidate in (current, *current.parents):
        if (candidate / ".pfm").exists() or (candidate / ".git").exists():
            return candidate
    return current


def _write_if_missing(path: Path, content: str, report: InitReport) -> None:
    if path.exists():
        report.existing.append(path)
        return
    path.write_text(content, encoding="utf-8")
    report.created.append(path)


def init_workspace(base: Path) -> InitReport:
    pfm_dir = base / ".pfm"
    report = InitReport(pfm_dir=pfm_dir, created=[], existing=[])
    for directory in (
        pfm_dir,
        pfm_dir / "roles",
        pfm_dir / TEMPLATES_DIR,
        pfm_dir / "work",
        pfm_dir / "runtime",
    ):
        directory.mkdir(parents=True, exist_ok=True)

    path = config_path(base)
    if path.exists():
        report.existing.append(path)
    else:
        save_config(path, PfmConfig.default())
        report.created.append(path)

    for filename, content in WORK_TEMPLATES.items():
        _write_if_missing(pfm_dir / TEMPLATES_DIR / filename, content, report)
    for filename, content in role_specs():
        _write_if_missing(pfm_dir / "roles" / filename, content, report)
    _write_if_missing(pfm_dir / "runtime" / ".gitignore", "*\n!.gitignore\n", report)
    return report


def generate_work_id(title: str) -> str:
    cleaned = "".join(char for char in title if char.isalnum() or char == " ")
    short = "-".join(cleaned.split()[:3]).lower()
    return f"FEAT-{short or 'work'}"


def detect_stack(base: Path) -> str | None:
    has_gemfile = (base / "Gemfile").exists()
    package_json = base / "package.json"
    has_rails = any(
        (base / marker).exists()
        for marker in ("config/routes.rb", "bin/rails", "config/application.rb")
    )
    if has_gemfile and has_rails:
        return "rails"
    if package_json.exists():
        try:
            if "react-native" in package_json.read_text(encoding="utf-8"):
                return "react_native"
        except OSError:
            pass
        return "cli_node"
    if has_gemfile:
        return "cli_ruby"
    return None


def detect_repo_name(base: Path) -> str:
    try:
        proc = subprocess.run(
            ["git", "remote", "get-url", "origin"],
            cwd=base,
            text=True,
            capture_output=True,
        )
    except OSError:
        return base.name or "unknown"
    url = proc.stdout.strip() if proc.returncode == 0 else ""
    if url:
        name = re.sub(r"\.git$", "", url.rstrip("/").rsplit("/", maxsplit=1)[-1])
        if name:
            return name
    return base.name or "unknown"


def create_branch(base: Path, branch: str) -> bool:
    try:
        proc = subprocess.run(
            ["git", "--no-pager", "branch", branch],
            cwd=base,
            text=True,
            capture_output=True,
        )
    except OSError as exc:
        logger.warning("git branch %s skipped: %s", branch, exc)
        return False
    if proc.returncode == 0:
        return True
    if "already exists" in proc.stderr:
        return True
    logger.warning("git branch %s failed: %s", branch, proc.stderr.strip())
    return False


def new_work_item(
    base: Path,
    title: str,
    *,
    work_id: str | None = None,
    stack: str | None = None,
    groot: GrootAdapter | None = None,
) -> NewWorkResult:
    store = StateStore(base)
    if not store.pfm_dir.is_dir():
        raise PfmStateError("not initialized, run `pfm init` first")
    work_id = work_id or generate_work_id(title)
    work_dir = store.work_dir(work_id)
    if work_dir.exists():
        raise WorkItemExists(f"work item {work_id} already exists")

    config = load_config(config_path(base))
    detected = detect_stack(base)
    stack_name = stack or detected or config.default_stack
    stack_config = config.stacks.get(stack_name)
    if stack_config is None:
        raise PfmStateError(f"unknown stack: {stack_name}")
    stack_source = "specified" if stack else "detected" if detected else "default"

    for subdir in WORK_SUBDIRS:
        (work_dir / subdir).mkdir(parents=True, exist_ok=True)
    state = WorkState.new(
        work_id,
        title,
        detect_repo_name(base),
        Commands(verify=stack_config.verify, security=stack_config.security),
    )
    templates_dir = store.pfm_dir / TEMPLATES_DIR
    for filename in WORK_TEMPLATES:
        try:
            content = load_template(templates_dir, filename)
            (work_dir / filename).write_text(
                fill_template(content, work_id, title), encoding="utf-8"
            )
        except OSError as exc:
            raise PfmStateError(f"failed to write {filename} for {work_id}: {exc}") from exc

    branch_created = create_branch(base, state.branch)
    if groot is not None and groot.is_available():
        try:
            state.workspace.worktree = groot.create_worktree(state.branch)
        except AdapterError as exc:
            logger.warning("groot worktree skipped: %s", exc)
    write_state(store.state_path(work_id), state)

    return NewWorkResult(
        state=state,
        work_dir=work_dir,
        stack=stack_name,
        stack_source=stack_source,
        branch_created=branch_created,
        worktree=state.workspace.worktree,
    )


def list_work_items(base: Path) -> list[tuple[str, WorkState | None]]:
    store = StateStore(base)
    items: list[tuple[str, WorkState | None]] = []
    for work_id in store.list_ids():
        try:
            items.append((work_id, store.read(work_id)))
        except PfmStateError:
            items.append((work_id, None))
    return items
