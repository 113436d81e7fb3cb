import json
import subprocess
from pathlib import Path

import pytest

from pfm.adapters import GrootAdapter
from pfm.config import load_config
from pfm.state import PfmStateError, StateStore, WorkItemExists
from pfm.work import (
    config_path,
    detect_stack,
    find_repo_root,
    generate_work_id,
    init_workspace,
    list_work_items,
    new_work_item,
)


class FakeGroot(GrootAdapter):
    def __init__(self) -> None:
        super().__init__("groot")
        self.branches: list[str] = []

    def is_available(self) -> bool:
        return True

    def create_worktree(self, branch: str) -> str:
        self.branches.append(branch)
        return f"/worktrees/{branch}"


def test_init_creates_layout_and_is_idempotent(tmp_path: Path) -> None:
    first = init_workspace(tmp_path)

    pfm_dir = tmp_path / ".pfm"
    assert (pfm_dir / "work").is_dir()
    assert (pfm_dir / "runtime" / ".gitignore").exists()
    assert (pfm_dir / "roles" / "review_security.md").exists()
    assert len(list((pfm_dir / "roles").glob("*.md"))) == 8
    assert sorted(path.name for path in (pfm_dir / "templates").glob("*.md")) == [
        "acceptance.md",
        "plan.md",
        "prd.md",
        "qa.md",
        "runlog.md",
        "tasks.md",
    ]
    assert load_config(config_path(tmp_path)).default_stack == "rails"
    assert first.existing == []

    second = init_workspace(tmp_path)

    assert second.created == []
    assert sorted(second.existing) == sorted(first.created)


def test_role_spec_names_owned_gate(tmp_path: Path) -> None:
    init_workspace(tmp_path)

    spec = (tmp_path / ".pfm" / "roles" / "implementation.md").read_text(encoding="utf-8")
    assert "## Owned gate\n`impl`" in spec
    assert "Set gates.impl in state.json to `pass`" in spec
    assert "handoffs/<timestamp>-implementation.md" in spec

    review = (tmp_path / ".pfm" / "roles" / "review_security.md").read_text(encoding="utf-8")
    assert "Gate `review_security` = `pass` or `changes_requested`" in review


@pytest.mark.parametrize(
    ("title", "expected"),
    [
        ("Add user login", "FEAT-add-user-login"),
        ("Fix: crash on start-up, again!", "FEAT-fix-crash-on"),
        ("!!!", "FEAT-work"),
    ],
)
def test_generate_work_id(title: str, expected: str) -> None:
    assert generate_work_id(title) == expected


def test_detect_stack_variants(tmp_path: Path) -> None:
    assert detect_stack(tmp_path) is None

    (tmp_path / "Gemfile").write_text("source 'https://rubygems.org'\n", encoding="utf-8")
    assert detect_stack(tmp_path) == "cli_ruby"

    (tmp_path / "config").mkdir()
    (tmp_path / "config" / "routes.rb").write_text("", encoding="utf-8")
    assert detect_stack(tmp_path) == "rails"

    node = tmp_path / "node"
    node.mkdir()
    (node / "package.json").write_text(json.dumps({"name": "cli"}), encoding="utf-8")
    assert detect_stack(node) == "cli_node"

    (node / "package.json").write_text(
        json.dumps({"dependencies": {"react-native": "0.74.0"}}), encoding="utf-8"
    )
    assert detect_stack(node) == "react_native"


def test_new_work_item_requires_init(tmp_path: Path) -> None:
    with pytest.raises(PfmStateError, match="pfm init"):
        new_work_item(tmp_path, "Add login")


def test_new_work_item_writes_state_and_files(tmp_path: Path) -> None:
    init_workspace(tmp_path)

    result = new_work_item(tmp_path, "Add user login", stack="rust")

    assert result.state.id == "FEAT-add-user-login"
    assert result.stack == "rust"
    assert result.stack_source == "specified"
    work_dir = tmp_path / ".pfm" / "work" / "FEAT-add-user-login"
    assert (work_dir / "handoffs").is_dir()
    assert (work_dir / "artifacts").is_dir()
    assert "Add user login" in (work_dir / "tasks.md").read_text(encoding="utf-8")
    for name in ("prd.md", "acceptance.md", "plan.md", "qa.md"):
        content = (work_dir / name).read_text(encoding="utf-8")
        assert "FEAT-add-user-login" in content
        assert "{WORK_ID}" not in content
    assert "## Title: Add user login" in (work_dir / "prd.md").read_text(encoding="utf-8")
    assert (work_dir / "runlog.md").exists()
    state = StateStore(tmp_path).read("FEAT-add-user-login")
    assert state.commands.verify == "cargo test"
    assert state.commands.security == "cargo audit"
    assert state.branch == "pfm/FEAT-add-user-login"


def test_new_work_item_detects_stack_and_uses_default(tmp_path: Path) -> None:
    init_workspace(tmp_path)
    assert new_work_item(tmp_path, "One", work_id="FEAT-1").stack_source == "default"

    (tmp_path / "package.json").write_text("{}", encoding="utf-8")
    result = new_work_item(tmp_path, "Two", work_id="FEAT-2")

    assert result.stack == "cli_node"
    assert result.stack_source == "detected"
    assert result.state.commands.verify == "npm test"


def test_new_work_item_rejects_duplicates_and_unknown_stacks(tmp_path: Path) -> None:
    init_workspace(tmp_path)
    new_work_item(tmp_path, "Login", work_id="FEAT-login")

    with pytest.raises(WorkItemExists):
        new_work_item(tmp_path, "Login again", work_id="FEAT-login")
    with pytest.raises(PfmStateError, match="unknown stack: cobol"):
        new_work_item(tmp_path, "Mainframe", work_id="FEAT-mf", stack="cobol")


def test_new_work_item_records_groot_worktree(tmp_path: Path) -> None:
    init_workspace(tmp_path)
    groot = FakeGroot()

    result = new_work_item(tmp_path, "Login", work_id="FEAT-login", groot=groot)

    assert groot.branches == ["pfm/FEAT-login"]
    assert result.worktree == "/worktrees/pfm/FEAT-login"
    state = StateStore(tmp_path).read("FEAT-login")
    assert state.workspace.worktree == "/worktrees/pfm/FEAT-login"


def test_new_work_item_creates_git_branch(tmp_path: Path) -> None:
    subprocess.run(["git", "init"], cwd=tmp_path, check=True, text=True, capture_output=True)
    subprocess.run(
        [
            "git",
            "-c",
            "user.email=test@example.com",
            "-c",
            "user.name=Test User",
            "commit",
            "--allow-empty",
            "-m",
            "seed",
        ],
        cwd=tmp_path,
        check=True,
        text=True,
        capture_output=True,
    )
    init_workspace(tmp_path)

    result = new_work_item(tmp_path, "Login", work_id="FEAT-login")

    assert result.branch_created
    branches = subprocess.run(
        ["git", "branch", "--list", "pfm/FEAT-login"],
        cwd=tmp_path,
        check=True,
        text=True,
        capture_output=True,
    ).stdout
    assert "pfm/FEAT-login" in branches
    assert find_repo_root(tmp_path / ".pfm" / "work") == tmp_path.resolve()


def test_list_work_items_tolerates_broken_state(tmp_path: Path) -> None:
    init_workspace(tmp_path)
    new_work_item(tmp_path, "Login", work_id="FEAT-a")
    broken = tmp_path / ".pfm" / "work" / "FEAT-b"
    broken.mkdir()
    (broken / "state.json").write_text("nope", encoding="utf-8")

    items = list_work_items(tmp_path)

    assert [work_id for work_id, _ in items] == ["FEAT-a", "FEAT-b"]
    assert items[0][1] is not None
    assert items[1][1] is None


def test_new_work_item_uses_edited_templates(tmp_path: Path) -> None:
    init_workspace(tmp_path)
    (tmp_path / ".pfm" / "templates" / "prd.md").write_text(
        "# PRD for {TITLE} ({WORK_ID})\n\nOwner: platform team\n", encoding="utf-8"
    )
    (tmp_path / ".pfm" / "templates" / "qa.md").unlink()

    new_work_item(tmp_path, "Login", work_id="FEAT-login")

    work_dir = tmp_path / ".pfm" / "work" / "FEAT-login"
    prd = (work_dir / "prd.md").read_text(encoding="utf-8")
    assert prd == "# PRD for Login (FEAT-login)\n\nOwner: platform team\n"
    assert (work_dir / "qa.md").read_text(encoding="utf-8").startswith("# QA Report")


def test_init_keeps_edited_templates(tmp_path: Path) -> None:
    init_workspace(tmp_path)
    custom = tmp_path / ".pfm" / "templates" / "plan.md"
    custom.write_text("# Our plan format\n", encoding="utf-8")

    report = init_workspace(tmp_path)

    assert custom in report.existing
    assert custom.read_text(encoding="utf-8") == "# Our plan format\n"
