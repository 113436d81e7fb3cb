from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from pfm.state.gates import Role, gate_of


@dataclass(frozen=True, slots=True)
class RoleSpec:
    title: str
    purpose: str
    inputs: tuple[str, ...]
    actions: tuple[str, ...]
    done_when: tuple[str, ...]
    final_statuses: tuple[str, ...] = ("pass",)


ROLE_SPECS: dict[Role, RoleSpec] = {
    Role.PRD: RoleSpec(
        title="PRD Agent",
        purpose="Turn the work item title and the user's answers into a product requirements document.",
        inputs=(
            "`state.json`: work item metadata and notes",
            "`prd.md`: any existing draft",
        ),
        actions=(
            "Ask the user about anything ambiguous before writing requirements down",
            "Fill in `prd.md`",
            "Write testable criteria in `acceptance.md`",
        ),
        done_when=("`prd.md` and `acceptance.md` are complete",),
    ),
    Role.ORCHESTRATOR: RoleSpec(
        title="Orchestrator Agent",
        purpose="Plan the implementation and break it into ordered tasks.",
        inputs=(
            "`prd.md`: requirements",
            "`acceptance.md`: acceptance criteria",
        ),
        actions=(
            "Write the approach, dependencies and risks to `plan.md`",
            "Break the plan into small, testable tasks in `tasks.md`",
        ),
        done_when=("`plan.md` and `tasks.md` are complete",),
    ),
    Role.ENV: RoleSpec(
        title="Environment Agent",
        purpose="Prepare the working copy the plan needs.",
        inputs=(
            "`state.json`: branch and workspace pointers",
            "`plan.md`: dependency requirements",
        ),
        actions=(
            "Check out the work item branch, or the worktree in `workspace.worktree` when set",
            "Install dependencies and start services the plan calls for",
            "Record every command you ran in `runlog.md`",
        ),
        done_when=("The environment builds and the verify command runs",),
    ),
    Role.TEST: RoleSpec(
        title="Test Agent",
        purpose="Write tests that encode the acceptance criteria before implementation starts.",
        inputs=(
            "`acceptance.md`: acceptance criteria",
            "`plan.md` and `tasks.md`",
        ),
        actions=(
            "Write unit and integration tests for each criterion",
            "Run `commands.verify` and confirm the new tests fail for the right reason",
        ),
        done_when=("Tests exist for every acceptance criterion",),
    ),
    Role.IMPLEMENTATION: RoleSpec(
        title="Implementation Agent",
        purpose="Implement `tasks.md` until the tests pass.",
        inputs=(
            "`plan.md` and `tasks.md`",
            "The tests written by the test agent",
            "The latest handoff, when you were rerouted after a failure",
        ),
        actions=(
            "When rerouted, fix what the latest handoff reports before anything else",
            "Implement the tasks in order, ticking them off in `tasks.md`",
            "Run `commands.verify` until it passes",
        ),
        done_when=("`commands.verify` passes", "The implementation matches `plan.md`"),
    ),
    Role.REVIEW_SECURITY: RoleSpec(
        title="Review & Security Agent",
        purpose="Review the change for correctness and security problems.",
        inputs=(
            "The branch diff",
            "`commands.security` from `state.json`",
            "`acceptance.md`",
        ),
        actions=(
            "Review every changed file",
            "Run `commands.security`",
            "Check for common vulnerability classes (injection, secrets, unsafe input handling)",
            "Put concrete findings in the handoff note",
        ),
        done_when=("The review is complete and the security command has run",),
        final_statuses=("pass", "changes_requested"),
    ),
    Role.QA: RoleSpec(
        title="QA Agent",
        purpose="Validate the feature against the acceptance criteria.",
        inputs=(
            "`acceptance.md`",
            "`commands.qa_smoke` from `state.json`, when set",
        ),
        actions=(
            "Run the smoke command when one is configured",
            "Exercise each acceptance criterion",
            "Record results and issues in `qa.md`",
        ),
        done_when=("Every criterion has a recorded result in `qa.md`",),
        final_statuses=("pass", "fail"),
    ),
    Role.GIT: RoleSpec(
        title="Git Agent",
        purpose="Prepare the branch for merge.",
        inputs=("`state.json`: branch name", "All work item documents"),
        actions=(
            "Confirm every earlier gate is `pass`",
            "Commit with descriptive messages and push the branch",
            "Open a pull request when the repository uses them",
        ),
        done_when=("The branch is pushed", "Work status in `state.json` is `done`"),
    ),
}


def role_spec_path(roles_dir: Path, role: Role) -> Path:
    return roles_dir / f"{role.value}.md"


def _bullets(items: tuple[str, ...]) -> str:
    return "\n".join(f"- {item}" for item in items)


def render_role_spec(role: Role) -> str:
    spec = ROLE_SPECS[role]
    gate = gate_of(role).value
    statuses = " or ".join(f"`{status}`" for status in spec.final_statuses)
    actions = "\n".join(
        f"{number}. {action}" for number, action in enumerate(spec.actions, start=1)
    )
    done_when = (
        *spec.done_when,
        f"Gate `{gate}` = {statuses}",
        "Handoff note written",
    )
    return (
        f"# Role: {spec.title}\n\n"
        f"## Purpose\n{spec.purpose}\n\n"
        f"## Inputs\n{_bullets(spec.inputs)}\n\n"
        f"## Actions\n{actions}\n"
        f"{len(spec.actions) + 1}. Set gates.{gate} in state.json to {statuses}\n"
        f"{len(spec.actions) + 2}. Write a handoff note to handoffs/<timestamp>-{role.value}.md\n\n"
        f"## Owned gate\n`{gate}`\n\n"
        f"## Stop condition\n{_bullets(done_when)}\n"
    )


def role_specs() -> list[tuple[str, str]]:
    return [(f"{role.value}.md", render_role_spec(role)) for role in Role]
