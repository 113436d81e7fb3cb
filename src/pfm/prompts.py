from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

from pfm.reroute import REROUTE_TABLE
from pfm.roles import role_spec_path
from pfm.state.gates import Gate, Role, gate_of, role_of
from pfm.state.store import Commands


def render_bootstrap_prompt(role: Role, work_dir: Path, roles_dir: Path) -> str:
    spec_path = role_spec_path(roles_dir, role)
    return f"""You are acting as the {role.value} agent.
Read and follow your role spec exactly: {spec_path}
Your assigned work item directory is: {work_dir}
Start by reading:
1) {work_dir}/state.json
2) {work_dir}/tasks.md
3) The most recent file in {work_dir}/handoffs/ (if any)

Hard requirements:
- Ask the user clarifying questions when requirements are ambiguous or incomplete. Do not assume, confirm with the user.
- Update only the gate you own in state.json (gates.{gate_of(role).value}); do not modify other gates.
- Log commands, outputs, and failures in {work_dir}/runlog.md.
- When finished, write a handoff note to {work_dir}/handoffs/{{TIMESTAMP}}-{role.value}.md using the standard format.
- When you are done, tell the user you are finished and they can exit the session with /exit to return to PFM.
- Stop when your role spec stop condition is met."""


def render_nudge_message(role: Role, work_dir: Path) -> str:
    return (
        f"Resume your work. Check {work_dir}/state.json for current state. "
        f"Your gate is '{gate_of(role).value}'. "
        "Complete your role spec requirements and write a handoff note."
    )


def render_reroute_rules() -> str:
    lines = []
    for (gate, status), role in REROUTE_TABLE.items():
        lines.append(
            f"- If `{gate.value}` gate = `{status.value}` -> have the {role.value} "
            "teammate fix and retry, then re-run the gates after it"
        )
    return "\n".join(lines)


def render_team_prompt(
    work_id: str,
    work_dir: Path,
    roles_dir: Path,
    gates: Sequence[Gate],
    commands: Commands,
) -> str:
    role_lines = []
    for gate in gates:
        role = role_of(gate)
        role_lines.append(
            f"- **{role.value}** (gate: `{gate.value}`): role spec at "
            f"`{role_spec_path(roles_dir, role)}`"
        )
    roles = "\n".join(role_lines)
    return f"""You are the PFM orchestrator lead agent running in teams mode.

## Work Item
- ID: {work_id}
- Directory: {work_dir}
- State: {work_dir}/state.json

## Your Job
Spawn a teammate for each role below. Each teammate must:
1. Read their role spec and follow it exactly
2. Read {work_dir}/state.json and {work_dir}/tasks.md before starting
3. Read the most recent file in {work_dir}/handoffs/ for context from prior roles
4. Update ONLY their own gate in {work_dir}/state.json
5. Log commands and outputs in {work_dir}/runlog.md
6. Write a handoff note to {work_dir}/handoffs/{{TIMESTAMP}}-{{ROLE}}.md when done

## Roles to Spawn (in order)
{roles}

## Sequencing Rules
- Roles must execute in the order listed above
- Each role must wait for the previous role's gate to reach `pass` before starting
- After `tests` or `impl` gates complete, run the verify command: `{commands.verify}`
- After `impl` gate, run the security command: `{commands.security}`

## Reroute Rules
{render_reroute_rules()}
- Any other `fail` -> stop and ask the user

## Completion
When all gates are `pass` (or you reach the target gate), set work status to `done` in state.json.

Start now by creating the team and spawning the first role."""
