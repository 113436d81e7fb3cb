from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import click

from pfm import __version__
from pfm.adapters import AdapterError, GrootAdapter, TmuxAdapter
from pfm.backends import AgentDispatcher, ClaudeCodeDispatcher, DispatchError, DispatchMode
from pfm.check import CheckError, CheckRunner
from pfm.completion import CompletionDetector
from pfm.config import PfmConfig, PfmConfigError, load_config
from pfm.pipeline import PipelineDriver, RunMode, RunSummary, parse_run_mode, resolve_mode
from pfm.state import (
    GATE_ORDER,
    GateStatus,
    PfmStateError,
    StateStore,
    UnknownGate,
    UnknownRole,
    WorkState,
    parse_gate,
    parse_role,
)
from pfm.work import config_path, find_repo_root, init_workspace, list_work_items, new_work_item

GATE_INDICATORS = {
    GateStatus.TODO: "  ",
    GateStatus.IN_PROGRESS: ">>",
    GateStatus.PASS: "OK",
    GateStatus.FAIL: "XX",
    GateStatus.CHANGES_REQUESTED: "CR",
}
FATAL_ERRORS = (
    PfmStateError,
    PfmConfigError,
    DispatchError,
    CheckError,
    UnknownGate,
    UnknownRole,
    AdapterError,
)


@dataclass(slots=True)
class Runtime:
    repo_root: Path
    config: PfmConfig
    store: StateStore
    dispatcher: AgentDispatcher


def _build_dispatcher(config: PfmConfig, store: StateStore) -> AgentDispatcher:
    return ClaudeCodeDispatcher(
        store,
        binary=config.agent.binary,
        tmux=TmuxAdapter(config.agent.multiplexer),
    )


def _load_runtime() -> Runtime:
    repo_root = find_repo_root(Path.cwd())
    config = load_config(config_path(repo_root))
    store = StateStore(repo_root)
    return Runtime(
        repo_root=repo_root,
        config=config,
        store=store,
        dispatcher=_build_dispatcher(config, store),
    )


def _parse_dispatch_mode(value: str) -> DispatchMode:
    try:
        return DispatchMode(value)
    except ValueError as exc:
        valid = ", ".join(mode.value for mode in DispatchMode)
        raise click.ClickException(f"unknown dispatch mode: {value} (valid: {valid})") from exc


def _echo_event(event: dict[str, Any]) -> None:
    name = event.get("event")
    if name == "pipeline_start":
        click.echo(f"starting pipeline for {event['work_id']} ({event['mode']} mode)")
    elif name == "gate_start":
        click.echo(f"=== gate: {event['gate']} | role: {event['role']} ===")
    elif name == "gate_result":
        click.echo(f"gate '{event['gate']}' = {event['status']}")
    elif name == "check":
        click.echo(f"automatic checks: {'PASS' if event['passed'] else 'FAIL'}")
    elif name == "check_error":
        click.echo(f"automatic checks could not run: {event['error']}")
    elif name == "reroute":
        click.echo(f"rerouting to {event['role']} due to gate '{event['gate']}'")
    elif name == "teams_start":
        click.echo("  roles: " + " -> ".join(event["roles"]))
        if event.get("session"):
            click.echo(f"  attach with: tmux attach -t {event['session']}")
    elif name == "waiting":
        click.echo(
            f"  waiting for {event['role']} agent to complete... "
            f"({int(event['elapsed_seconds'])}s)"
        )
    elif name == "progress":
        gates = "  ".join(f"{gate}={status}" for gate, status in event["gates"].items())
        click.echo(f"  progress ({int(event['elapsed_seconds'])}s): {gates}")


def _echo_gates(gates: dict[str, str]) -> None:
    for gate in GATE_ORDER:
        status = GateStatus(gates[gate.value])
        click.echo(f"  [{GATE_INDICATORS[status]}] {gate.value:<20} {status}")


def _echo_summary(summary: RunSummary) -> None:
    click.echo("")
    click.echo(f"stopped: {summary.reason} - {summary.detail}")
    _echo_gates(summary.gates)
    if summary.resume_hint:
        click.echo(f"  resume with: {summary.resume_hint}")


def _echo_state(state: WorkState) -> None:
    click.echo(f"Work Item: {state.id}")
    click.echo(f"Title:     {state.title}")
    click.echo(f"Repo:      {state.repo}")
    click.echo(f"Branch:    {state.branch}")
    click.echo(f"Status:    {state.status}")
    click.echo(f"Owner:     {state.owner}")
    click.echo(f"Updated:   {state.updated_at}")
    click.echo("")
    click.echo("Gates:")
    _echo_gates({gate.value: state.gate_status(gate).value for gate in GATE_ORDER})

    workspace = state.workspace
    if workspace.worktree or workspace.tmux_session or workspace.container:
        click.echo("")
        click.echo("Workspace:")
        if workspace.worktree:
            click.echo(f"  worktree:  {workspace.worktree}")
        if workspace.tmux_session:
            click.echo(f"  tmux:      {workspace.tmux_session}")
        if workspace.container:
            click.echo(f"  container: {workspace.container}")

    commands = state.commands
    if commands.verify or commands.security or commands.qa_smoke:
        click.echo("")
        click.echo("Commands:")
        if commands.verify:
            click.echo(f"  verify:   {commands.verify}")
        if commands.security:
            click.echo(f"  security: {commands.security}")
        if commands.qa_smoke:
            click.echo(f"  qa_smoke: {commands.qa_smoke}")

    if state.notes:
        click.echo("")
        click.echo("Notes:")
        for note in state.notes:
            click.echo(f"  - {note}")


@click.group()
@click.version_option(__version__, prog_name="pfm")
@click.option("--verbose", "-v", is_flag=True, default=False, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """Production Flow Manager: orchestrates role agents through gated stages."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


@cli.command("init")
def init_command() -> None:
    repo_root = find_repo_root(Path.cwd())
    report = init_workspace(repo_root)
    for path in report.created:
        click.echo(f"  created {path}")
    for path in report.existing:
        click.echo(f"  exists  {path}")
    click.echo(f"\npfm initialized at {report.pfm_dir}")


@cli.group("work")
def work_group() -> None:
    """Work item management."""


@work_group.command("new")
@click.argument("title")
@click.option("--id", "work_id", default=None, help="Explicit work ID (e.g. FEAT-login).")
@click.option("--stack", default=None, help="Technology stack name from config.toml.")
def work_new_command(title: str, work_id: str | None, stack: str | None) -> None:
    repo_root = find_repo_root(Path.cwd())
    try:
        config = load_config(config_path(repo_root))
        result = new_work_item(
            repo_root,
            title,
            work_id=work_id,
            stack=stack,
            groot=GrootAdapter(config.agent.worktree_tool),
        )
    except (PfmStateError, PfmConfigError) as exc:
        raise click.ClickException(str(exc)) from exc

    click.echo(f"created work item: {result.state.id}")
    click.echo(f"  directory: {result.work_dir}")
    click.echo(f"  branch: {result.state.branch}")
    click.echo(f"  stack: {result.stack} ({result.stack_source})")
    if result.worktree:
        click.echo(f"  worktree: {result.worktree}")


@work_group.command("list")
def work_list_command() -> None:
    items = list_work_items(find_repo_root(Path.cwd()))
    if not items:
        click.echo("no work items found")
        return
    click.echo(f"{'ID':<20} {'STATUS':<15} {'OWNER':<15} TITLE")
    click.echo("-" * 70)
    for work_id, state in items:
        if state is None:
            click.echo(f"{work_id:<20} {'???':<15} {'???':<15} (invalid state.json)")
        else:
            click.echo(f"{state.id:<20} {state.status:<15} {state.owner:<15} {state.title}")


@cli.command("status")
@click.argument("work_id")
def status_command(work_id: str) -> None:
    try:
        state = _load_runtime().store.read(work_id)
    except (PfmStateError, PfmConfigError) as exc:
        raise click.ClickException(str(exc)) from exc
    _echo_state(state)


@cli.command("check")
@click.argument("work_id")
def check_command(work_id: str) -> None:
    try:
        report = CheckRunner(_load_runtime().store).run(work_id)
    except (PfmStateError, PfmConfigError, CheckError) as exc:
        raise click.ClickException(str(exc)) from exc
    for result in report.results:
        if result.skipped:
            click.echo(f"  {result.name}: (no command configured)")
        else:
            click.echo(f"  {result.name}: {'PASS' if result.passed else 'FAIL'}")
    if report.passed:
        click.echo("\nall checks passed - tests gate set to pass")
    else:
        click.echo("\nchecks failed - tests gate set to fail")


@cli.group("agent")
def agent_group() -> None:
    """Agent management."""


@agent_group.command("start")
@click.argument("role_name")
@click.argument("work_id")
@click.option(
    "--dispatch",
    "dispatch_value",
    type=click.Choice([mode.value for mode in DispatchMode]),
    default=None,
    help="How the agent process is attached (defaults to config).",
)
def agent_start_command(role_name: str, work_id: str, dispatch_value: str | None) -> None:
    try:
        runtime = _load_runtime()
        role = parse_role(role_name)
    except FATAL_ERRORS as exc:
        raise click.ClickException(str(exc)) from exc
    dispatch_mode = _parse_dispatch_mode(dispatch_value or runtime.config.run.dispatch_mode)
    try:
        click.echo(f"starting {role} agent for {work_id} ({dispatch_mode})")
        outcome = runtime.dispatcher.dispatch(role, work_id, dispatch_mode)
    except FATAL_ERRORS as exc:
        raise click.ClickException(str(exc)) from exc
    if outcome.detached:
        click.echo(f"agent running in tmux session: {outcome.session}")
    elif not outcome.succeeded:
        raise click.ClickException(f"agent exited with status: {outcome.exit_code}")


@agent_group.command("nudge")
@click.argument("role_name")
@click.argument("work_id")
def agent_nudge_command(role_name: str, work_id: str) -> None:
    try:
        dispatcher = _load_runtime().dispatcher
    except PfmConfigError as exc:
        raise click.ClickException(str(exc)) from exc
    if not isinstance(dispatcher, ClaudeCodeDispatcher):
        raise click.ClickException("configured dispatcher does not support nudging")
    try:
        role = parse_role(role_name)
        delivered, message = dispatcher.nudge(role, work_id)
    except FATAL_ERRORS as exc:
        raise click.ClickException(str(exc)) from exc
    if delivered:
        click.echo(f"nudged {role} agent")
        return
    click.echo(f"no active session found for {role} agent")
    click.echo("paste this prompt to resume manually:\n")
    click.echo(message)


@cli.command("run")
@click.argument("work_id")
@click.option("--to", "stop_at", default=None, help="Stop at this gate (inclusive).")
@click.option(
    "--mode",
    "mode_value",
    type=click.Choice([mode.value for mode in RunMode]),
    default=None,
    help="Execution mode (defaults to config).",
)
@click.option(
    "--dispatch",
    "dispatch_value",
    type=click.Choice([mode.value for mode in DispatchMode]),
    default=None,
    help="Per-stage dispatch in classic mode (defaults to config).",
)
def run_command(
    work_id: str, stop_at: str | None, mode_value: str | None, dispatch_value: str | None
) -> None:
    try:
        target = parse_gate(stop_at) if stop_at else None
    except UnknownGate as exc:
        raise click.ClickException(str(exc)) from exc

    try:
        runtime = _load_runtime()
    except PfmConfigError as exc:
        raise click.ClickException(str(exc)) from exc
    run_config = runtime.config.run
    try:
        mode = resolve_mode(
            parse_run_mode(mode_value or run_config.mode),
            os.environ,
            env_var=run_config.teams_env_var,
        )
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc
    dispatch_mode = _parse_dispatch_mode(dispatch_value or run_config.dispatch_mode)
    if mode == RunMode.TEAMS and (mode_value or run_config.mode) == RunMode.AUTO:
        click.echo("agent teams enabled - using teams mode")
    detector = CompletionDetector(
        runtime.store,
        poll_interval=run_config.poll_interval_seconds,
        stage_max_polls=run_config.stage_max_polls,
        team_max_polls=run_config.team_max_polls,
        progress_hook=_echo_event,
    )
    driver = PipelineDriver(
        runtime.store,
        runtime.dispatcher,
        detector,
        CheckRunner(runtime.store),
        mode=mode,
        dispatch_mode=dispatch_mode,
        event_hook=_echo_event,
    )
    try:
        summary = driver.run(work_id, target)
    except FATAL_ERRORS as exc:
        raise click.ClickException(str(exc)) from exc
    _echo_summary(summary)
