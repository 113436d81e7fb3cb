from __future__ import annotations

import json
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

RunModeName = Literal["classic", "teams", "auto"]
DispatchModeName = Literal["interactive", "detached", "batch"]


class PfmConfigError(RuntimeError):
    """Raised when config.toml cannot be read or does not match the config schema."""


@dataclass(slots=True)
class StackConfig:
    verify: str = ""
    security: str = ""


def _default_stacks() -> dict[str, StackConfig]:
    return {
        "rails": StackConfig("bundle exec rspec", "bundle exec brakeman -q"),
        "react_native": StackConfig("npm test", "npm audit"),
        "cli_node": StackConfig("npm test", "npm audit"),
        "cli_ruby": StackConfig("bundle exec rspec", "bundle exec brakeman -q"),
        "rust": StackConfig("cargo test", "cargo audit"),
    }


@dataclass(slots=True)
class AgentConfig:
    binary: str = "claude"
    multiplexer: str = "tmux"
    worktree_tool: str = "groot"


@dataclass(slots=True)
class RunConfig:
    mode: RunModeName = "classic"
    dispatch_mode: DispatchModeName = "interactive"
    poll_interval_seconds: float = 5.0
    stage_max_polls: int = 120
    team_max_polls: int = 360
    teams_env_var: str = "CLAUDE_CODE_EXPERIMENTAL_AGENT_TEAMS"


@dataclass(slots=True)
class PfmConfig:
    default_stack: str = "rails"
    stacks: dict[str, StackConfig] = field(default_factory=_default_stacks)
    agent: AgentConfig = field(default_factory=AgentConfig)
    run: RunConfig = field(default_factory=RunConfig)

    @classmethod
    def default(cls) -> PfmConfig:
        return cls()

    @classmethod
    def from_dict(cls, data: dict) -> PfmConfig:
        stacks_data = data.get("stacks")
        if stacks_data is None:
            stacks = _default_stacks()
        else:
            stacks = {name: StackConfig(**values) for name, values in stacks_data.items()}
        return cls(
            default_stack=data.get("default_stack", "rails"),
            stacks=stacks,
            agent=AgentConfig(**data.get("agent", {})),
            run=RunConfig(**data.get("run", {})),
        )

    def to_dict(self) -> dict:
        return {
            "default_stack": self.default_stack,
            "agent": {
                "binary": self.agent.binary,
                "multiplexer": self.agent.multiplexer,
                "worktree_tool": self.agent.worktree_tool,
            },
            "run": {
                "mode": self.run.mode,
                "dispatch_mode": self.run.dispatch_mode,
                "poll_interval_seconds": self.run.poll_interval_seconds,
                "stage_max_polls": self.run.stage_max_polls,
                "team_max_polls": self.run.team_max_polls,
                "teams_env_var": self.run.teams_env_var,
            },
            "stacks": {
                name: {"verify": stack.verify, "security": stack.security}
                for name, stack in self.stacks.items()
            },
        }


def _toml_value(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        rendered = f"{value:.3f}".rstrip("0")
        return rendered + "0" if rendered.endswith(".") else rendered
    if isinstance(value, list):
        return "[" + ", ".join(_toml_value(item) for item in value) + "]"
    return json.dumps(str(value), ensure_ascii=False)


def dumps_toml(config: PfmConfig) -> str:
    data = config.to_dict()
    lines: list[str] = [f"default_stack = {_toml_value(data['default_stack'])}", ""]
    for section in ("agent", "run"):
        lines.append(f"[{section}]")
        for key, value in data[section].items():
            lines.append(f"{key} = {_toml_value(value)}")
        lines.append("")
    for name, values in data["stacks"].items():
        lines.append(f"[stacks.{name}]")
        for key, value in values.items():
            lines.append(f"{key} = {_toml_value(value)}")
        lines.append("")
    return "\n".join(lines).strip() + "\n"


def load_config(path: Path) -> PfmConfig:
    if not path.exists():
        return PfmConfig.default()
    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except (OSError, tomllib.TOMLDecodeError) as exc:
        raise PfmConfigError(f"invalid config {path}: {exc}") from exc
    try:
        return PfmConfig.from_dict(data)
    except (TypeError, ValueError, AttributeError) as exc:
        raise PfmConfigError(f"invalid config {path}: {exc}") from exc


def save_config(path: Path, config: PfmConfig) -> None:
    path.write_text(dumps_toml(config), encoding="utf-8")
