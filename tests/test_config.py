import tomllib
from pathlib import Path

import pytest

from pfm import __version__
from pfm.config import (
    PfmConfig,
    PfmConfigError,
    StackConfig,
    dumps_toml,
    load_config,
    save_config,
)


def test_config_roundtrip(tmp_path: Path) -> None:
    config_path = tmp_path / "config.toml"
    config = PfmConfig.default()
    config.default_stack = "rust"
    config.agent.binary = "claude-beta"
    config.agent.multiplexer = "tmux3"
    config.run.mode = "auto"
    config.run.dispatch_mode = "detached"
    config.run.poll_interval_seconds = 2.5
    config.run.stage_max_polls = 10
    config.stacks["python"] = StackConfig(verify="pytest -q", security="pip-audit")

    save_config(config_path, config)
    loaded = load_config(config_path)

    assert loaded.default_stack == "rust"
    assert loaded.agent.binary == "claude-beta"
    assert loaded.agent.multiplexer == "tmux3"
    assert loaded.agent.worktree_tool == "groot"
    assert loaded.run.mode == "auto"
    assert loaded.run.dispatch_mode == "detached"
    assert loaded.run.poll_interval_seconds == 2.5
    assert loaded.run.stage_max_polls == 10
    assert loaded.run.team_max_polls == 360
    assert loaded.stacks["python"].verify == "pytest -q"
    assert loaded.stacks["rails"].security == "bundle exec brakeman -q"


def test_missing_config_falls_back_to_defaults(tmp_path: Path) -> None:
    loaded = load_config(tmp_path / "absent.toml")

    assert loaded == PfmConfig.default()
    assert set(loaded.stacks) == {"rails", "react_native", "cli_node", "cli_ruby", "rust"}


@pytest.mark.parametrize(
    "content",
    [
        "[run\nmode = ",
        "[run]\nbogus_key = 1\n",
        "[agent]\nbinary = \"claude\"\ncolour = \"blue\"\n",
        "[stacks]\nrust = \"cargo test\"\n",
    ],
)
def test_broken_config_raises_config_error(tmp_path: Path, content: str) -> None:
    config_path = tmp_path / "config.toml"
    config_path.write_text(content, encoding="utf-8")

    with pytest.raises(PfmConfigError, match="invalid config"):
        load_config(config_path)


def test_toml_dump_contains_run_and_stack_sections() -> None:
    rendered = dumps_toml(PfmConfig.default())

    assert rendered.startswith('default_stack = "rails"')
    assert "[agent]" in rendered
    assert "[run]" in rendered
    assert "poll_interval_seconds = 5.0" in rendered
    assert "stage_max_polls = 120" in rendered
    assert "teams_env_var" in rendered
    assert "[stacks.rust]" in rendered
    assert 'verify = "cargo test"' in rendered
    assert tomllib.loads(rendered)["run"]["poll_interval_seconds"] == 5.0


def test_package_version_constant_matches_pyproject() -> None:
    project_root = Path(__file__).resolve().parents[1]
    pyproject = tomllib.loads((project_root / "pyproject.toml").read_text(encoding="utf-8"))

    assert __version__ == pyproject["project"]["version"]
