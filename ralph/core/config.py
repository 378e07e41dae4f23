"""Loop configuration.

Layers, lowest to highest precedence:
1. LoopConfig defaults
2. .ralph/config.yaml in the project
3. Environment (RALPH_AGENT, RALPH_MODEL, RALPH_AGENT_CMD)
4. Explicit overrides (CLI options); None means "not given"
"""

import os
from pathlib import Path
from typing import Any

import pydantic
import yaml
from pydantic import BaseModel, ConfigDict, Field

from ralph.core.models import Mode

CONFIG_DIR = ".ralph"
CONFIG_FILE = "config.yaml"

ENV_OVERRIDES = {
    "RALPH_AGENT": "agent",
    "RALPH_MODEL": "model",
    "RALPH_AGENT_CMD": "command",
}

DEFAULT_CONFIG_YAML = """# Ralph loop configuration for this project

# Agent CLI: claude, codex, gemini, copilot
agent: claude

# Model override (default: the agent's own default)
# model: gemini-2.5-pro

# Warn after this many iterations in a row without a completion signal
failure_threshold: 3

# Pause between iterations (seconds)
delay_seconds: 2

# Push the current branch after every iteration
push: true
remote: origin

# Rolling display of the agent's latest output
watch: true
tail_lines: 5
watch_interval: 10

# Logs
log_dir: logs
session_log: true

# Write PROMPT_build.md / PROMPT_plan.md when missing
generate_prompts: true
"""


class ConfigError(Exception):
    """Configuration file or values are invalid."""

    pass


class LoopConfig(BaseModel):
    """Everything the supervisor needs to know about a run."""

    model_config = ConfigDict(extra="forbid")

    mode: Mode = Mode.BUILD
    agent: str = "claude"
    max_iterations: int = Field(default=0, ge=0)  # 0 = unbounded
    failure_threshold: int = Field(default=3, ge=1)
    delay_seconds: float = Field(default=2.0, ge=0)
    # None: single-shot in plan mode only
    single_shot: bool | None = None

    # Agent
    model: str | None = None
    command: str | None = None
    yolo: bool | None = None  # None: enabled unless the constitution disables it

    # Git
    push: bool = True
    remote: str = "origin"

    # Display
    watch: bool = True
    tail_lines: int = Field(default=5, ge=0)
    watch_interval: float = Field(default=10.0, gt=0)

    # Logs
    log_dir: str = "logs"
    session_log: bool = True

    # Prompt sources
    generate_prompts: bool = True
    prompt_file: str | None = None
    prompt: str | None = None
    spec: str | None = None
    all_specs: bool = False

    @property
    def stops_on_done(self) -> bool:
        """Whether the first SUCCESS_DONE ends the loop."""
        if self.single_shot is not None:
            return self.single_shot
        return self.mode == Mode.PLAN

    def log_path(self, repo_path: Path) -> Path:
        path = Path(self.log_dir)
        return path if path.is_absolute() else Path(repo_path) / path


def config_path(repo_path: Path) -> Path:
    return Path(repo_path) / CONFIG_DIR / CONFIG_FILE


def _load_yaml_config(repo_path: Path) -> dict[str, Any]:
    path = config_path(repo_path)
    if not path.exists():
        return {}
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(
            f"Invalid config in {path}: expected a mapping, got {type(data).__name__}"
        )
    return data


def _load_env_config() -> dict[str, Any]:
    values = {}
    for var, key in ENV_OVERRIDES.items():
        value = os.environ.get(var)
        if value:
            values[key] = value
    return values


def load_config(repo_path: Path, **overrides: Any) -> LoopConfig:
    """Build a LoopConfig for ``repo_path``. Raises ConfigError on bad input."""
    values: dict[str, Any] = {}
    values.update(_load_yaml_config(repo_path))
    values.update(_load_env_config())
    values.update({k: v for k, v in overrides.items() if v is not None})

    try:
        return LoopConfig(**values)
    except pydantic.ValidationError as e:
        details = "; ".join(
            f"{'.'.join(str(x) for x in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ConfigError(f"Invalid configuration: {details}") from e


def write_default_config(repo_path: Path, overwrite: bool = False) -> Path | None:
    """Create .ralph/config.yaml. Returns the path, or None if it already existed."""
    path = config_path(repo_path)
    if path.exists() and not overwrite:
        return None
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(DEFAULT_CONFIG_YAML)
    return path
