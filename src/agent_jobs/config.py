"""Runtime configuration for agent job management."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path

from .errors import ConfigError

DEFAULT_KNOWN_MODES = (
    "autopilot",
    "ecomode",
    "pipeline",
    "ralph",
    "ralplan",
    "swarm",
    "ultrapilot",
    "ultraqa",
    "ultrawork",
)

DEFAULT_AGENT_ROLES = (
    "analyst",
    "architect",
    "code-reviewer",
    "critic",
    "designer",
    "executor",
    "explore",
    "planner",
    "qa-tester",
    "researcher",
    "security-reviewer",
    "writer",
)


@dataclass(frozen=True)
class Config:
    """Runtime configuration loaded from config.json."""

    state_dir_name: str = ".agent-jobs"
    cache_dir: Path = field(
        default_factory=lambda: Path(os.path.expanduser("~/.cache/agent-jobs")).resolve()
    )
    poll_initial_ms: int = 500
    poll_max_ms: int = 5000
    poll_multiplier: float = 2.0
    max_wait_ms: int = 3_600_000
    preview_chars: int = 2000
    job_timeout_seconds: int = 3600
    kill_grace_seconds: float = 0.5
    list_limit: int = 50
    known_modes: tuple[str, ...] = DEFAULT_KNOWN_MODES
    agent_roles: tuple[str, ...] = DEFAULT_AGENT_ROLES

    @classmethod
    def from_dict(cls, payload: dict) -> Config:
        """Create a Config object from a raw dictionary."""
        if not isinstance(payload, dict):
            raise ConfigError("config must be a JSON object")

        try:
            poll_initial_ms = int(payload.get("poll_initial_ms", 500))
            poll_max_ms = int(payload.get("poll_max_ms", 5000))
            poll_multiplier = float(payload.get("poll_multiplier", 2.0))
            max_wait_ms = int(payload.get("max_wait_ms", 3_600_000))
            preview_chars = int(payload.get("preview_chars", 2000))
            job_timeout_seconds = int(payload.get("job_timeout_seconds", 3600))
            kill_grace_seconds = float(payload.get("kill_grace_seconds", 0.5))
            list_limit = int(payload.get("list_limit", 50))
        except (TypeError, ValueError) as err:
            raise ConfigError(f"Invalid numeric config value: {err}") from err

        if poll_initial_ms <= 0:
            raise ConfigError(f"poll_initial_ms must be positive, got {poll_initial_ms}")
        if poll_max_ms < poll_initial_ms:
            raise ConfigError(
                f"poll_max_ms must be >= poll_initial_ms, got {poll_max_ms} < {poll_initial_ms}"
            )
        if poll_multiplier < 1.0:
            raise ConfigError(f"poll_multiplier must be >= 1.0, got {poll_multiplier}")
        if max_wait_ms <= 0:
            raise ConfigError(f"max_wait_ms must be positive, got {max_wait_ms}")
        if preview_chars <= 0:
            raise ConfigError(f"preview_chars must be positive, got {preview_chars}")
        if job_timeout_seconds <= 0:
            raise ConfigError(f"job_timeout_seconds must be positive, got {job_timeout_seconds}")
        if kill_grace_seconds < 0:
            raise ConfigError(f"kill_grace_seconds must not be negative, got {kill_grace_seconds}")
        if list_limit <= 0:
            raise ConfigError(f"list_limit must be positive, got {list_limit}")

        state_dir_name = str(payload.get("state_dir_name", ".agent-jobs"))
        if not state_dir_name or "/" in state_dir_name or state_dir_name in {".", ".."}:
            raise ConfigError(f"state_dir_name must be a plain directory name, got {state_dir_name!r}")

        cache_dir = Path(
            os.path.expanduser(payload.get("cache_dir", "~/.cache/agent-jobs"))
        ).resolve()

        known_modes = payload.get("known_modes", DEFAULT_KNOWN_MODES)
        agent_roles = payload.get("agent_roles", DEFAULT_AGENT_ROLES)
        if not isinstance(known_modes, (list, tuple)):
            raise ConfigError("known_modes must be a list")
        if not isinstance(agent_roles, (list, tuple)):
            raise ConfigError("agent_roles must be a list")

        return cls(
            state_dir_name=state_dir_name,
            cache_dir=cache_dir,
            poll_initial_ms=poll_initial_ms,
            poll_max_ms=poll_max_ms,
            poll_multiplier=poll_multiplier,
            max_wait_ms=max_wait_ms,
            preview_chars=preview_chars,
            job_timeout_seconds=job_timeout_seconds,
            kill_grace_seconds=kill_grace_seconds,
            list_limit=list_limit,
            known_modes=tuple(str(mode) for mode in known_modes),
            agent_roles=tuple(str(role) for role in agent_roles),
        )

    def state_root(self, working_directory: Path) -> Path:
        """Return the directory holding mode and job state for a working directory."""
        return working_directory / self.state_dir_name / "state"

    def prompts_dir(self, working_directory: Path) -> Path:
        """Return the directory holding prompt audit files and generated outputs."""
        return working_directory / self.state_dir_name / "prompts"


def load_config(path: Path | None) -> Config:
    """Load configuration from the provided path, or defaults when it is absent."""
    if path is None or not path.exists():
        return Config()
    try:
        with path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
    except (OSError, json.JSONDecodeError) as err:
        raise ConfigError(f"Failed to load config from {path}: {err}") from err
    return Config.from_dict(data)
