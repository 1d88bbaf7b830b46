"""Background job management for external AI CLI processes.

This package launches provider CLIs (Codex, Gemini, Claude) as tracked jobs,
waits on them with backoff, signals them, and keeps scoped JSON mode state
under a working directory.
"""

from __future__ import annotations

from pathlib import Path

from .config import Config, load_config
from .controller import JobController, KillResult
from .errors import AgentJobsError, ConfigError, LaunchError, StateError, ValidationError
from .job_registry import JobRegistry
from .launcher import ForegroundResult, ProcessLauncher
from .models import Job, JobStatus
from .poller import BackoffPolicy, JobPoller, WaitOutcome, WaitResult
from .providers import Provider, create_provider, register_provider
from .state_store import StateStore
from .tools import AgentJobsTools, ToolResult

__all__ = [
    "create_tools",
    "AgentJobsTools",
    "ToolResult",
    "Config",
    "load_config",
    "StateStore",
    "JobRegistry",
    "Job",
    "JobStatus",
    "ProcessLauncher",
    "ForegroundResult",
    "JobPoller",
    "BackoffPolicy",
    "WaitOutcome",
    "WaitResult",
    "JobController",
    "KillResult",
    "Provider",
    "create_provider",
    "register_provider",
    "AgentJobsError",
    "ValidationError",
    "LaunchError",
    "StateError",
    "ConfigError",
]


def create_tools(config_path: Path | None = None, log_file: Path | None = None) -> AgentJobsTools:
    """Factory function to create the tool surface from an optional config file.

    Args:
        config_path: Path to config.json (defaults are used when absent)
        log_file: Log file handed to detached job supervisors

    Returns:
        AgentJobsTools instance

    Example:
        >>> from agent_jobs import create_tools
        >>>
        >>> tools = create_tools()
        >>> result = tools.state_write("ralph", {"active": True}, working_directory=".")
        >>> tools.state_list_active(working_directory=".").data["modes"]
        ['ralph']
    """
    return AgentJobsTools(load_config(config_path), log_file=log_file)
