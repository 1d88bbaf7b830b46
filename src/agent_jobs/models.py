"""Job data models.

This module defines the job status lifecycle and the job record persisted by
the job registry.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any


class JobStatus(Enum):
    """Lifecycle status of a job.

    spawned -> running -> {completed | failed | timeout | killed}
    """

    SPAWNED = "spawned"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMEOUT = "timeout"
    KILLED = "killed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_STATUSES


TERMINAL_STATUSES = frozenset(
    {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.TIMEOUT, JobStatus.KILLED}
)
ACTIVE_STATUSES = frozenset({JobStatus.SPAWNED, JobStatus.RUNNING})


@dataclass(frozen=True)
class Job:
    """One tracked invocation of an external CLI."""

    id: str
    provider: str
    status: JobStatus
    created_at: str
    output_file: str
    prompt_file: str
    command: tuple[str, ...] = ()
    inline_prompt: bool = False
    context_files: tuple[str, ...] = ()
    working_directory: str | None = None
    model: str | None = None
    agent_role: str | None = None
    background: bool = True
    pid: int | None = None
    exit_code: int | None = None
    completed_at: str | None = None
    error: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-compatible dictionary."""
        data = asdict(self)
        data["status"] = self.status.value
        data["command"] = list(self.command)
        data["context_files"] = list(self.context_files)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Job:
        """Build a Job from its dictionary form.

        Raises:
            KeyError: If a required field is missing
            ValueError: If the status is not a known value
        """
        return cls(
            id=str(data["id"]),
            provider=str(data["provider"]),
            status=JobStatus(data["status"]),
            created_at=str(data["created_at"]),
            output_file=str(data["output_file"]),
            prompt_file=str(data["prompt_file"]),
            command=tuple(data.get("command") or ()),
            inline_prompt=bool(data.get("inline_prompt", False)),
            context_files=tuple(data.get("context_files") or ()),
            working_directory=data.get("working_directory"),
            model=data.get("model"),
            agent_role=data.get("agent_role"),
            background=bool(data.get("background", True)),
            pid=data.get("pid"),
            exit_code=data.get("exit_code"),
            completed_at=data.get("completed_at"),
            error=data.get("error"),
            extra=dict(data.get("extra") or {}),
        )
