"""Request/response tool handlers for jobs and mode state.

Every handler returns a ToolResult; validation problems, missing jobs, refused
kills and I/O faults become ``is_error=True`` results instead of exceptions, so
the coordinating process never crashes on a bad request.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .config import Config
from .controller import ACTIVE_FILTER, JobController
from .errors import AgentJobsError
from .job_registry import JobRegistry, validate_job_id
from .launcher import UNSET, ForegroundResult, ProcessLauncher
from .models import Job, JobStatus
from .poller import JobPoller, WaitOutcome
from .providers import find_provider
from .state_store import StateStore
from .workdir import resolve_working_directory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolResult:
    """Structured response returned to the caller of a tool."""

    text: str
    is_error: bool = False
    data: dict[str, Any] = field(default_factory=dict)


def _error(message: str, **data: Any) -> ToolResult:
    return ToolResult(text=message, is_error=True, data=data)


def _format_job(job: Job) -> str:
    lines = [
        f"**Job ID:** {job.id}",
        f"**Provider:** {job.provider}",
        f"**Status:** {job.status.value}",
    ]
    if job.model:
        lines.append(f"**Model:** {job.model}")
    if job.agent_role:
        lines.append(f"**Agent Role:** {job.agent_role}")
    if job.pid is not None:
        lines.append(f"**PID:** {job.pid}")
    lines.append(f"**Prompt File:** {job.prompt_file}")
    lines.append(f"**Output File:** {job.output_file}")
    lines.append(f"**Created:** {job.created_at}")
    if job.completed_at:
        lines.append(f"**Completed:** {job.completed_at}")
    if job.exit_code is not None:
        lines.append(f"**Exit Code:** {job.exit_code}")
    if job.error:
        lines.append(f"**Error:** {job.error}")
    return "\n".join(lines)


def _provider_label(name: str) -> str:
    provider = find_provider(name)
    return provider.get_provider_name() if provider is not None else name


class AgentJobsTools:
    """Tool surface over the launcher, poller, controller and state store."""

    def __init__(self, config: Config | None = None, log_file: Path | None = None) -> None:
        self.config = config or Config()
        self.log_file = log_file

    def _store(self, working_directory: Path) -> StateStore:
        return StateStore(
            self.config.state_root(working_directory), known_modes=self.config.known_modes
        )

    def _registry(self, working_directory: Path) -> JobRegistry:
        return JobRegistry(self._store(working_directory))

    def _locate(
        self, registry: JobRegistry, provider: str | None, job_id: str
    ) -> tuple[str | None, Job | None]:
        validate_job_id(job_id)
        if provider is not None:
            return provider, registry.get_job(provider, job_id)
        job = registry.find_job(job_id)
        return (job.provider if job is not None else None), job

    # Jobs

    def launch_job(
        self,
        provider: str,
        prompt: Any = None,
        prompt_file: Any = UNSET,
        output_file: Any = None,
        agent_role: str | None = None,
        model: str | None = None,
        context_files: Sequence[str] = (),
        extra_args: Sequence[str] = (),
        background: bool = False,
        working_directory: str | Path | None = None,
    ) -> ToolResult:
        """Launch a job in the background, or run it in the foreground."""
        try:
            base = resolve_working_directory(working_directory)
            launcher = ProcessLauncher(
                self.config,
                base,
                registry=self._registry(base),
                log_file=self.log_file,
            )
            outcome = launcher.launch(
                provider,
                prompt=prompt,
                prompt_file=prompt_file,
                output_file=output_file,
                extra_args=extra_args,
                background=background,
                model=model,
                agent_role=agent_role,
                context_files=context_files,
            )
        except AgentJobsError as err:
            return _error(str(err))

        if isinstance(outcome, ForegroundResult):
            job = outcome.job
            if not outcome.succeeded:
                return _error(
                    f"{_provider_label(job.provider)} job {job.id} {job.status.value}: {job.error}",
                    job=job.to_dict(),
                )
            return ToolResult(text=outcome.output, data={"job": outcome.job.to_dict()})

        job = outcome
        if job.status == JobStatus.FAILED:
            return _error(
                f"## Job Failed to Start\n\n{_format_job(job)}", job=job.to_dict()
            )
        return ToolResult(
            text=(
                f"## Job Started\n\n{_format_job(job)}\n\n"
                "Use wait_for_job or check_job_status to follow progress."
            ),
            data={"job": job.to_dict()},
        )

    def wait_for_job(
        self,
        job_id: str,
        timeout_ms: float | None = None,
        provider: str | None = None,
        working_directory: str | Path | None = None,
    ) -> ToolResult:
        """Poll with backoff until the job finishes or the wait times out."""
        try:
            base = resolve_working_directory(working_directory)
            registry = self._registry(base)
            provider, job = self._locate(registry, provider, job_id)
            if job is None or provider is None:
                return _error(f"No job found with ID: {job_id}")
            poller = JobPoller(registry, self.config)
            result = poller.wait_for_job(provider, job_id, timeout_ms)
        except AgentJobsError as err:
            return _error(str(err))

        data: dict[str, Any] = {
            "outcome": result.outcome.value,
            "polls": result.polls,
            "elapsed_ms": result.elapsed_ms,
        }
        if result.job is not None:
            data["job"] = result.job.to_dict()

        if result.outcome == WaitOutcome.NOT_FOUND:
            return _error(f"No job found with ID: {job_id}", **data)
        if result.outcome == WaitOutcome.TIMEOUT:
            return ToolResult(
                text=(
                    f"## Wait Timed Out\n\nJob {job_id} is still "
                    f"{result.job.status.value} after {result.elapsed_ms}ms. "
                    "The job keeps running; wait again or kill it."
                ),
                data=data,
            )

        job = result.job
        text = f"## Job {job.status.value.capitalize()}\n\n{_format_job(job)}"
        if result.preview:
            text = f"{text}\n\n### Response Preview\n\n{result.preview}"
        return ToolResult(text=text, is_error=job.status != JobStatus.COMPLETED, data=data)

    def check_job_status(
        self,
        job_id: str,
        provider: str | None = None,
        working_directory: str | Path | None = None,
    ) -> ToolResult:
        """Report a job's current record without blocking."""
        try:
            base = resolve_working_directory(working_directory)
            registry = self._registry(base)
            provider, job = self._locate(registry, provider, job_id)
            if job is not None and provider is not None:
                job = JobController(registry, self.config).check_job_status(provider, job_id)
        except AgentJobsError as err:
            return _error(str(err))

        if job is None:
            return _error(f"No job found with ID: {job_id}")
        return ToolResult(
            text=f"## Job Status\n\n{_format_job(job)}", data={"job": job.to_dict()}
        )

    def kill_job(
        self,
        job_id: str,
        signal: str | None = None,
        provider: str | None = None,
        working_directory: str | Path | None = None,
    ) -> ToolResult:
        """Send a termination signal to a running job."""
        try:
            base = resolve_working_directory(working_directory)
            registry = self._registry(base)
            provider, job = self._locate(registry, provider, job_id)
            if job is None or provider is None:
                return _error(f"No job found with ID: {job_id}")
            result = JobController(registry, self.config).kill_job(provider, job_id, signal)
        except AgentJobsError as err:
            return _error(str(err))

        data: dict[str, Any] = {
            "signal": result.signal_name,
            "signal_delivered": result.signal_delivered,
            "process_exited": result.process_exited,
        }
        if result.job is not None:
            data["job"] = result.job.to_dict()
        if not result.ok:
            return _error(result.error or f"Could not kill job {job_id}", **data)

        if result.process_exited is False:
            note = "The process had not exited yet when last checked."
        elif result.signal_delivered:
            note = "The process has exited."
        else:
            note = "No live process was found."
        return ToolResult(
            text=f"## Job Killed\n\nSent {result.signal_name} to job {job_id}. {note}",
            data=data,
        )

    def list_jobs(
        self,
        provider: str,
        status_filter: str | None = ACTIVE_FILTER,
        limit: int | None = None,
        working_directory: str | Path | None = None,
    ) -> ToolResult:
        """List a provider's jobs, newest first."""
        try:
            base = resolve_working_directory(working_directory)
            controller = JobController(self._registry(base), self.config)
            jobs = controller.list_jobs(provider, status_filter, limit)
        except AgentJobsError as err:
            return _error(str(err))

        data = {"jobs": [job.to_dict() for job in jobs]}
        if not jobs:
            return ToolResult(
                text=f"## No Jobs Found\n\nNo {provider} jobs match filter: {status_filter or 'all'}",
                data=data,
            )
        lines = [f"## Jobs ({len(jobs)})\n"]
        for job in jobs:
            lines.append(f"### {job.id}")
            lines.append(_format_job(job))
            lines.append("")
        return ToolResult(text="\n".join(lines).rstrip(), data=data)

    # Mode state

    def state_read(
        self,
        mode: str,
        session_id: str | None = None,
        working_directory: str | Path | None = None,
    ) -> ToolResult:
        try:
            document = self._store(resolve_working_directory(working_directory)).read(
                mode, session_id
            )
        except AgentJobsError as err:
            return _error(str(err))

        if document is None:
            return ToolResult(text=f"No state found for mode: {mode}", data={"found": False})
        content = document.to_dict()
        return ToolResult(
            text=f"## State: {mode}\n\n```json\n{json.dumps(content, indent=2)}\n```",
            data={"found": True, "state": content},
        )

    def state_write(
        self,
        mode: str,
        state: Any,
        session_id: str | None = None,
        working_directory: str | Path | None = None,
    ) -> ToolResult:
        try:
            store = self._store(resolve_working_directory(working_directory))
            document = store.write(mode, state, session_id)
            path = store.path_for(mode, session_id)
        except AgentJobsError as err:
            return _error(str(err))

        content = document.to_dict()
        return ToolResult(
            text=(
                f"Successfully wrote state for mode: {mode}\n\n"
                f"Path: {path}\n\n```json\n{json.dumps(content, indent=2)}\n```"
            ),
            data={"state": content, "path": str(path)},
        )

    def state_clear(
        self,
        mode: str,
        session_id: str | None = None,
        working_directory: str | Path | None = None,
    ) -> ToolResult:
        try:
            removed = self._store(resolve_working_directory(working_directory)).clear(
                mode, session_id
            )
        except AgentJobsError as err:
            return _error(str(err))

        if removed:
            return ToolResult(text=f"Successfully cleared state for mode: {mode}", data={"removed": True})
        return ToolResult(
            text=f"No state to clear for mode: {mode} (already cleared)", data={"removed": False}
        )

    def state_list_active(
        self,
        session_id: str | None = None,
        working_directory: str | Path | None = None,
    ) -> ToolResult:
        try:
            modes = self._store(resolve_working_directory(working_directory)).list_active(session_id)
        except AgentJobsError as err:
            return _error(str(err))

        if not modes:
            return ToolResult(text="## Active Modes\n\nNo modes are currently active.", data={"modes": []})
        listing = "\n".join(f"- {mode}" for mode in modes)
        return ToolResult(text=f"## Active Modes\n\n{listing}", data={"modes": modes})

    def state_get_status(
        self,
        mode: str | None = None,
        session_id: str | None = None,
        working_directory: str | Path | None = None,
    ) -> ToolResult:
        try:
            statuses = self._store(resolve_working_directory(working_directory)).status(
                mode, session_id
            )
        except AgentJobsError as err:
            return _error(str(err))

        data = {
            "statuses": [
                {
                    "mode": status.mode,
                    "active": status.active,
                    "exists": status.exists,
                    "written_at": status.written_at,
                }
                for status in statuses
            ]
        }
        if mode is not None:
            status = statuses[0]
            lines = [
                f"## Status: {mode}",
                "",
                f"- Active: {'yes' if status.active else 'no'}",
                f"- Stored: {'yes' if status.exists else 'no'}",
            ]
            if status.written_at:
                lines.append(f"- Last written: {status.written_at}")
            return ToolResult(text="\n".join(lines), data=data)

        lines = ["## All Mode Statuses", ""]
        for status in statuses:
            marker = "[ACTIVE]" if status.active else "[INACTIVE]"
            lines.append(f"- {marker} {status.mode}")
        return ToolResult(text="\n".join(lines), data=data)
