"""Process launcher for provider jobs.

This module validates a launch request, records the job, and either starts a
detached supervisor process (background) or runs the job to completion in the
calling process (foreground).
"""

from __future__ import annotations

import logging
import re
import subprocess
import sys
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .config import Config
from .errors import LaunchError, ValidationError
from .job_registry import JobRegistry, new_job_id
from .models import Job, JobStatus
from .prompts import default_output_path, persist_inline_prompt, read_output, read_prompt_file
from .providers import Provider, create_provider
from .state_store import StateStore
from .subprocess_helpers import popen_command
from .supervisor import SUPERVISOR_BOOTSTRAP, JobSupervisor
from .workdir import resolve_within

logger = logging.getLogger(__name__)

MISSING_PROMPT_ERROR = "Either 'prompt' (inline) or 'prompt_file' (file path) is required"

UNSET: Any = object()
_AGENT_ROLE_PATTERN = re.compile(r"^[a-z0-9-]+$")


@dataclass(frozen=True)
class ForegroundResult:
    """Outcome of a blocking launch."""

    job: Job
    output: str

    @property
    def succeeded(self) -> bool:
        return self.job.status == JobStatus.COMPLETED


class ProcessLauncher:
    """Starts provider jobs and records them in the job registry."""

    def __init__(
        self,
        config: Config,
        working_directory: Path,
        registry: JobRegistry | None = None,
        python_executable: str = sys.executable,
        log_file: Path | None = None,
    ) -> None:
        """Initialize the launcher.

        Args:
            config: Runtime configuration
            working_directory: Resolved base directory for prompts, outputs and state
            registry: Job registry (default: one rooted under the working directory)
            python_executable: Interpreter used to run the detached supervisor
            log_file: Log file handed to the supervisor process
        """
        self.config = config
        self.working_directory = working_directory
        self.registry = registry or JobRegistry(
            StateStore(config.state_root(working_directory), known_modes=config.known_modes)
        )
        self.prompts_dir = config.prompts_dir(working_directory)
        self.python_executable = python_executable
        self.log_file = log_file

    def launch(
        self,
        provider: str | Provider,
        prompt: Any = None,
        prompt_file: Any = UNSET,
        output_file: Any = None,
        extra_args: Sequence[str] = (),
        background: bool = False,
        model: str | None = None,
        agent_role: str | None = None,
        context_files: Sequence[str] = (),
    ) -> Job | ForegroundResult:
        """Launch a provider job.

        Passing ``prompt_file`` at all (even None) selects file mode; otherwise
        ``prompt`` is used as an inline prompt, which is only allowed in the
        foreground.

        Returns:
            The Job for background launches, a ForegroundResult otherwise

        Raises:
            ValidationError: If the request is missing, ambiguous, or malformed
            LaunchError: If the provider CLI is not available
        """
        provider_obj = provider if isinstance(provider, Provider) else create_provider(provider)

        file_mode = prompt_file is not UNSET
        if file_mode:
            if not isinstance(prompt_file, str) or not prompt_file.strip():
                raise ValidationError("prompt_file must be a non-empty string")
            prompt_path = resolve_within(self.working_directory, prompt_file, "prompt_file")
            read_prompt_file(prompt_path)
        else:
            if not isinstance(prompt, str):
                raise ValidationError(MISSING_PROMPT_ERROR)
            if not prompt.strip():
                raise ValidationError("Inline prompt is empty")
            if background:
                raise ValidationError(
                    "Inline prompt mode is foreground only; use prompt_file for background jobs"
                )

        resolved_output: Path | None = None
        if output_file is not None:
            if not isinstance(output_file, str) or not output_file.strip():
                raise ValidationError("output_file must be a non-empty string")
            resolved_output = resolve_within(self.working_directory, output_file, "output_file")

        self._validate_agent_role(agent_role)
        args = self._validate_extra_args(extra_args)
        contexts = tuple(
            str(resolve_within(self.working_directory, path, "context file"))
            for path in self._validate_string_list(context_files, "context_files")
        )

        detection = provider_obj.detect()
        if not detection.available:
            message = f"{provider_obj.get_provider_name()} CLI is not available: {detection.error}"
            if detection.install_hint:
                message = f"{message}\n\n{detection.install_hint}"
            raise LaunchError(message)

        job_id = new_job_id()
        if not file_mode:
            prompt_path = persist_inline_prompt(self.prompts_dir, provider_obj.name, prompt, job_id)
        if resolved_output is None:
            resolved_output = default_output_path(self.prompts_dir, provider_obj.name, job_id)

        command = provider_obj.build_command(model=model, extra_args=args).to_list()
        job = self.registry.create_job(
            provider_obj.name,
            id=job_id,
            output_file=str(resolved_output),
            prompt_file=str(prompt_path),
            command=tuple(command),
            inline_prompt=not file_mode,
            context_files=contexts,
            working_directory=str(self.working_directory),
            model=provider_obj.resolve_model(model),
            agent_role=agent_role,
            background=background,
        )

        if background:
            return self._start_background(job)
        return self._run_foreground(job, provider_obj)

    def _validate_agent_role(self, agent_role: Any) -> None:
        if agent_role is None:
            return
        if not isinstance(agent_role, str) or not _AGENT_ROLE_PATTERN.match(agent_role):
            raise ValidationError(
                f"Invalid agent_role: {agent_role!r}. "
                "Roles use lowercase letters, digits and hyphens"
            )
        if agent_role not in self.config.agent_roles:
            raise ValidationError(
                f"Unknown agent_role: {agent_role!r}. "
                f"Known roles: {', '.join(self.config.agent_roles)}"
            )

    def _validate_extra_args(self, extra_args: Any) -> tuple[str, ...]:
        return tuple(self._validate_string_list(extra_args, "extra_args"))

    @staticmethod
    def _validate_string_list(values: Any, label: str) -> list[str]:
        if values is None:
            return []
        if isinstance(values, str) or not isinstance(values, Sequence):
            raise ValidationError(f"{label} must be a list of strings")
        if not all(isinstance(value, str) and value for value in values):
            raise ValidationError(f"{label} must be a list of non-empty strings")
        return list(values)

    def _supervisor_command(self, job: Job) -> list[str]:
        command = [
            self.python_executable,
            "-c",
            SUPERVISOR_BOOTSTRAP,
            "--state-dir",
            str(self.registry.store.root),
            "--provider",
            job.provider,
            "--job-id",
            job.id,
            "--timeout",
            str(self.config.job_timeout_seconds),
        ]
        if self.log_file is not None:
            command.extend(["--log-file", str(self.log_file)])
        return command

    def _start_background(self, job: Job) -> Job:
        try:
            process = popen_command(
                self._supervisor_command(job),
                cwd=self.working_directory,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                detach=True,
            )
        except OSError as err:
            logger.error(f"Failed to start supervisor for job {job.id}: {err}")
            failed = self.registry.update_job(
                job.provider,
                job.id,
                {"status": JobStatus.FAILED.value, "error": f"Failed to start job supervisor: {err}"},
            )
            return failed or job

        running = self.registry.update_job(
            job.provider,
            job.id,
            {"status": JobStatus.RUNNING.value, "pid": process.pid},
        )
        logger.info(
            f"Started background job {job.id} (supervisor pid={process.pid})",
            extra={"extra_context": {"provider": job.provider, "output_file": job.output_file}},
        )
        return running or job

    def _run_foreground(self, job: Job, provider: Provider) -> ForegroundResult:
        supervisor = JobSupervisor(
            self.registry, job.provider, job.id, self.config.job_timeout_seconds
        )
        final = supervisor.run(record_pid=True) or job
        output = read_output(Path(final.output_file), provider.parse_output) or ""
        return ForegroundResult(job=final, output=output)
