"""Job supervisor: owns one job's child process from start to terminal status.

Background jobs run ``main`` in a detached helper process so the job outlives
the caller that launched it. Foreground jobs call ``JobSupervisor.run``
in-process.
"""

from __future__ import annotations

import argparse
import logging
import signal
import subprocess
import sys
import threading
import time
from pathlib import Path

from .errors import AgentJobsError, ValidationError
from .job_registry import JobRegistry
from .log_setup import setup_logging
from .models import Job, JobStatus
from .prompts import build_prompt, read_prompt_file
from .state_store import StateStore
from .subprocess_helpers import get_clean_env, popen_command, safe_terminate_process

logger = logging.getLogger(__name__)

OUTPUT_TAIL_CHARS = 500
FORWARDED_SIGNALS = ("SIGTERM", "SIGINT", "SIGHUP")

# Entry point for the detached helper; "-m" would import this module twice
SUPERVISOR_BOOTSTRAP = "import sys; from agent_jobs.supervisor import main; sys.exit(main())"


class JobSupervisor:
    """Runs a job's command and records how it ended."""

    def __init__(
        self,
        registry: JobRegistry,
        provider: str,
        job_id: str,
        timeout_seconds: float,
    ) -> None:
        self.registry = registry
        self.provider = provider
        self.job_id = job_id
        self.timeout_seconds = timeout_seconds
        self._process: subprocess.Popen[bytes] | None = None
        self._received_signal: signal.Signals | None = None
        self._signal_forwarded = False

    def forward_signal(self, signum: int, frame=None) -> None:
        """Signal handler: remember the signal and pass it on to the child.

        Nothing is logged here; ``run`` reports the signal once the child exits.
        """
        self._received_signal = signal.Signals(signum)
        process = self._process
        if process is not None and process.poll() is None:
            try:
                process.send_signal(signum)
                self._signal_forwarded = True
            except ProcessLookupError:
                self._signal_forwarded = False

    def _log_received_signal(self) -> None:
        if self._received_signal is None:
            return
        if self._signal_forwarded:
            logger.info(f"Forwarded {self._received_signal.name} to job {self.job_id}")
        else:
            logger.info(
                f"Received {self._received_signal.name} for job {self.job_id}, "
                "child was not running"
            )

    def await_launch_confirmation(self, timeout: float = 5.0, interval: float = 0.01) -> Job | None:
        """Wait until the launcher has recorded the job as running.

        The launcher writes ``running`` right after this process starts; waiting
        for it keeps that write from landing after the terminal status.
        """
        deadline = time.monotonic() + timeout
        while True:
            job = self.registry.get_job(self.provider, self.job_id)
            if job is None or job.status != JobStatus.SPAWNED:
                return job
            if time.monotonic() >= deadline:
                logger.warning(f"Launcher never confirmed job {self.job_id}, starting anyway")
                return job
            time.sleep(interval)

    def run(self, record_pid: bool = False) -> Job | None:
        """Run the job to completion.

        Args:
            record_pid: Record the child's pid and ``running`` status (foreground
                jobs, where no launcher-side supervisor pid exists)

        Returns:
            The job as stored after the run, or None if the record is missing
        """
        job = self.registry.get_job(self.provider, self.job_id)
        if job is None:
            logger.error(f"Job {self.provider}/{self.job_id} not found, nothing to run")
            return None
        if job.is_terminal:
            return job
        if not job.command:
            return self._finish(JobStatus.FAILED, error="Job has no command to run")
        if self._received_signal is not None:
            self._log_received_signal()
            return self._finish(
                JobStatus.KILLED,
                error=f"Terminated by {self._received_signal.name} before start",
            )

        try:
            prompt = build_prompt(read_prompt_file(Path(job.prompt_file)), job.context_files)
        except ValidationError as err:
            return self._finish(JobStatus.FAILED, error=str(err))

        output_path = Path(job.output_file)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        with output_path.open("wb") as output:
            try:
                process = popen_command(
                    job.command,
                    cwd=job.working_directory,
                    stdin=subprocess.PIPE,
                    stdout=output,
                    stderr=subprocess.STDOUT,
                    env=get_clean_env(),
                )
            except OSError as err:
                logger.error(f"Failed to spawn job {self.job_id}: {err}")
                return self._finish(
                    JobStatus.FAILED, error=f"Failed to spawn {job.command[0]}: {err}"
                )

            self._process = process
            logger.info(
                f"Started job {self.job_id} (pid={process.pid})",
                extra={"extra_context": {"provider": self.provider, "command": list(job.command)}},
            )
            if record_pid:
                self.registry.update_job(
                    self.provider,
                    self.job_id,
                    {"status": JobStatus.RUNNING.value, "pid": process.pid},
                )

            writer = threading.Thread(
                target=self._write_prompt, args=(process, prompt), daemon=True
            )
            writer.start()

            try:
                exit_code = process.wait(timeout=self.timeout_seconds)
            except subprocess.TimeoutExpired:
                logger.warning(
                    f"Job {self.job_id} exceeded {self.timeout_seconds}s, terminating"
                )
                safe_terminate_process(process)
                return self._finish(
                    JobStatus.TIMEOUT,
                    exit_code=process.returncode,
                    error=f"Job exceeded wall-clock timeout of {self.timeout_seconds}s",
                )

        self._log_received_signal()
        if self._received_signal is not None:
            return self._finish(
                JobStatus.KILLED,
                exit_code=exit_code,
                error=f"Terminated by {self._received_signal.name}",
            )
        if exit_code == 0:
            return self._finish(JobStatus.COMPLETED, exit_code=0)
        if exit_code < 0:
            try:
                signal_name = signal.Signals(-exit_code).name
            except ValueError:
                signal_name = f"signal {-exit_code}"
            return self._finish(
                JobStatus.KILLED,
                exit_code=exit_code,
                error=f"Terminated by {signal_name}",
            )

        tail = self._output_tail(output_path)
        error = f"Process exited with code {exit_code}"
        if tail:
            error = f"{error}: {tail}"
        return self._finish(JobStatus.FAILED, exit_code=exit_code, error=error)

    def _write_prompt(self, process: subprocess.Popen[bytes], prompt: str) -> None:
        if process.stdin is None:
            return
        try:
            process.stdin.write(prompt.encode("utf-8"))
            process.stdin.close()
        except (BrokenPipeError, OSError) as err:
            # The child exited or never read stdin
            logger.debug(f"Could not write prompt to job {self.job_id}: {err}")

    def _output_tail(self, output_path: Path) -> str:
        try:
            text = output_path.read_text(encoding="utf-8", errors="replace")
        except OSError:
            return ""
        return text.strip()[-OUTPUT_TAIL_CHARS:]

    def _finish(self, status: JobStatus, **fields) -> Job | None:
        job = self.registry.update_job(
            self.provider, self.job_id, {"status": status.value, **fields}
        )
        if job is not None and job.status != status:
            logger.info(
                f"Job {self.job_id} already {job.status.value}, not recording {status.value}"
            )
        return job


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="agent-jobs-supervisor",
        description="Run one agent job and record its terminal status",
    )
    parser.add_argument("--state-dir", type=Path, required=True)
    parser.add_argument("--provider", required=True)
    parser.add_argument("--job-id", required=True)
    parser.add_argument("--timeout", type=float, default=3600.0)
    parser.add_argument("--log-file", type=Path, default=None)
    parser.add_argument("--debug", action="store_true")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """Entry point for the detached supervisor process."""
    args = _parse_args(argv)
    if args.log_file is not None:
        setup_logging(
            args.log_file,
            args.debug,
            context={"job_id": args.job_id, "provider": args.provider},
        )

    registry = JobRegistry(StateStore(args.state_dir))
    supervisor = JobSupervisor(registry, args.provider, args.job_id, args.timeout)

    for name in FORWARDED_SIGNALS:
        if hasattr(signal, name):
            signal.signal(getattr(signal, name), supervisor.forward_signal)

    try:
        supervisor.await_launch_confirmation()
        job = supervisor.run()
    except AgentJobsError as err:
        logger.error(f"Supervisor for job {args.job_id} failed: {err}", exc_info=True)
        return 1

    if job is None:
        return 1
    return 0 if job.status == JobStatus.COMPLETED else 1


if __name__ == "__main__":
    sys.exit(main())
