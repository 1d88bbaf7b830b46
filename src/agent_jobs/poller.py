"""Job poller: wait for a job to finish using exponential backoff.

The wait is an explicit loop over (elapsed, interval) state. The poller only
reads the registry; a job that is still running when the wait times out is
left untouched.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from .config import Config
from .errors import ValidationError
from .job_registry import JobRegistry
from .models import Job
from .prompts import read_output, truncate
from .providers import find_provider

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BackoffPolicy:
    """Configuration for polling backoff."""

    initial_ms: int = 500
    """First sleep between polls (must be positive)"""

    max_ms: int = 5000
    """Upper bound for the sleep between polls"""

    multiplier: float = 2.0
    """Growth factor applied after every poll"""

    def __post_init__(self) -> None:
        if self.initial_ms <= 0:
            raise ValueError(f"initial_ms must be positive, got {self.initial_ms}")
        if self.max_ms < self.initial_ms:
            raise ValueError(f"max_ms must be >= initial_ms, got {self.max_ms}")
        if self.multiplier < 1.0:
            raise ValueError(f"multiplier must be >= 1.0, got {self.multiplier}")

    @classmethod
    def from_config(cls, config: Config) -> BackoffPolicy:
        return cls(
            initial_ms=config.poll_initial_ms,
            max_ms=config.poll_max_ms,
            multiplier=config.poll_multiplier,
        )

    def next_interval(self, interval_ms: float) -> float:
        """Calculate the sleep that follows one of ``interval_ms``."""
        return min(interval_ms * self.multiplier, self.max_ms)


class WaitOutcome(Enum):
    """How a wait ended."""

    TERMINAL = "terminal"
    TIMEOUT = "timeout"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class WaitResult:
    """Result of waiting for a job."""

    outcome: WaitOutcome
    job: Job | None
    preview: str | None = None
    polls: int = 0
    elapsed_ms: int = 0


class JobPoller:
    """Polls the job registry until a job reaches a terminal status."""

    def __init__(
        self,
        registry: JobRegistry,
        config: Config,
        policy: BackoffPolicy | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.registry = registry
        self.config = config
        self.policy = policy or BackoffPolicy.from_config(config)
        self._clock = clock
        self._sleep = sleep

    def clamp_timeout(self, timeout_ms: float | None) -> float:
        """Apply the default and the upper bound to a requested timeout.

        Raises:
            ValidationError: If the timeout is not a positive number or is NaN
        """
        if timeout_ms is None:
            return self.config.max_wait_ms
        if isinstance(timeout_ms, bool) or not isinstance(timeout_ms, (int, float)):
            raise ValidationError("timeout_ms must be a number")
        if math.isnan(timeout_ms):
            raise ValidationError("timeout_ms must be a number, got NaN")
        if timeout_ms <= 0:
            raise ValidationError(f"timeout_ms must be positive, got {timeout_ms}")
        return min(timeout_ms, self.config.max_wait_ms)

    def wait_for_job(
        self,
        provider: str,
        job_id: str,
        timeout_ms: float | None = None,
    ) -> WaitResult:
        """Block until the job is terminal, the timeout elapses, or it is not found.

        A terminal status is reported only if the poll that observed it finished
        at or before the deadline; otherwise the result is TIMEOUT.
        """
        budget_ms = self.clamp_timeout(timeout_ms)
        start = self._clock()
        deadline = start + budget_ms / 1000
        interval_ms: float = self.policy.initial_ms
        polls = 0

        while True:
            job = self.registry.get_job(provider, job_id)
            polls += 1
            polled_at = self._clock()
            elapsed_ms = int((polled_at - start) * 1000)

            if job is None:
                return WaitResult(WaitOutcome.NOT_FOUND, None, polls=polls, elapsed_ms=elapsed_ms)

            if job.is_terminal and polled_at <= deadline:
                logger.info(
                    f"Job {job_id} finished with {job.status.value} after {polls} poll(s)",
                    extra={"extra_context": {"provider": provider, "elapsed_ms": elapsed_ms}},
                )
                return WaitResult(
                    WaitOutcome.TERMINAL,
                    job,
                    preview=self.preview(job),
                    polls=polls,
                    elapsed_ms=elapsed_ms,
                )

            remaining = deadline - polled_at
            if remaining <= 0:
                logger.info(
                    f"Gave up waiting for job {job_id} after {elapsed_ms}ms ({job.status.value})",
                    extra={"extra_context": {"provider": provider, "polls": polls}},
                )
                return WaitResult(WaitOutcome.TIMEOUT, job, polls=polls, elapsed_ms=elapsed_ms)

            self._sleep(min(interval_ms / 1000, remaining))
            interval_ms = self.policy.next_interval(interval_ms)

    def preview(self, job: Job) -> str:
        """Return the start of the job's output, parsed by its provider when known."""
        provider = find_provider(job.provider)
        parse = provider.parse_output if provider is not None else None
        output = read_output(Path(job.output_file), parse)
        if output is None:
            return ""
        return truncate(output, self.config.preview_chars)
