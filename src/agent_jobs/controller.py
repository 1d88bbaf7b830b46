"""Job controller: status checks, listing, and termination of jobs."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .config import Config
from .errors import ValidationError
from .job_registry import JobRegistry
from .models import ACTIVE_STATUSES, Job, JobStatus
from .subprocess_helpers import resolve_signal, send_signal, wait_for_exit

logger = logging.getLogger(__name__)

ACTIVE_FILTER = "active"
ALL_FILTER = "all"


@dataclass(frozen=True)
class KillResult:
    """Result of a kill request."""

    ok: bool
    job: Job | None
    error: str | None = None
    signal_name: str | None = None
    signal_delivered: bool = False
    process_exited: bool | None = None


def parse_status_filter(status_filter: str | None) -> frozenset[JobStatus] | None:
    """Translate a status filter string into a set of statuses (None for all).

    Raises:
        ValidationError: If the filter is not "active", "all", or a known status
    """
    if status_filter is None or status_filter == ALL_FILTER:
        return None
    if status_filter == ACTIVE_FILTER:
        return ACTIVE_STATUSES
    try:
        return frozenset({JobStatus(status_filter)})
    except ValueError:
        allowed = [ACTIVE_FILTER, ALL_FILTER, *(status.value for status in JobStatus)]
        raise ValidationError(
            f"Invalid status_filter: {status_filter!r}. Use one of: {', '.join(allowed)}"
        ) from None


class JobController:
    """Lists jobs and delivers termination signals to running ones."""

    def __init__(self, registry: JobRegistry, config: Config) -> None:
        self.registry = registry
        self.config = config

    def check_job_status(self, provider: str, job_id: str) -> Job | None:
        """Return the job's current record without waiting."""
        return self.registry.get_job(provider, job_id)

    def list_jobs(
        self,
        provider: str,
        status_filter: str | None = ACTIVE_FILTER,
        limit: int | None = None,
    ) -> list[Job]:
        """List jobs newest first; "active" means spawned or running."""
        if limit is None:
            limit = self.config.list_limit
        if isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0:
            raise ValidationError(f"limit must be a positive integer, got {limit!r}")
        return self.registry.list_jobs(provider, parse_status_filter(status_filter), limit)

    def kill_job(self, provider: str, job_id: str, signal_name: str | None = None) -> KillResult:
        """Signal a spawned or running job and record it as killed.

        The record is updated whether or not the process honours the signal;
        ``process_exited`` reports what was observed within the grace period.
        """
        try:
            sig = resolve_signal(signal_name)
        except ValueError as err:
            raise ValidationError(str(err)) from err

        job = self.registry.get_job(provider, job_id)
        if job is None:
            return KillResult(ok=False, job=None, error=f"Job {job_id} not found")
        if not job.status.is_active:
            return KillResult(
                ok=False,
                job=job,
                error=f"Job {job_id} is not running (status: {job.status.value})",
                signal_name=sig.name,
            )

        delivered = False
        if job.pid is not None:
            delivered = send_signal(job.pid, sig)
            if not delivered:
                logger.warning(f"Job {job_id} PID {job.pid} no longer exists")
        else:
            logger.warning(f"Job {job_id} has no recorded PID, marking killed without signal")

        updated = self.registry.update_job(
            provider,
            job_id,
            {"status": JobStatus.KILLED.value, "error": f"Killed by {sig.name}"},
        )
        if updated is None:
            return KillResult(
                ok=False,
                job=None,
                error=f"Job {job_id} not found",
                signal_name=sig.name,
                signal_delivered=delivered,
            )
        if updated.status != JobStatus.KILLED:
            # The job finished between the status check and the update
            return KillResult(
                ok=False,
                job=updated,
                error=f"Job {job_id} is not running (status: {updated.status.value})",
                signal_name=sig.name,
                signal_delivered=delivered,
            )

        process_exited: bool | None = None
        if job.pid is not None:
            process_exited = (not delivered) or wait_for_exit(
                job.pid, self.config.kill_grace_seconds
            )

        logger.info(
            f"Killed job {job_id}",
            extra={
                "extra_context": {
                    "provider": provider,
                    "signal": sig.name,
                    "delivered": delivered,
                    "process_exited": process_exited,
                }
            },
        )
        return KillResult(
            ok=True,
            job=updated,
            signal_name=sig.name,
            signal_delivered=delivered,
            process_exited=process_exited,
        )
