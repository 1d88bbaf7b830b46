"""On-disk job records layered on the state store.

Every job is one record at ``jobs/<provider>/<job_id>`` in the state root, a
reserved namespace that public mode names cannot address.
"""

from __future__ import annotations

import logging
import re
import uuid
from collections.abc import Collection, Mapping
from dataclasses import fields
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from .errors import StateError, ValidationError
from .models import Job, JobStatus
from .state_store import JOBS_DIR, StateStore, validate_segment

logger = logging.getLogger(__name__)

_JOB_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]*$")
_JOB_FIELDS = frozenset(f.name for f in fields(Job))
_IMMUTABLE_FIELDS = frozenset({"id", "provider", "created_at"})
_STATUS_RANK = {JobStatus.SPAWNED: 0, JobStatus.RUNNING: 1}


def validate_job_id(job_id: str) -> str:
    """Validate a caller-supplied job id."""
    if not isinstance(job_id, str) or not _JOB_ID_PATTERN.match(job_id):
        raise ValidationError(f"Invalid job_id: {job_id!r}")
    return job_id


def new_job_id() -> str:
    """Generate a new job id."""
    return uuid.uuid4().hex[:12]


def _now() -> str:
    return datetime.now(UTC).isoformat()


class JobRegistry:
    """Creates, updates, and queries job records."""

    def __init__(self, store: StateStore) -> None:
        self.store = store

    def _path(self, provider: str, job_id: str) -> Path:
        return self.store.record_path(
            JOBS_DIR, validate_segment(provider, "provider"), validate_job_id(job_id)
        )

    def create_job(self, provider: str, **fields_: Any) -> Job:
        """Write a new job record with status ``spawned``.

        Args:
            provider: Provider name the job belongs to
            **fields_: Remaining Job fields (output_file, prompt_file, command, ...)

        Returns:
            The newly created Job
        """
        unknown = set(fields_) - _JOB_FIELDS
        if unknown:
            raise ValidationError(f"Unknown job fields: {', '.join(sorted(unknown))}")
        job = Job(
            **{
                **fields_,
                "id": fields_.get("id") or new_job_id(),
                "provider": provider,
                "status": JobStatus.SPAWNED,
                "created_at": _now(),
            }
        )
        self.store.write_record(self._path(provider, job.id), job.to_dict())
        logger.info(
            f"Created job {job.id}",
            extra={"extra_context": {"provider": provider, "job_id": job.id}},
        )
        return job

    def get_job(self, provider: str, job_id: str) -> Job | None:
        """Return the job, or None when no record exists."""
        document = self.store.read_record(self._path(provider, job_id))
        if document is None:
            return None
        try:
            return Job.from_dict(document.payload)
        except (KeyError, ValueError, TypeError) as err:
            raise StateError(f"Invalid job record {provider}/{job_id}: {err}") from err

    def update_job(self, provider: str, job_id: str, patch: Mapping[str, Any]) -> Job | None:
        """Merge ``patch`` into an existing job record.

        Terminal jobs are never modified: the stored job is returned unchanged.
        Status changes that would move a job backwards are dropped.

        Returns:
            The job as stored after the update, or None if the job does not exist
        """
        unknown = set(patch) - _JOB_FIELDS
        if unknown:
            raise ValidationError(f"Unknown job fields: {', '.join(sorted(unknown))}")
        immutable = set(patch) & _IMMUTABLE_FIELDS
        if immutable:
            raise ValidationError(f"Job fields cannot be changed: {', '.join(sorted(immutable))}")

        current = self.get_job(provider, job_id)
        if current is None:
            return None
        if current.is_terminal:
            logger.warning(
                f"Ignoring update to terminal job {job_id} ({current.status.value})",
                extra={"extra_context": {"provider": provider, "patch": sorted(patch)}},
            )
            return current

        data = current.to_dict()
        data.update(patch)
        status = data["status"]
        if isinstance(status, JobStatus):
            data["status"] = status.value
        try:
            new_status = JobStatus(data["status"])
        except ValueError as err:
            raise ValidationError(f"Invalid job status: {data['status']!r}") from err

        if not new_status.is_terminal and _STATUS_RANK[new_status] < _STATUS_RANK[current.status]:
            logger.warning(
                f"Dropping backwards status change for job {job_id}: "
                f"{current.status.value} -> {new_status.value}"
            )
            data["status"] = current.status.value
        elif new_status.is_terminal and not data.get("completed_at"):
            data["completed_at"] = _now()

        try:
            job = Job.from_dict(data)
        except (KeyError, ValueError, TypeError) as err:
            raise ValidationError(f"Invalid job update for {job_id}: {err}") from err

        self.store.write_record(self._path(provider, job_id), job.to_dict())
        if job.status != current.status:
            logger.info(
                f"Job {job_id} {current.status.value} -> {job.status.value}",
                extra={"extra_context": {"provider": provider, "job_id": job_id}},
            )
        return job

    def list_jobs(
        self,
        provider: str,
        status_filter: Collection[JobStatus] | None = None,
        limit: int = 50,
    ) -> list[Job]:
        """List a provider's jobs, newest first by ``created_at``."""
        jobs: list[Job] = []
        for job_id in self.store.list_records(JOBS_DIR, provider):
            try:
                job = self.get_job(provider, job_id)
            except (StateError, ValidationError) as err:
                logger.warning(f"Skipping unreadable job record {provider}/{job_id}: {err}")
                continue
            if job is None:
                continue
            if status_filter is not None and job.status not in status_filter:
                continue
            jobs.append(job)

        jobs.sort(key=lambda job: job.created_at, reverse=True)
        return jobs[:limit]

    def list_providers(self) -> list[str]:
        """Return the providers that have at least one job directory."""
        jobs_dir = self.store.root / JOBS_DIR
        if not jobs_dir.is_dir():
            return []
        return sorted(child.name for child in jobs_dir.iterdir() if child.is_dir())

    def find_job(self, job_id: str) -> Job | None:
        """Look a job id up across every provider."""
        validate_job_id(job_id)
        for provider in self.list_providers():
            try:
                job = self.get_job(provider, job_id)
            except ValidationError:
                continue
            if job is not None:
                return job
        return None
