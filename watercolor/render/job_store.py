"""Job record store for render requests."""

import json
import logging
import threading
from dataclasses import replace
from datetime import timedelta
from pathlib import Path
from typing import Dict, List, Optional, Union

from .errors import InvalidTransitionError, RenderNotFoundError
from .types import JobRecord, JobStatus, JobUpdate, RenderRequest, utcnow

logger = logging.getLogger(__name__)


class JobStore:
    """In-memory job record store, scoped by owner."""

    def __init__(self):
        """Initialize the job store."""
        self._jobs: Dict[str, JobRecord] = {}
        self._lock = threading.Lock()

    def create(
        self,
        user_id: str,
        request: RenderRequest,
        subscription_tier: str = "free",
    ) -> JobRecord:
        """
        Create a job record for a render request.

        Args:
            user_id: Owner of the job
            request: Render request the job is created from
            subscription_tier: Caller's subscription at submission time

        Returns:
            Newly created JobRecord with status processing
        """
        job = JobRecord(
            user_id=user_id,
            project_id=request.project_id,
            input_image_url=request.image_url,
            style=request.style,
            settings={
                "tier": request.tier,
                "room_type": request.room_type,
                "atmosphere": request.atmosphere,
                "color_tone": request.color_tone,
                "subscription_tier": subscription_tier,
            },
            status=JobStatus.PROCESSING,
        )

        with self._lock:
            self._jobs[job.id] = job
            self._persist()

        logger.info(f"Created render job {job.id} ({request.tier}) for user {user_id}")
        return replace(job)

    def get(self, job_id: str, owner_id: str) -> JobRecord:
        """
        Get a job owned by a user.

        Raises:
            RenderNotFoundError: If the job is missing or owned by someone else
        """
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.user_id != owner_id:
                raise RenderNotFoundError()
            return replace(job)

    def fetch(self, job_id: str) -> JobRecord:
        """Get a job regardless of owner (background workers only)."""
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise RenderNotFoundError()
            return replace(job)

    def claim(self, job_id: str) -> JobRecord:
        """
        Mark a job as picked up by a worker.

        Refreshes updated_at on a processing job so the stale sweep measures
        time since the worker started, not since submission. Terminal jobs
        are returned unchanged.

        Raises:
            RenderNotFoundError: If the job does not exist
        """
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise RenderNotFoundError()

            if job.status == JobStatus.PROCESSING:
                job.updated_at = max(utcnow(), job.updated_at)
                self._persist()
            return replace(job)

    def update(self, job_id: str, patch: JobUpdate) -> JobRecord:
        """
        Apply a terminal status transition.

        Args:
            job_id: Job ID to update
            patch: New terminal status plus result or error

        Returns:
            Updated JobRecord

        Raises:
            RenderNotFoundError: If the job does not exist
            InvalidTransitionError: If the job is already terminal or the
                patch status is not terminal
        """
        if not patch.status.is_terminal:
            raise InvalidTransitionError(
                f"Job {job_id} can only move to completed or failed, not {patch.status.value}"
            )

        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise RenderNotFoundError()

            if job.is_complete:
                logger.warning(
                    f"Job {job_id} is already {job.status.value}, rejecting {patch.status.value}"
                )
                raise InvalidTransitionError(
                    f"Job {job_id} is already {job.status.value}"
                )

            job.status = patch.status
            job.processing_time_ms = patch.processing_time_ms
            job.backend_job_id = patch.backend_job_id
            if patch.status == JobStatus.COMPLETED:
                job.output_image_url = patch.output_image_url
                job.error_message = None
            else:
                job.output_image_url = None
                job.error_message = patch.error_message or "Processing failed"
            job.updated_at = max(utcnow(), job.updated_at)

            self._persist()
            updated = replace(job)

        if updated.status == JobStatus.COMPLETED:
            logger.info(f"Render job {job_id} completed in {updated.processing_time_ms}ms")
        else:
            logger.error(f"Render job {job_id} failed: {updated.error_message}")
        return updated

    def list_for_user(
        self,
        user_id: str,
        project_id: Optional[str] = None,
    ) -> List[JobRecord]:
        """
        List a user's jobs, newest first.

        Args:
            user_id: Owner to list jobs for
            project_id: Optional project filter

        Returns:
            List of matching jobs
        """
        with self._lock:
            jobs = [replace(j) for j in self._jobs.values() if j.user_id == user_id]

        if project_id:
            jobs = [j for j in jobs if j.project_id == project_id]

        jobs.sort(key=lambda j: j.created_at, reverse=True)
        return jobs

    def list_by_status(self, status: JobStatus) -> List[JobRecord]:
        """List jobs in a status, oldest first."""
        with self._lock:
            jobs = [replace(j) for j in self._jobs.values() if j.status == status]
        jobs.sort(key=lambda j: j.created_at)
        return jobs

    def fail_stale(
        self,
        max_age: timedelta,
        message: str = "Render timed out",
    ) -> List[str]:
        """
        Fail jobs stuck in processing for longer than max_age.

        Args:
            max_age: Maximum time a job may stay in processing
            message: Error message recorded on the failed jobs

        Returns:
            IDs of the jobs that were failed
        """
        cutoff = utcnow() - max_age
        failed = []

        with self._lock:
            for job in self._jobs.values():
                if job.status == JobStatus.PROCESSING and job.updated_at < cutoff:
                    job.status = JobStatus.FAILED
                    job.error_message = message
                    job.updated_at = max(utcnow(), job.updated_at)
                    failed.append(job.id)

            if failed:
                self._persist()

        if failed:
            logger.warning(f"Failed {len(failed)} stale render jobs: {', '.join(failed)}")
        return failed

    def count(self) -> int:
        with self._lock:
            return len(self._jobs)

    def _persist(self) -> None:
        """Hook for durable stores; called with the lock held."""


class JsonFileJobStore(JobStore):
    """Job store persisted to a JSON file after every mutation.

    Each mutation rewrites the whole table synchronously while the lock is
    held, including calls made from the async workers, and records are never
    pruned. Suited to a single process with a modest job history.
    """

    def __init__(self, path: Union[str, Path]):
        """
        Initialize the store, loading any jobs already on disk.

        Args:
            path: JSON file holding the job table
        """
        super().__init__()
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

        if self.path.exists():
            content = self.path.read_text()
            records = json.loads(content) if content.strip() else []
            for data in records:
                job = JobRecord.from_dict(data)
                self._jobs[job.id] = job
            logger.info(f"Loaded {len(self._jobs)} render jobs from {self.path}")

    def _persist(self) -> None:
        data = [job.to_dict() for job in self._jobs.values()]
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(data, indent=2))
        tmp_path.replace(self.path)
