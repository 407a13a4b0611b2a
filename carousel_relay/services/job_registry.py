"""In-memory job registry with a periodic stale-job reaper."""

import asyncio
import logging
import math
import random
import string
import time
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, Iterable, Optional

from carousel_relay.models.job import Job, JobDetails, utcnow
from carousel_relay.utils.errors import InvalidRequestError

logger = logging.getLogger(__name__)

_ID_ALPHABET = string.digits + string.ascii_lowercase


class JobStore(ABC):
    """Key-value storage for jobs, keyed by job id."""

    @abstractmethod
    def get(self, job_id: str) -> Optional[Job]: ...

    @abstractmethod
    def put(self, job: Job) -> None: ...

    @abstractmethod
    def delete(self, job_id: str) -> None: ...

    @abstractmethod
    def values(self) -> Iterable[Job]: ...

    @abstractmethod
    def __len__(self) -> int: ...


class InMemoryJobStore(JobStore):
    """Dict-backed job store. Contents are lost on restart."""

    def __init__(self) -> None:
        self._jobs: dict[str, Job] = {}

    def get(self, job_id: str) -> Optional[Job]:
        return self._jobs.get(job_id)

    def put(self, job: Job) -> None:
        self._jobs[job.id] = job

    def delete(self, job_id: str) -> None:
        self._jobs.pop(job_id, None)

    def values(self) -> Iterable[Job]:
        # Snapshot so callers may mutate the store while iterating
        return list(self._jobs.values())

    def __len__(self) -> int:
        return len(self._jobs)


def compute_progress(processed_images: int, total_images: int) -> float:
    """
    Percentage of processed images, rounded half up.

    No clamping: values can exceed 100 or go negative. A zero total gives
    NaN for zero processed images and an infinity otherwise.
    """
    if total_images == 0:
        if processed_images == 0:
            return math.nan
        return math.copysign(math.inf, processed_images)
    return float(math.floor(processed_images / total_images * 100 + 0.5))


def generate_job_id() -> str:
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"job_{int(time.time() * 1000)}_{suffix}"


class JobRegistry:
    """
    Tracks carousel jobs from creation to completion or failure.

    Every mutating method is synchronous, so each read-modify-write on the
    store finishes without yielding to the event loop.
    """

    def __init__(
        self,
        store: Optional[JobStore] = None,
        timeout_seconds: float = 5 * 60,
        retention_hours: float = 24,
        sweep_interval_seconds: float = 60 * 60,
    ) -> None:
        """
        Initialize the JobRegistry.

        Args:
            store: Backing job store (defaults to an in-memory store)
            timeout_seconds: Idle time after which an active job is failed
            retention_hours: Age after which finished jobs are evicted
            sweep_interval_seconds: Interval between reaper sweeps
        """
        self.store = store if store is not None else InMemoryJobStore()
        self.timeout = timedelta(seconds=timeout_seconds)
        self.retention = timedelta(hours=retention_hours)
        self.sweep_interval_seconds = sweep_interval_seconds
        self._reaper_task: Optional[asyncio.Task] = None

    # ==================== JOB LIFECYCLE ====================

    def create_job(self, total_images: int) -> Job:
        job = Job(id=generate_job_id(), details=JobDetails(total_images=total_images))
        self.store.put(job)
        logger.info(f"Job created: {job.id} ({total_images} images)")
        return job

    def get_job(self, job_id: str) -> Optional[Job]:
        return self.store.get(job_id)

    def update_job(self, job_id: str, **updates: Any) -> Optional[Job]:
        """Shallow-merge fields into a job. No status transition checks."""
        job = self.store.get(job_id)
        if job is None:
            return None

        updated = job.model_copy(update={**updates, "updated_at": utcnow()})
        self.store.put(updated)
        logger.debug(f"Job updated: {job_id} {sorted(updates)}")
        return updated

    def update_job_progress(
        self, job_id: str, processed_images: int, media_id: Optional[str] = None
    ) -> Optional[Job]:
        job = self.store.get(job_id)
        if job is None:
            return None

        if media_id:
            job.details.media_ids.append(media_id)

        job.details.processed_images = processed_images
        job.progress = compute_progress(processed_images, job.details.total_images)
        job.updated_at = utcnow()

        # Finished jobs keep their status
        if job.status == "pending":
            job.status = "processing"

        self.store.put(job)
        return job

    def complete_job(
        self,
        job_id: str,
        tiktok_post_id: str,
        extra_details: Optional[dict[str, Any]] = None,
    ) -> Optional[Job]:
        job = self.store.get(job_id)
        if job is None:
            return None

        job.status = "completed"
        job.progress = 100
        job.details.tiktok_post_id = tiktok_post_id
        for key, value in (extra_details or {}).items():
            setattr(job.details, key, value)
        job.updated_at = utcnow()

        self.store.put(job)
        logger.info(f"Job completed: {job_id} (post {tiktok_post_id})")
        return job

    def fail_job(self, job_id: str, error: str) -> Optional[Job]:
        """Mark a job failed. Progress and recorded media are preserved."""
        job = self.store.get(job_id)
        if job is None:
            return None

        job.status = "failed"
        job.details.error = error
        job.updated_at = utcnow()

        self.store.put(job)
        logger.error(f"Job failed: {job_id}: {error}")
        return job

    def cancel_job(self, job_id: str) -> Optional[Job]:
        """
        Soft-cancel an active job by failing it.

        A background task still running for the job is not stopped and may
        later overwrite this status.

        Raises:
            InvalidRequestError: If the job already finished
        """
        job = self.store.get(job_id)
        if job is None:
            return None
        if job.is_terminal:
            raise InvalidRequestError(f"Cannot cancel job with status: {job.status}")

        previous_status = job.status
        cancelled = self.fail_job(job_id, "Job cancelled by user")
        logger.info(f"Job cancelled: {job_id} (was {previous_status})")
        return cancelled

    def list_jobs(self, status: Optional[str] = None) -> list[Job]:
        """Return held jobs, newest first, optionally filtered by status."""
        jobs = [j for j in self.store.values() if status is None or j.status == status]
        jobs.sort(key=lambda j: j.created_at, reverse=True)
        return jobs

    def count_by_status(self) -> dict[str, int]:
        counts = {"pending": 0, "processing": 0, "completed": 0, "failed": 0}
        for job in self.store.values():
            counts[job.status] += 1
        return counts

    # ==================== REAPER ====================

    def cleanup_jobs(self, now: Optional[datetime] = None) -> tuple[int, int]:
        """
        Evict old finished jobs and fail active jobs that went quiet.

        Args:
            now: Reference time (defaults to the current UTC time)

        Returns:
            Tuple of (evicted, timed_out) counts
        """
        now = now or utcnow()
        retention_cutoff = now - self.retention
        timeout_cutoff = now - self.timeout

        evicted = 0
        timed_out = 0
        for job in self.store.values():
            if job.is_terminal:
                if job.created_at < retention_cutoff:
                    self.store.delete(job.id)
                    evicted += 1
            elif job.updated_at < timeout_cutoff:
                job.status = "failed"
                job.details.error = "Job timed out"
                job.updated_at = now
                self.store.put(job)
                timed_out += 1

        if evicted or timed_out:
            logger.info(f"Job cleanup completed: {evicted} evicted, {timed_out} timed out")
        return evicted, timed_out

    async def _reaper_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval_seconds)
            try:
                self.cleanup_jobs()
            except Exception as e:
                logger.exception(f"Job cleanup failed: {e}")

    def start_reaper(self) -> None:
        if self._reaper_task is None or self._reaper_task.done():
            self._reaper_task = asyncio.create_task(self._reaper_loop())
            logger.debug(f"Job reaper started (every {self.sweep_interval_seconds}s)")

    async def stop_reaper(self) -> None:
        if self._reaper_task is None:
            return
        self._reaper_task.cancel()
        try:
            await self._reaper_task
        except asyncio.CancelledError:
            pass
        self._reaper_task = None
