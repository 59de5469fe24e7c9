"""
Producer/consumer side of the job queue.

Architecture:
    HTTP API -> JobService -> JobRepository -> job_queue table
    Worker   -> JobRepository (claims, transitions)

The service only inserts ``queued`` rows and reads rows back; every status
transition after insertion belongs to the worker.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.orm import Session

from septo_worker.dtos.job_dto import JobCreate, JobRead
from septo_worker.entities.job import JobStatus
from septo_worker.repositories.job_repo import JobRepository
from septo_worker.services.dispatcher import resolve_platform

logger = logging.getLogger(__name__)

MAX_LIST_LIMIT = 500


class JobService:
    """Enqueue scrape jobs and report on their progress."""

    def __init__(self, session: Session) -> None:
        self.session = session
        self.job_repo = JobRepository(session)

    def create_job(self, dto: JobCreate) -> JobRead:
        """
        Enqueue a job in ``queued`` state.

        A missing platform hint is filled from the target URL's host so
        consumers can filter on it; the worker resolves it again at claim
        time either way.

        Args:
            dto: Validated request body

        Returns:
            The stored job
        """
        if dto.platform is None:
            dto = dto.model_copy(update={"platform": resolve_platform(None, dto.target_url)})
        job = self.job_repo.create_job(dto)
        logger.info(
            "Queued job %s (%s search on %s)", job.id, job.search_type, job.platform
        )
        return JobRead.model_validate(job)

    def get_job(self, job_id: str) -> Optional[JobRead]:
        job = self.job_repo.get_by_id(job_id)
        return JobRead.model_validate(job) if job else None

    def list_jobs(self, status: Optional[str] = None, limit: int = 100) -> list[JobRead]:
        """
        Jobs newest first, optionally filtered by status.

        Raises:
            ValueError: If status is not a known job status
        """
        limit = max(1, min(limit, MAX_LIST_LIMIT))
        if status is not None and status not in JobStatus.__members__:
            raise ValueError(f"Unknown status: {status}")
        jobs = self.job_repo.list_jobs(status=status, limit=limit)
        return [JobRead.model_validate(job) for job in jobs]
