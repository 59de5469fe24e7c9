"""
Repository for the scrape job queue.

All SQL lives here; the worker and services call these methods rather than
executing queries directly.

Concurrency note: every state change is a single conditional UPDATE keyed on
the row id *and* its expected current status. The affected-row count is the
only ownership signal: 1 means this caller performed the transition, 0 means
another claimant got there first (or the row is already terminal). No
read-then-write happens on job state, so several worker processes can poll
the same table safely.
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional, List

from sqlalchemy import and_, or_, select, update
from sqlalchemy.orm import Session

from septo_worker.dtos.job_dto import JobCreate
from septo_worker.entities.job import JobStatus, ScrapeJob, utcnow
from septo_worker.repositories.base_repo import BaseRepository


class JobRepository(BaseRepository[ScrapeJob]):
    """
    Repository for job queue operations.

    Extends BaseRepository with the claim/complete/requeue/fail transitions
    of the job state machine.
    """

    def __init__(self, session: Session) -> None:
        super().__init__(session=session, model=ScrapeJob)

    def create_job(self, dto: JobCreate) -> ScrapeJob:
        """
        Insert a new job in queued status.

        Args:
            dto: Validated producer input

        Returns:
            Created ScrapeJob entity
        """
        now = utcnow()
        job = ScrapeJob(
            user_id=dto.user_id,
            entity_id=dto.entity_id,
            target_url=dto.target_url,
            target_username=dto.target_username,
            platform=dto.platform,
            search_type=dto.search_type.value,
            status=JobStatus.queued.value,
            retry_count=0,
            max_retries=dto.max_retries,
            created_at=now,
            updated_at=now,
        )
        return self.create(job, commit=True)

    def find_claimable(self, limit: int, now: Optional[datetime] = None) -> List[str]:
        """
        Ids of queued jobs eligible for a claim, oldest first.

        Args:
            limit: Maximum number of ids to return
            now: Reference time for the backoff gate

        Returns:
            List of job ids ordered by created_at ascending
        """
        now = now or utcnow()
        stmt = (
            select(ScrapeJob.id)
            .where(
                ScrapeJob.status == JobStatus.queued.value,
                or_(ScrapeJob.next_run_at.is_(None), ScrapeJob.next_run_at <= now),
            )
            .order_by(ScrapeJob.created_at.asc(), ScrapeJob.id.asc())
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        return list(self.session.execute(stmt).scalars().all())

    def claim(
        self, job_id: str, now: Optional[datetime] = None, commit: bool = True
    ) -> bool:
        """
        Flip a job from queued to processing if it is still queued.

        Args:
            job_id: ID of the job to claim
            now: Claim timestamp
            commit: Whether to commit the transaction

        Returns:
            True if this call won the claim, False if it was lost
        """
        now = now or utcnow()
        stmt = (
            update(ScrapeJob)
            .where(
                ScrapeJob.id == job_id,
                ScrapeJob.status == JobStatus.queued.value,
                or_(ScrapeJob.next_run_at.is_(None), ScrapeJob.next_run_at <= now),
            )
            .values(
                status=JobStatus.processing.value,
                started_at=now,
                updated_at=now,
                error_message=None,
            )
        )
        return self._execute_conditional(stmt, commit=commit) == 1

    def claim_batch(self, limit: int, now: Optional[datetime] = None) -> List[ScrapeJob]:
        """
        Claim up to *limit* eligible jobs in created_at order.

        Rows lost to a concurrent claimant are silently skipped.

        Returns:
            The jobs this caller now owns
        """
        if limit <= 0:
            return []
        now = now or utcnow()
        candidate_ids = self.find_claimable(limit, now)
        won = [job_id for job_id in candidate_ids if self.claim(job_id, now, commit=False)]
        self.session.commit()
        if not won:
            return []
        stmt = (
            select(ScrapeJob)
            .where(ScrapeJob.id.in_(won))
            .order_by(ScrapeJob.created_at.asc(), ScrapeJob.id.asc())
        )
        return list(self.session.execute(stmt).scalars().all())

    def complete(
        self, job_id: str, scraped_data: dict, now: Optional[datetime] = None
    ) -> bool:
        """
        Mark a processing job as completed and store its payload.

        Returns:
            True if the transition happened
        """
        now = now or utcnow()
        stmt = (
            update(ScrapeJob)
            .where(
                ScrapeJob.id == job_id,
                ScrapeJob.status == JobStatus.processing.value,
            )
            .values(
                status=JobStatus.completed.value,
                scraped_data=scraped_data,
                completed_at=now,
                updated_at=now,
            )
        )
        return self._execute_conditional(stmt) == 1

    def requeue(
        self,
        job_id: str,
        error_message: str,
        next_run_at: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        """
        Send a processing job back to the queue for another attempt.

        Refuses (returns False) once retry_count has reached max_retries,
        so the retry ceiling holds even if callers disagree about it.

        Args:
            job_id: ID of the job to requeue
            error_message: Reason for the failed attempt
            next_run_at: Earliest time the job may be claimed again
            now: Transition timestamp

        Returns:
            True if the job was requeued
        """
        now = now or utcnow()
        stmt = (
            update(ScrapeJob)
            .where(
                ScrapeJob.id == job_id,
                ScrapeJob.status == JobStatus.processing.value,
                ScrapeJob.retry_count < ScrapeJob.max_retries,
            )
            .values(
                status=JobStatus.queued.value,
                retry_count=ScrapeJob.retry_count + 1,
                error_message=error_message,
                started_at=None,
                next_run_at=next_run_at,
                updated_at=now,
            )
        )
        return self._execute_conditional(stmt) == 1

    def fail(
        self, job_id: str, error_message: str, now: Optional[datetime] = None
    ) -> bool:
        """
        Mark a processing job as permanently failed.

        Returns:
            True if the transition happened
        """
        now = now or utcnow()
        stmt = (
            update(ScrapeJob)
            .where(
                ScrapeJob.id == job_id,
                ScrapeJob.status == JobStatus.processing.value,
            )
            .values(
                status=JobStatus.failed.value,
                error_message=error_message,
                completed_at=now,
                updated_at=now,
            )
        )
        return self._execute_conditional(stmt) == 1

    def release_claim(
        self, job_id: str, error_message: str, now: Optional[datetime] = None
    ) -> Optional[JobStatus]:
        """
        Give up a processing claim without an adapter verdict.

        The job is requeued with an incremented retry_count, or failed when
        the ceiling is already reached.

        Returns:
            The status the job moved to, or None if it was not processing
        """
        now = now or utcnow()
        if self.requeue(job_id, error_message, next_run_at=None, now=now):
            return JobStatus.queued
        if self.fail(job_id, error_message, now=now):
            return JobStatus.failed
        return None

    def requeue_stale(
        self,
        stale_before: datetime,
        now: Optional[datetime] = None,
        limit: int = 500,
    ) -> dict[str, JobStatus]:
        """
        Release processing rows whose updated_at is older than *stale_before*.

        Args:
            stale_before: Cut-off; rows not touched since then are abandoned
            now: Transition timestamp
            limit: Maximum rows to reconcile in one pass

        Returns:
            Mapping of job id to the status it was moved to
        """
        now = now or utcnow()
        stmt = (
            select(ScrapeJob.id)
            .where(
                and_(
                    ScrapeJob.status == JobStatus.processing.value,
                    ScrapeJob.updated_at < stale_before,
                )
            )
            .order_by(ScrapeJob.updated_at.asc())
            .limit(limit)
        )
        stale_ids = list(self.session.execute(stmt).scalars().all())
        self.session.commit()

        released: dict[str, JobStatus] = {}
        for job_id in stale_ids:
            # Guard on updated_at too: the owner may have finished in between.
            guard = and_(ScrapeJob.id == job_id, ScrapeJob.updated_at < stale_before)
            requeue_stmt = (
                update(ScrapeJob)
                .where(
                    guard,
                    ScrapeJob.status == JobStatus.processing.value,
                    ScrapeJob.retry_count < ScrapeJob.max_retries,
                )
                .values(
                    status=JobStatus.queued.value,
                    retry_count=ScrapeJob.retry_count + 1,
                    error_message="stale claim: worker stopped before finishing the job",
                    started_at=None,
                    next_run_at=None,
                    updated_at=now,
                )
            )
            if self._execute_conditional(requeue_stmt) == 1:
                released[job_id] = JobStatus.queued
                continue
            fail_stmt = (
                update(ScrapeJob)
                .where(guard, ScrapeJob.status == JobStatus.processing.value)
                .values(
                    status=JobStatus.failed.value,
                    error_message="stale claim: worker stopped and retries are exhausted",
                    completed_at=now,
                    updated_at=now,
                )
            )
            if self._execute_conditional(fail_stmt) == 1:
                released[job_id] = JobStatus.failed
        return released

    def list_jobs(self, status: Optional[str] = None, limit: int = 100) -> List[ScrapeJob]:
        """
        Get jobs newest first, optionally filtered by status.

        Args:
            status: Status to filter by, or None for every job
            limit: Maximum number of jobs to return

        Returns:
            List of ScrapeJob entities
        """
        stmt = select(ScrapeJob)
        if status is not None:
            stmt = stmt.where(ScrapeJob.status == status)
        stmt = stmt.order_by(ScrapeJob.created_at.desc(), ScrapeJob.id.desc()).limit(limit)
        return list(self.session.execute(stmt).scalars().all())
