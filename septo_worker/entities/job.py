"""
Entity for the scrape job queue.

The ``job_queue`` table doubles as the work queue: producers insert rows in
``queued`` state and workers drive them to ``completed`` or ``failed``.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import StrEnum

from sqlalchemy import JSON, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from septo_worker.entities.base import Base, utc_now


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the naive DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class JobStatus(StrEnum):
    queued = "queued"
    processing = "processing"
    completed = "completed"
    failed = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.completed, JobStatus.failed)


# processing -> queued covers retry requeues as well as stale/shutdown releases.
ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.queued: frozenset({JobStatus.processing}),
    JobStatus.processing: frozenset(
        {JobStatus.completed, JobStatus.queued, JobStatus.failed}
    ),
    JobStatus.completed: frozenset(),
    JobStatus.failed: frozenset(),
}


def can_transition(current: str, target: str) -> bool:
    return JobStatus(target) in ALLOWED_TRANSITIONS[JobStatus(current)]


class SearchType(StrEnum):
    username = "username"
    email = "email"
    phone = "phone"
    domain = "domain"
    ip = "ip"
    image = "image"


class ScrapeJob(Base):
    """
    One queued request to investigate a target URL/identifier.

    Created by the producer, exclusively owned by the worker holding its
    ``processing`` claim, never deleted by the worker.
    """

    __tablename__ = "job_queue"
    __table_args__ = (Index("ix_job_queue_status_created_at", "status", "created_at"),)

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    entity_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    target_url: Mapped[str] = mapped_column(Text, nullable=False)
    target_username: Mapped[str | None] = mapped_column(String(255), nullable=True)
    platform: Mapped[str | None] = mapped_column(String(50), nullable=True)
    search_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default=SearchType.username.value
    )

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=JobStatus.queued.value, index=True
    )  # queued, processing, completed, failed

    scraped_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_retries: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    next_run_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    # Rows inserted by other producers get the same naive UTC clock.
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, server_default=utc_now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, server_default=utc_now()
    )

    def __repr__(self) -> str:
        return f"<ScrapeJob id={self.id} status={self.status} retries={self.retry_count}/{self.max_retries}>"
