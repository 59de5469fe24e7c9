"""
Job claim loop.

Polls ``job_queue`` for ``queued`` rows, claims them with conditional
updates, runs each through the dispatcher and writes the outcome back.

Lifecycle:  queued -> processing -> completed | failed
                         |
                         +-> queued (retry, stale release, shutdown release)

Several worker processes may poll the same table. Correctness rests on the
repository's conditional writes only; nothing in this module locks.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import os
import signal
import socket
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from septo_worker.core.config import Settings, settings as default_settings
from septo_worker.core.database import SessionLocal
from septo_worker.core.exceptions import NonRetryableJobError
from septo_worker.dtos.job_dto import JobRead
from septo_worker.dtos.scrape_result import FailureKind, ScrapeFailure, ScrapeSuccess
from septo_worker.entities.job import JobStatus, utcnow
from septo_worker.repositories.job_repo import JobRepository
from septo_worker.scrapers.mock_scraper import MockScraper
from septo_worker.services.dispatcher import Dispatcher, default_resolver, static_resolver
from septo_worker.services.retry_policy import RetryPolicy

logger = logging.getLogger(__name__)

SHUTDOWN_RELEASE_MESSAGE = "worker shutdown deadline exceeded"


class Worker:
    """
    Long-running poller with bounded per-process concurrency.

    Args:
        session_factory: Zero-arg callable returning a new Session
        dispatcher: Runs one attempt per claimed job
        poll_interval: Seconds between polls
        max_concurrent: Maximum jobs in flight in this process
        retry_policy: Requeue/fail decision for failed attempts
        stale_claim_after: Seconds after which a processing row is abandoned
        shutdown_grace: Seconds to wait for in-flight jobs after a stop
            request; None waits for them indefinitely
        clock: Source of naive UTC timestamps
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        dispatcher: Dispatcher,
        *,
        poll_interval: float,
        max_concurrent: int = 1,
        retry_policy: Optional[RetryPolicy] = None,
        stale_claim_after: float = 600.0,
        shutdown_grace: Optional[float] = None,
        clock: Callable[[], datetime] = utcnow,
        worker_id: Optional[str] = None,
    ) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.session_factory = session_factory
        self.dispatcher = dispatcher
        self.poll_interval = poll_interval
        self.max_concurrent = max_concurrent
        self.retry_policy = retry_policy or RetryPolicy()
        self.stale_claim_after = stale_claim_after
        self.shutdown_grace = shutdown_grace
        self.clock = clock
        self.worker_id = worker_id or f"{socket.gethostname()}:{os.getpid()}"
        self._stop = asyncio.Event()
        self._in_flight: dict[str, asyncio.Task] = {}
        # Store calls block; one thread keeps them off the loop and in order.
        self._store = ThreadPoolExecutor(max_workers=1, thread_name_prefix="septo-store")

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def request_stop(self) -> None:
        """Stop issuing claims; in-flight jobs are drained by ``run``."""
        if not self._stop.is_set():
            logger.info("Worker %s stopping, %d job(s) in flight", self.worker_id, self.in_flight)
        self._stop.set()

    async def _in_store(self, fn: Callable[..., Any], *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._store, functools.partial(fn, *args))

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    def reconcile_stale_claims(self) -> dict[str, JobStatus]:
        """Release ``processing`` rows left behind by workers that died."""
        now = self.clock()
        stale_before = now - timedelta(seconds=self.stale_claim_after)
        try:
            with self.session_factory() as session:
                released = JobRepository(session).requeue_stale(stale_before, now=now)
        except SQLAlchemyError:
            logger.exception("Stale claim reconciliation failed")
            return {}
        for job_id, status in released.items():
            logger.warning("Released stale claim on job %s -> %s", job_id, status.value)
        return released

    def _claim(self, limit: int) -> list[JobRead]:
        try:
            with self.session_factory() as session:
                jobs = JobRepository(session).claim_batch(limit, now=self.clock())
                claimed = [JobRead.model_validate(job) for job in jobs]
        except SQLAlchemyError:
            logger.exception("Polling job_queue failed; retrying on next tick")
            return []
        for job in claimed:
            logger.info(
                "Worker %s claimed job %s (attempt %d of %d)",
                self.worker_id,
                job.id,
                job.retry_count + 1,
                job.max_retries + 1,
            )
        return claimed

    async def run_once(self) -> list[str]:
        """Claim up to ``max_concurrent`` jobs and process them to the end."""
        jobs = await self._in_store(self._claim, self.max_concurrent)
        if jobs:
            await asyncio.gather(*(self.process_job(job) for job in jobs))
        return [job.id for job in jobs]

    async def run(self) -> None:
        await self._in_store(self.reconcile_stale_claims)
        logger.info(
            "Worker %s polling every %gs (max %d concurrent)",
            self.worker_id,
            self.poll_interval,
            self.max_concurrent,
        )
        while not self.stopping:
            free = self.max_concurrent - self.in_flight
            if free > 0:
                for job in await self._in_store(self._claim, free):
                    self._spawn(job)
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass
        await self._drain()
        self._store.shutdown(wait=True)
        logger.info("Worker %s stopped", self.worker_id)

    def _spawn(self, job: JobRead) -> None:
        task = asyncio.create_task(self.process_job(job), name=f"job-{job.id}")
        self._in_flight[job.id] = task
        task.add_done_callback(lambda _: self._in_flight.pop(job.id, None))

    async def _drain(self) -> None:
        tasks = list(self._in_flight.values())
        if not tasks:
            return
        _, pending = await asyncio.wait(tasks, timeout=self.shutdown_grace)
        if not pending:
            return
        logger.warning(
            "Shutdown grace of %gs elapsed; cancelling %d job(s)", self.shutdown_grace, len(pending)
        )
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

    # ------------------------------------------------------------------
    # Per-job processing
    # ------------------------------------------------------------------

    async def process_job(self, job: JobRead) -> None:
        """Run one attempt and record its outcome. Only cancellation escapes."""
        try:
            try:
                result = await self.dispatcher.dispatch(job)
            except NonRetryableJobError as e:
                message = f"{type(e).__name__}: {e}"
                logger.error("Job %s cannot be retried: %s", job.id, e)
                await self._in_store(
                    self._write, job.id, "fail", lambda repo, now: repo.fail(job.id, message, now)
                )
                return

            if isinstance(result, ScrapeSuccess):
                payload = result.payload.to_store()
                applied = await self._in_store(
                    self._write, job.id, "complete", lambda repo, now: repo.complete(job.id, payload, now)
                )
                if applied:
                    logger.info("Job %s completed", job.id)
                return

            await self._handle_failure(job, result)
        except asyncio.CancelledError:
            await self._in_store(self._release, job.id, SHUTDOWN_RELEASE_MESSAGE)
            raise
        except Exception:
            logger.exception("Unhandled error while processing job %s", job.id)

    async def _handle_failure(self, job: JobRead, failure: ScrapeFailure) -> None:
        decision = self.retry_policy.decide(job.retry_count, job.max_retries, failure.kind)
        log = logger.error if failure.kind == FailureKind.unexpected else logger.warning
        message = failure.error_message

        if decision.requeue:
            log(
                "Job %s attempt %d failed (%s); retrying in %gs",
                job.id,
                job.retry_count + 1,
                message,
                decision.delay_seconds,
            )

            def requeue(repo: JobRepository, now: datetime) -> bool:
                next_run_at = now + timedelta(seconds=decision.delay_seconds)
                return repo.requeue(job.id, message, next_run_at=next_run_at, now=now)

            await self._in_store(self._write, job.id, "requeue", requeue)
            return

        log("Job %s failed after %d retries: %s", job.id, job.retry_count, message)
        await self._in_store(self._write, job.id, "fail", lambda repo, now: repo.fail(job.id, message, now))

    def _release(self, job_id: str, message: str) -> None:
        try:
            with self.session_factory() as session:
                status = JobRepository(session).release_claim(job_id, message, now=self.clock())
        except SQLAlchemyError:
            logger.exception("Could not release job %s; leaving it for stale reconciliation", job_id)
            return
        if status is not None:
            logger.warning("Released job %s -> %s (%s)", job_id, status.value, message)

    def _write(
        self,
        job_id: str,
        action: str,
        op: Callable[[JobRepository, datetime], bool],
    ) -> bool:
        """Apply one conditional transition; False if it was lost or errored."""
        try:
            with self.session_factory() as session:
                applied = op(JobRepository(session), self.clock())
        except SQLAlchemyError:
            logger.exception(
                "Could not %s job %s; leaving it for stale reconciliation", action, job_id
            )
            return False
        if not applied:
            logger.warning("Lost %s on job %s: row is no longer ours", action, job_id)
        return applied


def build_worker(settings: Optional[Settings] = None) -> Worker:
    """Wire a Worker from settings."""
    settings = settings or default_settings
    resolver = static_resolver(MockScraper()) if settings.USE_MOCK else default_resolver(settings)
    return Worker(
        SessionLocal,
        Dispatcher(resolver, timeout=settings.JOB_TIMEOUT_SECONDS),
        poll_interval=settings.poll_interval_seconds,
        max_concurrent=settings.MAX_CONCURRENT,
        retry_policy=RetryPolicy.from_settings(settings),
        stale_claim_after=settings.stale_claim_seconds,
        shutdown_grace=settings.SHUTDOWN_GRACE_SECONDS,
    )


async def _serve(worker: Worker) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, worker.request_stop)
    await worker.run()


def main() -> None:
    settings = default_settings
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    worker = build_worker(settings)
    logger.info("Starting worker (mock=%s, apify=%s)", settings.USE_MOCK, settings.USE_APIFY)
    asyncio.run(_serve(worker))


if __name__ == "__main__":
    main()
