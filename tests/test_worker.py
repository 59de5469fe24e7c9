"""
Tests for the job claim loop, run against an in-memory queue and the mock
scraper.
"""

import asyncio
import threading
from datetime import timedelta
from unittest.mock import AsyncMock, Mock

import pytest
from sqlalchemy.exc import OperationalError

from septo_worker.core.exceptions import AdapterConfigurationError
from septo_worker.dtos.scrape_result import (
    FailureKind,
    Profile,
    ScrapedData,
    ScrapeFailure,
    ScrapeSuccess,
)
from septo_worker.entities.job import JobStatus, ScrapeJob, utcnow
from septo_worker.repositories.job_repo import JobRepository
from septo_worker.scrapers.base import BaseScraper
from septo_worker.scrapers.mock_scraper import MockScraper
from septo_worker.services.dispatcher import Dispatcher, static_resolver
from septo_worker.services.retry_policy import RetryPolicy
from septo_worker.worker import SHUTDOWN_RELEASE_MESSAGE, Worker

OCTOCAT = "https://github.com/octocat"


def _worker(session_factory, adapter, timeout=5.0, **kwargs) -> Worker:
    kwargs.setdefault("poll_interval", 0.01)
    kwargs.setdefault("retry_policy", RetryPolicy(base_delay_seconds=0))
    return Worker(session_factory, Dispatcher(static_resolver(adapter), timeout=timeout), **kwargs)


async def _wait_until(predicate, attempts: int = 200):
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0.01)
    raise AssertionError("condition not reached")


class CountingScraper(BaseScraper):
    """Tracks how many scrapes overlap."""

    def __init__(self, delay: float = 0.02) -> None:
        self.delay = delay
        self.active = 0
        self.peak = 0
        self.calls = 0

    @property
    def name(self) -> str:
        return "counting"

    async def scrape(self, target):
        self.active += 1
        self.calls += 1
        self.peak = max(self.peak, self.active)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.active -= 1
        return ScrapeSuccess()


class TestRetryScenarios:
    @pytest.mark.asyncio
    async def test_fails_twice_then_succeeds(self, session_factory, make_job, fetch_job):
        """Test that a job failing twice is retried and then completes."""
        third_call = ScrapeSuccess(payload=ScrapedData(profile=Profile(username="octocat"), metadata={"call": 3}))
        mock = MockScraper(
            scripts={OCTOCAT: MockScraper.failing(FailureKind.timeout, "slow", times=2, then=third_call)}
        )
        worker = _worker(session_factory, mock)
        job_id = make_job(OCTOCAT, max_retries=3)

        for _ in range(3):
            assert await worker.run_once() == [job_id]

        job = fetch_job(job_id)
        assert job.status == "completed"
        assert job.retry_count == 2
        assert job.scraped_data == {"profile": {"username": "octocat"}, "metadata": {"call": 3}}
        assert await worker.run_once() == []

    @pytest.mark.asyncio
    async def test_always_timing_out_fails_after_ceiling(self, session_factory, make_job, fetch_job):
        """Test that a job that always times out fails once retries run out."""
        url = "https://unreachable.invalid/profile"
        mock = MockScraper(scripts={url: [ScrapeFailure(kind=FailureKind.timeout, message="no answer")]})
        worker = _worker(session_factory, mock)
        job_id = make_job(url, max_retries=1)

        await worker.run_once()
        assert fetch_job(job_id).status == "queued"
        await worker.run_once()

        job = fetch_job(job_id)
        assert job.status == "failed"
        assert job.retry_count == 1
        assert "timeout" in job.error_message
        assert await worker.run_once() == []

    @pytest.mark.asyncio
    async def test_requeue_respects_backoff(self, session_factory, make_job, fetch_job):
        """Test that a requeued job is not claimed before next_run_at."""
        mock = MockScraper(scripts={OCTOCAT: [ScrapeFailure(kind=FailureKind.blocked, message="HTTP 429")]})
        worker = _worker(session_factory, mock, retry_policy=RetryPolicy(base_delay_seconds=60))
        job_id = make_job(OCTOCAT)

        await worker.run_once()

        job = fetch_job(job_id)
        assert job.status == "queued"
        assert job.error_message == "blocked: HTTP 429"
        assert job.next_run_at >= utcnow() + timedelta(seconds=170)
        assert await worker.run_once() == []

    @pytest.mark.asyncio
    async def test_non_retryable_error_skips_retries(self, session_factory, make_job, fetch_job):
        """Test that an invalid job row fails without consuming a retry."""
        job_id = make_job(OCTOCAT)
        with session_factory() as session:
            session.get(ScrapeJob, job_id).target_url = "ftp://nowhere"
            session.commit()
        worker = _worker(session_factory, MockScraper())

        await worker.run_once()

        job = fetch_job(job_id)
        assert job.status == "failed"
        assert job.retry_count == 0
        assert job.error_message.startswith("InvalidJobError")

    @pytest.mark.asyncio
    async def test_adapter_configuration_error_fails_job(self, session_factory, make_job, fetch_job):
        """Test that adapter misconfiguration fails the job immediately."""
        adapter = Mock(spec=BaseScraper)
        adapter.name = "cloud"
        adapter.scrape = AsyncMock(side_effect=AdapterConfigurationError("Apify rejected the API token"))
        worker = _worker(session_factory, adapter)
        job_id = make_job(OCTOCAT)

        await worker.run_once()

        job = fetch_job(job_id)
        assert job.status == "failed"
        assert job.retry_count == 0
        assert "Apify rejected the API token" in job.error_message


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_claimed_job_is_invisible_to_another_worker(self, session_factory, make_job, fetch_job):
        """Test that a second worker polling mid-attempt finds nothing to claim."""
        job_id = make_job(OCTOCAT)
        first = _worker(session_factory, MockScraper(delay=0.1), worker_id="a")
        second = _worker(session_factory, MockScraper(), worker_id="b")

        task = asyncio.create_task(first.run())
        await _wait_until(lambda: first.in_flight == 1)
        assert await second.run_once() == []
        first.request_stop()
        await asyncio.wait_for(task, timeout=2)

        job = fetch_job(job_id)
        assert job.status == "completed"
        assert job.retry_count == 0

    @pytest.mark.asyncio
    async def test_claims_no_more_than_max_concurrent(self, session_factory, make_job, fetch_job):
        """Test that one poll never claims more than max_concurrent jobs."""
        ids = [make_job(f"https://example.com/{n}") for n in range(3)]
        scraper = CountingScraper()
        worker = _worker(session_factory, scraper, max_concurrent=2)

        processed = await worker.run_once()

        assert len(processed) == 2
        assert scraper.peak == 2
        statuses = sorted(fetch_job(job_id).status for job_id in ids)
        assert statuses == ["completed", "completed", "queued"]

    @pytest.mark.asyncio
    async def test_run_loop_keeps_concurrency_bounded(self, session_factory, make_job, fetch_job):
        """Test that the run loop never exceeds max_concurrent in flight."""
        ids = [make_job(f"https://example.com/{n}") for n in range(5)]
        scraper = CountingScraper(delay=0.03)
        worker = _worker(session_factory, scraper, max_concurrent=2)

        task = asyncio.create_task(worker.run())
        await _wait_until(lambda: scraper.calls == 5 and worker.in_flight == 0)
        worker.request_stop()
        await asyncio.wait_for(task, timeout=2)

        assert scraper.peak <= 2
        assert all(fetch_job(job_id).status == "completed" for job_id in ids)

    @pytest.mark.asyncio
    async def test_one_failure_does_not_affect_others(self, session_factory, make_job, fetch_job):
        """Test that a failing job leaves its neighbours alone."""
        bad = make_job("https://example.com/bad", max_retries=0)
        good = make_job("https://example.com/good")
        mock = MockScraper(
            scripts={"https://example.com/bad": [ScrapeFailure(kind=FailureKind.unexpected, message="parser exploded")]}
        )
        worker = _worker(session_factory, mock, max_concurrent=2)

        await worker.run_once()

        assert fetch_job(bad).status == "failed"
        assert fetch_job(good).status == "completed"

    @pytest.mark.asyncio
    async def test_lost_write_leaves_row_alone(self, session_factory, make_job, fetch_job):
        """Test that a job reconciled elsewhere is not overwritten."""
        job_id = make_job(OCTOCAT)

        class ReconciledMidway(BaseScraper):
            name = "midway"

            async def scrape(self, target):
                # Another process declares the claim dead while we work.
                with session_factory() as session:
                    JobRepository(session).fail(target.job_id, "stale claim: worker stopped")
                return ScrapeSuccess()

        worker = _worker(session_factory, ReconciledMidway())
        await worker.run_once()

        job = fetch_job(job_id)
        assert job.status == "failed"
        assert job.scraped_data is None


class TestResilience:
    @pytest.mark.asyncio
    async def test_store_outage_is_tolerated(self, session_factory, make_job, fetch_job):
        """Test that polling survives the store being unreachable."""
        job_id = make_job(OCTOCAT)
        outage = {"down": True}

        def flaky_factory():
            if outage["down"]:
                raise OperationalError("SELECT 1", {}, Exception("database is unavailable"))
            return session_factory()

        worker = _worker(flaky_factory, MockScraper())

        assert await worker.run_once() == []
        assert worker.reconcile_stale_claims() == {}

        outage["down"] = False
        assert await worker.run_once() == [job_id]
        assert fetch_job(job_id).status == "completed"

    @pytest.mark.asyncio
    async def test_run_survives_outage_until_stopped(self, session_factory):
        """Test that the run loop keeps polling through an outage."""
        calls = {"n": 0}

        def broken_factory():
            calls["n"] += 1
            raise OperationalError("SELECT 1", {}, Exception("database is unavailable"))

        worker = _worker(broken_factory, MockScraper())
        task = asyncio.create_task(worker.run())
        await _wait_until(lambda: calls["n"] >= 3)
        worker.request_stop()
        await asyncio.wait_for(task, timeout=2)

    def test_reconcile_stale_claims(self, session_factory, make_job, fetch_job):
        """Test that an abandoned claim is requeued with one retry consumed."""
        job_id = make_job(OCTOCAT)
        with session_factory() as session:
            JobRepository(session).claim(job_id, now=utcnow() - timedelta(hours=1))
        worker = _worker(session_factory, MockScraper(), stale_claim_after=60)

        assert worker.reconcile_stale_claims() == {job_id: JobStatus.queued}

        job = fetch_job(job_id)
        assert job.status == "queued"
        assert job.retry_count == 1

    def test_reconcile_leaves_live_claims(self, session_factory, make_job, fetch_job):
        """Test that a fresh claim is not touched by reconciliation."""
        job_id = make_job(OCTOCAT)
        with session_factory() as session:
            JobRepository(session).claim(job_id)
        worker = _worker(session_factory, MockScraper(), stale_claim_after=60)

        assert worker.reconcile_stale_claims() == {}
        assert fetch_job(job_id).status == "processing"

    @pytest.mark.asyncio
    async def test_store_calls_run_off_the_event_loop(self, session_factory, make_job, fetch_job):
        """Test that claims and writes never block the event loop thread."""
        job_id = make_job(OCTOCAT)
        threads = set()

        def recording_factory():
            threads.add(threading.get_ident())
            return session_factory()

        worker = _worker(recording_factory, MockScraper())

        assert await worker.run_once() == [job_id]

        assert threads
        assert threading.get_ident() not in threads
        assert fetch_job(job_id).status == "completed"

    def test_rejects_zero_concurrency(self, session_factory):
        """Test that max_concurrent below one is rejected."""
        with pytest.raises(ValueError):
            _worker(session_factory, MockScraper(), max_concurrent=0)


class TestShutdown:
    @pytest.mark.asyncio
    async def test_in_flight_job_finishes_after_stop(self, session_factory, make_job, fetch_job):
        """Test that stopping lets in-flight jobs finish."""
        job_id = make_job(OCTOCAT)
        worker = _worker(session_factory, MockScraper(delay=0.1))

        task = asyncio.create_task(worker.run())
        await _wait_until(lambda: worker.in_flight == 1)
        worker.request_stop()
        await asyncio.wait_for(task, timeout=2)

        assert fetch_job(job_id).status == "completed"

    @pytest.mark.asyncio
    async def test_grace_deadline_requeues_in_flight_job(self, session_factory, make_job, fetch_job):
        """Test that jobs outliving the shutdown grace are released."""
        job_id = make_job(OCTOCAT)
        worker = _worker(session_factory, MockScraper(delay=30), shutdown_grace=0.05)

        task = asyncio.create_task(worker.run())
        await _wait_until(lambda: worker.in_flight == 1)
        worker.request_stop()
        await asyncio.wait_for(task, timeout=2)

        job = fetch_job(job_id)
        assert job.status == "queued"
        assert job.retry_count == 1
        assert job.error_message == SHUTDOWN_RELEASE_MESSAGE
        assert worker.in_flight == 0

    @pytest.mark.asyncio
    async def test_no_claims_after_stop(self, session_factory, make_job, fetch_job):
        """Test that a stopped worker claims nothing."""
        worker = _worker(session_factory, MockScraper())
        worker.request_stop()
        job_id = make_job(OCTOCAT)

        await asyncio.wait_for(worker.run(), timeout=2)

        assert worker.stopping
        assert fetch_job(job_id).status == "queued"
