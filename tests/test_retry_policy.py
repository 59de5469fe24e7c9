"""
Unit tests for the retry/backoff policy.
"""

import pytest

from septo_worker.core.config import Settings
from septo_worker.dtos.scrape_result import FailureKind
from septo_worker.services.retry_policy import RetryDecision, RetryPolicy


@pytest.fixture
def policy():
    return RetryPolicy(base_delay_seconds=5.0, max_delay_seconds=60.0)


class TestDecide:
    def test_requeues_below_ceiling(self, policy):
        decision = policy.decide(retry_count=0, max_retries=3, kind=FailureKind.timeout)
        assert decision == RetryDecision(requeue=True, delay_seconds=5.0)

    def test_fails_at_ceiling(self, policy):
        assert policy.decide(3, 3, FailureKind.timeout).requeue is False
        assert policy.decide(4, 3, FailureKind.timeout).requeue is False

    def test_zero_retries_fails_immediately(self, policy):
        assert policy.decide(0, 0, FailureKind.not_found).requeue is False

    def test_backoff_grows_with_attempts(self, policy):
        delays = [policy.decide(n, 10, FailureKind.unexpected).delay_seconds for n in range(3)]
        assert delays == [5.0, 10.0, 15.0]

    def test_blocked_waits_longer(self, policy):
        assert policy.decide(0, 3, FailureKind.blocked).delay_seconds == 15.0

    def test_backoff_is_capped(self, policy):
        assert policy.decide(8, 10, FailureKind.blocked).delay_seconds == 60.0

    def test_zero_base_requeues_immediately(self):
        policy = RetryPolicy(base_delay_seconds=0)
        assert policy.decide(2, 3, FailureKind.blocked) == RetryDecision(requeue=True, delay_seconds=0.0)


class TestFromSettings:
    def test_base_delay_defaults_to_poll_interval(self):
        settings = Settings(DATABASE_URL="sqlite://", POLL_INTERVAL=2000)
        policy = RetryPolicy.from_settings(settings)
        assert policy.base_delay_seconds == 2.0
        assert policy.max_delay_seconds == 300.0

    def test_explicit_base_delay(self):
        settings = Settings(DATABASE_URL="sqlite://", RETRY_BASE_DELAY_MS=0, RETRY_MAX_DELAY_MS=1000)
        policy = RetryPolicy.from_settings(settings)
        assert policy.base_delay_seconds == 0.0
        assert policy.max_delay_seconds == 1.0


class TestStaleThreshold:
    def test_default_exceeds_job_timeout(self):
        settings = Settings(DATABASE_URL="sqlite://", POLL_INTERVAL=5000, JOB_TIMEOUT_SECONDS=60)
        assert settings.stale_claim_seconds == 120.0

    def test_override(self):
        settings = Settings(DATABASE_URL="sqlite://", STALE_CLAIM_MS=90_000)
        assert settings.stale_claim_seconds == 90.0
