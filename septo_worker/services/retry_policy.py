"""
Retry/backoff decision for failed scrape attempts.

Pure: no I/O, no clock. The worker turns a decision into a repository call.
"""

from dataclasses import dataclass

from septo_worker.core.config import Settings
from septo_worker.dtos.scrape_result import FailureKind


@dataclass(frozen=True)
class RetryDecision:
    requeue: bool
    delay_seconds: float = 0.0


@dataclass(frozen=True)
class RetryPolicy:
    """
    Linear backoff with a ceiling.

    A job that has already been retried ``n`` times waits
    ``base_delay_seconds * (n + 1)`` before its next claim, three times that
    when the target blocked us, never more than ``max_delay_seconds``.
    """

    base_delay_seconds: float = 0.0
    max_delay_seconds: float = 300.0
    blocked_multiplier: float = 3.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            base_delay_seconds=settings.retry_base_delay_seconds,
            max_delay_seconds=settings.RETRY_MAX_DELAY_MS / 1000,
        )

    def decide(self, retry_count: int, max_retries: int, kind: FailureKind) -> RetryDecision:
        """
        Args:
            retry_count: Retries already consumed by the job
            max_retries: The job's retry ceiling
            kind: Classification of the failed attempt

        Returns:
            RetryDecision; ``requeue`` is False once the ceiling is reached
        """
        if retry_count >= max_retries:
            return RetryDecision(requeue=False)
        return RetryDecision(requeue=True, delay_seconds=self.backoff(retry_count, kind))

    def backoff(self, retry_count: int, kind: FailureKind) -> float:
        delay = self.base_delay_seconds * (retry_count + 1)
        if kind == FailureKind.blocked:
            delay *= self.blocked_multiplier
        return max(0.0, min(delay, self.max_delay_seconds))
