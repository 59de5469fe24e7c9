"""
Errors that bypass the retry policy.

Ordinary collection failures (timeouts, blocks, missing profiles) are never
raised; scrapers return them as ``ScrapeFailure`` values. The exceptions here
mark conditions that retrying cannot fix, so the worker fails the job at once
without consuming a retry.
"""


class NonRetryableJobError(Exception):
    """Base error for jobs that must go straight to ``failed``."""


class InvalidJobError(NonRetryableJobError):
    """The job row itself is malformed (bad target URL, unknown search type)."""


class AdapterConfigurationError(NonRetryableJobError):
    """A scraper cannot run as configured (missing credentials, rejected token)."""
