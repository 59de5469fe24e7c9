"""
Routes a claimed job to a scraper and normalizes whatever comes back.

The dispatcher never touches the database. It turns a job row into a
``ScrapeTarget``, picks an adapter through the injected resolver and runs it
under a hard deadline. Ordinary failures come back as ``ScrapeFailure``;
only ``NonRetryableJobError`` escapes.
"""

import asyncio
import logging
from typing import Callable, Optional

from septo_worker.core import platforms
from septo_worker.core.config import Settings
from septo_worker.core.exceptions import InvalidJobError, NonRetryableJobError
from septo_worker.dtos.job_dto import JobRead, is_valid_target_url
from septo_worker.dtos.scrape_result import (
    FailureKind,
    ScrapeFailure,
    ScrapeResult,
    ScrapeTarget,
)
from septo_worker.entities.job import SearchType
from septo_worker.scrapers.base import BaseScraper
from septo_worker.scrapers.cloud_scraper import CloudScraper
from septo_worker.scrapers.social_media_scraper import SocialMediaScraper
from septo_worker.scrapers.username_scraper import UsernameScraper

logger = logging.getLogger(__name__)

AdapterResolver = Callable[[ScrapeTarget], BaseScraper]
SEARCH_TYPES = frozenset(t.value for t in SearchType)


def resolve_platform(platform: Optional[str], target_url: str) -> str:
    """Explicit hint if recognized, else the URL's host, else ``generic``."""
    explicit = platforms.normalize_platform(platform)
    if explicit is not None:
        return explicit
    return platforms.detect_platform(target_url)


def default_resolver(settings: Settings) -> AdapterResolver:
    """
    Production adapter choice.

    With ``USE_APIFY`` every job goes to the cloud adapter. Otherwise
    username searches use the profile scraper and everything else the
    multi-probe scraper. Adapters are built once and shared across jobs.
    """
    if settings.USE_APIFY:
        cloud = CloudScraper(
            actor_id=settings.APIFY_ACTOR_ID,
            api_token=settings.APIFY_API_TOKEN,
            base_url=settings.APIFY_BASE_URL,
            timeout=settings.APIFY_TIMEOUT / 1000,
            poll_interval=settings.APIFY_POLL_INTERVAL / 1000,
        )
        return lambda target: cloud

    username = UsernameScraper(request_timeout=settings.SCRAPE_REQUEST_TIMEOUT)
    social = SocialMediaScraper(probe_timeout=settings.PROBE_TIMEOUT_SECONDS)

    def resolve(target: ScrapeTarget) -> BaseScraper:
        if target.search_type == SearchType.username:
            return username
        return social

    return resolve


def static_resolver(adapter: BaseScraper) -> AdapterResolver:
    return lambda target: adapter


class Dispatcher:
    def __init__(self, resolver: AdapterResolver, timeout: float) -> None:
        self.resolver = resolver
        self.timeout = timeout

    def build_target(self, job: JobRead) -> ScrapeTarget:
        if not is_valid_target_url(job.target_url):
            raise InvalidJobError(f"invalid target URL: {job.target_url!r}")
        if job.search_type and job.search_type not in SEARCH_TYPES:
            raise InvalidJobError(f"unknown search type: {job.search_type!r}")
        platform = resolve_platform(job.platform, job.target_url)
        return ScrapeTarget.from_job(job, platform)

    async def dispatch(self, job: JobRead) -> ScrapeResult:
        """
        Run one attempt for *job*.

        Raises:
            NonRetryableJobError: The job or the adapter setup is unusable
        """
        target = self.build_target(job)
        adapter = self.resolver(target)
        logger.debug(
            "Dispatching job %s to %s adapter (platform=%s, search_type=%s)",
            job.id,
            adapter.name,
            target.platform,
            target.search_type,
        )
        try:
            return await asyncio.wait_for(adapter.scrape(target), timeout=self.timeout)
        except asyncio.TimeoutError:
            return ScrapeFailure(
                kind=FailureKind.timeout,
                message=f"{adapter.name} adapter exceeded {self.timeout:g}s deadline",
            )
        except NonRetryableJobError:
            raise
        except Exception as e:
            logger.exception("Adapter %s crashed on job %s", adapter.name, job.id)
            return ScrapeFailure(kind=FailureKind.unexpected, message=f"{type(e).__name__}: {e}")
