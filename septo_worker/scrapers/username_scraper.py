"""
Username scraper.

Fetches a single profile page and applies the platform's extraction rules to
populate ``profile``/``stats``. Platforms without rules get generic
extraction (page title + OpenGraph/meta hints).
"""

import asyncio
import logging
from typing import Callable, Optional

import requests
from bs4 import BeautifulSoup

from septo_worker.core import platforms
from septo_worker.core.config import settings
from septo_worker.core.scraper_utils import (
    clean_text,
    element_value,
    fetch_html,
    make_soup,
    meta_content,
    parse_count,
)
from septo_worker.dtos.scrape_result import (
    Profile,
    ScrapedData,
    ScrapeResult,
    ScrapeSuccess,
    ScrapeTarget,
    Stats,
)
from septo_worker.entities.job import utcnow
from septo_worker.scrapers.base import BaseScraper, failure_from_exception

logger = logging.getLogger(__name__)

PROFILE_FIELDS = ("username", "display_name", "bio", "location", "website", "avatar_url", "created_at")
STAT_FIELDS = ("followers", "following", "posts", "likes")


class UsernameScraper(BaseScraper):
    """Single-page profile scraper for username searches."""

    def __init__(
        self,
        fetch: Callable[[str, Optional[float]], str] = fetch_html,
        request_timeout: Optional[float] = None,
    ) -> None:
        self._fetch = fetch
        self.request_timeout = request_timeout or settings.SCRAPE_REQUEST_TIMEOUT

    @property
    def name(self) -> str:
        return "username"

    def build_url(self, target: ScrapeTarget) -> str:
        """Canonical profile URL for known platforms, else the job's URL."""
        username = target.username or platforms.extract_username(target.url, target.platform)
        return platforms.profile_url(target.platform, username) or target.url

    async def scrape(self, target: ScrapeTarget) -> ScrapeResult:
        url = self.build_url(target)
        logger.info("Scraping %s profile for job %s: %s", target.platform, target.job_id, url)
        try:
            html = await asyncio.to_thread(self._fetch, url, self.request_timeout)
        except requests.RequestException as e:
            failure = failure_from_exception(e, url)
            logger.info("Job %s: %s", target.job_id, failure.error_message)
            return failure

        data = self.parse(html, target.platform, target.username)
        data.metadata.update(
            {
                "platform": target.platform,
                "url": url,
                "searchType": target.search_type,
                "scrapedAt": utcnow().isoformat(),
            }
        )
        return ScrapeSuccess(payload=data.with_raw_html(html))

    def parse(self, html: str, platform: str, username: Optional[str] = None) -> ScrapedData:
        """Extract a normalized payload from a profile page."""
        soup = make_soup(html)
        rules = platforms.PLATFORM_PROFILES.get(platform, {}).get("selectors", {})
        raw = self._apply_selectors(soup, rules)
        self._apply_meta_hints(soup, raw)

        profile = Profile(
            **{field: raw.get(field) for field in PROFILE_FIELDS},
        )
        if profile.username is None and username:
            profile.username = username
        stats = Stats(**{field: parse_count(raw.get(field)) for field in STAT_FIELDS})

        data = ScrapedData()
        if any(value is not None for _, value in profile):
            data.profile = profile
        if any(value is not None for _, value in stats):
            data.stats = stats
        return data

    @staticmethod
    def _apply_selectors(soup: BeautifulSoup, rules: dict[str, str]) -> dict[str, str]:
        raw: dict[str, str] = {}
        for field, selector in rules.items():
            el = soup.select_one(selector)
            if el is None:
                continue
            value = element_value(el)
            if value:
                raw[field] = value
        return raw

    @staticmethod
    def _apply_meta_hints(soup: BeautifulSoup, raw: dict[str, str]) -> None:
        """Fill gaps from structured-data hints the page exposes."""
        if "display_name" not in raw:
            title = meta_content(soup, "og:title", "twitter:title")
            if title is None and soup.title is not None:
                title = clean_text(soup.title.get_text())
            if title:
                raw["display_name"] = title
        if "bio" not in raw:
            bio = meta_content(soup, "og:description", "description", "twitter:description")
            if bio:
                raw["bio"] = bio
        if "avatar_url" not in raw:
            image = meta_content(soup, "og:image", "twitter:image")
            if image:
                raw["avatar_url"] = image
