"""
Mock scraper for exercising the claim loop without network I/O.

By default every target gets a deterministic canned profile derived from its
username. Tests can script per-target outcomes instead: a list of results
keyed by target URL (or username) is handed out in call order, and the last
entry repeats once the script runs out.
"""

import asyncio
import hashlib
from collections import defaultdict
from typing import Optional, Sequence

from septo_worker.core import platforms
from septo_worker.dtos.scrape_result import (
    Activity,
    Contact,
    FailureKind,
    Profile,
    ScrapedData,
    ScrapeFailure,
    ScrapeResult,
    ScrapeSuccess,
    ScrapeTarget,
    Stats,
)
from septo_worker.scrapers.base import BaseScraper


def canned_payload(target: ScrapeTarget) -> ScrapedData:
    """Same target in, same payload out."""
    username = target.username or platforms.extract_username(target.url, target.platform) or "demo_user"
    seed = int(hashlib.sha256(username.encode("utf-8")).hexdigest()[:8], 16)
    return ScrapedData(
        profile=Profile(
            username=username,
            display_name=f"{username} (Demo)",
            bio="Mock data for testing; the live scrapers collect real data from the target platform.",
            location="San Francisco, CA",
            website=f"https://{username}.example.com",
            avatar_url=f"https://api.dicebear.com/7.x/avataaars/svg?seed={username}",
            verified=True,
            created_at="2020-01-15T00:00:00Z",
        ),
        stats=Stats(
            followers=seed % 10_000,
            following=seed % 1_000,
            posts=seed % 500,
            likes=seed % 50_000,
        ),
        contact=Contact(
            email=f"{username}@example.com",
            phone="+1-555-0123",
            other_emails=[f"{username}.old@example.com"],
            other_phones=["+1-555-0456"],
        ),
        activity=Activity(
            last_post="2024-01-01T12:00:00Z",
            last_active="2024-01-02T08:30:00Z",
            posting_frequency="2-3 posts per week",
        ),
        metadata={
            "mockMode": True,
            "platform": target.platform,
            "searchType": target.search_type,
        },
    )


class MockScraper(BaseScraper):
    """Zero-I/O scraper returning canned or scripted results."""

    def __init__(
        self,
        scripts: Optional[dict[str, Sequence[ScrapeResult]]] = None,
        delay: float = 0.0,
    ) -> None:
        self.scripts = {key: list(results) for key, results in (scripts or {}).items()}
        self.delay = delay
        self.calls: defaultdict[str, int] = defaultdict(int)

    @property
    def name(self) -> str:
        return "mock"

    @staticmethod
    def failing(kind: FailureKind, message: str, times: int, then: Optional[ScrapeResult] = None) -> list[ScrapeResult]:
        """Script helper: *times* failures, optionally followed by *then*."""
        script: list[ScrapeResult] = [ScrapeFailure(kind=kind, message=message)] * times
        if then is not None:
            script.append(then)
        return script

    def _script_key(self, target: ScrapeTarget) -> Optional[str]:
        for key in (target.url, target.username):
            if key and key in self.scripts:
                return key
        return None

    async def scrape(self, target: ScrapeTarget) -> ScrapeResult:
        if self.delay:
            await asyncio.sleep(self.delay)
        key = self._script_key(target)
        if key is None:
            self.calls[target.url] += 1
            return ScrapeSuccess(payload=canned_payload(target))

        script = self.scripts[key]
        index = min(self.calls[key], len(script) - 1)
        self.calls[key] += 1
        return script[index].model_copy(deep=True)
