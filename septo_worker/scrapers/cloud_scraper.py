"""
Cloud-delegated scraper.

Instead of fetching locally, hands the target to an Apify actor, polls the
run until it finishes and reads the first item of the run's default dataset.
The actor emits the same camelCase payload shape the worker stores, so the
dispatcher does not care where the scrape actually ran.
"""

import asyncio
import logging
import time
from typing import Optional

import requests

from septo_worker.core.config import settings
from septo_worker.core.exceptions import AdapterConfigurationError
from septo_worker.dtos.scrape_result import (
    FailureKind,
    ScrapedData,
    ScrapeFailure,
    ScrapeResult,
    ScrapeSuccess,
    ScrapeTarget,
)
from septo_worker.scrapers.base import BaseScraper, failure_from_exception

logger = logging.getLogger(__name__)

RUNNING_STATUSES = frozenset({"READY", "RUNNING", "TIMING-OUT", "ABORTING"})
HTTP_TIMEOUT = 30


class ApifyRunError(Exception):
    """The Apify API answered, but not with something usable."""

    def __init__(self, kind: FailureKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind


class CloudScraper(BaseScraper):
    """Runs each job as an Apify actor run."""

    def __init__(
        self,
        actor_id: Optional[str] = None,
        api_token: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.actor_id = actor_id if actor_id is not None else settings.APIFY_ACTOR_ID
        self.api_token = api_token if api_token is not None else settings.APIFY_API_TOKEN
        if not self.actor_id or not self.api_token:
            raise AdapterConfigurationError(
                "APIFY_ACTOR_ID and APIFY_API_TOKEN must be configured"
            )
        self.base_url = (base_url or settings.APIFY_BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.APIFY_TIMEOUT / 1000
        self.poll_interval = (
            poll_interval if poll_interval is not None else settings.APIFY_POLL_INTERVAL / 1000
        )
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"Bearer {self.api_token}",
                "Content-Type": "application/json",
            }
        )

    @property
    def name(self) -> str:
        return "cloud"

    def build_input(self, target: ScrapeTarget) -> dict:
        return {
            "targetUrl": target.url,
            "targetUsername": target.username,
            "platform": target.platform,
            "searchType": target.search_type,
            "headless": True,
            "blockResources": True,
            "timeout": int(self.timeout),
            "proxy": False,
        }

    async def scrape(self, target: ScrapeTarget) -> ScrapeResult:
        url = f"{self.base_url}/acts/{self.actor_id}/runs"
        try:
            run = await asyncio.to_thread(self._request, "POST", url, self.build_input(target))
            run_id = run["id"]
            logger.info("Started Apify run %s for job %s", run_id, target.job_id)

            deadline = time.monotonic() + self.timeout
            while run.get("status") in RUNNING_STATUSES:
                if time.monotonic() >= deadline:
                    return ScrapeFailure(
                        kind=FailureKind.timeout,
                        message=f"Apify run {run_id} timed out after {self.timeout:g}s",
                    )
                await asyncio.sleep(self.poll_interval)
                run = await asyncio.to_thread(
                    self._request, "GET", f"{self.base_url}/actor-runs/{run_id}"
                )

            status = run.get("status")
            if status == "TIMED-OUT":
                return ScrapeFailure(kind=FailureKind.timeout, message=f"Apify run {run_id} timed out")
            if status != "SUCCEEDED":
                return ScrapeFailure(
                    kind=FailureKind.unexpected,
                    message=f"Apify run {run_id} finished with status {status}",
                )

            items = await asyncio.to_thread(
                self._request,
                "GET",
                f"{self.base_url}/datasets/{run['defaultDatasetId']}/items",
            )
        except ApifyRunError as e:
            return ScrapeFailure(kind=e.kind, message=str(e))
        except requests.RequestException as e:
            return failure_from_exception(e, url)

        payload = ScrapedData.model_validate(items[0]) if items else ScrapedData()
        payload.metadata.setdefault("apifyRunId", run_id)
        return ScrapeSuccess(payload=payload.with_raw_html(payload.raw_html))

    def _request(self, method: str, url: str, body: Optional[dict] = None):
        res = self.session.request(method, url, json=body, timeout=HTTP_TIMEOUT)
        if res.status_code == 401:
            raise AdapterConfigurationError("Apify rejected the API token")
        if res.status_code == 429:
            raise ApifyRunError(FailureKind.blocked, "Apify rate limit reached")
        if res.status_code == 404:
            raise ApifyRunError(FailureKind.unexpected, f"Apify resource not found: {url}")
        if res.status_code >= 400:
            raise ApifyRunError(
                FailureKind.unexpected, f"Apify API error: {res.status_code} - {res.text[:500]}"
            )
        body = res.json()
        # Run endpoints wrap their object in {"data": ...}; dataset items are a bare list.
        if isinstance(body, dict) and "data" in body:
            return body["data"]
        return body
