from abc import ABC, abstractmethod

import requests

from septo_worker.dtos.scrape_result import FailureKind, ScrapeFailure, ScrapeResult, ScrapeTarget

NOT_FOUND_STATUSES = frozenset({404, 410})
# 999 is LinkedIn's anti-bot response code.
BLOCKED_STATUSES = frozenset({401, 403, 429, 999})


class BaseScraper(ABC):
    """
    Interface that all scrapers must implement.

    ``scrape`` returns a ScrapeFailure for ordinary collection problems
    (timeouts, blocks, missing targets) and only raises for conditions that
    retrying cannot fix (see ``septo_worker.core.exceptions``).
    """

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @abstractmethod
    async def scrape(self, target: ScrapeTarget) -> ScrapeResult:
        """
        Collect data for one target.
        :param target: Claimed job, with its platform already resolved
        :return: ScrapeSuccess or ScrapeFailure
        """
        pass


def failure_kind_for_status(status_code: int) -> FailureKind:
    if status_code in NOT_FOUND_STATUSES:
        return FailureKind.not_found
    if status_code in BLOCKED_STATUSES:
        return FailureKind.blocked
    return FailureKind.unexpected


def failure_from_exception(exc: Exception, url: str) -> ScrapeFailure:
    """Map a ``requests`` error raised while fetching *url* to a failure value."""
    if isinstance(exc, requests.Timeout):
        return ScrapeFailure(kind=FailureKind.timeout, message=f"request to {url} timed out")
    if isinstance(exc, requests.ConnectionError):
        return ScrapeFailure(
            kind=FailureKind.timeout, message=f"could not connect to {url}: {exc}"
        )
    if isinstance(exc, requests.HTTPError) and exc.response is not None:
        status = exc.response.status_code
        kind = failure_kind_for_status(status)
        return ScrapeFailure(kind=kind, message=f"HTTP {status} from {url}")
    return ScrapeFailure(kind=FailureKind.unexpected, message=f"{type(exc).__name__}: {exc}")
