"""
Social media / multi-field scraper.

Given an email, phone, domain or IP, probes a fixed set of related pages and
public APIs concurrently and merges whatever succeeds into one payload.
A failing probe only drops its own fragment; the job fails only when every
probe fails.
"""

import asyncio
import hashlib
import json
import logging
from dataclasses import dataclass
from typing import Callable, Optional
from urllib.parse import quote, unquote

import requests

from septo_worker.core import platforms
from septo_worker.core.config import settings
from septo_worker.core.scraper_utils import (
    clean_text,
    fetch_html,
    find_emails,
    find_phones,
    make_soup,
    meta_content,
)
from septo_worker.dtos.scrape_result import (
    Contact,
    FailureKind,
    Profile,
    ScrapedData,
    ScrapeFailure,
    ScrapeResult,
    ScrapeSuccess,
    ScrapeTarget,
)
from septo_worker.entities.job import SearchType, utcnow
from septo_worker.scrapers.base import BaseScraper, failure_from_exception

logger = logging.getLogger(__name__)

MAX_SUBDOMAINS = 100


@dataclass(frozen=True)
class Probe:
    """One related lookup: where to go for a subject and how to read the answer."""

    name: str
    build_url: Callable[[ScrapeTarget, Optional[str]], Optional[str]]
    parse: Callable[[str], ScrapedData]


# ---------------------------------------------------------------------------
# Parsers
# ---------------------------------------------------------------------------


def parse_page(html: str) -> ScrapedData:
    soup = make_soup(html)
    title = meta_content(soup, "og:title")
    if title is None and soup.title is not None:
        title = clean_text(soup.title.get_text())
    bio = meta_content(soup, "og:description", "description")

    data = ScrapedData()
    if title or bio:
        data.profile = Profile(display_name=title, bio=bio)
    text = soup.get_text(" ")
    emails, phones = find_emails(text), find_phones(text)
    if emails or phones:
        contact = Contact()
        for email in emails:
            contact.add_email(email)
        for phone in phones:
            contact.add_phone(phone)
        data.contact = contact
    return data.with_raw_html(html)


def parse_gravatar(body: str) -> ScrapedData:
    entry = json.loads(body)["entry"][0]
    location = entry.get("currentLocation")
    urls = [u.get("value") for u in entry.get("urls", []) if u.get("value")]
    return ScrapedData(
        profile=Profile(
            username=entry.get("preferredUsername"),
            display_name=entry.get("displayName"),
            bio=entry.get("aboutMe"),
            location=location,
            website=urls[0] if urls else None,
            avatar_url=entry.get("thumbnailUrl"),
        ),
        metadata={"gravatar": {"profileUrl": entry.get("profileUrl"), "urls": urls}},
    )


def parse_github_search(body: str) -> ScrapedData:
    items = json.loads(body).get("items", [])
    accounts = [item["login"] for item in items if item.get("login")]
    data = ScrapedData(metadata={"githubAccounts": accounts})
    if accounts:
        data.profile = Profile(username=accounts[0])
    return data


def parse_security_txt(body: str) -> ScrapedData:
    contact = Contact()
    fields: dict[str, list[str]] = {}
    for line in body.splitlines():
        if ":" not in line or line.lstrip().startswith("#"):
            continue
        key, value = line.split(":", 1)
        fields.setdefault(key.strip().lower(), []).append(value.strip())
    for value in fields.get("contact", []):
        for email in find_emails(unquote(value)):
            contact.add_email(email)
        if value.startswith("tel:"):
            contact.add_phone(value[4:])
    data = ScrapedData(metadata={"securityTxt": fields})
    if contact.email or contact.phone:
        data.contact = contact
    return data


def parse_rdap_domain(body: str) -> ScrapedData:
    doc = json.loads(body)
    events = {e.get("eventAction"): e.get("eventDate") for e in doc.get("events", [])}
    registrar = None
    for entity in doc.get("entities", []):
        if "registrar" in entity.get("roles", []):
            vcard = entity.get("vcardArray", [None, []])[1]
            names = [item[3] for item in vcard if item and item[0] == "fn"]
            registrar = names[0] if names else entity.get("handle")
    nameservers = [ns.get("ldhName") for ns in doc.get("nameservers", []) if ns.get("ldhName")]
    return ScrapedData(
        profile=Profile(username=doc.get("ldhName"), created_at=events.get("registration")),
        metadata={
            "rdap": {
                "registrar": registrar,
                "status": doc.get("status", []),
                "events": events,
                "nameservers": nameservers,
            }
        },
    )


def parse_crtsh(body: str) -> ScrapedData:
    names: set[str] = set()
    for row in json.loads(body):
        for name in str(row.get("name_value", "")).splitlines():
            name = name.strip().lower()
            if name and not name.startswith("*"):
                names.add(name)
    return ScrapedData(metadata={"subdomains": sorted(names)[:MAX_SUBDOMAINS]})


def parse_rdap_ip(body: str) -> ScrapedData:
    doc = json.loads(body)
    return ScrapedData(
        profile=Profile(username=doc.get("name"), location=doc.get("country")),
        metadata={
            "rdap": {
                "handle": doc.get("handle"),
                "startAddress": doc.get("startAddress"),
                "endAddress": doc.get("endAddress"),
                "type": doc.get("type"),
            }
        },
    )


def parse_ipinfo(body: str) -> ScrapedData:
    doc = json.loads(body)
    place = ", ".join(p for p in (doc.get("city"), doc.get("region"), doc.get("country")) if p)
    return ScrapedData(
        profile=Profile(location=place or None, website=doc.get("hostname")),
        metadata={"ipinfo": {"org": doc.get("org"), "loc": doc.get("loc"), "timezone": doc.get("timezone")}},
    )


# ---------------------------------------------------------------------------
# Probe sets
# ---------------------------------------------------------------------------


def _target_page(target: ScrapeTarget, subject: Optional[str]) -> Optional[str]:
    return target.url


def _needs_subject(template: str, transform: Callable[[str], str] = quote):
    def build(target: ScrapeTarget, subject: Optional[str]) -> Optional[str]:
        if not subject:
            return None
        return template.format(subject=transform(subject))

    return build


def _gravatar_hash(email: str) -> str:
    return hashlib.md5(email.strip().lower().encode("utf-8")).hexdigest()


TARGET_PAGE = Probe("target_page", _target_page, parse_page)

PROBES_BY_SEARCH_TYPE: dict[str, list[Probe]] = {
    SearchType.email: [
        TARGET_PAGE,
        Probe("gravatar", _needs_subject("https://en.gravatar.com/{subject}.json", _gravatar_hash), parse_gravatar),
        Probe(
            "github_users",
            _needs_subject("https://api.github.com/search/users?q={subject}+in:email"),
            parse_github_search,
        ),
    ],
    SearchType.phone: [TARGET_PAGE],
    SearchType.domain: [
        TARGET_PAGE,
        Probe("security_txt", _needs_subject("https://{subject}/.well-known/security.txt"), parse_security_txt),
        Probe("rdap", _needs_subject("https://rdap.org/domain/{subject}"), parse_rdap_domain),
        Probe("crtsh", _needs_subject("https://crt.sh/?q={subject}&output=json"), parse_crtsh),
    ],
    SearchType.ip: [
        TARGET_PAGE,
        Probe("rdap", _needs_subject("https://rdap.org/ip/{subject}"), parse_rdap_ip),
        Probe("ipinfo", _needs_subject("https://ipinfo.io/{subject}/json"), parse_ipinfo),
    ],
}


def subject_for(target: ScrapeTarget) -> Optional[str]:
    """The identifier a search is about: explicit hint first, then the URL."""
    if target.username:
        return target.username.strip()
    if target.search_type in (SearchType.domain, SearchType.ip):
        return platforms.host_of(target.url) or None
    decoded = unquote(target.url)
    if target.search_type == SearchType.email:
        emails = find_emails(decoded)
        return emails[0] if emails else None
    if target.search_type == SearchType.phone:
        phones = find_phones(decoded)
        return phones[0] if phones else None
    return None


def combine_failure_kinds(kinds: list[FailureKind]) -> FailureKind:
    if FailureKind.blocked in kinds:
        return FailureKind.blocked
    if kinds and all(k == FailureKind.timeout for k in kinds):
        return FailureKind.timeout
    if kinds and all(k == FailureKind.not_found for k in kinds):
        return FailureKind.not_found
    return FailureKind.unexpected


# ---------------------------------------------------------------------------
# Scraper
# ---------------------------------------------------------------------------


class SocialMediaScraper(BaseScraper):
    """Concurrent multi-probe scraper for email/phone/domain/ip searches."""

    def __init__(
        self,
        fetch: Callable[[str, Optional[float]], str] = fetch_html,
        probes: Optional[dict[str, list[Probe]]] = None,
        probe_timeout: Optional[float] = None,
    ) -> None:
        self._fetch = fetch
        self.probes = probes if probes is not None else PROBES_BY_SEARCH_TYPE
        self.probe_timeout = probe_timeout or settings.PROBE_TIMEOUT_SECONDS

    @property
    def name(self) -> str:
        return "social_media"

    def probes_for(self, search_type: str) -> list[Probe]:
        return self.probes.get(search_type, [TARGET_PAGE])

    async def scrape(self, target: ScrapeTarget) -> ScrapeResult:
        subject = subject_for(target)
        planned = []
        for probe in self.probes_for(target.search_type):
            url = probe.build_url(target, subject)
            if url:
                planned.append((probe, url))
        if not planned:
            return ScrapeFailure(kind=FailureKind.not_found, message="no probe applies to this target")

        logger.info(
            "Probing %d sources for %s search (job %s)",
            len(planned),
            target.search_type,
            target.job_id,
        )

        outcomes = await asyncio.gather(*(self._run_probe(probe, url) for probe, url in planned))

        payload = ScrapedData()
        statuses: dict[str, str] = {}
        failures: list[ScrapeFailure] = []
        for (probe, _), outcome in zip(planned, outcomes):
            if isinstance(outcome, ScrapeFailure):
                statuses[probe.name] = outcome.kind.value
                failures.append(outcome)
            else:
                statuses[probe.name] = "ok"
                payload.merge(outcome)

        if failures and len(failures) == len(planned):
            kind = combine_failure_kinds([f.kind for f in failures])
            summary = "; ".join(f.message for f in failures[:3])
            return ScrapeFailure(kind=kind, message=f"all {len(planned)} probes failed: {summary}")

        payload.metadata.update(
            {
                "searchType": target.search_type,
                "subject": subject,
                "url": target.url,
                "probes": statuses,
                "scrapedAt": utcnow().isoformat(),
            }
        )
        return ScrapeSuccess(payload=payload)

    async def _run_probe(self, probe: Probe, url: str) -> ScrapedData | ScrapeFailure:
        try:
            body = await asyncio.wait_for(
                asyncio.to_thread(self._fetch, url, self.probe_timeout),
                timeout=self.probe_timeout,
            )
        except asyncio.TimeoutError:
            return ScrapeFailure(kind=FailureKind.timeout, message=f"probe {probe.name} timed out")
        except requests.RequestException as e:
            failure = failure_from_exception(e, url)
            logger.debug("Probe %s failed: %s", probe.name, failure.error_message)
            return failure
        except Exception as e:
            logger.warning("Probe %s fetch of %s crashed", probe.name, url, exc_info=True)
            return ScrapeFailure(kind=FailureKind.unexpected, message=f"probe {probe.name} failed: {e}")
        # A malformed answer only drops this probe's fragment.
        try:
            return probe.parse(body)
        except Exception as e:
            logger.warning("Probe %s returned unreadable data from %s", probe.name, url, exc_info=True)
            return ScrapeFailure(kind=FailureKind.unexpected, message=f"probe {probe.name} parse error: {e}")
