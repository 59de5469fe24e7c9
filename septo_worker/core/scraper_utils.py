"""Shared HTTP fetch + parse helpers for the local scrapers."""

import logging
import random
import re
from typing import Optional

import requests
from bs4 import BeautifulSoup, Tag

from septo_worker.core.config import settings

logger = logging.getLogger(__name__)

USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_4) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.4 Safari/605.1.15",
    "Mozilla/5.0 (X11; Linux x86_64; rv:125.0) Gecko/20100101 Firefox/125.0",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:125.0) Gecko/20100101 Firefox/125.0",
]

# Tags that only pull in subresources; removed before extraction.
SUBRESOURCE_TAGS = ("script", "style", "noscript", "link", "img", "svg", "iframe", "video", "audio", "source")

EMAIL_RE = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")
PHONE_RE = re.compile(r"\+?\d[\d\s().-]{7,}\d")

_COUNT_RE = re.compile(r"(\d[\d.,]*)\s*([kmb])?(?![a-z])", re.IGNORECASE)
_MULTIPLIERS = {"k": 1_000, "m": 1_000_000, "b": 1_000_000_000}


def get_random_user_agent() -> str:
    return random.choice(USER_AGENTS)


def fetch_html(url: str, timeout: Optional[float] = None) -> str:
    """GET with a random user-agent; raises ``requests`` errors on failure."""
    headers = {
        "User-Agent": get_random_user_agent(),
        "Accept": "text/html,application/xhtml+xml,application/json;q=0.9,*/*;q=0.8",
        "Accept-Language": "en-US,en;q=0.9",
    }
    res = requests.get(
        url, headers=headers, timeout=timeout or settings.SCRAPE_REQUEST_TIMEOUT
    )
    res.raise_for_status()
    return res.text


def make_soup(html: str) -> BeautifulSoup:
    """Parse *html* and drop subresource tags that extraction never needs."""
    soup = BeautifulSoup(html, "lxml")
    for tag in soup.find_all(SUBRESOURCE_TAGS):
        tag.decompose()
    return soup


def clean_text(value) -> Optional[str]:
    """Collapse whitespace; empty strings become None."""
    if value is None:
        return None
    text = " ".join(str(value).split())
    return text or None


def element_value(el: Tag) -> Optional[str]:
    """Visible text of *el*, falling back to the attributes that carry data."""
    text = clean_text(el.get_text(" ", strip=True))
    if text:
        return text
    for attr in ("content", "datetime", "title", "alt", "href", "src"):
        value = el.get(attr)
        if value:
            return clean_text(value)
    return None


def meta_content(soup: BeautifulSoup, *names: str) -> Optional[str]:
    """First non-empty ``<meta property|name=...>`` content among *names*."""
    for name in names:
        tag = soup.find("meta", attrs={"property": name}) or soup.find(
            "meta", attrs={"name": name}
        )
        if tag is not None and tag.get("content"):
            return clean_text(tag["content"])
    return None


def parse_count(v) -> Optional[int]:
    """
    Convert a formatted counter to int.

    Handles thousands separators and k/m/b suffixes:
    "1,234" -> 1234, "1.2k" -> 1200, "3M followers" -> 3000000.
    """
    if v is None:
        return None
    if isinstance(v, bool):
        return None
    if isinstance(v, (int, float)):
        return int(v)
    match = _COUNT_RE.search(str(v).replace("\u00a0", " "))
    if not match:
        return None
    number, suffix = match.groups()
    try:
        if suffix:
            return round(float(number.replace(",", "")) * _MULTIPLIERS[suffix.lower()])
        digits = number.replace(",", "").replace(".", "")
        return int(digits) if digits else None
    except ValueError:
        return None


def find_emails(text: str) -> list[str]:
    seen: list[str] = []
    for email in EMAIL_RE.findall(text or ""):
        email = email.lower().rstrip(".")
        if email not in seen:
            seen.append(email)
    return seen


def find_phones(text: str) -> list[str]:
    seen: list[str] = []
    for phone in PHONE_RE.findall(text or ""):
        phone = " ".join(phone.split())
        digits = re.sub(r"\D", "", phone)
        if 8 <= len(digits) <= 15 and phone not in seen:
            seen.append(phone)
    return seen
