"""
DTOs exchanged between the dispatcher and the scrapers.

A scraper returns exactly one of ``ScrapeSuccess`` (with a normalized
``ScrapedData`` payload) or ``ScrapeFailure`` (with a ``FailureKind``).
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from septo_worker.dtos.job_dto import JobRead

RAW_HTML_LIMIT = 10_000


class _PayloadModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore"
    )


class Profile(_PayloadModel):
    username: str | None = None
    display_name: str | None = None
    bio: str | None = None
    location: str | None = None
    website: str | None = None
    avatar_url: str | None = None
    verified: bool | None = None
    created_at: str | None = None


class Stats(_PayloadModel):
    followers: int | None = None
    following: int | None = None
    posts: int | None = None
    likes: int | None = None


class Contact(_PayloadModel):
    email: str | None = None
    phone: str | None = None
    other_emails: list[str] = Field(default_factory=list)
    other_phones: list[str] = Field(default_factory=list)

    def add_email(self, email: str) -> None:
        if not email or email == self.email or email in self.other_emails:
            return
        if self.email is None:
            self.email = email
        else:
            self.other_emails.append(email)

    def add_phone(self, phone: str) -> None:
        if not phone or phone == self.phone or phone in self.other_phones:
            return
        if self.phone is None:
            self.phone = phone
        else:
            self.other_phones.append(phone)


class Activity(_PayloadModel):
    last_post: str | None = None
    last_active: str | None = None
    posting_frequency: str | None = None


class ScrapedData(_PayloadModel):
    """Normalized scrape payload. Every field is optional; empty is valid."""

    profile: Profile | None = None
    stats: Stats | None = None
    contact: Contact | None = None
    activity: Activity | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    raw_html: str | None = None

    def with_raw_html(self, html: str | None) -> ScrapedData:
        self.raw_html = html[:RAW_HTML_LIMIT] if html else None
        return self

    def merge(self, other: ScrapedData) -> ScrapedData:
        """Fold *other* into this payload; values already set here win."""
        for section in ("profile", "stats", "activity"):
            mine = getattr(self, section)
            theirs = getattr(other, section)
            if theirs is None:
                continue
            if mine is None:
                setattr(self, section, theirs.model_copy())
                continue
            for field, value in theirs:
                if value is not None and getattr(mine, field) is None:
                    setattr(mine, field, value)

        if other.contact is not None:
            if self.contact is None:
                self.contact = Contact()
            for email in [other.contact.email, *other.contact.other_emails]:
                if email:
                    self.contact.add_email(email)
            for phone in [other.contact.phone, *other.contact.other_phones]:
                if phone:
                    self.contact.add_phone(phone)

        for key, value in other.metadata.items():
            self.metadata.setdefault(key, value)
        if self.raw_html is None and other.raw_html:
            self.raw_html = other.raw_html
        return self

    def to_store(self) -> dict[str, Any]:
        """JSON shape persisted in ``job_queue.scraped_data``."""
        data = self.model_dump(by_alias=True, exclude_none=True)
        contact = data.get("contact")
        if contact is not None:
            for key in ("otherEmails", "otherPhones"):
                if not contact.get(key):
                    contact.pop(key, None)
            if not contact:
                data.pop("contact")
        for key in ("profile", "stats", "activity", "metadata"):
            if key in data and not data[key]:
                data.pop(key)
        return data


class FailureKind(StrEnum):
    timeout = "timeout"
    not_found = "not_found"
    blocked = "blocked"
    unexpected = "unexpected"


class ScrapeSuccess(BaseModel):
    ok: Literal[True] = True
    payload: ScrapedData = Field(default_factory=ScrapedData)


class ScrapeFailure(BaseModel):
    ok: Literal[False] = False
    kind: FailureKind
    message: str

    @property
    def error_message(self) -> str:
        """Text stored in ``job_queue.error_message``."""
        return f"{self.kind.value}: {self.message}"


ScrapeResult = ScrapeSuccess | ScrapeFailure


class ScrapeTarget(BaseModel):
    """What a scraper needs to know about a claimed job."""

    job_id: str
    url: str
    username: str | None = None
    platform: str = "generic"
    search_type: str = "username"

    @classmethod
    def from_job(cls, job: JobRead, platform: str) -> ScrapeTarget:
        return cls(
            job_id=job.id,
            url=job.target_url,
            username=job.target_username,
            platform=platform,
            search_type=job.search_type or "username",
        )
