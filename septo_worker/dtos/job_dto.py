"""
DTOs for job queue operations.
"""

from datetime import datetime
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from septo_worker.entities.job import SearchType


def is_valid_target_url(value: str | None) -> bool:
    """True for absolute http(s) URLs with a host."""
    if not value:
        return False
    try:
        parsed = urlparse(value.strip())
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.hostname)


class JobCreate(BaseModel):
    """DTO for enqueueing a scrape job (producer boundary)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    target_url: str = Field(..., min_length=1, description="Absolute URL to investigate")
    target_username: str | None = Field(default=None, max_length=255)
    platform: str | None = Field(
        default=None, max_length=50, description="Platform hint, inferred when absent"
    )
    search_type: SearchType = Field(default=SearchType.username)
    max_retries: int = Field(default=3, ge=0, le=20)
    user_id: str | None = Field(default=None, max_length=255)
    entity_id: int | None = None

    @field_validator("target_url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        value = value.strip()
        if not is_valid_target_url(value):
            raise ValueError("Invalid URL format")
        return value

    @field_validator("platform")
    @classmethod
    def _normalize_platform(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip().lower() or None


class JobRead(BaseModel):
    """DTO for reading a job row (consumer boundary)."""

    model_config = ConfigDict(
        from_attributes=True, alias_generator=to_camel, populate_by_name=True
    )

    id: str
    user_id: str | None = None
    entity_id: int | None = None
    target_url: str
    target_username: str | None = None
    platform: str | None = None
    search_type: str
    status: str
    scraped_data: dict | None = None
    error_message: str | None = None
    retry_count: int
    max_retries: int
    next_run_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime
