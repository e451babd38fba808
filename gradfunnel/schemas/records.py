from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

FreshnessTier = Literal["ultra_fresh", "fresh", "recent", "stale", "old"]
ExperienceRequired = Literal["early-career", "uncertain"]
WorkEnvironment = Literal["remote", "hybrid"]

CATEGORY_SEPARATOR = "|"


class CandidateRecord(BaseModel):
    """A raw posting as handed over by a fetcher, before any gating."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    source: str
    title: str | None = None
    company: str | None = None
    location: str = ""
    description: str = ""
    job_url: str | None = None
    company_url: str | None = None
    posted_at: datetime | None = None
    is_remote: bool = False
    department: str | None = None
    platform_id: str | None = None

    @field_validator("posted_at", mode="before")
    @classmethod
    def _lenient_timestamp(cls, value: Any) -> datetime | None:
        return parse_timestamp(value)

    @field_validator("location", "description", mode="before")
    @classmethod
    def _none_as_empty(cls, value: Any) -> Any:
        return "" if value is None else value


class Posting(BaseModel):
    job_hash: str
    title: str
    company: str
    location: str
    canonical_url: str
    company_profile_url: str | None = None
    description: str
    tags: list[str] = Field(default_factory=list)
    experience_required: ExperienceRequired
    work_environment: WorkEnvironment
    source: str
    posted_at: datetime
    freshness_tier: FreshnessTier
    first_seen_at: datetime
    last_seen_at: datetime
    is_active: bool = True
    source_run_id: str

    @property
    def categories(self) -> str:
        return CATEGORY_SEPARATOR.join(self.tags)

    def to_row(self) -> dict[str, Any]:
        """Flat store-facing representation."""
        return {
            "title": self.title,
            "company": self.company,
            "location": self.location,
            "job_url": self.canonical_url,
            "description": self.description,
            "categories": self.categories,
            "experience_required": self.experience_required,
            "work_environment": self.work_environment,
            "source": self.source,
            "job_hash": self.job_hash,
            "posted_at": self.posted_at,
            "scraper_run_id": self.source_run_id,
            "company_profile_url": self.company_profile_url,
            "is_active": self.is_active,
            "last_seen_at": self.last_seen_at,
            "freshness_tier": self.freshness_tier,
            "created_at": self.first_seen_at,
        }


def parse_timestamp(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        raw = value.strip()
        if not raw:
            return None
        try:
            dt = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except (ValueError, OverflowError):
            return None
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            dt = datetime.fromtimestamp(float(value), tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    else:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    try:
        return dt.astimezone(timezone.utc)
    except OverflowError:
        # Offsets that push the instant outside year 1..9999.
        return None
