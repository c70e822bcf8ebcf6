from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from html import unescape
from typing import Any
from uuid import UUID

from bs4 import BeautifulSoup
from dateutil import parser as date_parser
from pydantic import BaseModel, Field, field_validator


def _clean_html_text(value: str) -> str:
    if not value:
        return ""
    decoded = unescape(value)
    return BeautifulSoup(decoded, "html.parser").get_text(" ", strip=True)


def _parse_datetime(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = date_parser.parse(str(value))
        except (ValueError, OverflowError):
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    # Scrapers occasionally emit future dates; treat them as unknown.
    return dt if dt <= datetime.now(timezone.utc) else None


class RawArticle(BaseModel):
    """An article as handed over by a scraper, before admission."""

    source_url: str = Field(min_length=1)
    title: str = Field(min_length=1)
    body: str | None = None
    author: str | None = None
    published_at: datetime | None = None
    image_url: str | None = None
    canonical_url: str | None = None
    language: str = "en"
    import_metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("title", "body", "author", mode="before")
    @classmethod
    def _strip_html(cls, value: Any) -> Any:
        if isinstance(value, str):
            return _clean_html_text(value)
        return value

    @field_validator("published_at", mode="before")
    @classmethod
    def _lenient_datetime(cls, value: Any) -> datetime | None:
        return _parse_datetime(value)

    @property
    def word_count(self) -> int:
        return len((self.body or "").split())


class SubmitStatus(str, Enum):
    ACCEPTED = "accepted"
    DUPLICATE_PENDING = "duplicate_pending"
    DUPLICATE = "duplicate"
    REJECTED = "rejected"


class SubmitResult(BaseModel):
    status: SubmitStatus
    topic_article_id: UUID | None = None
    shared_content_id: UUID | None = None
    duplicate_of_id: UUID | None = None
    duplicates_found: int = 0
    reason: str | None = None
    relevance_score: int | None = None
    threshold: int | None = None
    settings_version: int | None = None

    @property
    def accepted(self) -> bool:
        return self.status in (SubmitStatus.ACCEPTED, SubmitStatus.DUPLICATE_PENDING)
