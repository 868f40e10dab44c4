"""
Canonical entry schemas for the feedwatch pipeline.

Every fetch strategy (RSS/Atom parsing, HTML extraction, channel feeds, the
YouTube Data API, WebSub pushes) MUST output these structures. The
reconciler only ever sees FeedEntry and VideoEntry.
"""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field, field_validator

from src.ingestion.text import clean_text, truncate_excerpt


def _utc_now() -> datetime:
    """Return current UTC time with timezone info."""
    return datetime.now(timezone.utc)


class SourceKind(str, Enum):
    """Kinds of pollable sources."""

    SITE = "site"
    CHANNEL = "channel"


class FeedEntry(BaseModel):
    """
    One article from a website source.

    Produced by the RSS parser and by the HTML extraction fallback.
    """

    url: str = Field(..., min_length=1, description="Absolute article URL")
    title: str = Field(default="Untitled", description="Article title")
    excerpt: str | None = Field(
        default=None,
        description="Plain-text excerpt, at most 500 characters (truncated, never summarized)",
    )
    thumbnail_url: str | None = None
    author: str | None = None
    canonical_url: str | None = None
    published_at: datetime = Field(default_factory=_utc_now)

    @field_validator("title", mode="before")
    @classmethod
    def default_title(cls, v: str | None) -> str:
        """Blank titles become 'Untitled'."""
        if v is None:
            return "Untitled"
        v = clean_text(str(v))
        return v or "Untitled"

    @field_validator("excerpt")
    @classmethod
    def truncate(cls, v: str | None) -> str | None:
        """Collapse whitespace and cap the excerpt length."""
        if v is None:
            return None
        return truncate_excerpt(clean_text(v))


class VideoEntry(BaseModel):
    """
    One video from a channel source.

    Live-status fields are filled by the classifier when the source of the
    entry (feed XML, WebSub push) does not carry them.
    """

    video_id: str = Field(..., min_length=1)
    title: str = Field(default="Untitled")
    description: str | None = None
    thumbnail_url: str | None = None
    published_at: datetime = Field(default_factory=_utc_now)
    duration_seconds: int | None = Field(default=None, ge=0)
    is_live: bool = False
    is_live_content: bool = False

    @field_validator("title", mode="before")
    @classmethod
    def default_title(cls, v: str | None) -> str:
        if v is None:
            return "Untitled"
        v = clean_text(str(v))
        return v or "Untitled"

    @field_validator("description")
    @classmethod
    def truncate(cls, v: str | None) -> str | None:
        return truncate_excerpt(v) if v else None

    @property
    def url(self) -> str:
        return f"https://www.youtube.com/watch?v={self.video_id}"


class ParsedFeed(BaseModel):
    """A parsed RSS/Atom document."""

    title: str | None = None
    link: str | None = None
    entries: list[FeedEntry] = Field(default_factory=list)


class PageMetadata(BaseModel):
    """
    Metadata extracted from a rendered article page.

    ``confidence`` counts how many of title, description, image, author and
    published date were found (0-5).
    """

    url: str
    title: str | None = None
    description: str | None = None
    image: str | None = None
    author: str | None = None
    published_at: datetime | None = None
    canonical_url: str | None = None
    confidence: int = Field(default=0, ge=0, le=5)

    def to_entry(self) -> FeedEntry | None:
        """Convert to a FeedEntry keyed on the fetched URL, or None without a title."""
        if not self.title or not self.title.strip():
            return None
        return FeedEntry(
            url=self.url,
            canonical_url=self.canonical_url,
            title=self.title,
            excerpt=self.description,
            thumbnail_url=self.image,
            author=self.author,
            published_at=self.published_at or _utc_now(),
        )
