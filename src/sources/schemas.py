"""Data models for the sources module."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from src.ingestion.text import host_of


class SiteStatus(str, Enum):
    """Lifecycle of a website source.

    pending -> active on successful discovery or scrape, -> error on fetch
    failure, -> blocked when robots.txt forbids access. Only an operator
    reset moves a blocked source back to pending.
    """

    PENDING = "pending"
    ACTIVE = "active"
    ERROR = "error"
    BLOCKED = "blocked"


@dataclass
class SiteSource:
    """A website that is polled through its RSS/Atom feed or its HTML pages.

    ``base_url`` is stored normalized and is unique across sources.
    """

    id: int
    base_url: str
    discovered_feed_url: str | None = None
    title: str | None = None
    status: SiteStatus = SiteStatus.PENDING
    last_attempt_at: datetime | None = None
    last_error_message: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def display_name(self) -> str:
        """Feed title when known, otherwise the hostname."""
        if self.title:
            return self.title
        return host_of(self.base_url) or self.base_url


@dataclass
class ChannelSource:
    """A YouTube channel, keyed by its globally unique ``UC...`` id."""

    id: int
    channel_id: str
    title: str
    handle: str | None = None
    description: str | None = None
    thumbnail_url: str | None = None
    last_checked_at: datetime | None = None
    push_lease_expires_at: datetime | None = None
    created_at: datetime | None = None

    @property
    def feed_url(self) -> str:
        """The public uploads feed for this channel."""
        return f"https://www.youtube.com/feeds/videos.xml?channel_id={self.channel_id}"

    def has_active_lease(self, now: datetime) -> bool:
        """Whether a WebSub lease currently pushes new videos for this channel."""
        return self.push_lease_expires_at is not None and self.push_lease_expires_at > now


@dataclass
class ChannelDescriptor:
    """Channel details returned by the resolver before persistence."""

    channel_id: str
    title: str
    handle: str | None = None
    description: str | None = None
    thumbnail_url: str | None = None
