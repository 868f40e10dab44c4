"""Stored item models and reconciliation results."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class VideoType(str, Enum):
    """Classification of a channel video."""

    VIDEO = "video"
    SHORT = "short"
    VOD = "vod"
    LIVE = "live"


class ReconcileOutcome(str, Enum):
    """What the reconciler did with one incoming item."""

    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


@dataclass
class Item:
    """A stored article belonging to exactly one site source.

    ``url`` and ``published_at`` never change after creation; title, excerpt,
    thumbnail and fingerprint are refreshed when the content changes.
    """

    id: int
    source_id: int
    url: str
    title: str
    content_fingerprint: str
    published_at: datetime
    excerpt: str | None = None
    thumbnail_url: str | None = None
    author: str | None = None
    canonical_url: str | None = None
    fetched_at: datetime | None = None


@dataclass
class VideoItem:
    """A stored channel video.

    ``is_live_content`` is sticky: once a video has been a live stream it
    stays flagged even after it becomes a VOD.
    """

    id: int
    channel_id: int
    video_id: str
    title: str
    published_at: datetime
    description: str | None = None
    thumbnail_url: str | None = None
    duration_seconds: int | None = None
    video_type: VideoType | None = None
    is_live: bool = False
    is_live_content: bool = False
    classified_at: datetime | None = None
    fetched_at: datetime | None = None

    @property
    def url(self) -> str:
        return f"https://www.youtube.com/watch?v={self.video_id}"


@dataclass
class ReconcileResult:
    """Outcome of reconciling one item, with the row as stored afterwards."""

    outcome: ReconcileOutcome
    item: Item | VideoItem

    @property
    def is_new(self) -> bool:
        return self.outcome == ReconcileOutcome.CREATED


@dataclass
class BulkReconcileResult:
    """Aggregate counts for a batch reconciliation.

    ``skipped`` counts unchanged items; ``errors`` counts items that failed
    and were left out. ``new_items`` holds the rows created by this batch in
    input order.
    """

    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0
    new_items: list = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.created + self.updated + self.skipped + self.errors

    def add(self, result: ReconcileResult) -> None:
        if result.outcome == ReconcileOutcome.CREATED:
            self.created += 1
            self.new_items.append(result.item)
        elif result.outcome == ReconcileOutcome.UPDATED:
            self.updated += 1
        else:
            self.skipped += 1

    def to_dict(self) -> dict:
        return {
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "errors": self.errors,
        }
