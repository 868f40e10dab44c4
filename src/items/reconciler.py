"""
Deduplication and upsert engine.

Decides whether an incoming entry is new, changed or already known and
performs the matching idempotent write. An item is "the same" as a stored
row when either its normalized URL or its content fingerprint matches within
the source.

Concurrent writers (a scheduled scan racing a forced rescrape, or a WebSub
push racing a channel poll) are expected: a unique-index violation on insert
is recovered by re-reading the row, so every caller sees a result and only
the writer that actually inserted reports ``created``. Only created rows are
handed to the new-item listener, which keeps notifications single-shot per
item.
"""

import logging
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Protocol

from src.errors import RaceConditionViolation
from src.ingestion.schemas import FeedEntry, VideoEntry
from src.ingestion.text import content_fingerprint, normalize_url
from src.items.repository import ItemRepository, VideoRepository
from src.items.schemas import (
    BulkReconcileResult,
    Item,
    ReconcileOutcome,
    ReconcileResult,
    VideoItem,
)
from src.observability.metrics import get_metrics
from src.sources.schemas import ChannelSource, SiteSource
from src.youtube.classifier import DEFAULT_SHORTS_MAX_SECONDS, classify

logger = logging.getLogger(__name__)


class NewItemListener(Protocol):
    """Receives genuinely new rows. Implementations must not block or raise."""

    def on_new_item(self, source: SiteSource, item: Item) -> None: ...

    def on_new_videos(self, channel: ChannelSource, videos: list[VideoItem]) -> None: ...


class Reconciler:
    """Reconciles parsed entries against stored items and videos."""

    def __init__(
        self,
        items: ItemRepository,
        videos: VideoRepository,
        listener: NewItemListener | None = None,
        shorts_max_seconds: int = DEFAULT_SHORTS_MAX_SECONDS,
    ) -> None:
        self._items = items
        self._videos = videos
        self._listener = listener
        self._shorts_max_seconds = shorts_max_seconds
        self._metrics = get_metrics()

    def set_listener(self, listener: NewItemListener | None) -> None:
        self._listener = listener

    # ── Site items ──────────────────────────────────────────────

    async def reconcile(self, source_id: int, entry: FeedEntry) -> ReconcileResult:
        """
        Reconcile one article against the items of ``source_id``.

        Returns:
            CREATED for a first sighting, UPDATED when the fingerprint
            changed (title/excerpt/thumbnail refreshed), UNCHANGED otherwise.
        """
        url = normalize_url(entry.url)
        fingerprint = content_fingerprint(url, entry.title)

        existing = await self._items.find_existing(source_id, url, fingerprint)
        if existing is not None:
            return await self._refresh(existing, entry, fingerprint)

        try:
            item = await self._items.insert(source_id, url, fingerprint, entry)
            return ReconcileResult(ReconcileOutcome.CREATED, item)
        except RaceConditionViolation:
            winner = await self._items.find_existing(source_id, url, fingerprint)
            if winner is None:
                raise
            logger.debug("Concurrent insert of %s for source %d recovered", url, source_id)
            self._metrics.race_recoveries.labels(kind="site").inc()
            return ReconcileResult(ReconcileOutcome.UNCHANGED, winner)

    async def _refresh(self, existing: Item, entry: FeedEntry, fingerprint: str) -> ReconcileResult:
        if existing.content_fingerprint == fingerprint:
            return ReconcileResult(ReconcileOutcome.UNCHANGED, existing)

        try:
            updated = await self._items.update_content(
                existing.id,
                entry.title,
                entry.excerpt,
                entry.thumbnail_url,
                fingerprint,
            )
        except RaceConditionViolation:
            logger.debug("Fingerprint of item %d collides with a sibling, left as is", existing.id)
            return ReconcileResult(ReconcileOutcome.UNCHANGED, existing)
        return ReconcileResult(ReconcileOutcome.UPDATED, updated)

    async def reconcile_many(
        self, source: SiteSource, entries: Iterable[FeedEntry]
    ) -> BulkReconcileResult:
        """
        Reconcile entries in document order.

        A failing entry is logged and counted; it never aborts the batch.
        Each created item is handed to the listener.
        """
        result = BulkReconcileResult()

        for entry in entries:
            try:
                outcome = await self.reconcile(source.id, entry)
            except Exception as e:
                result.errors += 1
                logger.error("Failed to reconcile %s for source %d: %s", entry.url, source.id, e)
                continue

            result.add(outcome)
            if outcome.is_new and self._listener is not None:
                self._listener.on_new_item(source, outcome.item)

        self._record(result, kind="site")
        return result

    # ── Videos ──────────────────────────────────────────────────

    async def reconcile_video(
        self,
        channel_id: int,
        entry: VideoEntry,
        classified: bool = False,
    ) -> ReconcileResult:
        """
        Reconcile one video on its ``video_id``.

        Args:
            channel_id: Internal id of the channel source.
            entry: Parsed video.
            classified: Whether the entry's live/duration signals are
                authoritative. Unclassified videos are stored without a
                type and picked up by the reclassify job.
        """
        existing = await self._videos.get_by_video_id(entry.video_id)
        if existing is not None:
            return await self._refresh_video(existing, entry)

        video_type = None
        classified_at: datetime | None = None
        if classified:
            video_type = classify(
                entry.is_live,
                entry.is_live_content,
                entry.duration_seconds,
                self._shorts_max_seconds,
            )
            classified_at = datetime.now(timezone.utc)

        try:
            video = await self._videos.insert(channel_id, entry, video_type, classified_at)
            return ReconcileResult(ReconcileOutcome.CREATED, video)
        except RaceConditionViolation:
            winner = await self._videos.get_by_video_id(entry.video_id)
            if winner is None:
                raise
            logger.debug("Concurrent insert of video %s recovered", entry.video_id)
            self._metrics.race_recoveries.labels(kind="video").inc()
            return ReconcileResult(ReconcileOutcome.UNCHANGED, winner)

    async def _refresh_video(self, existing: VideoItem, entry: VideoEntry) -> ReconcileResult:
        changed = existing.title != entry.title or (
            entry.thumbnail_url is not None and existing.thumbnail_url != entry.thumbnail_url
        )
        if not changed:
            return ReconcileResult(ReconcileOutcome.UNCHANGED, existing)

        updated = await self._videos.update_content(
            existing.id, entry.title, entry.description, entry.thumbnail_url
        )
        return ReconcileResult(ReconcileOutcome.UPDATED, updated)

    async def reconcile_videos(
        self,
        channel: ChannelSource,
        entries: Iterable[VideoEntry],
        classified_ids: set[str] | None = None,
    ) -> BulkReconcileResult:
        """Reconcile a channel's videos and hand the new ones to the listener as one batch.

        ``classified_ids`` names the entries whose live/duration fields were
        looked up and can be classified on insert.
        """
        result = BulkReconcileResult()
        classified_ids = classified_ids or set()

        for entry in entries:
            try:
                outcome = await self.reconcile_video(
                    channel.id, entry, classified=entry.video_id in classified_ids
                )
            except Exception as e:
                result.errors += 1
                logger.error(
                    "Failed to reconcile video %s for channel %s: %s",
                    entry.video_id, channel.channel_id, e,
                )
                continue
            result.add(outcome)

        if result.new_items and self._listener is not None:
            self._listener.on_new_videos(channel, list(result.new_items))

        self._record(result, kind="video")
        return result

    def _record(self, result: BulkReconcileResult, kind: str) -> None:
        self._metrics.record_reconcile(kind, "created", result.created)
        self._metrics.record_reconcile(kind, "updated", result.updated)
        self._metrics.record_reconcile(kind, "unchanged", result.skipped)
        self._metrics.record_reconcile(kind, "error", result.errors)
