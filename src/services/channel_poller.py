"""
Channel polling: one fetch-classify-reconcile pass for a YouTube channel.

Only videos not yet stored are classified, so a poll of an unchanged channel
costs no Data API units beyond the optional search fallback.
"""

from dataclasses import dataclass, field
from typing import Any

import structlog

from src.errors import FeedPipelineError, SourceNotFoundError
from src.ingestion.fetcher import ChannelFetcher
from src.ingestion.schemas import VideoEntry
from src.items.reconciler import Reconciler
from src.items.repository import VideoRepository
from src.items.schemas import BulkReconcileResult
from src.locks.service import LockService
from src.observability.metrics import get_metrics
from src.sources.repository import ChannelSourceRepository
from src.sources.schemas import ChannelSource
from src.youtube.classifier import VideoClassifier

logger = structlog.get_logger(__name__)

CHANNEL_LOCK_TTL_SECONDS = 300


@dataclass
class ChannelCheckOutcome:
    """Result of checking one channel."""

    channel_id: int
    status: str  # ok, error, skipped
    strategy: str | None = None
    result: BulkReconcileResult = field(default_factory=BulkReconcileResult)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status != "error"

    def to_dict(self) -> dict[str, Any]:
        return {
            "channel_id": self.channel_id,
            "status": self.status,
            "strategy": self.strategy,
            "error": self.error,
            **self.result.to_dict(),
        }


class ChannelPoller:
    """Checks channels for new videos."""

    def __init__(
        self,
        channels: ChannelSourceRepository,
        videos: VideoRepository,
        fetcher: ChannelFetcher,
        classifier: VideoClassifier,
        reconciler: Reconciler,
        locks: LockService,
        lock_ttl_seconds: int = CHANNEL_LOCK_TTL_SECONDS,
    ) -> None:
        self._channels = channels
        self._videos = videos
        self._fetcher = fetcher
        self._classifier = classifier
        self._reconciler = reconciler
        self._locks = locks
        self._lock_ttl = lock_ttl_seconds
        self._metrics = get_metrics()

    async def check_by_id(self, channel_source_id: int) -> ChannelCheckOutcome:
        """
        Check a channel by its internal id.

        Raises:
            SourceNotFoundError: No such channel.
        """
        channel = await self._channels.get(channel_source_id)
        if channel is None:
            raise SourceNotFoundError(f"Channel source {channel_source_id} not found")
        return await self.check(channel)

    async def check(self, channel: ChannelSource) -> ChannelCheckOutcome:
        """Fetch, classify and reconcile under the per-channel lock."""
        async with self._locks.hold(f"channel-check:{channel.id}", self._lock_ttl) as acquired:
            if not acquired:
                logger.debug("Channel already being checked", channel_id=channel.channel_id)
                return ChannelCheckOutcome(channel.id, "skipped")
            return await self._check_locked(channel)

    async def ingest_videos(self, channel: ChannelSource, videos: list[VideoEntry]) -> BulkReconcileResult:
        """
        Classify the videos not stored yet and reconcile the whole list.

        Shared by polling and WebSub pushes.
        """
        known = await self._videos.existing_video_ids([v.video_id for v in videos])
        new_entries = [v for v in videos if v.video_id not in known]
        classified_ids: set[str] = set()
        entries = videos
        if new_entries:
            enriched, classified_ids = await self._classifier.enrich(new_entries)
            by_id = {v.video_id: v for v in enriched}
            entries = [by_id.get(v.video_id, v) for v in videos]

        return await self._reconciler.reconcile_videos(channel, entries, classified_ids)

    async def _check_locked(self, channel: ChannelSource) -> ChannelCheckOutcome:
        log = logger.bind(channel_id=channel.channel_id)
        try:
            fetched = await self._fetcher.fetch_videos(channel)
        except FeedPipelineError as e:
            log.warning("Channel fetch failed", error=str(e))
            self._metrics.record_fetch_error("channel", e)
            await self._channels.touch_checked(channel.id)
            return ChannelCheckOutcome(channel.id, "error", error=str(e))

        result = await self.ingest_videos(channel, fetched.videos)
        await self._channels.touch_checked(channel.id)

        if result.created:
            log.info("New videos found", strategy=fetched.strategy, **result.to_dict())
        return ChannelCheckOutcome(channel.id, "ok", strategy=fetched.strategy, result=result)
