"""
New-item notification fan-out.

The reconciler calls ``on_new_item`` / ``on_new_videos`` synchronously for
rows it actually inserted. Each call only schedules a background task, so a
slow push service or a subscriber lookup failure never delays or breaks a
scrape. Tasks are kept referenced until they finish.
"""

import asyncio

import structlog

from src.ingestion.schemas import SourceKind
from src.items.schemas import Item, VideoItem
from src.notifications.config import NotificationConfig
from src.notifications.push import PushClient
from src.notifications.schemas import PushNotification, PushResult
from src.notifications.subscribers import SubscriberRepository
from src.observability.metrics import get_metrics
from src.sources.schemas import ChannelSource, SiteSource

logger = structlog.get_logger(__name__)


def site_item_notification(source: SiteSource, item: Item) -> PushNotification:
    return PushNotification(
        title=source.display_name,
        body=item.title,
        data={
            "type": "feed_item",
            "feed_id": source.id,
            "item_id": item.id,
            "url": item.url,
        },
    )


def video_notification(channel: ChannelSource, video: VideoItem) -> PushNotification:
    return PushNotification(
        title=f"📺 {channel.title}",
        body=video.title,
        data={
            "type": "youtube_video",
            "channel_id": channel.channel_id,
            "video_id": video.video_id,
            "url": video.url,
        },
    )


class NotificationTrigger:
    """Fire-and-forget push fan-out for newly stored items and videos."""

    def __init__(
        self,
        subscribers: SubscriberRepository,
        push_client: PushClient,
        config: NotificationConfig | None = None,
    ) -> None:
        self._subscribers = subscribers
        self._push = push_client
        self._config = config or NotificationConfig()
        self._tasks: set[asyncio.Task] = set()
        self._metrics = get_metrics()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    # NewItemListener

    def on_new_item(self, source: SiteSource, item: Item) -> None:
        if not self._config.enabled:
            return
        self._spawn(
            self._notify(SourceKind.SITE, source.id, site_item_notification(source, item)),
            name=f"notify-item-{item.id}",
        )

    def on_new_videos(self, channel: ChannelSource, videos: list[VideoItem]) -> None:
        if not self._config.enabled:
            return
        for video in videos[: self._config.max_video_notifications]:
            self._spawn(
                self._notify(SourceKind.CHANNEL, channel.id, video_notification(channel, video)),
                name=f"notify-video-{video.video_id}",
            )

    def _spawn(self, coro, name: str) -> None:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _notify(self, kind: SourceKind, source_id: int, notification: PushNotification) -> PushResult:
        log = logger.bind(source_kind=kind.value, source_id=source_id)
        try:
            tokens = await self._subscribers.tokens_for_source(kind, source_id)
            if not tokens:
                log.debug("No subscribers to notify")
                return PushResult()
            result = await self._push.send(tokens, notification)
        except Exception as e:
            log.error("Notification fan-out failed", error=str(e))
            self._metrics.record_notifications(0, 1)
            return PushResult(failed=1)

        self._metrics.record_notifications(result.sent, result.failed)
        log.info("Notification sent", title=notification.title, **result.to_dict())
        return result

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for the in-flight notifications, e.g. before shutdown."""
        if not self._tasks:
            return
        await asyncio.wait(set(self._tasks), timeout=timeout)
