"""
Composition root.

``build_pipeline`` wires every component once at process start. Each
component receives its collaborators through its constructor. The
reconciler only knows the notification trigger as a NewItemListener and the
source service only knows the scraper as a DiscoveryQueue.
"""

from dataclasses import dataclass
from typing import Any

import redis.asyncio as redis
import structlog

from src.config.settings import Settings, get_settings
from src.ingestion.config import ScraperConfig
from src.ingestion.discovery import FeedDiscovery
from src.ingestion.fetcher import ChannelFetcher, FeedFetcher
from src.ingestion.html_extractor import HtmlExtractor
from src.ingestion.http_client import APIKeyRotator, RetryConfig
from src.ingestion.render import PlaywrightRenderService, RenderService
from src.ingestion.robots import RobotsPolicy
from src.ingestion.rss_parser import FeedParser
from src.items.reconciler import Reconciler
from src.items.repository import ItemRepository, VideoRepository
from src.jobs.repository import JobRepository
from src.locks.service import LockService
from src.notifications.config import NotificationConfig
from src.notifications.push import ExpoPushClient, PushClient
from src.notifications.subscribers import SubscriberRepository
from src.notifications.trigger import NotificationTrigger
from src.scheduler.config import SchedulerConfig
from src.scheduler.jobs import PipelineJobs, TaskDiscoveryQueue
from src.scheduler.runner import JobRunner
from src.scheduler.service import SchedulerService
from src.services.channel_poller import ChannelPoller
from src.services.site_scraper import SiteScraper
from src.sources.repository import ChannelSourceRepository, SiteSourceRepository
from src.sources.service import SiteSourceService
from src.storage.database import Database
from src.websub.config import WebSubConfig
from src.websub.service import WebSubService
from src.youtube.api_client import YouTubeAPIClient
from src.youtube.classifier import VideoClassifier
from src.youtube.config import YouTubeConfig
from src.youtube.quota import QuotaTracker
from src.youtube.resolver import ChannelResolver

logger = structlog.get_logger(__name__)

# Drain timeout for background notification/discovery tasks on shutdown
SHUTDOWN_DRAIN_SECONDS = 10.0


@dataclass
class Pipeline:
    """Every wired component of a running process."""

    settings: Settings
    database: Database
    redis: Any | None
    locks: LockService
    sources: SiteSourceRepository
    channels: ChannelSourceRepository
    items: ItemRepository
    videos: VideoRepository
    job_logs: JobRepository
    subscribers: SubscriberRepository
    source_service: SiteSourceService
    render: RenderService
    reconciler: Reconciler
    notifications: NotificationTrigger
    classifier: VideoClassifier
    quota: QuotaTracker | None
    youtube_api: YouTubeAPIClient | None
    scraper: SiteScraper
    poller: ChannelPoller
    resolver: ChannelResolver
    websub: WebSubService
    discovery_queue: TaskDiscoveryQueue
    runner: JobRunner
    jobs: PipelineJobs
    scheduler: SchedulerService

    async def create_tables(self) -> None:
        """Create every table in dependency order (idempotent)."""
        await self.sources.create_table()
        await self.channels.create_table()
        await self.items.create_table()
        await self.videos.create_table()
        await self.job_logs.create_table()
        await self.subscribers.create_table()

    async def health_check(self) -> dict[str, Any]:
        redis_ok = False
        if self.redis is not None:
            try:
                redis_ok = bool(await self.redis.ping())
            except Exception as e:
                logger.warning("Redis ping failed", error=str(e))
        return {
            "database": await self.database.health_check(),
            "redis": redis_ok,
            "youtube_api": self.youtube_api is not None,
            "websub": self.websub.enabled,
        }

    async def close(self) -> None:
        """Let background tasks finish, then release browser, Redis and database."""
        await self.discovery_queue.drain(timeout=SHUTDOWN_DRAIN_SECONDS)
        await self.notifications.drain(timeout=SHUTDOWN_DRAIN_SECONDS)
        await self.render.close()
        if self.redis is not None:
            await self.redis.aclose()
        await self.database.close()
        logger.info("Pipeline closed")


async def build_pipeline(
    settings: Settings | None = None,
    database: Database | None = None,
    redis_client: Any | None = None,
    render: RenderService | None = None,
    push_client: PushClient | None = None,
) -> Pipeline:
    """
    Build and wire all components.

    Args:
        settings: Global settings (defaults to ``get_settings()``).
        database: A connected Database; one is created and connected if None.
        redis_client: Redis client for locks and quota; created from
            ``settings.redis_url`` if None.
        render: Render service; Playwright if None.
        push_client: Push client; Expo if None.
    """
    settings = settings or get_settings()
    scraper_config = ScraperConfig()
    youtube_config = YouTubeConfig()
    scheduler_config = SchedulerConfig()
    notification_config = NotificationConfig()

    if database is None:
        database = Database()
        await database.connect()
    if redis_client is None:
        redis_client = redis.from_url(
            str(settings.redis_url),
            encoding="utf-8",
            decode_responses=True,
        )

    locks = LockService(redis_client)

    # Storage
    sources = SiteSourceRepository(database)
    channels = ChannelSourceRepository(database)
    items = ItemRepository(database)
    videos = VideoRepository(database)
    job_logs = JobRepository(database)
    subscribers = SubscriberRepository(database)

    # Notifications
    push_client = push_client or ExpoPushClient(settings.expo_access_token, notification_config)
    notifications = NotificationTrigger(subscribers, push_client, notification_config)
    reconciler = Reconciler(
        items, videos, listener=notifications, shorts_max_seconds=youtube_config.shorts_max_seconds
    )

    # Site fetching
    render = render or PlaywrightRenderService(
        settings.user_agent,
        timeout_seconds=scraper_config.render_timeout_seconds,
        settle_seconds=scraper_config.render_settle_seconds,
        headless=scraper_config.render_headless,
    )
    parser = FeedParser(
        user_agent=settings.user_agent,
        timeout=scraper_config.feed_timeout_seconds,
        max_retries=scraper_config.feed_max_retries,
    )
    robots = RobotsPolicy(
        settings.user_agent,
        timeout=scraper_config.robots_timeout_seconds,
        cache_ttl_seconds=scraper_config.robots_cache_ttl_seconds,
    )
    fetcher = FeedFetcher(
        parser,
        FeedDiscovery(parser, render),
        HtmlExtractor(render, scraper_config),
        robots,
        locks,
    )
    scraper = SiteScraper(
        sources, items, fetcher, reconciler, locks, lock_ttl_seconds=scheduler_config.source_lock_ttl
    )
    discovery_queue = TaskDiscoveryQueue(scraper)
    source_service = SiteSourceService(sources, discovery_queue)

    # YouTube
    quota: QuotaTracker | None = None
    youtube_api: YouTubeAPIClient | None = None
    rotator = APIKeyRotator.from_env_var(settings.youtube_api_keys)
    if rotator is not None:
        quota = QuotaTracker(settings.youtube_daily_quota, redis_client)
        youtube_api = YouTubeAPIClient(
            rotator,
            quota,
            youtube_config,
            RetryConfig(
                max_retries=settings.max_http_retries,
                max_backoff_seconds=settings.max_backoff_seconds,
            ),
        )
    else:
        logger.info("No YouTube API key configured, using feeds and page scraping only")

    classifier = VideoClassifier(youtube_api, youtube_config, user_agent=settings.user_agent)
    channel_fetcher = ChannelFetcher(
        parser,
        youtube_api,
        lookback_days=youtube_config.lookback_days,
        max_results=youtube_config.max_results,
    )
    poller = ChannelPoller(
        channels,
        videos,
        channel_fetcher,
        classifier,
        reconciler,
        locks,
        lock_ttl_seconds=scheduler_config.source_lock_ttl,
    )
    websub = WebSubService(
        channels, poller, settings.websub_callback_url, settings.websub_secret, WebSubConfig()
    )
    resolver = ChannelResolver(channels, youtube_api, youtube_config, websub=websub if websub.enabled else None)

    # Scheduling
    runner = JobRunner(locks, job_logs)
    jobs = PipelineJobs(
        scheduler_config,
        sources,
        source_service,
        scraper,
        channels,
        poller,
        videos,
        classifier,
        job_logs,
        websub=websub,
        quota=quota,
        youtube_config=youtube_config,
    )
    scheduler = SchedulerService(runner, jobs.specs())

    logger.info(
        "Pipeline built",
        youtube_api=youtube_api is not None,
        websub=websub.enabled,
        jobs=scheduler.job_names,
    )
    return Pipeline(
        settings=settings,
        database=database,
        redis=redis_client,
        locks=locks,
        sources=sources,
        channels=channels,
        items=items,
        videos=videos,
        job_logs=job_logs,
        subscribers=subscribers,
        source_service=source_service,
        render=render,
        reconciler=reconciler,
        notifications=notifications,
        classifier=classifier,
        quota=quota,
        youtube_api=youtube_api,
        scraper=scraper,
        poller=poller,
        resolver=resolver,
        websub=websub,
        discovery_queue=discovery_queue,
        runner=runner,
        jobs=jobs,
        scheduler=scheduler,
    )
