"""
Periodic job bodies.

Each job returns a JSON-serializable summary that ends up in its JobRecord.
Per-source failures are absorbed here and show up as counts; the runner
only sees an exception when something systemic broke.
"""

import asyncio
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog

from src.items.repository import VideoRepository
from src.jobs.repository import JobRepository
from src.scheduler.config import SchedulerConfig
from src.scheduler.runner import JobFunc, run_in_groups
from src.services.channel_poller import ChannelCheckOutcome, ChannelPoller
from src.services.site_scraper import ScrapeOutcome, SiteScraper
from src.sources.repository import ChannelSourceRepository, SiteSourceRepository
from src.sources.service import SiteSourceService
from src.youtube.classifier import VideoClassifier
from src.youtube.config import YouTubeConfig
from src.youtube.quota import QuotaTracker

logger = structlog.get_logger(__name__)


@dataclass
class JobSpec:
    """A job class: name, cadence, lock TTL and body."""

    name: str
    interval_seconds: int
    lock_ttl: int
    func: JobFunc


def _now() -> datetime:
    return datetime.now(timezone.utc)


class TaskDiscoveryQueue:
    """
    Runs queued discoveries as background tasks in this process.

    Used by ``SiteSourceService`` so that a registered or reset source is
    scraped immediately instead of waiting for the next scan. The per-source
    lock inside the scraper keeps this from overlapping a scheduled run.
    """

    def __init__(self, scraper: SiteScraper) -> None:
        self._scraper = scraper
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def queue_discovery(self, source_id: int) -> None:
        task = asyncio.create_task(self._run(source_id), name=f"discovery-{source_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, source_id: int) -> None:
        try:
            outcome = await self._scraper.scrape_by_id(source_id)
            logger.info("Queued discovery finished", **outcome.to_dict())
        except Exception as e:
            logger.error("Queued discovery failed", source_id=source_id, error=str(e))

    async def drain(self, timeout: float | None = None) -> None:
        if self._tasks:
            await asyncio.wait(set(self._tasks), timeout=timeout)


class PipelineJobs:
    """The bodies of the periodic jobs, bound to their collaborators."""

    def __init__(
        self,
        config: SchedulerConfig,
        sources: SiteSourceRepository,
        source_service: SiteSourceService,
        scraper: SiteScraper,
        channels: ChannelSourceRepository,
        poller: ChannelPoller,
        videos: VideoRepository,
        classifier: VideoClassifier,
        job_logs: JobRepository,
        websub=None,
        quota: QuotaTracker | None = None,
        youtube_config: YouTubeConfig | None = None,
    ) -> None:
        self._config = config
        self._sources = sources
        self._source_service = source_service
        self._scraper = scraper
        self._channels = channels
        self._poller = poller
        self._videos = videos
        self._classifier = classifier
        self._job_logs = job_logs
        self._websub = websub
        self._quota = quota
        self._youtube_config = youtube_config or YouTubeConfig()

    def specs(self) -> list[JobSpec]:
        c = self._config
        specs = [
            JobSpec("feed-scan", c.feed_scan_interval_seconds, c.feed_scan_lock_ttl, self.feed_scan),
            JobSpec("feed-retry", c.feed_retry_interval_seconds, c.feed_retry_lock_ttl, self.feed_retry),
            JobSpec(
                "channel-poll", c.channel_poll_interval_seconds, c.channel_poll_lock_ttl, self.channel_poll
            ),
            JobSpec("reclassify", c.reclassify_interval_seconds, c.reclassify_lock_ttl, self.reclassify),
            JobSpec(
                "websub-renew", c.websub_renew_interval_seconds, c.websub_renew_lock_ttl, self.websub_renew
            ),
            JobSpec(
                "job-log-cleanup",
                c.job_log_cleanup_interval_seconds,
                c.job_log_cleanup_lock_ttl,
                self.job_log_cleanup,
            ),
        ]
        if self._quota is not None:
            specs.append(
                JobSpec(
                    "quota-report", c.quota_report_interval_seconds, c.quota_report_lock_ttl, self.quota_report
                )
            )
        return specs

    async def feed_scan(self) -> dict[str, Any]:
        """Scrape the stalest active and pending sources."""
        due = await self._sources.list_due(
            _now() - timedelta(seconds=self._config.feed_stale_seconds),
            self._config.feed_scan_limit,
        )
        if not due:
            return {"selected": 0}

        batch = await run_in_groups(
            due, self._scraper.scrape, self._config.concurrency, self._config.politeness_delay_seconds
        )
        outcomes: list[ScrapeOutcome] = batch.successes()
        statuses = Counter(o.status for o in outcomes)
        return {
            "selected": len(due),
            "statuses": dict(statuses),
            "created": sum(o.result.created for o in outcomes),
            "updated": sum(o.result.updated for o in outcomes),
            "failed": batch.failed,
        }

    async def feed_retry(self) -> dict[str, Any]:
        """Move errored sources past their cooldown back to pending and rediscover them."""
        retryable = await self._sources.list_retryable(
            _now() - timedelta(seconds=self._config.feed_retry_cooldown_seconds),
            self._config.feed_retry_limit,
        )
        retried = 0
        for source in retryable:
            try:
                await self._source_service.reset(source.id)
                retried += 1
            except Exception as e:
                logger.error("Failed to reset source", source_id=source.id, error=str(e))
        return {"selected": len(retryable), "retried": retried}

    async def channel_poll(self) -> dict[str, Any]:
        """Check channels that are due and not covered by a WebSub lease."""
        if self._quota is not None:
            ratio = await self._quota.usage_ratio()
            if ratio > self._youtube_config.quota_skip_ratio:
                logger.warning("Skipping channel poll, YouTube quota nearly spent", usage_ratio=round(ratio, 3))
                return {"selected": 0, "skipped_for_quota": True, "usage_ratio": round(ratio, 3)}

        now = _now()
        due = await self._channels.list_due(
            now - timedelta(seconds=self._config.channel_stale_seconds),
            self._config.channel_poll_limit,
            now,
        )
        if not due:
            return {"selected": 0}

        batch = await run_in_groups(
            due, self._poller.check, self._config.concurrency, self._config.politeness_delay_seconds
        )
        outcomes: list[ChannelCheckOutcome] = batch.successes()
        return {
            "selected": len(due),
            "statuses": dict(Counter(o.status for o in outcomes)),
            "created": sum(o.result.created for o in outcomes),
            "failed": batch.failed,
        }

    async def reclassify(self) -> dict[str, Any]:
        result = await self._classifier.reclassify(self._videos)
        return result.to_dict()

    async def websub_renew(self) -> dict[str, Any]:
        if self._websub is None or not self._websub.enabled:
            return {"enabled": False}
        return await self._websub.renew_expiring()

    async def job_log_cleanup(self) -> dict[str, Any]:
        cutoff = _now() - timedelta(days=self._config.job_log_retention_days)
        deleted = await self._job_logs.cleanup(cutoff)
        return {"deleted": deleted}

    async def quota_report(self) -> dict[str, Any]:
        """Log today's YouTube Data API usage, warning when it runs high."""
        used = await self._quota.used()
        limit = self._quota.daily_limit
        ratio = used / limit if limit else 1.0
        if ratio >= self._config.quota_warn_ratio:
            logger.warning("YouTube quota usage high", used=used, limit=limit, usage_ratio=round(ratio, 3))
        return {"used": used, "limit": limit, "usage_ratio": round(ratio, 3)}
