"""
Site scraping: one fetch-and-reconcile pass for a website source.

Owns the source status transitions. A successful fetch marks the source
active (persisting a newly discovered feed URL and title), a robots.txt
refusal blocks it, any other fetch failure marks it errored so the retry job
picks it up after its cooldown.
"""

from dataclasses import dataclass, field, replace
from typing import Any

import httpx
import structlog

from src.errors import FeedPipelineError, PermanentBlockError, SourceNotFoundError
from src.ingestion.fetcher import FeedFetcher
from src.ingestion.text import host_of
from src.items.reconciler import Reconciler
from src.items.repository import ItemRepository
from src.items.schemas import BulkReconcileResult
from src.locks.service import LockService
from src.observability.metrics import get_metrics
from src.sources.repository import SiteSourceRepository
from src.sources.schemas import SiteSource, SiteStatus

logger = structlog.get_logger(__name__)

SOURCE_LOCK_TTL_SECONDS = 300


@dataclass
class ScrapeOutcome:
    """Result of scraping one site source."""

    source_id: int
    status: str  # active, error, blocked, skipped
    strategy: str | None = None
    result: BulkReconcileResult = field(default_factory=BulkReconcileResult)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status in (SiteStatus.ACTIVE.value, "skipped")

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_id": self.source_id,
            "status": self.status,
            "strategy": self.strategy,
            "error": self.error,
            **self.result.to_dict(),
        }


class SiteScraper:
    """Fetches a site through FeedFetcher and reconciles the entries."""

    def __init__(
        self,
        sources: SiteSourceRepository,
        items: ItemRepository,
        fetcher: FeedFetcher,
        reconciler: Reconciler,
        locks: LockService,
        lock_ttl_seconds: int = SOURCE_LOCK_TTL_SECONDS,
    ) -> None:
        self._sources = sources
        self._items = items
        self._fetcher = fetcher
        self._reconciler = reconciler
        self._locks = locks
        self._lock_ttl = lock_ttl_seconds
        self._metrics = get_metrics()

    async def scrape_by_id(self, source_id: int) -> ScrapeOutcome:
        """
        Scrape a source by id.

        Raises:
            SourceNotFoundError: No such source.
        """
        source = await self._sources.get(source_id)
        if source is None:
            raise SourceNotFoundError(f"Site source {source_id} not found")
        return await self.scrape(source)

    async def scrape(self, source: SiteSource) -> ScrapeOutcome:
        """
        Scrape one source under its per-source lock.

        Sources without a feed URL take the discovery lock, the others the
        scrape lock, so a forced run never overlaps the scheduled one.
        """
        if source.status == SiteStatus.BLOCKED:
            return ScrapeOutcome(source.id, SiteStatus.BLOCKED.value, error=source.last_error_message)

        lock_key = (
            f"feed-scrape:{source.id}" if source.discovered_feed_url else f"feed-discovery:{source.id}"
        )
        async with self._locks.hold(lock_key, self._lock_ttl) as acquired:
            if not acquired:
                logger.debug("Source already being scraped", source_id=source.id, lock=lock_key)
                return ScrapeOutcome(source.id, "skipped")
            return await self._scrape_locked(source)

    async def _scrape_locked(self, source: SiteSource) -> ScrapeOutcome:
        log = logger.bind(source_id=source.id, base_url=source.base_url)
        known_urls = await self._items.recent_urls(source.id)

        try:
            fetched = await self._fetcher.fetch_items(source, known_urls=known_urls)
        except PermanentBlockError as e:
            log.warning("Source blocked by robots.txt")
            await self._sources.mark_blocked(source.id, str(e))
            self._metrics.source_status_changes.labels(status=SiteStatus.BLOCKED.value).inc()
            self._metrics.record_fetch_error("site", e)
            return ScrapeOutcome(source.id, SiteStatus.BLOCKED.value, error=str(e))
        except (FeedPipelineError, httpx.HTTPError) as e:
            log.warning("Source fetch failed", error=str(e), error_type=type(e).__name__)
            await self._sources.mark_error(source.id, str(e))
            self._metrics.source_status_changes.labels(status=SiteStatus.ERROR.value).inc()
            self._metrics.record_fetch_error("site", e)
            return ScrapeOutcome(source.id, SiteStatus.ERROR.value, error=str(e))

        if fetched.skipped:
            return ScrapeOutcome(source.id, "skipped", strategy=fetched.strategy)

        title = fetched.feed_title or source.title or host_of(source.base_url)
        from_html = fetched.strategy == "html"
        await self._sources.mark_active(source.id, feed_url=fetched.feed_url, title=title, clear_feed=from_html)
        if source.status != SiteStatus.ACTIVE:
            self._metrics.source_status_changes.labels(status=SiteStatus.ACTIVE.value).inc()

        active = replace(
            source,
            status=SiteStatus.ACTIVE,
            title=title,
            discovered_feed_url=None if from_html else fetched.feed_url or source.discovered_feed_url,
        )
        result = await self._reconciler.reconcile_many(active, fetched.entries)

        log.info(
            "Source scraped",
            strategy=fetched.strategy,
            feed_url=fetched.feed_url,
            **result.to_dict(),
        )
        return ScrapeOutcome(source.id, SiteStatus.ACTIVE.value, strategy=fetched.strategy, result=result)
