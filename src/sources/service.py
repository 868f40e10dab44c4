"""Site source management: registration, operator resets, discovery queueing."""

from typing import Protocol

import structlog

from src.errors import SourceNotFoundError
from src.ingestion.text import normalize_url
from src.sources.repository import SiteSourceRepository
from src.sources.schemas import SiteSource, SiteStatus

logger = structlog.get_logger(__name__)


class DiscoveryQueue(Protocol):
    """Schedules a discovery-and-scrape run for a site source."""

    def queue_discovery(self, source_id: int) -> None: ...


class SiteSourceService:
    """
    Registers website sources.

    New and reset sources are handed to the discovery queue so the first
    scrape happens right away instead of on the next scan tick.
    """

    def __init__(
        self,
        repository: SiteSourceRepository,
        discovery_queue: DiscoveryQueue | None = None,
    ) -> None:
        self._repo = repository
        self._queue = discovery_queue

    @property
    def repository(self) -> SiteSourceRepository:
        return self._repo

    def set_discovery_queue(self, queue: DiscoveryQueue | None) -> None:
        self._queue = queue

    async def get_or_create(self, url: str) -> tuple[SiteSource, bool]:
        """
        Return the source for ``url``, creating a pending one if needed.

        Raises:
            ValueError: ``url`` is not an absolute http(s) URL.
        """
        base_url = normalize_url(url)
        if not base_url.startswith(("http://", "https://")):
            raise ValueError(f"Not an absolute http(s) URL: {url!r}")

        source, created = await self._repo.get_or_create(base_url)
        if created:
            logger.info("Site source registered", source_id=source.id, base_url=base_url)
        if created or source.status == SiteStatus.PENDING:
            self._queue_discovery(source.id)
        return source, created

    async def get(self, source_id: int) -> SiteSource:
        source = await self._repo.get(source_id)
        if source is None:
            raise SourceNotFoundError(f"Site source {source_id} not found")
        return source

    async def reset(self, source_id: int) -> SiteSource:
        """
        Operator reset of a blocked or errored source back to pending.

        Raises:
            SourceNotFoundError: No such source.
        """
        if not await self._repo.reset_to_pending(source_id):
            raise SourceNotFoundError(f"Site source {source_id} not found")
        logger.info("Site source reset to pending", source_id=source_id)
        self._queue_discovery(source_id)
        return await self.get(source_id)

    def _queue_discovery(self, source_id: int) -> None:
        if self._queue is not None:
            self._queue.queue_discovery(source_id)
