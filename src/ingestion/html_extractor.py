"""HTML extraction fallback: builds feed entries by rendering article pages."""

import asyncio
import logging

from src.errors import FeedPipelineError, ParseError
from src.ingestion.config import ScraperConfig
from src.ingestion.render import RenderService
from src.ingestion.schemas import FeedEntry
from src.ingestion.text import normalize_url

logger = logging.getLogger(__name__)


class HtmlExtractor:
    """
    Extracts articles from a site's home page.

    Article links are collected from the rendered listing page, then the
    first ``max_articles_per_page`` are rendered in small concurrent batches
    with a pause between batches.
    """

    def __init__(self, render: RenderService, config: ScraperConfig | None = None) -> None:
        self._render = render
        self._config = config or ScraperConfig()

    async def _extract_one(self, url: str) -> FeedEntry | None:
        try:
            metadata = await self._render.render_and_extract(url)
        except FeedPipelineError as e:
            logger.debug("Failed to extract article %s: %s", url, e)
            return None
        entry = metadata.to_entry()
        if entry is None:
            logger.debug("Discarding %s: no title", url)
        return entry

    async def extract(self, page_url: str, skip_urls: set[str] | None = None) -> list[FeedEntry]:
        """
        Extract entries from ``page_url``.

        Args:
            page_url: Listing page (usually the site's home page).
            skip_urls: Normalized URLs already stored; they are not rendered
                again.

        Raises:
            ParseError: The page has no article links.
        """
        links = await self._render.render_and_extract_links(
            page_url, max_links=self._config.max_candidate_links
        )
        if not links:
            raise ParseError("No article links found", url=page_url)

        candidates = links[: self._config.max_articles_per_page]
        if skip_urls:
            candidates = [u for u in candidates if normalize_url(u) not in skip_urls]
        logger.info(
            "Extracting %d of %d article links from %s", len(candidates), len(links), page_url
        )

        entries: list[FeedEntry] = []
        batch_size = self._config.article_batch_size
        for start in range(0, len(candidates), batch_size):
            batch = candidates[start : start + batch_size]
            results = await asyncio.gather(*(self._extract_one(url) for url in batch))
            entries.extend(entry for entry in results if entry is not None)

            if start + batch_size < len(candidates):
                await asyncio.sleep(self._config.article_batch_delay_seconds)

        return entries
