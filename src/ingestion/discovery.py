"""
Feed discovery for website sources.

Candidate URLs are tried in a fixed order: known paths for specific news
hosts, the conventional feed paths, then feed ``<link>`` tags declared by the
rendered home page. The first candidate that parses with at least one item
wins.
"""

import logging
from dataclasses import dataclass
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from src.errors import FeedPipelineError
from src.ingestion.render import RenderService
from src.ingestion.rss_parser import FeedParser
from src.ingestion.schemas import ParsedFeed
from src.ingestion.text import host_of, normalize_url

logger = logging.getLogger(__name__)

SITE_SPECIFIC_FEED_PATHS: dict[str, list[str]] = {
    "g1.globo.com": [
        "https://g1.globo.com/rss/g1/",
        "https://g1.globo.com/rss/g1/index.xml",
        "/rss/g1/",
        "/rss/g1/index.xml",
        "/rss/g1",
        "/feed",
        "/rss",
        "/rss.xml",
    ],
    "oglobo.globo.com": ["/rss", "/feed"],
    "extra.globo.com": ["/rss", "/feed"],
    "folha.uol.com.br": ["/rss", "/feed"],
    "estadao.com.br": ["/rss", "/feed"],
}

COMMON_FEED_PATHS = ["/feed", "/rss", "/rss.xml", "/feed.xml", "/atom.xml", "/index.xml"]

FEED_LINK_TYPES = {"application/rss+xml", "application/atom+xml", "text/xml"}


@dataclass
class DiscoveredFeed:
    """A feed URL together with the parsed document that proved it works."""

    url: str
    feed: ParsedFeed


def candidate_feed_urls(base_url: str) -> list[str]:
    """Candidate order for ``base_url``, without duplicates."""
    base = normalize_url(base_url)
    paths = SITE_SPECIFIC_FEED_PATHS.get(host_of(base), []) + COMMON_FEED_PATHS

    urls: list[str] = []
    for path in paths:
        url = path if path.startswith("http") else f"{base}{path}"
        if url not in urls:
            urls.append(url)
    return urls


def find_feed_links(html: str, page_url: str) -> list[str]:
    """Feed URLs advertised by ``<link type="application/rss+xml" ...>`` tags."""
    soup = BeautifulSoup(html, "html.parser")
    links: list[str] = []
    for tag in soup.find_all("link", href=True):
        link_type = (tag.get("type") or "").strip().lower()
        if link_type in FEED_LINK_TYPES:
            url = urljoin(page_url, tag["href"].strip())
            if url not in links:
                links.append(url)
    return links


class FeedDiscovery:
    """Finds a working RSS/Atom feed for a site."""

    def __init__(self, parser: FeedParser, render: RenderService | None = None) -> None:
        self._parser = parser
        self._render = render

    async def _try_candidate(self, url: str) -> DiscoveredFeed | None:
        try:
            feed = await self._parser.fetch(url)
        except FeedPipelineError as e:
            logger.debug("No feed at %s: %s", url, e)
            return None
        if not feed.entries:
            logger.debug("Feed at %s has no items", url)
            return None
        logger.info("Found feed at %s with %d items", url, len(feed.entries))
        return DiscoveredFeed(url=url, feed=feed)

    async def discover(self, base_url: str, exclude: str | None = None) -> DiscoveredFeed | None:
        """
        Find the first candidate feed with at least one item.

        Args:
            base_url: Normalized site URL.
            exclude: A feed URL already known to be broken.

        Returns:
            The discovered feed, or None when neither the known paths nor
            the home page's feed links work.
        """
        for url in candidate_feed_urls(base_url):
            if url == exclude:
                continue
            found = await self._try_candidate(url)
            if found is not None:
                return found

        if self._render is None:
            return None

        try:
            page = await self._render.render(base_url)
        except FeedPipelineError as e:
            logger.warning("Could not render %s to look for feed links: %s", base_url, e)
            return None

        for url in find_feed_links(page.html, page.url):
            if url == exclude:
                continue
            found = await self._try_candidate(url)
            if found is not None:
                return found
        return None
