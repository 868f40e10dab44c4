"""
Source fetching: turns a site or channel source into parsed entries.

Site sources go through the acquisition strategies in order:

1. the stored feed URL, when one was discovered before
2. robots.txt check, then feed discovery (known paths, common paths,
   feed links in the home page)
3. HTML extraction from the rendered home page

Channels read the public videos.xml feed and fall back to the Data API
only when the feed is empty or unreachable.

The fetcher never writes source state. It returns a FetchResult or raises
one of the typed pipeline errors, and the caller decides what status the
source ends up in.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from src.errors import ParseError, PermanentBlockError, QuotaExceededError, TransientFetchError
from src.ingestion.discovery import FeedDiscovery
from src.ingestion.html_extractor import HtmlExtractor
from src.ingestion.http_client import HTTPClientError
from src.ingestion.robots import RobotsPolicy
from src.ingestion.rss_parser import FeedParser
from src.ingestion.schemas import FeedEntry, VideoEntry
from src.locks.service import LockService
from src.observability.metrics import get_metrics
from src.sources.schemas import ChannelSource, SiteSource

logger = logging.getLogger(__name__)

HTML_LOCK_TTL_SECONDS = 300


@dataclass
class FetchResult:
    """Entries from one site fetch and how they were obtained."""

    strategy: str  # rss, html
    entries: list[FeedEntry] = field(default_factory=list)
    feed_title: str | None = None
    feed_url: str | None = None
    skipped: bool = False


@dataclass
class ChannelFetchResult:
    """Videos from one channel fetch."""

    strategy: str  # channel_feed, channel_api
    videos: list[VideoEntry] = field(default_factory=list)
    channel_title: str | None = None


class FeedFetcher:
    """Runs the acquisition strategies for website sources."""

    def __init__(
        self,
        parser: FeedParser,
        discovery: FeedDiscovery,
        html_extractor: HtmlExtractor,
        robots: RobotsPolicy,
        locks: LockService | None = None,
    ) -> None:
        self._parser = parser
        self._discovery = discovery
        self._html = html_extractor
        self._robots = robots
        self._locks = locks
        self._metrics = get_metrics()

    async def fetch_items(self, source: SiteSource, known_urls: set[str] | None = None) -> FetchResult:
        """
        Fetch the current entries of a site.

        Args:
            source: The site source.
            known_urls: Normalized URLs already stored for the source; the
                HTML fallback does not render them again.

        Raises:
            PermanentBlockError: robots.txt disallows the site.
            TransientFetchError: The stored feed or the site is unreachable.
                A stored feed answering 404 or 410 is rediscovered instead.
            ParseError: No feed and no article links could be found.
        """
        broken_feed: str | None = None

        if source.discovered_feed_url:
            started = time.monotonic()
            try:
                feed = await self._parser.fetch(source.discovered_feed_url)
                self._metrics.fetch_latency.labels(strategy="rss").observe(time.monotonic() - started)
                return FetchResult(
                    strategy="rss",
                    entries=feed.entries,
                    feed_title=feed.title,
                    feed_url=source.discovered_feed_url,
                )
            except ParseError as e:
                logger.warning(
                    "Stored feed %s for source %d no longer parses: %s",
                    source.discovered_feed_url, source.id, e,
                )
                broken_feed = source.discovered_feed_url
            except HTTPClientError as e:
                if not e.is_not_found:
                    raise
                logger.warning(
                    "Stored feed %s for source %d is gone (status %s)",
                    source.discovered_feed_url, source.id, e.status_code,
                )
                broken_feed = source.discovered_feed_url
        else:
            if not await self._robots.is_allowed(source.base_url):
                raise PermanentBlockError("Blocked by robots.txt", url=source.base_url)

        started = time.monotonic()
        discovered = await self._discovery.discover(source.base_url, exclude=broken_feed)
        self._metrics.fetch_latency.labels(strategy="discovery").observe(time.monotonic() - started)
        if discovered is not None:
            if broken_feed is not None:
                logger.warning(
                    "Feed for source %d moved from %s to %s",
                    source.id, broken_feed, discovered.url,
                )
            return FetchResult(
                strategy="rss",
                entries=discovered.feed.entries,
                feed_title=discovered.feed.title,
                feed_url=discovered.url,
            )

        logger.info("No feed found for %s, extracting articles from HTML", source.base_url)
        return await self._fetch_html(source, known_urls)

    async def _fetch_html(self, source: SiteSource, known_urls: set[str] | None) -> FetchResult:
        lock_key = f"feed-html-scrape:{source.id}"
        if self._locks is not None and not await self._locks.try_acquire(lock_key, HTML_LOCK_TTL_SECONDS):
            logger.debug("HTML extraction already in progress for source %d", source.id)
            return FetchResult(strategy="html", skipped=True)

        started = time.monotonic()
        try:
            entries = await self._html.extract(source.base_url, skip_urls=known_urls)
        finally:
            if self._locks is not None:
                await self._locks.release(lock_key)
        self._metrics.fetch_latency.labels(strategy="html").observe(time.monotonic() - started)
        return FetchResult(strategy="html", entries=entries)


class ChannelFetcher:
    """Fetches the recent videos of a YouTube channel."""

    def __init__(
        self,
        parser: FeedParser,
        api_client=None,
        lookback_days: int = 7,
        max_results: int = 20,
    ) -> None:
        """
        Args:
            parser: Feed parser used for the public videos.xml feed.
            api_client: Optional YouTubeAPIClient for the search fallback.
            lookback_days: publishedAfter window for never-checked channels.
            max_results: Cap on API search results.
        """
        self._parser = parser
        self._api = api_client
        self._lookback_days = lookback_days
        self._max_results = max_results
        self._metrics = get_metrics()

    async def fetch_videos(self, channel: ChannelSource) -> ChannelFetchResult:
        """
        Fetch the channel's recent videos.

        Raises:
            TransientFetchError: The feed failed and no API fallback was
                possible.
        """
        feed_error: Exception | None = None
        started = time.monotonic()
        try:
            title, videos = await self._parser.fetch_videos(channel.feed_url)
            self._metrics.fetch_latency.labels(strategy="channel_feed").observe(
                time.monotonic() - started
            )
            if videos:
                return ChannelFetchResult(strategy="channel_feed", videos=videos, channel_title=title)
            logger.info("Channel feed for %s is empty", channel.channel_id)
        except (TransientFetchError, ParseError) as e:
            feed_error = e
            logger.warning("Channel feed for %s failed: %s", channel.channel_id, e)

        if self._api is None:
            if feed_error is not None:
                raise TransientFetchError(str(feed_error), url=channel.feed_url) from feed_error
            return ChannelFetchResult(strategy="channel_feed")

        published_after = channel.last_checked_at or (
            datetime.now(timezone.utc) - timedelta(days=self._lookback_days)
        )
        started = time.monotonic()
        try:
            videos = await self._api.get_recent_videos(
                channel.channel_id,
                published_after=published_after,
                max_results=self._max_results,
            )
        except QuotaExceededError as e:
            logger.info("Skipping API fallback for %s: %s", channel.channel_id, e)
            if feed_error is not None:
                raise TransientFetchError(str(feed_error), url=channel.feed_url) from feed_error
            return ChannelFetchResult(strategy="channel_feed")
        self._metrics.fetch_latency.labels(strategy="channel_api").observe(time.monotonic() - started)
        return ChannelFetchResult(strategy="channel_api", videos=videos)
