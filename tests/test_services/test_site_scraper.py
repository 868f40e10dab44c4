"""Tests for site scraping status transitions and channel checks."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from src.errors import ParseError, PermanentBlockError, SourceNotFoundError, TransientFetchError
from src.ingestion.fetcher import ChannelFetchResult, FetchResult
from src.ingestion.schemas import FeedEntry, VideoEntry
from src.items.schemas import VideoType
from src.services.channel_poller import ChannelPoller
from src.services.site_scraper import SiteScraper
from src.sources.schemas import SiteStatus


def _entries(*slugs: str) -> list[FeedEntry]:
    return [FeedEntry(url=f"https://example.com/news/{s}", title=s.replace("-", " ").title()) for s in slugs]


@pytest.fixture
def fetcher():
    fetcher = MagicMock()
    fetcher.fetch_items = AsyncMock()
    return fetcher


@pytest.fixture
def scraper(site_repo, item_repo, fetcher, reconciler, locks):
    return SiteScraper(site_repo, item_repo, fetcher, reconciler, locks)


class TestSiteScraper:
    @pytest.mark.asyncio
    async def test_discovery_persists_feed_and_activates(self, scraper, site_repo, item_repo, fetcher, listener):
        source = site_repo.add("https://example.com")
        fetcher.fetch_items.return_value = FetchResult(
            strategy="rss",
            entries=_entries("one", "two"),
            feed_title="Example News",
            feed_url="https://example.com/feed",
        )

        outcome = await scraper.scrape(source)

        assert outcome.ok
        assert outcome.status == "active"
        assert outcome.result.created == 2
        stored = site_repo.sources[source.id]
        assert stored.status == SiteStatus.ACTIVE
        assert stored.discovered_feed_url == "https://example.com/feed"
        assert stored.title == "Example News"
        assert listener.items[0][0].status == SiteStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_html_strategy_keeps_feed_url_empty(self, scraper, site_repo, fetcher):
        source = site_repo.add("https://example.com")
        fetcher.fetch_items.return_value = FetchResult(strategy="html", entries=_entries("one"))

        outcome = await scraper.scrape(source)

        assert outcome.strategy == "html"
        stored = site_repo.sources[source.id]
        assert stored.discovered_feed_url is None
        assert stored.title == "example.com"

    @pytest.mark.asyncio
    async def test_html_success_forgets_dead_feed(self, scraper, site_repo, fetcher, listener):
        source = site_repo.add(
            "https://example.com",
            status=SiteStatus.ACTIVE,
            discovered_feed_url="https://example.com/feed",
        )
        fetcher.fetch_items.return_value = FetchResult(strategy="html", entries=_entries("one"))

        outcome = await scraper.scrape(source)

        assert outcome.status == "active"
        assert site_repo.sources[source.id].discovered_feed_url is None
        assert listener.items[0][0].discovered_feed_url is None

    @pytest.mark.asyncio
    async def test_rescrape_is_idempotent(self, scraper, site_repo, item_repo, fetcher):
        source = site_repo.add("https://example.com")
        fetcher.fetch_items.return_value = FetchResult(strategy="rss", entries=_entries("one", "two"))

        await scraper.scrape(source)
        second = await scraper.scrape(site_repo.sources[source.id])

        assert second.result.created == 0
        assert second.result.skipped == 2
        assert len(item_repo.for_source(source.id)) == 2

    @pytest.mark.asyncio
    async def test_robots_block(self, scraper, site_repo, fetcher):
        source = site_repo.add("https://example.com")
        fetcher.fetch_items.side_effect = PermanentBlockError("Blocked by robots.txt")

        outcome = await scraper.scrape(source)

        assert outcome.status == "blocked"
        assert not outcome.ok
        assert site_repo.sources[source.id].status == SiteStatus.BLOCKED
        assert site_repo.sources[source.id].last_error_message == "Blocked by robots.txt"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [TransientFetchError("timed out"), ParseError("No article links found")])
    async def test_fetch_failure_marks_error(self, scraper, site_repo, fetcher, error):
        source = site_repo.add("https://example.com", status=SiteStatus.ACTIVE)
        fetcher.fetch_items.side_effect = error

        outcome = await scraper.scrape(source)

        assert outcome.status == "error"
        assert site_repo.sources[source.id].status == SiteStatus.ERROR

    @pytest.mark.asyncio
    async def test_blocked_source_not_fetched(self, scraper, site_repo, fetcher):
        source = site_repo.add("https://example.com", status=SiteStatus.BLOCKED)

        outcome = await scraper.scrape(source)

        assert outcome.status == "blocked"
        fetcher.fetch_items.assert_not_called()

    @pytest.mark.asyncio
    async def test_locked_source_skipped(self, scraper, site_repo, fetcher, fake_redis):
        source = site_repo.add("https://example.com", discovered_feed_url="https://example.com/feed")
        fake_redis.data[f"lock:feed-scrape:{source.id}"] = "scheduler"

        outcome = await scraper.scrape(source)

        assert outcome.status == "skipped"
        assert outcome.ok
        fetcher.fetch_items.assert_not_called()

    @pytest.mark.asyncio
    async def test_discovery_uses_its_own_lock(self, scraper, site_repo, fetcher, fake_redis):
        source = site_repo.add("https://example.com")
        fake_redis.data[f"lock:feed-scrape:{source.id}"] = "scheduler"
        fetcher.fetch_items.return_value = FetchResult(strategy="rss", entries=[])

        outcome = await scraper.scrape(source)

        assert outcome.status == "active"

    @pytest.mark.asyncio
    async def test_scrape_by_id_not_found(self, scraper):
        with pytest.raises(SourceNotFoundError):
            await scraper.scrape_by_id(404)


class TestChannelPoller:
    @pytest.fixture
    def channel_fetcher(self):
        fetcher = MagicMock()
        fetcher.fetch_videos = AsyncMock()
        return fetcher

    @pytest.fixture
    def classifier(self):
        classifier = MagicMock()

        async def enrich(entries):
            return [e.model_copy(update={"duration_seconds": 30}) for e in entries], {e.video_id for e in entries}

        classifier.enrich = AsyncMock(side_effect=enrich)
        return classifier

    @pytest.fixture
    def poller(self, channel_repo, video_repo, channel_fetcher, classifier, reconciler, locks):
        return ChannelPoller(channel_repo, video_repo, channel_fetcher, classifier, reconciler, locks)

    @pytest.mark.asyncio
    async def test_new_videos_classified_and_stored(self, poller, channel_repo, video_repo, channel_fetcher, classifier):
        channel = channel_repo.add("UC1234567890abcdefghijkl")
        channel_fetcher.fetch_videos.return_value = ChannelFetchResult(
            strategy="channel_feed", videos=[VideoEntry(video_id="a"), VideoEntry(video_id="b")]
        )

        outcome = await poller.check(channel)

        assert outcome.status == "ok"
        assert outcome.result.created == 2
        assert {v.video_type for v in video_repo.videos.values()} == {VideoType.SHORT}
        assert channel_repo.touched == [channel.id]

    @pytest.mark.asyncio
    async def test_only_unknown_videos_classified(self, poller, channel_repo, video_repo, channel_fetcher, classifier):
        channel = channel_repo.add("UC1234567890abcdefghijkl")
        video_repo.add(channel.id, "a", title="Untitled")
        channel_fetcher.fetch_videos.return_value = ChannelFetchResult(
            strategy="channel_feed", videos=[VideoEntry(video_id="a"), VideoEntry(video_id="b")]
        )

        outcome = await poller.check(channel)

        enriched = classifier.enrich.await_args.args[0]
        assert [v.video_id for v in enriched] == ["b"]
        assert outcome.result.created == 1

    @pytest.mark.asyncio
    async def test_fetch_failure_still_touches(self, poller, channel_repo, channel_fetcher):
        channel = channel_repo.add("UC1234567890abcdefghijkl")
        channel_fetcher.fetch_videos.side_effect = TransientFetchError("feed down")

        outcome = await poller.check(channel)

        assert outcome.status == "error"
        assert not outcome.ok
        assert channel_repo.touched == [channel.id]

    @pytest.mark.asyncio
    async def test_check_by_id_not_found(self, poller):
        with pytest.raises(SourceNotFoundError):
            await poller.check_by_id(99)
