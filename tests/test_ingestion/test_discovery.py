"""Tests for feed discovery, robots.txt checks and the fetch strategies."""

import httpx
import pytest
import respx

from src.errors import ParseError, PermanentBlockError
from src.ingestion.config import ScraperConfig
from src.ingestion.discovery import FeedDiscovery, candidate_feed_urls, find_feed_links
from src.ingestion.fetcher import FeedFetcher
from src.ingestion.html_extractor import HtmlExtractor
from src.ingestion.robots import RobotsPolicy
from src.ingestion.rss_parser import FeedParser
from src.sources.schemas import SiteSource
from tests.fakes import FakeRenderService


def _rss(*titles: str) -> str:
    items = "".join(
        f"<item><title>{t}</title><link>https://example.com/news/{i}</link></item>"
        for i, t in enumerate(titles)
    )
    return f'<?xml version="1.0"?><rss version="2.0"><channel><title>Example News</title>{items}</channel></rss>'


EMPTY_RSS = _rss()

HOME_WITH_FEED_LINK = """
<html><head>
  <link rel="alternate" type="application/rss+xml" href="/syndication/all.xml">
  <link rel="stylesheet" href="/style.css">
</head><body></body></html>
"""

HOME_WITH_ARTICLES = """
<html><body><main>
  <article><a href="/news/first-story">First</a></article>
  <article><a href="/news/second-story">Second</a></article>
</main></body></html>
"""

FAST_HTML = ScraperConfig(article_batch_delay_seconds=0)


def _not_found_everywhere() -> None:
    respx.route(host="example.com").mock(return_value=httpx.Response(404))


class TestCandidates:
    def test_common_paths_in_order(self):
        assert candidate_feed_urls("https://example.com/") == [
            "https://example.com/feed",
            "https://example.com/rss",
            "https://example.com/rss.xml",
            "https://example.com/feed.xml",
            "https://example.com/atom.xml",
            "https://example.com/index.xml",
        ]

    def test_site_specific_paths_first_without_duplicates(self):
        urls = candidate_feed_urls("https://g1.globo.com")

        assert urls[0] == "https://g1.globo.com/rss/g1/"
        assert urls.count("https://g1.globo.com/feed") == 1

    def test_feed_links(self):
        assert find_feed_links(HOME_WITH_FEED_LINK, "https://example.com/") == [
            "https://example.com/syndication/all.xml"
        ]


class TestFeedDiscovery:
    @pytest.mark.asyncio
    @respx.mock
    async def test_first_working_path_wins(self):
        respx.get("https://example.com/feed").mock(return_value=httpx.Response(404))
        respx.get("https://example.com/rss").mock(return_value=httpx.Response(200, text=EMPTY_RSS))
        respx.get("https://example.com/rss.xml").mock(
            return_value=httpx.Response(200, text=_rss("Chip shortage eases"))
        )

        found = await FeedDiscovery(FeedParser()).discover("https://example.com")

        assert found.url == "https://example.com/rss.xml"
        assert len(found.feed.entries) == 1

    @pytest.mark.asyncio
    @respx.mock
    async def test_feed_link_from_rendered_home(self):
        respx.get("https://example.com/syndication/all.xml").mock(
            return_value=httpx.Response(200, text=_rss("A", "B"))
        )
        _not_found_everywhere()
        render = FakeRenderService({"https://example.com": HOME_WITH_FEED_LINK})

        found = await FeedDiscovery(FeedParser(), render).discover("https://example.com")

        assert found.url == "https://example.com/syndication/all.xml"
        assert render.rendered == ["https://example.com"]

    @pytest.mark.asyncio
    @respx.mock
    async def test_excluded_feed_not_fetched(self):
        feed_route = respx.get("https://example.com/feed").mock(
            return_value=httpx.Response(200, text=_rss("A"))
        )
        _not_found_everywhere()

        found = await FeedDiscovery(FeedParser()).discover(
            "https://example.com", exclude="https://example.com/feed"
        )

        assert found is None
        assert not feed_route.called

    @pytest.mark.asyncio
    @respx.mock
    async def test_render_failure_means_no_feed(self):
        _not_found_everywhere()

        found = await FeedDiscovery(FeedParser(), FakeRenderService()).discover("https://example.com")

        assert found is None


class TestRobotsPolicy:
    @pytest.mark.asyncio
    @respx.mock
    async def test_disallow(self):
        respx.get("https://example.com/robots.txt").mock(
            return_value=httpx.Response(200, text="User-agent: *\nDisallow: /private/\n")
        )
        robots = RobotsPolicy("FeedwatchBot/1.0")

        assert await robots.is_allowed("https://example.com/news/1")
        assert not await robots.is_allowed("https://example.com/private/1")

    @pytest.mark.asyncio
    @respx.mock
    async def test_missing_robots_allows(self):
        respx.get("https://example.com/robots.txt").mock(return_value=httpx.Response(404))

        assert await RobotsPolicy("FeedwatchBot/1.0").is_allowed("https://example.com/")

    @pytest.mark.asyncio
    @respx.mock
    async def test_cached_per_origin(self):
        route = respx.get("https://example.com/robots.txt").mock(
            return_value=httpx.Response(200, text="User-agent: *\nAllow: /\n")
        )
        robots = RobotsPolicy("FeedwatchBot/1.0")

        await robots.is_allowed("https://example.com/a")
        await robots.is_allowed("https://example.com/b")

        assert route.call_count == 1


class TestFeedFetcher:
    """Acquisition order for site sources."""

    def _fetcher(self, render: FakeRenderService, locks=None) -> FeedFetcher:
        parser = FeedParser()
        return FeedFetcher(
            parser,
            FeedDiscovery(parser, render),
            HtmlExtractor(render, FAST_HTML),
            RobotsPolicy("FeedwatchBot/1.0"),
            locks=locks,
        )

    @pytest.mark.asyncio
    @respx.mock
    async def test_stored_feed_used_without_robots(self):
        robots_route = respx.get("https://example.com/robots.txt").mock(return_value=httpx.Response(404))
        respx.get("https://example.com/feed").mock(return_value=httpx.Response(200, text=_rss("A")))
        source = SiteSource(id=1, base_url="https://example.com", discovered_feed_url="https://example.com/feed")

        result = await self._fetcher(FakeRenderService()).fetch_items(source)

        assert result.strategy == "rss"
        assert result.feed_url == "https://example.com/feed"
        assert not robots_route.called

    @pytest.mark.asyncio
    @respx.mock
    async def test_broken_stored_feed_rediscovered(self):
        respx.get("https://example.com/feed").mock(return_value=httpx.Response(200, text="<html>moved</html>"))
        respx.get("https://example.com/rss").mock(return_value=httpx.Response(200, text=_rss("A")))
        _not_found_everywhere()
        source = SiteSource(id=1, base_url="https://example.com", discovered_feed_url="https://example.com/feed")

        result = await self._fetcher(FakeRenderService()).fetch_items(source)

        assert result.feed_url == "https://example.com/rss"

    @pytest.mark.asyncio
    @respx.mock
    async def test_gone_stored_feed_rediscovered(self):
        stored_route = respx.get("https://example.com/feed").mock(return_value=httpx.Response(404))
        respx.get("https://example.com/rss").mock(return_value=httpx.Response(200, text=_rss("A")))
        _not_found_everywhere()
        source = SiteSource(id=1, base_url="https://example.com", discovered_feed_url="https://example.com/feed")

        result = await self._fetcher(FakeRenderService()).fetch_items(source)

        assert result.strategy == "rss"
        assert result.feed_url == "https://example.com/rss"
        assert len(result.entries) == 1
        assert stored_route.call_count == 1

    @pytest.mark.asyncio
    @respx.mock
    async def test_gone_stored_feed_falls_back_to_html(self):
        respx.get("https://example.com/feed").mock(return_value=httpx.Response(410))
        _not_found_everywhere()
        render = FakeRenderService(
            {
                "https://example.com": HOME_WITH_ARTICLES,
                "https://example.com/news/first-story": "<html><h1>First story</h1></html>",
            }
        )
        source = SiteSource(id=1, base_url="https://example.com", discovered_feed_url="https://example.com/feed")

        result = await self._fetcher(render).fetch_items(source)

        assert result.strategy == "html"
        assert result.feed_url is None
        assert [e.title for e in result.entries] == ["First story"]

    @pytest.mark.asyncio
    @respx.mock
    async def test_robots_disallow_blocks(self):
        respx.get("https://example.com/robots.txt").mock(
            return_value=httpx.Response(200, text="User-agent: *\nDisallow: /\n")
        )
        source = SiteSource(id=1, base_url="https://example.com")

        with pytest.raises(PermanentBlockError):
            await self._fetcher(FakeRenderService()).fetch_items(source)

    @pytest.mark.asyncio
    @respx.mock
    async def test_html_fallback(self, locks):
        _not_found_everywhere()
        render = FakeRenderService(
            {
                "https://example.com": HOME_WITH_ARTICLES,
                "https://example.com/news/first-story": "<html><h1>First story</h1></html>",
                "https://example.com/news/second-story": "<html><body>no title here</body></html>",
            }
        )
        source = SiteSource(id=1, base_url="https://example.com")

        result = await self._fetcher(render, locks).fetch_items(source)

        assert result.strategy == "html"
        assert [e.title for e in result.entries] == ["First story"]
        assert result.entries[0].url == "https://example.com/news/first-story"

    @pytest.mark.asyncio
    @respx.mock
    async def test_html_fallback_skips_known_urls(self):
        _not_found_everywhere()
        render = FakeRenderService(
            {
                "https://example.com": HOME_WITH_ARTICLES,
                "https://example.com/news/second-story": "<html><h1>Second story</h1></html>",
            }
        )
        source = SiteSource(id=1, base_url="https://example.com")

        result = await self._fetcher(render).fetch_items(
            source, known_urls={"https://example.com/news/first-story"}
        )

        assert [e.title for e in result.entries] == ["Second story"]
        assert "https://example.com/news/first-story" not in render.rendered

    @pytest.mark.asyncio
    @respx.mock
    async def test_html_fallback_without_links_is_parse_error(self):
        _not_found_everywhere()
        render = FakeRenderService({"https://example.com": "<html><body>Coming soon</body></html>"})
        source = SiteSource(id=1, base_url="https://example.com")

        with pytest.raises(ParseError):
            await self._fetcher(render).fetch_items(source)

    @pytest.mark.asyncio
    @respx.mock
    async def test_html_fallback_skipped_while_locked(self, fake_redis, locks):
        _not_found_everywhere()
        fake_redis.data["lock:feed-html-scrape:1"] = "another-worker"
        source = SiteSource(id=1, base_url="https://example.com")

        result = await self._fetcher(FakeRenderService(), locks).fetch_items(source)

        assert result.skipped
        assert result.entries == []
