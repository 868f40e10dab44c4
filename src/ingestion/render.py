"""
Headless page rendering.

``RenderService`` is the seam between the pipeline and the browser: the
fetcher only needs rendered HTML, metadata and article links, so tests swap
in a double that serves canned HTML. ``PlaywrightRenderService`` drives a
shared Chromium instance, one context per render.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright

from src.errors import TransientFetchError
from src.ingestion.links import extract_article_links
from src.ingestion.metadata import extract_page_metadata
from src.ingestion.schemas import PageMetadata

logger = logging.getLogger(__name__)

BLOCKED_RESOURCE_TYPES = {"image", "media", "font", "stylesheet"}


@dataclass
class RenderedPage:
    """HTML of a page after client-side rendering."""

    url: str
    html: str


class RenderService(ABC):
    """Renders pages and extracts what the fetcher needs from them."""

    @abstractmethod
    async def render(self, url: str) -> RenderedPage:
        """
        Render ``url``.

        Raises:
            TransientFetchError: Navigation failed or timed out.
        """

    async def render_and_extract(self, url: str) -> PageMetadata:
        page = await self.render(url)
        return extract_page_metadata(page.html, page.url)

    async def render_and_extract_links(self, url: str, max_links: int = 30) -> list[str]:
        page = await self.render(url)
        return extract_article_links(page.html, page.url, max_links=max_links)

    async def close(self) -> None:
        """Release browser resources."""


class PlaywrightRenderService(RenderService):
    """Chromium-backed renderer."""

    def __init__(
        self,
        user_agent: str,
        timeout_seconds: float = 30.0,
        settle_seconds: float = 2.0,
        headless: bool = True,
    ) -> None:
        self._user_agent = user_agent
        self._timeout_ms = int(timeout_seconds * 1000)
        self._settle_ms = int(settle_seconds * 1000)
        self._headless = headless
        self._playwright = None
        self._browser = None
        self._start_lock = asyncio.Lock()

    async def _get_browser(self):
        async with self._start_lock:
            if self._browser is None:
                self._playwright = await async_playwright().start()
                self._browser = await self._playwright.chromium.launch(
                    headless=self._headless,
                    args=[
                        "--disable-gpu",
                        "--disable-dev-shm-usage",
                        "--disable-setuid-sandbox",
                        "--no-sandbox",
                    ],
                )
                logger.info("Chromium started (headless=%s)", self._headless)
            return self._browser

    @staticmethod
    async def _block_heavy_resources(route) -> None:
        if route.request.resource_type in BLOCKED_RESOURCE_TYPES:
            await route.abort()
        else:
            await route.continue_()

    async def render(self, url: str) -> RenderedPage:
        browser = await self._get_browser()
        context = await browser.new_context(
            user_agent=self._user_agent,
            viewport={"width": 1280, "height": 720},
        )
        page = None
        try:
            page = await context.new_page()
            await page.route("**/*", self._block_heavy_resources)
            logger.debug("Rendering %s", url)
            await page.goto(url, wait_until="domcontentloaded", timeout=self._timeout_ms)
            await page.wait_for_timeout(self._settle_ms)
            html = await page.content()
            return RenderedPage(url=page.url or url, html=html)
        except PlaywrightError as e:
            raise TransientFetchError(f"Render failed for {url}: {e}", url=url) from e
        finally:
            if page is not None:
                try:
                    await page.close()
                except PlaywrightError as e:
                    logger.debug("Page close failed for %s: %s", url, e)
            await context.close()

    async def close(self) -> None:
        if self._browser is not None:
            await self._browser.close()
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
