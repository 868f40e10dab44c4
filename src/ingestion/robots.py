"""robots.txt crawl policy checks.

robots.txt is fetched once per origin and cached. A missing, non-200 or
unreachable robots.txt allows crawling: only an explicit disallow blocks.
"""

import logging
import time
from urllib.robotparser import RobotFileParser

from src.ingestion.http_client import HTTPClient, HTTPClientError, RetryConfig
from src.ingestion.text import origin_of

logger = logging.getLogger(__name__)


class RobotsPolicy:
    """Cached robots.txt evaluation for one user agent."""

    def __init__(
        self,
        user_agent: str,
        timeout: float = 5.0,
        cache_ttl_seconds: int = 3600,
    ) -> None:
        self._user_agent = user_agent
        self._timeout = timeout
        self._cache_ttl = cache_ttl_seconds
        # origin -> (parser or None when unrestricted, fetched at monotonic time)
        self._cache: dict[str, tuple[RobotFileParser | None, float]] = {}

    async def is_allowed(self, url: str) -> bool:
        """Whether the configured user agent may fetch ``url``."""
        parser = await self._get_parser(origin_of(url))
        if parser is None:
            return True
        return parser.can_fetch(self._user_agent, url)

    async def _get_parser(self, origin: str) -> RobotFileParser | None:
        now = time.monotonic()
        cached = self._cache.get(origin)
        if cached is not None and now - cached[1] < self._cache_ttl:
            return cached[0]

        parser = await self._fetch(origin)
        self._cache[origin] = (parser, now)
        return parser

    async def _fetch(self, origin: str) -> RobotFileParser | None:
        robots_url = f"{origin}/robots.txt"
        try:
            async with HTTPClient(
                RetryConfig(max_retries=0),
                timeout=self._timeout,
                user_agent=self._user_agent,
            ) as client:
                response = await client.get(robots_url)
        except HTTPClientError as e:
            logger.debug("No usable robots.txt at %s: %s", robots_url, e)
            return None

        if response.status_code != 200:
            return None

        parser = RobotFileParser(robots_url)
        parser.parse(response.text.splitlines())
        return parser

    def clear_cache(self) -> None:
        self._cache.clear()
