"""
Channel resolution: user input to a stored ChannelSource.

Accepted inputs:
- channel URLs (``youtube.com/channel/UC...``, ``/@handle``, ``/c/name``,
  ``/user/name``, ``youtu.be/...``)
- ``@handle``
- bare channel ids (``UC`` + 22 characters)
- anything else is a free-text search

A URL, handle or channel id is only ever resolved by that identifier; when
it cannot be resolved the result is None, never a search hit for some other
channel.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum

from bs4 import BeautifulSoup

from src.errors import QuotaExceededError
from src.ingestion.http_client import HTTPClient, HTTPClientError, RetryConfig
from src.sources.repository import ChannelSourceRepository
from src.sources.schemas import ChannelDescriptor, ChannelSource
from src.youtube.config import YouTubeConfig

logger = logging.getLogger(__name__)

# Channel pages are served differently to non-browser agents
BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

_URL_RE = re.compile(r"(?:youtube\.com/(?:channel/|c/|@|user/)?|youtu\.be/)([^/?\s]+)")
_CHANNEL_ID_RE = re.compile(r"^UC[A-Za-z0-9_-]{22}$")
_CHANNEL_PATH_RE = re.compile(r"youtube\.com/channel/(UC[A-Za-z0-9_-]{22})")
_FEED_CHANNEL_RE = re.compile(r"channel_id=(UC[A-Za-z0-9_-]{22})")
_METADATA_EXTERNAL_ID_RE = re.compile(
    r'"channelMetadataRenderer":\{[^}]*?"externalId":"(UC[A-Za-z0-9_-]{22})"'
)
_MAIN_APP_CONTEXT_RE = re.compile(
    r'"mainAppWebResponseContext"[^}]*?"channelId":"(UC[A-Za-z0-9_-]{22})"'
)


class IdentifierKind(str, Enum):
    CHANNEL_ID = "channel_id"
    HANDLE = "handle"
    QUERY = "query"


@dataclass
class ParsedIdentifier:
    kind: IdentifierKind
    value: str

    @property
    def is_explicit(self) -> bool:
        return self.kind != IdentifierKind.QUERY


def parse_identifier(raw: str) -> ParsedIdentifier:
    """
    Classify user input.

    >>> parse_identifier("https://www.youtube.com/@veritasium")
    ParsedIdentifier(kind=<IdentifierKind.HANDLE: 'handle'>, value='veritasium')
    """
    raw = raw.strip()
    match = _URL_RE.search(raw)
    if match:
        segment = match.group(1)
        if segment.startswith("UC"):
            return ParsedIdentifier(IdentifierKind.CHANNEL_ID, segment)
        return ParsedIdentifier(IdentifierKind.HANDLE, segment.lstrip("@"))
    if raw.startswith("@"):
        return ParsedIdentifier(IdentifierKind.HANDLE, raw[1:])
    if _CHANNEL_ID_RE.match(raw):
        return ParsedIdentifier(IdentifierKind.CHANNEL_ID, raw)
    return ParsedIdentifier(IdentifierKind.QUERY, raw)


def _attr_channel_id(tag, attr: str, pattern: re.Pattern) -> str | None:
    if tag is None:
        return None
    match = pattern.search(tag.get(attr) or "")
    return match.group(1) if match else None


def extract_channel_id(html: str, handle: str | None = None) -> str | None:
    """
    Find the page owner's channel id in a channel page.

    Channel pages mention many channels (featured, related), so sources are
    consulted from the most to the least owner-specific: canonical link,
    RSS alternate link, og:url, channelMetadataRenderer.externalId, the
    browse endpoint for the page's own handle, mainAppWebResponseContext.
    """
    soup = BeautifulSoup(html, "html.parser")
    candidates: list[tuple[str, str | None]] = [
        ("canonical", _attr_channel_id(soup.find("link", rel="canonical"), "href", _CHANNEL_PATH_RE)),
        (
            "rss",
            _attr_channel_id(
                soup.find("link", attrs={"rel": "alternate", "type": "application/rss+xml"}),
                "href",
                _FEED_CHANNEL_RE,
            ),
        ),
        ("og:url", _attr_channel_id(soup.find("meta", property="og:url"), "content", _CHANNEL_PATH_RE)),
    ]

    match = _METADATA_EXTERNAL_ID_RE.search(html)
    candidates.append(("metadata", match.group(1) if match else None))

    if handle:
        browse_re = re.compile(
            r'"browseEndpoint":\{"browseId":"(UC[A-Za-z0-9_-]{22})",[^}]*"canonicalBaseUrl":"/@'
            + re.escape(handle)
            + '"',
            re.IGNORECASE,
        )
        match = browse_re.search(html)
        candidates.append(("browseEndpoint", match.group(1) if match else None))

    match = _MAIN_APP_CONTEXT_RE.search(html)
    candidates.append(("mainApp", match.group(1) if match else None))

    found = [(source, cid) for source, cid in candidates if cid]
    if not found:
        return None

    source, channel_id = found[0]
    agreeing = sum(1 for _, cid in found if cid == channel_id)
    logger.debug(
        "Selected channel id %s from %s (%d/%d sources agree)",
        channel_id, source, agreeing, len(found),
    )
    return channel_id


def _meta_content(soup: BeautifulSoup, prop: str) -> str | None:
    tag = soup.find("meta", property=prop)
    content = tag.get("content") if tag else None
    return content.strip() if content and content.strip() else None


def descriptor_from_page(html: str, channel_id: str, handle: str | None = None) -> ChannelDescriptor:
    """Build a descriptor from a channel page's Open Graph tags."""
    soup = BeautifulSoup(html, "html.parser")
    title = _meta_content(soup, "og:title")
    if not title and soup.title and soup.title.string:
        title = soup.title.string.strip()
    if title and title.endswith(" - YouTube"):
        title = title[: -len(" - YouTube")]
    return ChannelDescriptor(
        channel_id=channel_id,
        title=title or (f"@{handle}" if handle else channel_id),
        handle=handle,
        description=_meta_content(soup, "og:description"),
        thumbnail_url=_meta_content(soup, "og:image"),
    )


class ChannelResolver:
    """Resolves identifiers to channels and stores them."""

    def __init__(
        self,
        channels: ChannelSourceRepository,
        api_client=None,
        config: YouTubeConfig | None = None,
        websub=None,
    ) -> None:
        """
        Args:
            channels: Channel source repository.
            api_client: Optional YouTubeAPIClient.
            config: YouTube settings.
            websub: Optional WebSubService; new channels are subscribed
                right away when given.
        """
        self._channels = channels
        self._api = api_client
        self._config = config or YouTubeConfig()
        self._websub = websub

    async def resolve(self, identifier: str) -> ChannelSource | None:
        """Resolve ``identifier`` and upsert the channel. None means not found."""
        parsed = parse_identifier(identifier)
        if not parsed.value:
            return None

        if parsed.kind == IdentifierKind.CHANNEL_ID:
            descriptor = await self._resolve_channel_id(parsed.value)
        elif parsed.kind == IdentifierKind.HANDLE:
            descriptor = await self._resolve_handle(parsed.value)
        else:
            descriptor = await self._search(parsed.value)

        if descriptor is None:
            logger.info("Could not resolve %s identifier %r", parsed.kind.value, parsed.value)
            return None

        channel, created = await self._channels.get_or_create(descriptor)
        if created:
            logger.info("Channel source created: %s (%s)", channel.title, channel.channel_id)
            if self._websub is not None:
                try:
                    await self._websub.subscribe(channel)
                except Exception as e:
                    logger.warning("WebSub subscription for %s failed: %s", channel.channel_id, e)
        return channel

    async def _fetch_page(self, url: str) -> str | None:
        try:
            async with HTTPClient(
                RetryConfig(max_retries=1),
                timeout=self._config.page_timeout_seconds,
                user_agent=BROWSER_USER_AGENT,
            ) as client:
                response = await client.get(url, headers={"Accept-Language": "en-US,en;q=0.9"})
        except HTTPClientError as e:
            logger.warning("Failed to fetch %s: %s", url, e)
            return None
        return response.text

    async def _resolve_handle(self, handle: str) -> ChannelDescriptor | None:
        html = await self._fetch_page(f"https://www.youtube.com/@{handle}")
        if html:
            channel_id = extract_channel_id(html, handle)
            if channel_id:
                return descriptor_from_page(html, channel_id, handle)
            logger.warning("No channel id found in page for @%s", handle)

        if self._api is None:
            return None
        try:
            return await self._api.get_channel_by_handle(handle)
        except (QuotaExceededError, HTTPClientError) as e:
            logger.warning("channels.list forHandle=%s failed: %s", handle, e)
            return None

    async def _resolve_channel_id(self, channel_id: str) -> ChannelDescriptor | None:
        if self._api is not None:
            try:
                return await self._api.get_channel_by_id(channel_id)
            except QuotaExceededError as e:
                logger.info("Scraping channel page for %s: %s", channel_id, e)
            except HTTPClientError as e:
                logger.warning("channels.list id=%s failed: %s", channel_id, e)
                return None

        html = await self._fetch_page(f"https://www.youtube.com/channel/{channel_id}")
        if not html:
            return None
        owner = extract_channel_id(html)
        if owner is not None and owner != channel_id:
            logger.warning("Channel page for %s belongs to %s", channel_id, owner)
            return None
        return descriptor_from_page(html, channel_id)

    async def _search(self, query: str) -> ChannelDescriptor | None:
        if self._api is None:
            logger.info("Channel search needs a YouTube API key")
            return None
        try:
            return await self._api.search_channel(query)
        except (QuotaExceededError, HTTPClientError) as e:
            logger.warning("Channel search for %r failed: %s", query, e)
            return None
