"""
RSS/Atom feed fetching and parsing.

Handles:
- Sanitizing raw XML (HTML named entities, bare ampersands) before parsing
- Excerpt extraction from content:encoded / summary, HTML stripped
- Thumbnail discovery across media RSS, YouTube and enclosure conventions
- Relative URL resolution against the feed's own link
"""

import logging
import re
from datetime import datetime, timezone
from typing import Any

import feedparser

from src.errors import ParseError
from src.ingestion.http_client import HTTPClient, RetryConfig
from src.ingestion.schemas import FeedEntry, ParsedFeed, VideoEntry
from src.ingestion.text import origin_of, resolve_url, strip_html

logger = logging.getLogger(__name__)

# Named HTML entities that show up in feeds but are not defined in XML
_HTML_ENTITIES = {
    "nbsp": 160, "copy": 169, "reg": 174, "trade": 8482, "mdash": 8212,
    "ndash": 8211, "lsquo": 8216, "rsquo": 8217, "ldquo": 8220, "rdquo": 8221,
    "bull": 8226, "hellip": 8230, "eacute": 233, "aacute": 225, "iacute": 237,
    "oacute": 243, "uacute": 250, "atilde": 227, "otilde": 245, "ccedil": 231,
    "Aacute": 193, "Eacute": 201, "Iacute": 205, "Oacute": 211, "Uacute": 218,
    "Atilde": 195, "Otilde": 213, "Ccedil": 199, "agrave": 224, "egrave": 232,
    "ograve": 242, "acirc": 226, "ecirc": 234, "ocirc": 244, "uuml": 252,
    "ouml": 246, "auml": 228, "ntilde": 241,
}

_NAMED_ENTITY_RE = re.compile(r"&(" + "|".join(_HTML_ENTITIES) + r");")
_BARE_AMPERSAND_RE = re.compile(r"&(?!(?:amp|lt|gt|apos|quot|#\d+|#x[0-9a-fA-F]+);)")
_YOUTUBE_LINK_RE = re.compile(r"(?:youtube\.com/watch\?v=|youtu\.be/)([^&\s/?]+)")
_IMG_SRC_RE = re.compile(r"""<img[^>]+src=["']([^"']+)["']""", re.IGNORECASE)

FEED_ACCEPT = "application/rss+xml, application/atom+xml, application/xml, text/xml, */*"


def sanitize_xml(xml: str) -> str:
    """
    Make common feed mistakes parseable.

    Known HTML named entities become numeric references and ampersands that
    do not start an entity are escaped.
    """
    xml = _NAMED_ENTITY_RE.sub(lambda m: f"&#{_HTML_ENTITIES[m.group(1)]};", xml)
    return _BARE_AMPERSAND_RE.sub("&amp;", xml)


def youtube_thumbnail(video_id: str) -> str:
    return f"https://i.ytimg.com/vi/{video_id}/hqdefault.jpg"


def _entry_content_html(entry: dict[str, Any]) -> str:
    """content:encoded (or Atom content) of an entry, empty string if none."""
    for content in entry.get("content") or []:
        value = content.get("value")
        if value:
            return value
    return ""


def extract_excerpt(entry: dict[str, Any]) -> str | None:
    """Plain-text excerpt: content:encoded first, then the summary."""
    raw = _entry_content_html(entry) or entry.get("summary") or ""
    text = strip_html(raw)
    return text or None


def extract_thumbnail(entry: dict[str, Any]) -> str | None:
    """
    Find the best thumbnail for an entry.

    Order: media:thumbnail, media:content images, yt:videoId, a YouTube id
    in the link, an image/* enclosure, the first <img> in the content.
    media:group children are flattened into the first two by feedparser.
    """
    for thumb in entry.get("media_thumbnail") or []:
        if thumb.get("url"):
            return thumb["url"]

    for media in entry.get("media_content") or []:
        url = media.get("url")
        if not url:
            continue
        medium = media.get("medium")
        media_type = media.get("type") or ""
        if medium == "image" or media_type.startswith("image/") or (not medium and not media_type):
            return url

    video_id = entry.get("yt_videoid")
    if video_id:
        return youtube_thumbnail(video_id)

    link = entry.get("link") or entry.get("id") or ""
    match = _YOUTUBE_LINK_RE.search(link)
    if match:
        return youtube_thumbnail(match.group(1))

    for enclosure in entry.get("enclosures") or []:
        if (enclosure.get("type") or "").startswith("image/") and enclosure.get("href"):
            return enclosure["href"]

    content = _entry_content_html(entry) or entry.get("summary") or ""
    match = _IMG_SRC_RE.search(content)
    if match:
        return match.group(1)

    return None


def _parse_timestamp(entry: dict[str, Any]) -> datetime | None:
    """Parse the publication timestamp from an RSS entry."""
    for field in ("published_parsed", "updated_parsed", "created_parsed"):
        parsed = entry.get(field)
        if parsed:
            try:
                return datetime(*parsed[:6], tzinfo=timezone.utc)
            except (TypeError, ValueError):
                continue
    return None


def _entry_url(entry: dict[str, Any]) -> str | None:
    link = entry.get("link")
    if link:
        return link
    guid = entry.get("id") or ""
    if guid.startswith(("http://", "https://", "/")):
        return guid
    return None


def parse_feed(xml: str, feed_url: str | None = None) -> ParsedFeed:
    """
    Parse an RSS/Atom document.

    Args:
        xml: Raw document text.
        feed_url: Where the document came from; used to resolve relative
            links when the feed does not declare its own link.

    Raises:
        ParseError: The document is not a feed.
    """
    parsed = feedparser.parse(sanitize_xml(xml))

    if not parsed.get("version") and not parsed.entries:
        reason = parsed.get("bozo_exception") or "not an RSS/Atom document"
        raise ParseError(f"Could not parse feed {feed_url or ''}: {reason}", url=feed_url)

    feed_info = parsed.get("feed") or {}
    feed_link = feed_info.get("link")
    base = feed_link or (origin_of(feed_url) if feed_url else None)

    entries: list[FeedEntry] = []
    for entry in parsed.entries:
        url = resolve_url(_entry_url(entry), base)
        if not url:
            continue

        thumbnail = resolve_url(extract_thumbnail(entry), base)
        published = _parse_timestamp(entry)
        try:
            feed_entry = FeedEntry(
                url=url,
                title=entry.get("title"),
                excerpt=extract_excerpt(entry),
                thumbnail_url=thumbnail,
                author=entry.get("author") or None,
                **({"published_at": published} if published else {}),
            )
        except ValueError as e:
            logger.debug("Skipping invalid entry %s: %s", url, e)
            continue
        entries.append(feed_entry)

    return ParsedFeed(title=feed_info.get("title") or None, link=feed_link, entries=entries)


def _video_entry(entry: dict[str, Any]) -> VideoEntry | None:
    video_id = entry.get("yt_videoid")
    if not video_id:
        return None
    published = _parse_timestamp(entry)
    return VideoEntry(
        video_id=video_id,
        title=entry.get("title"),
        description=entry.get("media_description") or entry.get("summary") or None,
        thumbnail_url=extract_thumbnail(entry),
        **({"published_at": published} if published else {}),
    )


def parse_video_feed(xml: str) -> tuple[str | None, list[VideoEntry]]:
    """
    Parse a YouTube channel uploads feed.

    Returns:
        (channel title, videos). Entries without ``yt:videoId`` are skipped.
    """
    parsed = feedparser.parse(sanitize_xml(xml))
    if not parsed.get("version") and not parsed.entries:
        reason = parsed.get("bozo_exception") or "not an Atom document"
        raise ParseError(f"Could not parse video feed: {reason}")

    videos = [v for v in (_video_entry(e) for e in parsed.entries) if v is not None]
    feed_info = parsed.get("feed") or {}
    return feed_info.get("title") or None, videos


def parse_push_notification(xml: str) -> dict[str, list[VideoEntry]]:
    """
    Parse a WebSub push body into videos grouped by ``yt:channelId``.

    Deleted-entry notices carry no video id and are dropped.

    Raises:
        ParseError: The body is not an Atom document.
    """
    parsed = feedparser.parse(sanitize_xml(xml))
    if not parsed.get("version") and not parsed.entries:
        reason = parsed.get("bozo_exception") or "not an Atom document"
        raise ParseError(f"Could not parse push notification: {reason}")

    feed_channel = (parsed.get("feed") or {}).get("yt_channelid")
    grouped: dict[str, list[VideoEntry]] = {}
    for entry in parsed.entries:
        video = _video_entry(entry)
        channel_id = entry.get("yt_channelid") or feed_channel
        if video is None or not channel_id:
            continue
        grouped.setdefault(channel_id, []).append(video)
    return grouped


class FeedParser:
    """Fetches and parses feeds over HTTP."""

    def __init__(
        self,
        user_agent: str | None = None,
        timeout: float = 10.0,
        max_retries: int = 1,
    ) -> None:
        self._user_agent = user_agent
        self._timeout = timeout
        self._retry_config = RetryConfig(max_retries=max_retries)

    async def _download(self, url: str) -> str:
        async with HTTPClient(
            self._retry_config, timeout=self._timeout, user_agent=self._user_agent
        ) as client:
            response = await client.get(url, headers={"Accept": FEED_ACCEPT})
        return response.text

    async def fetch(self, feed_url: str) -> ParsedFeed:
        """
        Download and parse a feed.

        Raises:
            HTTPClientError: Network failure, timeout or error status.
            ParseError: The response is not a feed.
        """
        feed = parse_feed(await self._download(feed_url), feed_url)
        logger.debug("Parsed %d entries from %s", len(feed.entries), feed_url)
        return feed

    async def fetch_videos(self, feed_url: str) -> tuple[str | None, list[VideoEntry]]:
        """Download and parse a YouTube channel feed."""
        return parse_video_feed(await self._download(feed_url))
