"""
YouTube Data API v3 client.

Wraps the handful of endpoints the pipeline needs:
- channels.list by id or handle (1 unit)
- search.list for channels and for a channel's recent uploads (100 units)
- videos.list for durations and live status (1 unit per 50 ids)

Every call is charged to a QuotaTracker before it is made; an exhausted
budget raises QuotaExceededError so callers can fall back to feed or page
scraping instead of failing the source.
"""

import logging
import re
from datetime import datetime, timezone
from typing import Any

from src.errors import QuotaExceededError
from src.ingestion.http_client import APIKeyRotator, HTTPClient, HTTPClientError, RetryConfig
from src.ingestion.schemas import VideoEntry
from src.sources.schemas import ChannelDescriptor
from src.youtube.config import YouTubeConfig
from src.youtube.quota import QuotaTracker

logger = logging.getLogger(__name__)

_DURATION_RE = re.compile(
    r"^P(?:(?P<days>\d+)D)?(?:T(?:(?P<hours>\d+)H)?(?:(?P<minutes>\d+)M)?(?:(?P<seconds>\d+)S)?)?$"
)

# videos.list accepts at most 50 ids per call
_VIDEO_BATCH = 50


def parse_iso8601_duration(value: str | None) -> int | None:
    """
    Convert an ISO-8601 duration ("PT1H2M3S") to seconds.

    Returns None for missing or unparseable values. "P0D" (used for
    upcoming and live streams) parses to 0.
    """
    if not value:
        return None
    match = _DURATION_RE.match(value)
    if not match:
        return None
    parts = {k: int(v) for k, v in match.groupdict().items() if v}
    return (
        parts.get("days", 0) * 86400
        + parts.get("hours", 0) * 3600
        + parts.get("minutes", 0) * 60
        + parts.get("seconds", 0)
    )


def _parse_published(value: str | None) -> datetime:
    if not value:
        return datetime.now(timezone.utc)
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return datetime.now(timezone.utc)


def _best_thumbnail(snippet: dict[str, Any]) -> str | None:
    thumbnails = snippet.get("thumbnails") or {}
    for size in ("high", "medium", "default"):
        url = (thumbnails.get(size) or {}).get("url")
        if url:
            return url
    return None


class YouTubeAPIClient:
    """
    Async client for the YouTube Data API.

    Usage:
        client = YouTubeAPIClient(APIKeyRotator.from_env_var(keys), QuotaTracker())
        channel = await client.get_channel_by_handle("veritasium")
        details = await client.get_video_details(["dQw4w9WgXcQ"])
    """

    def __init__(
        self,
        api_keys: APIKeyRotator,
        quota: QuotaTracker,
        config: YouTubeConfig | None = None,
        retry_config: RetryConfig | None = None,
    ) -> None:
        self._keys = api_keys
        self._quota = quota
        self._config = config or YouTubeConfig()
        self._retry_config = retry_config or RetryConfig(max_retries=1)

    @property
    def quota(self) -> QuotaTracker:
        return self._quota

    async def _get(self, method: str, endpoint: str, params: dict[str, Any]) -> dict[str, Any]:
        await self._quota.consume(method)

        url = f"{self._config.api_base_url}/{endpoint}"
        try:
            async with HTTPClient(
                self._retry_config, timeout=self._config.request_timeout_seconds
            ) as client:
                response = await client.get(
                    url,
                    params=params,
                    api_key_rotator=self._keys,
                    api_key_param="key",
                )
        except HTTPClientError as e:
            if e.status_code == 403 and e.response_body and "quotaExceeded" in e.response_body:
                raise QuotaExceededError(f"YouTube API reported quotaExceeded on {method}") from e
            raise
        return response.json()

    # ── Channels ────────────────────────────────────────────────

    def _channel_from_item(self, item: dict[str, Any], channel_id: str | None = None) -> ChannelDescriptor:
        snippet = item.get("snippet") or {}
        custom_url = snippet.get("customUrl")
        return ChannelDescriptor(
            channel_id=channel_id or item["id"],
            title=snippet.get("title") or "",
            handle=custom_url.lstrip("@") if custom_url else None,
            description=snippet.get("description") or None,
            thumbnail_url=_best_thumbnail(snippet),
        )

    async def get_channel_by_id(self, channel_id: str) -> ChannelDescriptor | None:
        data = await self._get("channels.list", "channels", {"part": "snippet", "id": channel_id})
        items = data.get("items") or []
        return self._channel_from_item(items[0]) if items else None

    async def get_channel_by_handle(self, handle: str) -> ChannelDescriptor | None:
        handle = handle.lstrip("@")
        data = await self._get(
            "channels.list", "channels", {"part": "snippet", "forHandle": handle}
        )
        items = data.get("items") or []
        return self._channel_from_item(items[0]) if items else None

    async def search_channel(self, query: str) -> ChannelDescriptor | None:
        """Fuzzy channel search. Costs 100 units."""
        data = await self._get(
            "search.list",
            "search",
            {"part": "snippet", "q": query, "type": "channel", "maxResults": 1},
        )
        items = data.get("items") or []
        if not items:
            return None
        item = items[0]
        channel_id = (item.get("id") or {}).get("channelId") or (item.get("snippet") or {}).get("channelId")
        if not channel_id:
            return None
        return self._channel_from_item(item, channel_id=channel_id)

    # ── Videos ──────────────────────────────────────────────────

    async def get_recent_videos(
        self,
        channel_id: str,
        published_after: datetime | None = None,
        max_results: int | None = None,
    ) -> list[VideoEntry]:
        """Latest uploads of a channel, newest first. Costs 100 units."""
        params: dict[str, Any] = {
            "part": "snippet",
            "channelId": channel_id,
            "order": "date",
            "type": "video",
            "maxResults": max_results or self._config.max_results,
        }
        if published_after is not None:
            params["publishedAfter"] = published_after.astimezone(timezone.utc).strftime(
                "%Y-%m-%dT%H:%M:%SZ"
            )

        data = await self._get("search.list", "search", params)
        entries = []
        for item in data.get("items") or []:
            video_id = (item.get("id") or {}).get("videoId")
            if not video_id:
                continue
            snippet = item.get("snippet") or {}
            entries.append(
                VideoEntry(
                    video_id=video_id,
                    title=snippet.get("title"),
                    description=snippet.get("description") or None,
                    thumbnail_url=_best_thumbnail(snippet),
                    published_at=_parse_published(snippet.get("publishedAt")),
                    is_live=snippet.get("liveBroadcastContent") == "live",
                )
            )
        return entries

    async def get_video_details(self, video_ids: list[str]) -> dict[str, VideoEntry]:
        """
        Fetch duration and live status for videos, keyed by video id.

        Ids the API does not return (private, deleted) are absent from the
        result.
        """
        details: dict[str, VideoEntry] = {}
        for start in range(0, len(video_ids), _VIDEO_BATCH):
            chunk = video_ids[start:start + _VIDEO_BATCH]
            data = await self._get(
                "videos.list",
                "videos",
                {
                    "part": "snippet,contentDetails,liveStreamingDetails",
                    "id": ",".join(chunk),
                },
            )
            for item in data.get("items") or []:
                snippet = item.get("snippet") or {}
                content = item.get("contentDetails") or {}
                live_details = item.get("liveStreamingDetails")
                is_live = snippet.get("liveBroadcastContent") == "live"
                details[item["id"]] = VideoEntry(
                    video_id=item["id"],
                    title=snippet.get("title"),
                    description=snippet.get("description") or None,
                    thumbnail_url=_best_thumbnail(snippet),
                    published_at=_parse_published(snippet.get("publishedAt")),
                    duration_seconds=parse_iso8601_duration(content.get("duration")),
                    is_live=is_live,
                    is_live_content=is_live or live_details is not None,
                )
        return details
