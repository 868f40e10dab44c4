"""
Video classification: live, vod, short or regular video.

``classify`` is a pure decision table. ``VideoClassifier`` gathers the
signals it needs, from the Data API when a key and quota are available and
from the public watch page otherwise, and re-evaluates videos whose state
can still change (currently live, never classified).

Live detection is best effort: right after a stream ends YouTube may report
``isLive`` for a while, and page scraping only sees what the HTML embeds.
"""

import asyncio
import logging
import re
from dataclasses import dataclass, replace

from src.errors import QuotaExceededError
from src.ingestion.http_client import HTTPClient, RetryConfig
from src.ingestion.schemas import VideoEntry
from src.items.schemas import VideoItem, VideoType
from src.youtube.config import YouTubeConfig

logger = logging.getLogger(__name__)

DEFAULT_SHORTS_MAX_SECONDS = 90

_LENGTH_SECONDS_RE = re.compile(r'"lengthSeconds":"(\d+)"')
_APPROX_DURATION_MS_RE = re.compile(r'"approxDurationMs":"(\d+)"')


def classify(
    is_live: bool,
    is_live_content: bool,
    duration_seconds: int | None,
    shorts_max_seconds: int = DEFAULT_SHORTS_MAX_SECONDS,
) -> VideoType:
    """
    Classify a video. Evaluated in strict priority order:

    1. currently live -> LIVE
    2. was a live stream -> VOD
    3. 0 < duration <= shorts_max_seconds -> SHORT
    4. anything else -> VIDEO

    >>> classify(True, True, 30)
    <VideoType.LIVE: 'live'>
    >>> classify(False, False, 45)
    <VideoType.SHORT: 'short'>
    """
    if is_live:
        return VideoType.LIVE
    if is_live_content:
        return VideoType.VOD
    if duration_seconds is not None and 0 < duration_seconds <= shorts_max_seconds:
        return VideoType.SHORT
    return VideoType.VIDEO


@dataclass
class LiveSignals:
    """The inputs of ``classify`` for one video."""

    is_live: bool
    is_live_content: bool
    duration_seconds: int | None


def parse_watch_page(html: str) -> LiveSignals:
    """Extract live flags and duration from a watch page's embedded player JSON."""
    is_live = '"isLive":true' in html or '"isLiveNow":true' in html
    is_live_content = '"isLiveContent":true' in html

    duration: int | None = None
    match = _LENGTH_SECONDS_RE.search(html)
    if match:
        duration = int(match.group(1))
    else:
        match = _APPROX_DURATION_MS_RE.search(html)
        if match:
            duration = int(match.group(1)) // 1000

    return LiveSignals(is_live=is_live, is_live_content=is_live_content, duration_seconds=duration)


@dataclass
class ReclassifyResult:
    """Counts from one re-classification pass."""

    checked: int = 0
    updated: int = 0
    unchanged: int = 0
    errors: int = 0

    def to_dict(self) -> dict:
        return {
            "checked": self.checked,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "errors": self.errors,
        }


class VideoClassifier:
    """Fetches live/duration signals and classifies videos."""

    def __init__(
        self,
        api_client=None,
        config: YouTubeConfig | None = None,
        user_agent: str | None = None,
    ) -> None:
        """
        Args:
            api_client: Optional YouTubeAPIClient. Without it every lookup
                scrapes the watch page.
            config: YouTube settings.
            user_agent: User-Agent for watch page requests.
        """
        self._api = api_client
        self._config = config or YouTubeConfig()
        self._user_agent = user_agent
        self._semaphore = asyncio.Semaphore(self._config.classify_concurrency)

    def classify(self, signals: LiveSignals) -> VideoType:
        return classify(
            signals.is_live,
            signals.is_live_content,
            signals.duration_seconds,
            self._config.shorts_max_seconds,
        )

    async def _fetch_from_page(self, video_id: str) -> LiveSignals | None:
        url = f"https://www.youtube.com/watch?v={video_id}"
        async with self._semaphore:
            try:
                async with HTTPClient(
                    RetryConfig(max_retries=0),
                    timeout=self._config.page_timeout_seconds,
                    user_agent=self._user_agent,
                ) as client:
                    response = await client.get(url, headers={"Accept-Language": "en-US,en;q=0.9"})
            except Exception as e:
                logger.warning("Watch page lookup failed for %s: %s", video_id, e)
                return None
        return parse_watch_page(response.text)

    async def fetch_signals(self, video_ids: list[str]) -> dict[str, LiveSignals]:
        """
        Look up signals for many videos.

        The Data API is tried first (one unit per 50 ids); ids it cannot
        answer, or all ids when quota is exhausted, fall back to concurrent
        watch page scrapes bounded by ``classify_concurrency``. Videos with no
        signals at all are absent from the result.
        """
        signals: dict[str, LiveSignals] = {}
        if not video_ids:
            return signals

        if self._api is not None:
            try:
                details = await self._api.get_video_details(video_ids)
                for video_id, entry in details.items():
                    signals[video_id] = LiveSignals(
                        entry.is_live, entry.is_live_content, entry.duration_seconds
                    )
            except QuotaExceededError as e:
                logger.info("Classifying from watch pages, API quota exhausted: %s", e)
            except Exception as e:
                logger.warning("videos.list failed, classifying from watch pages: %s", e)

        missing = [v for v in video_ids if v not in signals]
        if missing:
            results = await asyncio.gather(*(self._fetch_from_page(v) for v in missing))
            for video_id, result in zip(missing, results):
                if result is not None:
                    signals[video_id] = result
        return signals

    async def enrich(self, entries: list[VideoEntry]) -> tuple[list[VideoEntry], set[str]]:
        """
        Fill live/duration fields of ``entries``.

        Returns:
            (entries, classified_ids): updated copies in the original order
            and the ids whose signals were found.
        """
        signals = await self.fetch_signals([e.video_id for e in entries])
        enriched = []
        for entry in entries:
            found = signals.get(entry.video_id)
            if found is None:
                enriched.append(entry)
                continue
            enriched.append(
                entry.model_copy(
                    update={
                        "is_live": found.is_live,
                        "is_live_content": entry.is_live_content or found.is_live_content,
                        "duration_seconds": found.duration_seconds,
                    }
                )
            )
        return enriched, set(signals)

    async def reclassify(self, videos_repo, limit: int | None = None) -> ReclassifyResult:
        """
        Re-evaluate videos that are live, unclassified or missing a type.

        A video whose type and live flag come out identical only has its
        ``classified_at`` touched; anything else is an update. The
        ``is_live_content`` flag is never cleared.
        """
        result = ReclassifyResult()
        candidates: list[VideoItem] = await videos_repo.list_needing_classification(
            limit or self._config.reclassify_batch_size
        )
        if not candidates:
            return result

        signals = await self.fetch_signals([v.video_id for v in candidates])

        for video in candidates:
            result.checked += 1
            found = signals.get(video.video_id)
            if found is None:
                result.errors += 1
                continue

            merged = replace(found, is_live_content=found.is_live_content or video.is_live_content)
            new_type = self.classify(merged)
            try:
                if (
                    new_type == video.video_type
                    and merged.is_live == video.is_live
                    and merged.is_live_content == video.is_live_content
                ):
                    await videos_repo.touch_classified(video.id)
                    result.unchanged += 1
                else:
                    await videos_repo.update_classification(
                        video.id,
                        new_type,
                        merged.is_live,
                        merged.is_live_content,
                        merged.duration_seconds,
                    )
                    result.updated += 1
                    logger.info(
                        "Video %s reclassified %s -> %s",
                        video.video_id,
                        video.video_type.value if video.video_type else None,
                        new_type.value,
                    )
            except Exception as e:
                result.errors += 1
                logger.error("Failed to store classification for %s: %s", video.video_id, e)

        return result
