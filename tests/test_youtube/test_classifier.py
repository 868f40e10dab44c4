"""Tests for video classification."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import httpx
import pytest
import respx

from src.errors import QuotaExceededError
from src.ingestion.schemas import VideoEntry
from src.items.schemas import VideoType
from src.youtube.classifier import LiveSignals, VideoClassifier, classify, parse_watch_page


class TestClassify:
    """Priority order: live, vod, short, video."""

    @pytest.mark.parametrize(
        "is_live,is_live_content,duration,expected",
        [
            (True, True, 30, VideoType.LIVE),
            (True, False, None, VideoType.LIVE),
            (False, True, 30, VideoType.VOD),
            (False, True, 7200, VideoType.VOD),
            (False, False, 45, VideoType.SHORT),
            (False, False, 90, VideoType.SHORT),
            (False, False, 91, VideoType.VIDEO),
            (False, False, 0, VideoType.VIDEO),
            (False, False, None, VideoType.VIDEO),
        ],
    )
    def test_decision_table(self, is_live, is_live_content, duration, expected):
        assert classify(is_live, is_live_content, duration) == expected

    def test_custom_shorts_threshold(self):
        assert classify(False, False, 120, shorts_max_seconds=180) == VideoType.SHORT


class TestParseWatchPage:
    def test_live_now(self):
        html = '{"videoDetails":{"isLive":true,"isLiveContent":true,"lengthSeconds":"0"}}'
        signals = parse_watch_page(html)

        assert signals.is_live
        assert signals.is_live_content
        assert signals.duration_seconds == 0

    def test_regular_video(self):
        signals = parse_watch_page('{"videoDetails":{"isLiveContent":false,"lengthSeconds":"634"}}')

        assert signals == LiveSignals(is_live=False, is_live_content=False, duration_seconds=634)

    def test_approx_duration_fallback(self):
        signals = parse_watch_page('{"approxDurationMs":"45500"}')
        assert signals.duration_seconds == 45

    def test_nothing_embedded(self):
        signals = parse_watch_page("<html></html>")
        assert signals.duration_seconds is None
        assert not signals.is_live


class TestVideoClassifier:
    @pytest.mark.asyncio
    async def test_enrich_from_api(self):
        api = AsyncMock()
        api.get_video_details.return_value = {
            "abc": VideoEntry(video_id="abc", duration_seconds=30),
        }
        classifier = VideoClassifier(api_client=api)
        entries = [VideoEntry(video_id="abc", title="A short")]

        enriched, classified = await classifier.enrich(entries)

        assert classified == {"abc"}
        assert enriched[0].duration_seconds == 30
        assert enriched[0].title == "A short"

    @pytest.mark.asyncio
    @respx.mock
    async def test_enrich_falls_back_to_watch_page_on_quota(self):
        api = AsyncMock()
        api.get_video_details.side_effect = QuotaExceededError("spent")
        respx.get("https://www.youtube.com/watch", params={"v": "abc"}).mock(
            return_value=httpx.Response(200, text='{"isLiveContent":true,"lengthSeconds":"3600"}')
        )
        classifier = VideoClassifier(api_client=api)

        enriched, classified = await classifier.enrich([VideoEntry(video_id="abc")])

        assert classified == {"abc"}
        assert enriched[0].is_live_content
        assert classifier.classify(
            LiveSignals(enriched[0].is_live, enriched[0].is_live_content, enriched[0].duration_seconds)
        ) == VideoType.VOD

    @pytest.mark.asyncio
    @respx.mock
    async def test_unreachable_watch_page_leaves_entry_unclassified(self):
        respx.get("https://www.youtube.com/watch", params={"v": "gone"}).mock(
            return_value=httpx.Response(404)
        )
        classifier = VideoClassifier()

        enriched, classified = await classifier.enrich([VideoEntry(video_id="gone")])

        assert classified == set()
        assert enriched[0].duration_seconds is None


class TestReclassify:
    @pytest.mark.asyncio
    async def test_finished_stream_becomes_vod(self, video_repo):
        video = video_repo.add(
            7,
            "live1",
            video_type=VideoType.LIVE,
            is_live=True,
            is_live_content=True,
            classified_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
        )
        api = AsyncMock()
        api.get_video_details.return_value = {
            "live1": VideoEntry(video_id="live1", duration_seconds=5400, is_live=False, is_live_content=False),
        }

        result = await VideoClassifier(api_client=api).reclassify(video_repo)

        assert result.updated == 1
        stored = video_repo.videos[video.id]
        assert stored.video_type == VideoType.VOD
        assert stored.is_live is False
        assert stored.is_live_content is True
        assert stored.duration_seconds == 5400

    @pytest.mark.asyncio
    async def test_same_answer_only_touches(self, video_repo):
        video = video_repo.add(7, "still", video_type=VideoType.VIDEO, classified_at=None)
        api = AsyncMock()
        api.get_video_details.return_value = {"still": VideoEntry(video_id="still", duration_seconds=600)}

        result = await VideoClassifier(api_client=api).reclassify(video_repo)

        assert (result.checked, result.unchanged, result.updated) == (1, 1, 0)
        assert video_repo.videos[video.id].classified_at is not None

    @pytest.mark.asyncio
    async def test_missing_signals_counted_as_errors(self, video_repo):
        video_repo.add(7, "private1")
        api = AsyncMock()
        api.get_video_details.return_value = {}
        classifier = VideoClassifier(api_client=api)
        classifier._fetch_from_page = AsyncMock(return_value=None)

        result = await classifier.reclassify(video_repo)

        assert result.errors == 1
        assert result.updated == 0

    @pytest.mark.asyncio
    async def test_nothing_to_do(self, video_repo):
        api = AsyncMock()

        result = await VideoClassifier(api_client=api).reclassify(video_repo)

        assert result.checked == 0
        api.get_video_details.assert_not_called()
