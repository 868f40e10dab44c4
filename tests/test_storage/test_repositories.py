"""Tests for item, job log and subscriber repositories.

These test SQL parameter handling and error translation using a mocked
asyncpg database.
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import asyncpg
import pytest

from src.errors import RaceConditionViolation
from src.ingestion.schemas import FeedEntry, SourceKind
from src.items.repository import ItemRepository, VideoRepository
from src.jobs.repository import JobRepository
from src.jobs.schemas import JobStatus
from src.notifications.subscribers import SubscriberRepository


@pytest.fixture
def mock_db():
    """Mock Database with asyncpg-like interface."""
    db = AsyncMock()
    db.fetch = AsyncMock(return_value=[])
    db.fetchval = AsyncMock(return_value=0)
    db.fetchrow = AsyncMock(return_value=None)
    db.execute = AsyncMock(return_value="UPDATE 0")
    return db


def _job_row(**overrides) -> dict:
    row = {
        "id": 11,
        "job_type": "feed-scan",
        "target_id": None,
        "status": "running",
        "started_at": datetime(2026, 3, 1, tzinfo=timezone.utc),
        "completed_at": None,
        "result_summary": None,
        "last_error": None,
        "created_at": datetime(2026, 3, 1, tzinfo=timezone.utc),
    }
    row.update(overrides)
    return row


class TestItemRepository:
    @pytest.mark.asyncio
    async def test_unique_violation_becomes_race(self, mock_db):
        mock_db.fetchrow.side_effect = asyncpg.UniqueViolationError("duplicate key")
        repo = ItemRepository(mock_db)
        entry = FeedEntry(url="https://example.com/news/a", title="A")

        with pytest.raises(RaceConditionViolation):
            await repo.insert(1, "https://example.com/news/a", "fp", entry)

    @pytest.mark.asyncio
    async def test_find_existing_params(self, mock_db):
        repo = ItemRepository(mock_db)

        assert await repo.find_existing(1, "https://example.com/news/a", "fp") is None

        assert mock_db.fetchrow.call_args[0][1:] == (1, "https://example.com/news/a", "fp")

    @pytest.mark.asyncio
    async def test_recent_urls(self, mock_db):
        mock_db.fetch.return_value = [{"url": "https://example.com/a"}, {"url": "https://example.com/b"}]
        repo = ItemRepository(mock_db)

        assert await repo.recent_urls(1) == {"https://example.com/a", "https://example.com/b"}


class TestVideoRepository:
    @pytest.mark.asyncio
    async def test_existing_ids_empty_input(self, mock_db):
        repo = VideoRepository(mock_db)

        assert await repo.existing_video_ids([]) == set()


class TestJobRepository:
    @pytest.mark.asyncio
    async def test_start_inserts_running(self, mock_db):
        mock_db.fetchrow.return_value = _job_row()
        repo = JobRepository(mock_db)

        record = await repo.start("feed-scan")

        assert record.status == JobStatus.RUNNING
        assert record.result_summary == {}
        assert mock_db.fetchrow.call_args[0][1:] == ("feed-scan", None)

    @pytest.mark.asyncio
    async def test_finished_record_not_updated(self, mock_db):
        repo = JobRepository(mock_db)

        assert await repo.complete(11, {"due": 3}) is None
        assert "status = 'running'" in mock_db.fetchrow.call_args[0][0]

    @pytest.mark.asyncio
    async def test_fail_stores_error(self, mock_db):
        mock_db.fetchrow.return_value = _job_row(status="failed", last_error="boom")
        repo = JobRepository(mock_db)

        record = await repo.fail(11, "boom")

        assert record.status == JobStatus.FAILED
        assert mock_db.fetchrow.call_args[0][1:] == (11, "failed", {}, "boom")

    @pytest.mark.asyncio
    async def test_cleanup_returns_deleted_count(self, mock_db):
        mock_db.execute.return_value = "DELETE 12"
        repo = JobRepository(mock_db)

        assert await repo.cleanup(datetime(2026, 1, 1, tzinfo=timezone.utc)) == 12


class TestSubscriberRepository:
    @pytest.mark.asyncio
    async def test_tokens_for_source(self, mock_db):
        mock_db.fetch.return_value = [{"token": "ExponentPushToken[a]"}]
        repo = SubscriberRepository(mock_db)

        tokens = await repo.tokens_for_source(SourceKind.CHANNEL, 7)

        assert tokens == ["ExponentPushToken[a]"]
        sql, kind, source_id = mock_db.fetch.call_args[0]
        assert "COALESCE(p.notifications_enabled, TRUE)" in sql
        assert (kind, source_id) == (SourceKind.CHANNEL.value, 7)
