"""Shared fixtures for sources tests."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.sources.service import SiteSourceService


@pytest.fixture
def mock_database() -> AsyncMock:
    """Mock Database instance matching the Database API."""
    db = AsyncMock()
    db.fetch = AsyncMock(return_value=[])
    db.fetchval = AsyncMock(return_value=None)
    db.fetchrow = AsyncMock(return_value=None)
    db.execute = AsyncMock(return_value="UPDATE 1")
    return db


@pytest.fixture
def site_row() -> dict:
    """A dict mimicking an asyncpg Record for a site source."""
    return {
        "id": 3,
        "base_url": "https://example.com",
        "discovered_feed_url": "https://example.com/feed",
        "title": "Example News",
        "status": "active",
        "last_attempt_at": datetime(2026, 1, 1, tzinfo=timezone.utc),
        "last_error_message": None,
        "created_at": datetime(2025, 12, 1, tzinfo=timezone.utc),
        "updated_at": datetime(2026, 1, 1, tzinfo=timezone.utc),
    }


@pytest.fixture
def channel_row() -> dict:
    """A dict mimicking an asyncpg Record for a channel source."""
    return {
        "id": 7,
        "channel_id": "UC1234567890abcdefghijkl",
        "title": "Example Channel",
        "handle": "example",
        "description": None,
        "thumbnail_url": None,
        "last_checked_at": None,
        "push_lease_expires_at": None,
        "created_at": datetime(2025, 12, 1, tzinfo=timezone.utc),
    }


@pytest.fixture
def discovery_queue() -> MagicMock:
    return MagicMock()


@pytest.fixture
def service(site_repo, discovery_queue) -> SiteSourceService:
    return SiteSourceService(site_repo, discovery_queue)
