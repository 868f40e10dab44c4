"""Shared fixtures for API tests."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from src.api.app import create_app
from src.api.dependencies import get_pipeline


@pytest.fixture
def pipeline() -> MagicMock:
    """Pipeline stand-in with async collaborators."""
    pipeline = MagicMock()
    pipeline.health_check = AsyncMock(
        return_value={"database": True, "redis": True, "youtube_api": False, "websub": True}
    )
    pipeline.websub = MagicMock()
    pipeline.websub.verify_challenge = AsyncMock(return_value=None)
    pipeline.websub.handle_notification = AsyncMock(return_value=[])
    pipeline.scraper = MagicMock()
    pipeline.scraper.scrape_by_id = AsyncMock()
    pipeline.poller = MagicMock()
    pipeline.poller.check_by_id = AsyncMock()
    return pipeline


@pytest.fixture
def client(pipeline: MagicMock) -> TestClient:
    """Test client with the pipeline dependency overridden."""
    app = create_app()
    app.dependency_overrides[get_pipeline] = lambda: pipeline
    return TestClient(app)
