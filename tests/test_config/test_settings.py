"""Tests for environment-driven configuration."""

import pytest

from src.config.settings import Settings
from src.ingestion.config import ScraperConfig
from src.scheduler.config import SchedulerConfig
from src.youtube.config import YouTubeConfig


class TestSettings:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("YOUTUBE_API_KEYS", raising=False)
        monkeypatch.delenv("WEBSUB_CALLBACK_URL", raising=False)

        settings = Settings(_env_file=None)

        assert settings.youtube_daily_quota == 10_000
        assert settings.youtube_api_configured is False
        assert settings.websub_configured is False
        assert settings.is_production is False

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("ENVIRONMENT", "production")
        monkeypatch.setenv("YOUTUBE_API_KEYS", "k1,k2")
        monkeypatch.setenv("WEBSUB_CALLBACK_URL", "https://feedwatch.example/websub/callback")

        settings = Settings(_env_file=None)

        assert settings.is_production
        assert settings.youtube_api_configured
        assert settings.websub_configured

    def test_blank_api_keys_not_configured(self):
        assert Settings(_env_file=None, youtube_api_keys="  ").youtube_api_configured is False

    def test_retry_bounds_validated(self):
        with pytest.raises(ValueError):
            Settings(_env_file=None, max_http_retries=50)


class TestComponentConfigs:
    def test_prefixed_env(self, monkeypatch):
        monkeypatch.setenv("SCHEDULER_CONCURRENCY", "3")
        monkeypatch.setenv("YOUTUBE_SHORTS_MAX_SECONDS", "60")

        assert SchedulerConfig().concurrency == 3
        assert YouTubeConfig().shorts_max_seconds == 60

    def test_scraper_defaults(self):
        config = ScraperConfig()

        assert config.feed_timeout_seconds > 0
        assert config.render_headless is True
