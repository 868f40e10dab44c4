"""Configuration for YouTube channel resolution, polling and classification."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class YouTubeConfig(BaseSettings):
    """Settings for the Data API client, classifier and channel polling."""

    model_config = SettingsConfigDict(
        env_prefix="YOUTUBE_",
        case_sensitive=False,
        extra="ignore",
    )

    api_base_url: str = Field(
        default="https://www.googleapis.com/youtube/v3",
        description="YouTube Data API v3 base URL",
    )
    request_timeout_seconds: float = Field(default=30.0, gt=0)
    page_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Timeout for public channel/watch page scrapes",
    )
    shorts_max_seconds: int = Field(
        default=90,
        ge=1,
        description="Videos at or below this duration are classified as shorts",
    )
    lookback_days: int = Field(
        default=7,
        ge=1,
        description="publishedAfter window for channels never checked before",
    )
    max_results: int = Field(default=20, ge=1, le=50)
    classify_concurrency: int = Field(
        default=5,
        ge=1,
        description="Concurrent watch-page lookups while classifying",
    )
    reclassify_batch_size: int = Field(default=50, ge=1, le=500)
    quota_skip_ratio: float = Field(
        default=0.9,
        gt=0.0,
        le=1.0,
        description="Skip API-backed polling once this share of the daily quota is used",
    )
