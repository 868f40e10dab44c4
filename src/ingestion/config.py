"""Configuration for feed fetching, discovery and HTML extraction."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ScraperConfig(BaseSettings):
    """Timeouts and caps for the site fetch strategies."""

    model_config = SettingsConfigDict(
        env_prefix="SCRAPER_",
        case_sensitive=False,
        extra="ignore",
    )

    feed_timeout_seconds: float = Field(default=10.0, gt=0, description="RSS/Atom fetch timeout")
    feed_max_retries: int = Field(default=1, ge=0, le=5)

    robots_timeout_seconds: float = Field(default=5.0, gt=0)
    robots_cache_ttl_seconds: int = Field(
        default=3600,
        ge=0,
        description="How long a fetched robots.txt is reused per origin",
    )

    render_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Navigation timeout for headless page renders",
    )
    render_settle_seconds: float = Field(
        default=2.0,
        ge=0,
        description="Wait after load for client-side content to appear",
    )
    render_headless: bool = True

    max_candidate_links: int = Field(
        default=30,
        ge=1,
        description="Article links kept after filtering a page",
    )
    max_articles_per_page: int = Field(
        default=20,
        ge=1,
        description="Candidates actually rendered and extracted",
    )
    article_batch_size: int = Field(default=5, ge=1)
    article_batch_delay_seconds: float = Field(default=0.5, ge=0)
