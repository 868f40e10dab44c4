"""
Pydantic models for API requests and responses.
"""

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Response model for health check."""

    status: str = Field(
        ...,
        description="Overall service status: healthy, degraded, or unhealthy",
    )
    components: dict[str, bool] = Field(
        default_factory=dict,
        description="Reachability of the store, Redis and optional integrations",
    )
    version: str = Field(default="0.1.0", description="Service version")


class ReconcileCounts(BaseModel):
    """Counts from one reconciliation batch."""

    created: int = 0
    updated: int = 0
    skipped: int = Field(default=0, description="Items already stored unchanged")
    errors: int = 0


class ScrapeResponse(ReconcileCounts):
    """Result of a forced site rescrape."""

    source_id: int
    status: str = Field(..., description="active, error, blocked or skipped")
    strategy: str | None = Field(default=None, description="rss or html")
    error: str | None = None


class ChannelCheckResponse(ReconcileCounts):
    """Result of a forced channel check."""

    channel_id: int
    status: str = Field(..., description="ok, error or skipped")
    strategy: str | None = Field(default=None, description="channel_api or channel_feed")
    error: str | None = None


class ErrorResponse(BaseModel):
    """Error response model."""

    detail: str
