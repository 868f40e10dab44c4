"""Configuration for the periodic job scheduler."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class SchedulerConfig(BaseSettings):
    """Cadences, selection limits and lock TTLs of the periodic jobs."""

    model_config = SettingsConfigDict(
        env_prefix="SCHEDULER_",
        case_sensitive=False,
        extra="ignore",
    )

    # Batch execution
    concurrency: int = Field(default=6, ge=1, le=50, description="Sources processed per group")
    politeness_delay_seconds: float = Field(
        default=1.0,
        ge=0,
        description="Pause between groups",
    )

    # feed-scan
    feed_scan_interval_seconds: int = Field(default=600, ge=10)
    feed_scan_lock_ttl: int = Field(default=900, ge=10)
    feed_scan_limit: int = Field(default=10, ge=1)
    feed_stale_seconds: int = Field(
        default=600,
        ge=0,
        description="Sources attempted more recently than this are not due",
    )

    # feed-retry
    feed_retry_interval_seconds: int = Field(default=3600, ge=10)
    feed_retry_lock_ttl: int = Field(default=300, ge=10)
    feed_retry_limit: int = Field(default=5, ge=1)
    feed_retry_cooldown_seconds: int = Field(default=3600, ge=0)

    # channel-poll
    channel_poll_interval_seconds: int = Field(default=300, ge=10)
    channel_poll_lock_ttl: int = Field(default=300, ge=10)
    channel_poll_limit: int = Field(default=5, ge=1)
    channel_stale_seconds: int = Field(default=300, ge=0)

    # reclassify
    reclassify_interval_seconds: int = Field(default=600, ge=10)
    reclassify_lock_ttl: int = Field(default=300, ge=10)

    # websub-renew
    websub_renew_interval_seconds: int = Field(default=3600, ge=10)
    websub_renew_lock_ttl: int = Field(default=300, ge=10)

    # job-log-cleanup
    job_log_cleanup_interval_seconds: int = Field(default=7 * 24 * 3600, ge=60)
    job_log_cleanup_lock_ttl: int = Field(default=300, ge=10)
    job_log_retention_days: int = Field(default=7, ge=1)

    # quota-report
    quota_report_interval_seconds: int = Field(default=24 * 3600, ge=60)
    quota_report_lock_ttl: int = Field(default=300, ge=10)
    quota_warn_ratio: float = Field(default=0.8, gt=0.0, le=1.0)

    # Per-source locks for forced and scheduled scrapes
    source_lock_ttl: int = Field(default=300, ge=10)
