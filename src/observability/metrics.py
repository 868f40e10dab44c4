"""
Prometheus metrics for monitoring the feed acquisition pipeline.

Defines and exposes metrics for:
- Item reconciliation outcomes (created / updated / unchanged)
- Fetch latency per strategy and fetch errors per error type
- Scheduled job runs, durations and lock skips
- Notification delivery
- YouTube Data API quota usage

Metrics are exposed via HTTP endpoint for Prometheus scraping.
"""

import logging

from prometheus_client import (
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    start_http_server,
)

from src.config.settings import get_settings

logger = logging.getLogger(__name__)

# Buckets for fetch latency histograms (in seconds). Page renders are slow.
FETCH_BUCKETS = (0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0)

# Buckets for whole job runs (in seconds)
JOB_BUCKETS = (1.0, 5.0, 15.0, 30.0, 60.0, 120.0, 300.0, 600.0, 900.0)


class MetricsCollector:
    """
    Prometheus metrics collector for the feedwatch pipeline.

    Usage:
        metrics = get_metrics()
        metrics.start_server()

        metrics.record_reconcile("site", "created")
        metrics.fetch_latency.labels(strategy="rss").observe(0.4)
    """

    def __init__(self):
        """Initialize Prometheus metrics."""

        # Reconciliation
        self.items_reconciled = Counter(
            "feedwatch_items_reconciled_total",
            "Items passed through the reconciliation engine",
            ["kind", "outcome"],  # kind: site, video; outcome: created, updated, unchanged, error
        )

        self.race_recoveries = Counter(
            "feedwatch_race_recoveries_total",
            "Concurrent duplicate inserts recovered by re-reading the row",
            ["kind"],
        )

        # Fetching
        self.fetch_latency = Histogram(
            "feedwatch_fetch_latency_seconds",
            "Time to fetch and parse one source",
            ["strategy"],  # rss, discovery, html, channel_feed, channel_api
            buckets=FETCH_BUCKETS,
        )

        self.fetch_errors = Counter(
            "feedwatch_fetch_errors_total",
            "Fetch failures by source kind and error type",
            ["kind", "error_type"],
        )

        self.source_status_changes = Counter(
            "feedwatch_source_status_changes_total",
            "Site source status transitions",
            ["status"],
        )

        # Scheduled jobs
        self.job_runs = Counter(
            "feedwatch_job_runs_total",
            "Scheduled job runs by outcome",
            ["job", "status"],  # status: completed, failed, skipped
        )

        self.job_duration = Histogram(
            "feedwatch_job_duration_seconds",
            "Wall-clock duration of scheduled job runs",
            ["job"],
            buckets=JOB_BUCKETS,
        )

        self.lock_skips = Counter(
            "feedwatch_lock_skips_total",
            "Job ticks skipped because another holder owned the lock",
            ["job"],
        )

        self.lock_errors = Counter(
            "feedwatch_lock_errors_total",
            "Lock store errors (acquisition failed open)",
        )

        # Notifications
        self.notifications = Counter(
            "feedwatch_notifications_total",
            "Push notifications by delivery status",
            ["status"],  # sent, failed
        )

        # YouTube quota
        self.youtube_quota_used = Gauge(
            "feedwatch_youtube_quota_used",
            "YouTube Data API units consumed today",
        )

    def start_server(self, port: int | None = None) -> None:
        """
        Start Prometheus metrics HTTP server.

        Args:
            port: Port to expose metrics on (default from settings)
        """
        settings = get_settings()
        port = port or settings.metrics_port

        start_http_server(port, registry=REGISTRY)
        logger.info(f"Prometheus metrics server started on port {port}")

    # Convenience methods

    def record_reconcile(self, kind: str, outcome: str, count: int = 1) -> None:
        """Record reconciliation outcomes for site items or videos."""
        if count:
            self.items_reconciled.labels(kind=kind, outcome=outcome).inc(count)

    def record_fetch_error(self, kind: str, error: Exception | str) -> None:
        """
        Record a fetch error.

        Args:
            kind: Source kind (site, channel)
            error: The exception raised, or an error type name
        """
        error_type = error if isinstance(error, str) else type(error).__name__
        self.fetch_errors.labels(kind=kind, error_type=error_type).inc()

    def record_job(self, job: str, status: str, duration: float | None = None) -> None:
        """
        Record a scheduled job run.

        Args:
            job: Job class name (feed-scan, channel-poll, ...)
            status: completed, failed or skipped
            duration: Run duration in seconds
        """
        self.job_runs.labels(job=job, status=status).inc()
        if status == "skipped":
            self.lock_skips.labels(job=job).inc()
        if duration is not None:
            self.job_duration.labels(job=job).observe(duration)

    def record_notifications(self, sent: int, failed: int) -> None:
        """Record push delivery counts."""
        if sent:
            self.notifications.labels(status="sent").inc(sent)
        if failed:
            self.notifications.labels(status="failed").inc(failed)


# Global metrics instance
_metrics: MetricsCollector | None = None


def get_metrics() -> MetricsCollector:
    """Get global metrics collector instance."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics
