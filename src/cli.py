"""
Command-line interface for feedwatch.

Provides commands to run the scheduler and the API, initialize the
database, register sources and force single runs.

Usage:
    feedwatch scheduler             # Run all periodic jobs
    feedwatch serve                 # Run the HTTP API
    feedwatch init-db               # Initialize database
    feedwatch health                # Check service health
    feedwatch add-site URL          # Register a website
    feedwatch resolve IDENTIFIER    # Register a YouTube channel
    feedwatch scrape SOURCE_ID      # Force a site rescrape
    feedwatch check-channel ID      # Force a channel check
    feedwatch reset-source ID       # Reset a blocked/errored site
    feedwatch run-job NAME          # Run one locked tick of a job
"""

import asyncio
import json
import signal
import sys
from contextlib import asynccontextmanager
from typing import Any

import click

from src.config.settings import get_settings
from src.observability.logging import setup_logging
from src.observability.metrics import get_metrics


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
def main(debug: bool) -> None:
    """feedwatch - Website and YouTube channel ingestion."""
    setup_logging("DEBUG" if debug else None)


@asynccontextmanager
async def _open_pipeline():
    """Build the pipeline for one command and close it afterwards."""
    from src.services.pipeline import build_pipeline

    pipeline = await build_pipeline()
    try:
        yield pipeline
    finally:
        await pipeline.close()


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


@main.command("init-db")
def init_db() -> None:
    """Initialize the database schema."""

    async def run():
        async with _open_pipeline() as pipeline:
            await pipeline.create_tables()
            click.echo("Database initialized successfully")

    asyncio.run(run())


@main.command()
def health() -> None:
    """Check health of all dependencies."""
    import structlog
    logger = structlog.get_logger()

    async def check():
        results: dict[str, bool] = {}

        # Check PostgreSQL
        try:
            from src.storage.database import Database
            db = Database()
            await db.connect()
            results["postgres"] = await db.health_check()
            await db.close()
        except Exception as e:
            results["postgres"] = False
            logger.error("Postgres health check failed", error=str(e))

        # Check Redis
        try:
            import redis.asyncio as redis
            client = redis.from_url(str(get_settings().redis_url), encoding="utf-8", decode_responses=True)
            results["redis"] = bool(await client.ping())
            await client.aclose()
        except Exception as e:
            results["redis"] = False
            logger.error("Redis health check failed", error=str(e))

        # Optional integrations
        settings = get_settings()
        results["youtube_api_configured"] = bool(settings.youtube_api_keys)
        results["websub_configured"] = bool(settings.websub_callback_url)
        results["push_token_configured"] = bool(settings.expo_access_token)

        click.echo("\nHealth Check Results:")
        click.echo("-" * 40)

        all_healthy = True
        for name, status in results.items():
            icon = "✓" if status else "✗"
            color = "green" if status else "red"
            click.echo(click.style(f"  {icon} {name}: {status}", fg=color))
            if name in ("redis", "postgres") and not status:
                all_healthy = False

        click.echo("-" * 40)

        if all_healthy:
            click.echo(click.style("All core services healthy!", fg="green"))
            sys.exit(0)
        else:
            click.echo(click.style("Some services unhealthy!", fg="red"))
            sys.exit(1)

    asyncio.run(check())


@main.command()
@click.option("--metrics/--no-metrics", default=True, help="Enable metrics server")
@click.option("--metrics-port", default=None, type=int, help="Metrics server port")
def scheduler(metrics: bool, metrics_port: int | None) -> None:
    """Run all periodic jobs until interrupted."""

    async def run():
        async with _open_pipeline() as pipeline:
            if metrics:
                get_metrics().start_server(port=metrics_port)

            # Handle shutdown signals
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, lambda: asyncio.create_task(pipeline.scheduler.stop()))

            await pipeline.scheduler.start()

    asyncio.run(run())


@main.command("run-job")
@click.argument("name")
def run_job(name: str) -> None:
    """Run a single locked tick of job NAME.

    Example:
        feedwatch run-job feed-scan
    """

    async def run() -> bool:
        async with _open_pipeline() as pipeline:
            if name not in pipeline.scheduler.job_names:
                names = ", ".join(pipeline.scheduler.job_names)
                raise click.BadParameter(f"unknown job {name!r} (choose from {names})", param_hint="NAME")
            outcome = await pipeline.scheduler.run_once(name)
            _echo_json(outcome.to_dict())
            return outcome.ok

    if not asyncio.run(run()):
        sys.exit(1)


@main.command("add-site")
@click.argument("url")
@click.option("--scrape/--no-scrape", default=True, help="Discover and scrape right away")
def add_site(url: str, scrape: bool) -> None:
    """Register a website source by URL."""

    async def run() -> bool:
        async with _open_pipeline() as pipeline:
            # Scrape inline below instead of in a background task
            pipeline.source_service.set_discovery_queue(None)
            try:
                source, created = await pipeline.source_service.get_or_create(url)
            except ValueError as e:
                raise click.BadParameter(str(e), param_hint="URL")

            click.echo(f"{'Created' if created else 'Existing'} site source {source.id}: {source.base_url}")
            if not scrape:
                return True
            outcome = await pipeline.scraper.scrape(source)
            _echo_json(outcome.to_dict())
            return outcome.ok

    if not asyncio.run(run()):
        sys.exit(1)


@main.command()
@click.argument("identifier")
def resolve(identifier: str) -> None:
    """Register a YouTube channel from a URL, @handle, channel id or search query."""

    async def run() -> bool:
        async with _open_pipeline() as pipeline:
            channel = await pipeline.resolver.resolve(identifier)
            if channel is None:
                click.echo(click.style(f"Could not resolve {identifier!r}", fg="red"))
                return False
            _echo_json(
                {
                    "id": channel.id,
                    "channel_id": channel.channel_id,
                    "title": channel.title,
                    "handle": channel.handle,
                }
            )
            return True

    if not asyncio.run(run()):
        sys.exit(1)


@main.command()
@click.argument("source_id", type=int)
def scrape(source_id: int) -> None:
    """Force a rescrape of site SOURCE_ID. Exits 1 unless the source ends active."""
    from src.errors import SourceNotFoundError

    async def run() -> bool:
        async with _open_pipeline() as pipeline:
            try:
                outcome = await pipeline.scraper.scrape_by_id(source_id)
            except SourceNotFoundError as e:
                click.echo(click.style(str(e), fg="red"))
                return False
            _echo_json(outcome.to_dict())
            return outcome.ok

    if not asyncio.run(run()):
        sys.exit(1)


@main.command("check-channel")
@click.argument("channel_id", type=int)
def check_channel(channel_id: int) -> None:
    """Force a check of channel CHANNEL_ID (internal id)."""
    from src.errors import SourceNotFoundError

    async def run() -> bool:
        async with _open_pipeline() as pipeline:
            try:
                outcome = await pipeline.poller.check_by_id(channel_id)
            except SourceNotFoundError as e:
                click.echo(click.style(str(e), fg="red"))
                return False
            _echo_json(outcome.to_dict())
            return outcome.ok

    if not asyncio.run(run()):
        sys.exit(1)


@main.command("reset-source")
@click.argument("source_id", type=int)
def reset_source(source_id: int) -> None:
    """Reset a blocked or errored site source to pending."""
    from src.errors import SourceNotFoundError

    async def run() -> bool:
        async with _open_pipeline() as pipeline:
            # The next feed scan picks the pending source up
            pipeline.source_service.set_discovery_queue(None)
            try:
                source = await pipeline.source_service.reset(source_id)
            except SourceNotFoundError as e:
                click.echo(click.style(str(e), fg="red"))
                return False
            click.echo(f"Site source {source.id} is now {source.status.value}")
            return True

    if not asyncio.run(run()):
        sys.exit(1)


@main.command()
@click.option("--host", default=None, help="API server host")
@click.option("--port", default=None, type=int, help="API server port")
@click.option("--reload", is_flag=True, help="Enable auto-reload (dev only)")
@click.option("--metrics-port", default=None, type=int, help="Metrics server port")
def serve(host: str | None, port: int | None, reload: bool, metrics_port: int | None) -> None:
    """Start the API server."""
    import uvicorn

    settings = get_settings()
    host = host or settings.api_host
    port = port or settings.api_port
    metrics_port = metrics_port or settings.metrics_port

    # Start metrics server on separate port
    get_metrics().start_server(port=metrics_port)

    click.echo(f"Starting API server on {host}:{port}")
    click.echo(f"Metrics available on http://localhost:{metrics_port}/metrics")
    click.echo(f"WebSub callback at http://{host}:{port}/websub/callback")

    uvicorn.run(
        "src.api.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_level="info",
    )


if __name__ == "__main__":
    main()
