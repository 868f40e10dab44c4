"""Services that orchestrate fetching, reconciliation and scheduling."""

from src.services.channel_poller import ChannelCheckOutcome, ChannelPoller
from src.services.pipeline import Pipeline, build_pipeline
from src.services.site_scraper import ScrapeOutcome, SiteScraper

__all__ = [
    "SiteScraper",
    "ScrapeOutcome",
    "ChannelPoller",
    "ChannelCheckOutcome",
    "Pipeline",
    "build_pipeline",
]
