"""Sources: website and YouTube channel source records."""

from src.sources.repository import ChannelSourceRepository, SiteSourceRepository
from src.sources.schemas import ChannelDescriptor, ChannelSource, SiteSource, SiteStatus
from src.sources.service import DiscoveryQueue, SiteSourceService

__all__ = [
    "SiteStatus",
    "SiteSource",
    "ChannelSource",
    "ChannelDescriptor",
    "SiteSourceRepository",
    "ChannelSourceRepository",
    "SiteSourceService",
    "DiscoveryQueue",
]
