"""
YouTube channel support.

- Channel resolution from URLs, handles, ids or search queries
- YouTube Data API v3 client with a daily quota budget
- Video classification (live, vod, short, video)
"""

from src.youtube.api_client import YouTubeAPIClient, parse_iso8601_duration
from src.youtube.classifier import ReclassifyResult, VideoClassifier, classify
from src.youtube.config import YouTubeConfig
from src.youtube.quota import QuotaTracker
from src.youtube.resolver import (
    ChannelResolver,
    IdentifierKind,
    ParsedIdentifier,
    extract_channel_id,
    parse_identifier,
)

__all__ = [
    "YouTubeConfig",
    "QuotaTracker",
    "YouTubeAPIClient",
    "parse_iso8601_duration",
    "VideoClassifier",
    "ReclassifyResult",
    "classify",
    "ChannelResolver",
    "IdentifierKind",
    "ParsedIdentifier",
    "parse_identifier",
    "extract_channel_id",
]
