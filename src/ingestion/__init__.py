"""Feed acquisition - schemas, feed parsing, discovery and HTML extraction."""

from src.ingestion.schemas import (
    FeedEntry,
    PageMetadata,
    ParsedFeed,
    SourceKind,
    VideoEntry,
)

__all__ = [
    "SourceKind",
    "FeedEntry",
    "VideoEntry",
    "ParsedFeed",
    "PageMetadata",
]
