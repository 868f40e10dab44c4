"""Database repositories for items and videos.

Inserts translate ``asyncpg.UniqueViolationError`` into
``RaceConditionViolation`` so the reconciler can recover from concurrent
writers without knowing about the driver.
"""

import logging
from datetime import datetime

import asyncpg

from src.errors import RaceConditionViolation
from src.ingestion.schemas import FeedEntry, VideoEntry
from src.items.schemas import Item, VideoItem, VideoType
from src.storage.database import Database

logger = logging.getLogger(__name__)

_CREATE_ITEMS_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS items (
    id                   BIGSERIAL PRIMARY KEY,
    source_id            BIGINT NOT NULL REFERENCES site_sources(id) ON DELETE CASCADE,
    url                  TEXT NOT NULL,
    canonical_url        TEXT,
    title                TEXT NOT NULL,
    excerpt              TEXT,
    thumbnail_url        TEXT,
    author               TEXT,
    content_fingerprint  TEXT NOT NULL,
    published_at         TIMESTAMPTZ NOT NULL,
    fetched_at           TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE (source_id, url),
    UNIQUE (source_id, content_fingerprint)
);

CREATE INDEX IF NOT EXISTS idx_items_source_published
    ON items(source_id, published_at DESC);
"""

_CREATE_VIDEOS_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS videos (
    id                BIGSERIAL PRIMARY KEY,
    channel_id        BIGINT NOT NULL REFERENCES channel_sources(id) ON DELETE CASCADE,
    video_id          TEXT NOT NULL UNIQUE,
    title             TEXT NOT NULL,
    description       TEXT,
    thumbnail_url     TEXT,
    published_at      TIMESTAMPTZ NOT NULL,
    duration_seconds  INTEGER,
    video_type        TEXT,
    is_live           BOOLEAN NOT NULL DEFAULT FALSE,
    is_live_content   BOOLEAN NOT NULL DEFAULT FALSE,
    classified_at     TIMESTAMPTZ,
    fetched_at        TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_videos_channel_published
    ON videos(channel_id, published_at DESC);
CREATE INDEX IF NOT EXISTS idx_videos_reclassify
    ON videos(classified_at NULLS FIRST)
    WHERE is_live = TRUE OR classified_at IS NULL OR video_type IS NULL;
"""

_FIND_ITEM_SQL = """
SELECT * FROM items
WHERE source_id = $1 AND (url = $2 OR content_fingerprint = $3)
ORDER BY (url = $2) DESC
LIMIT 1
"""

_INSERT_ITEM_SQL = """
INSERT INTO items (
    source_id, url, canonical_url, title, excerpt, thumbnail_url,
    author, content_fingerprint, published_at
)
VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
RETURNING *
"""

_UPDATE_ITEM_SQL = """
UPDATE items SET
    title = $2,
    excerpt = $3,
    thumbnail_url = COALESCE($4, thumbnail_url),
    content_fingerprint = $5,
    fetched_at = NOW()
WHERE id = $1
RETURNING *
"""

_INSERT_VIDEO_SQL = """
INSERT INTO videos (
    channel_id, video_id, title, description, thumbnail_url, published_at,
    duration_seconds, video_type, is_live, is_live_content, classified_at
)
VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)
RETURNING *
"""

_UPDATE_VIDEO_CONTENT_SQL = """
UPDATE videos SET
    title = $2,
    description = COALESCE($3, description),
    thumbnail_url = COALESCE($4, thumbnail_url),
    fetched_at = NOW()
WHERE id = $1
RETURNING *
"""

_UPDATE_CLASSIFICATION_SQL = """
UPDATE videos SET
    video_type = $2,
    is_live = $3,
    is_live_content = is_live_content OR $4,
    duration_seconds = COALESCE($5, duration_seconds),
    classified_at = NOW()
WHERE id = $1
RETURNING *
"""

_SELECT_RECLASSIFY_SQL = """
SELECT * FROM videos
WHERE is_live = TRUE OR classified_at IS NULL OR video_type IS NULL
ORDER BY classified_at ASC NULLS FIRST, published_at DESC
LIMIT $1
"""


def _record_to_item(record) -> Item:
    """Convert an asyncpg Record to an Item dataclass."""
    return Item(
        id=record["id"],
        source_id=record["source_id"],
        url=record["url"],
        canonical_url=record["canonical_url"],
        title=record["title"],
        excerpt=record["excerpt"],
        thumbnail_url=record["thumbnail_url"],
        author=record["author"],
        content_fingerprint=record["content_fingerprint"],
        published_at=record["published_at"],
        fetched_at=record["fetched_at"],
    )


def _record_to_video(record) -> VideoItem:
    """Convert an asyncpg Record to a VideoItem dataclass."""
    video_type = record["video_type"]
    return VideoItem(
        id=record["id"],
        channel_id=record["channel_id"],
        video_id=record["video_id"],
        title=record["title"],
        description=record["description"],
        thumbnail_url=record["thumbnail_url"],
        published_at=record["published_at"],
        duration_seconds=record["duration_seconds"],
        video_type=VideoType(video_type) if video_type else None,
        is_live=record["is_live"],
        is_live_content=record["is_live_content"],
        classified_at=record["classified_at"],
        fetched_at=record["fetched_at"],
    )


class ItemRepository:
    """Storage for site items."""

    def __init__(self, database: Database) -> None:
        self._db = database

    async def create_table(self) -> None:
        """Create the items table and indexes (idempotent)."""
        await self._db.execute(_CREATE_ITEMS_TABLE_SQL)
        logger.info("items table ensured")

    async def find_existing(self, source_id: int, url: str, fingerprint: str) -> Item | None:
        """Find an item of the source matching either the URL or the fingerprint.

        A URL match is preferred when both exist on different rows.
        """
        row = await self._db.fetchrow(_FIND_ITEM_SQL, source_id, url, fingerprint)
        return _record_to_item(row) if row else None

    async def insert(
        self,
        source_id: int,
        url: str,
        fingerprint: str,
        entry: FeedEntry,
    ) -> Item:
        """Insert a new item.

        Raises:
            RaceConditionViolation: Another writer stored the same URL or
                fingerprint first.
        """
        try:
            row = await self._db.fetchrow(
                _INSERT_ITEM_SQL,
                source_id,
                url,
                entry.canonical_url,
                entry.title,
                entry.excerpt,
                entry.thumbnail_url,
                entry.author,
                fingerprint,
                entry.published_at,
            )
        except asyncpg.UniqueViolationError as e:
            raise RaceConditionViolation(
                f"item already exists for source {source_id}: {url}"
            ) from e
        return _record_to_item(row)

    async def update_content(
        self,
        item_id: int,
        title: str,
        excerpt: str | None,
        thumbnail_url: str | None,
        fingerprint: str,
    ) -> Item:
        """Refresh presentation fields. URL and published date are left alone."""
        try:
            row = await self._db.fetchrow(
                _UPDATE_ITEM_SQL, item_id, title, excerpt, thumbnail_url, fingerprint
            )
        except asyncpg.UniqueViolationError as e:
            raise RaceConditionViolation(
                f"fingerprint {fingerprint} already used by another item"
            ) from e
        return _record_to_item(row)

    async def recent_urls(self, source_id: int, limit: int = 200) -> set[str]:
        """URLs of the newest items of a source."""
        rows = await self._db.fetch(
            "SELECT url FROM items WHERE source_id = $1 ORDER BY fetched_at DESC LIMIT $2",
            source_id,
            limit,
        )
        return {r["url"] for r in rows}

    async def count_for_source(self, source_id: int) -> int:
        return await self._db.fetchval(
            "SELECT COUNT(*) FROM items WHERE source_id = $1", source_id
        )


class VideoRepository:
    """Storage for channel videos."""

    def __init__(self, database: Database) -> None:
        self._db = database

    async def create_table(self) -> None:
        """Create the videos table and indexes (idempotent)."""
        await self._db.execute(_CREATE_VIDEOS_TABLE_SQL)
        logger.info("videos table ensured")

    async def get_by_video_id(self, video_id: str) -> VideoItem | None:
        row = await self._db.fetchrow("SELECT * FROM videos WHERE video_id = $1", video_id)
        return _record_to_video(row) if row else None

    async def existing_video_ids(self, video_ids: list[str]) -> set[str]:
        """Return the subset of ``video_ids`` already stored."""
        if not video_ids:
            return set()
        rows = await self._db.fetch(
            "SELECT video_id FROM videos WHERE video_id = ANY($1::text[])",
            video_ids,
        )
        return {r["video_id"] for r in rows}

    async def insert(
        self,
        channel_id: int,
        entry: VideoEntry,
        video_type: VideoType | None,
        classified_at: datetime | None,
    ) -> VideoItem:
        """Insert a new video.

        Raises:
            RaceConditionViolation: The video id is already stored.
        """
        try:
            row = await self._db.fetchrow(
                _INSERT_VIDEO_SQL,
                channel_id,
                entry.video_id,
                entry.title,
                entry.description,
                entry.thumbnail_url,
                entry.published_at,
                entry.duration_seconds,
                video_type.value if video_type else None,
                entry.is_live,
                entry.is_live_content,
                classified_at,
            )
        except asyncpg.UniqueViolationError as e:
            raise RaceConditionViolation(f"video {entry.video_id} already exists") from e
        return _record_to_video(row)

    async def update_content(
        self,
        item_id: int,
        title: str,
        description: str | None,
        thumbnail_url: str | None,
    ) -> VideoItem:
        row = await self._db.fetchrow(
            _UPDATE_VIDEO_CONTENT_SQL, item_id, title, description, thumbnail_url
        )
        return _record_to_video(row)

    async def list_needing_classification(self, limit: int) -> list[VideoItem]:
        """Videos currently live, never classified, or missing a type."""
        rows = await self._db.fetch(_SELECT_RECLASSIFY_SQL, limit)
        return [_record_to_video(r) for r in rows]

    async def update_classification(
        self,
        item_id: int,
        video_type: VideoType,
        is_live: bool,
        is_live_content: bool,
        duration_seconds: int | None,
    ) -> VideoItem:
        """Store a new classification. ``is_live_content`` is only ever set, never cleared."""
        row = await self._db.fetchrow(
            _UPDATE_CLASSIFICATION_SQL,
            item_id,
            video_type.value,
            is_live,
            is_live_content,
            duration_seconds,
        )
        return _record_to_video(row)

    async def touch_classified(self, item_id: int) -> None:
        """Mark a video as re-checked without changing its classification."""
        await self._db.execute(
            "UPDATE videos SET classified_at = NOW() WHERE id = $1", item_id
        )
