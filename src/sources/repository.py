"""Database repositories for site and channel sources."""

import logging
from datetime import datetime

from src.sources.schemas import ChannelDescriptor, ChannelSource, SiteSource, SiteStatus
from src.storage.database import Database

logger = logging.getLogger(__name__)

_CREATE_SITE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS site_sources (
    id                   BIGSERIAL PRIMARY KEY,
    base_url             TEXT NOT NULL UNIQUE,
    discovered_feed_url  TEXT,
    title                TEXT,
    status               TEXT NOT NULL DEFAULT 'pending',
    last_attempt_at      TIMESTAMPTZ,
    last_error_message   TEXT,
    created_at           TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at           TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_site_sources_due
    ON site_sources(status, last_attempt_at NULLS FIRST);
"""

_CREATE_CHANNEL_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS channel_sources (
    id                     BIGSERIAL PRIMARY KEY,
    channel_id             TEXT NOT NULL UNIQUE,
    title                  TEXT NOT NULL,
    handle                 TEXT,
    description            TEXT,
    thumbnail_url          TEXT,
    last_checked_at        TIMESTAMPTZ,
    push_lease_expires_at  TIMESTAMPTZ,
    created_at             TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_channel_sources_checked
    ON channel_sources(last_checked_at NULLS FIRST);
"""

_INSERT_SITE_SQL = """
INSERT INTO site_sources (base_url)
VALUES ($1)
ON CONFLICT (base_url) DO NOTHING
RETURNING *
"""

_SELECT_DUE_SITES_SQL = """
SELECT * FROM site_sources
WHERE status IN ('active', 'pending')
  AND (last_attempt_at IS NULL OR last_attempt_at < $1)
ORDER BY last_attempt_at ASC NULLS FIRST
LIMIT $2
"""

_SELECT_RETRYABLE_SITES_SQL = """
SELECT * FROM site_sources
WHERE status = 'error'
  AND (last_attempt_at IS NULL OR last_attempt_at < $1)
ORDER BY last_attempt_at ASC NULLS FIRST
LIMIT $2
"""

_MARK_ACTIVE_SQL = """
UPDATE site_sources SET
    status = 'active',
    discovered_feed_url = CASE WHEN $4 THEN NULL ELSE COALESCE($2, discovered_feed_url) END,
    title = COALESCE($3, title),
    last_attempt_at = NOW(),
    last_error_message = NULL,
    updated_at = NOW()
WHERE id = $1
"""

_MARK_FAILED_SQL = """
UPDATE site_sources SET
    status = $2,
    last_attempt_at = NOW(),
    last_error_message = $3,
    updated_at = NOW()
WHERE id = $1
"""

_INSERT_CHANNEL_SQL = """
INSERT INTO channel_sources (channel_id, title, handle, description, thumbnail_url)
VALUES ($1, $2, $3, $4, $5)
ON CONFLICT (channel_id) DO NOTHING
RETURNING *
"""

_SELECT_DUE_CHANNELS_SQL = """
SELECT * FROM channel_sources
WHERE (last_checked_at IS NULL OR last_checked_at < $1)
  AND (push_lease_expires_at IS NULL OR push_lease_expires_at <= $3)
ORDER BY last_checked_at ASC NULLS FIRST
LIMIT $2
"""


def _record_to_site(record) -> SiteSource:
    """Convert an asyncpg Record to a SiteSource dataclass."""
    return SiteSource(
        id=record["id"],
        base_url=record["base_url"],
        discovered_feed_url=record["discovered_feed_url"],
        title=record["title"],
        status=SiteStatus(record["status"]),
        last_attempt_at=record["last_attempt_at"],
        last_error_message=record["last_error_message"],
        created_at=record["created_at"],
        updated_at=record["updated_at"],
    )


def _record_to_channel(record) -> ChannelSource:
    """Convert an asyncpg Record to a ChannelSource dataclass."""
    return ChannelSource(
        id=record["id"],
        channel_id=record["channel_id"],
        title=record["title"],
        handle=record["handle"],
        description=record["description"],
        thumbnail_url=record["thumbnail_url"],
        last_checked_at=record["last_checked_at"],
        push_lease_expires_at=record["push_lease_expires_at"],
        created_at=record["created_at"],
    )


class SiteSourceRepository:
    """CRUD and scheduling queries for the site_sources table.

    ``base_url`` must already be normalized by the caller.
    """

    def __init__(self, database: Database) -> None:
        self._db = database

    async def create_table(self) -> None:
        """Create the site_sources table and indexes (idempotent)."""
        await self._db.execute(_CREATE_SITE_TABLE_SQL)
        logger.info("site_sources table ensured")

    async def get_or_create(self, base_url: str) -> tuple[SiteSource, bool]:
        """Return the source for ``base_url``, creating a pending one if needed.

        Returns:
            (source, created) tuple.
        """
        row = await self._db.fetchrow(_INSERT_SITE_SQL, base_url)
        if row is not None:
            return _record_to_site(row), True

        existing = await self.get_by_url(base_url)
        if existing is None:
            raise RuntimeError(f"site source vanished during get_or_create: {base_url}")
        return existing, False

    async def get(self, source_id: int) -> SiteSource | None:
        row = await self._db.fetchrow("SELECT * FROM site_sources WHERE id = $1", source_id)
        return _record_to_site(row) if row else None

    async def get_by_url(self, base_url: str) -> SiteSource | None:
        row = await self._db.fetchrow(
            "SELECT * FROM site_sources WHERE base_url = $1", base_url
        )
        return _record_to_site(row) if row else None

    async def list_due(self, stale_before: datetime, limit: int) -> list[SiteSource]:
        """Active/pending sources never attempted or last attempted before ``stale_before``.

        Oldest attempt first.
        """
        rows = await self._db.fetch(_SELECT_DUE_SITES_SQL, stale_before, limit)
        return [_record_to_site(r) for r in rows]

    async def list_retryable(self, attempted_before: datetime, limit: int) -> list[SiteSource]:
        """Errored sources whose cooldown has elapsed."""
        rows = await self._db.fetch(_SELECT_RETRYABLE_SITES_SQL, attempted_before, limit)
        return [_record_to_site(r) for r in rows]

    async def mark_active(
        self,
        source_id: int,
        feed_url: str | None = None,
        title: str | None = None,
        clear_feed: bool = False,
    ) -> None:
        """
        Record a successful attempt.

        Args:
            feed_url: Feed to store; None keeps the stored one.
            clear_feed: Forget the stored feed. Set when articles came from
                HTML extraction, so later scans stop retrying a dead feed.
        """
        await self._db.execute(_MARK_ACTIVE_SQL, source_id, feed_url, title, clear_feed)

    async def mark_error(self, source_id: int, message: str) -> None:
        await self._db.execute(_MARK_FAILED_SQL, source_id, SiteStatus.ERROR.value, message)

    async def mark_blocked(self, source_id: int, message: str) -> None:
        await self._db.execute(_MARK_FAILED_SQL, source_id, SiteStatus.BLOCKED.value, message)

    async def reset_to_pending(self, source_id: int) -> bool:
        """Move a source back to pending for a fresh discovery. Returns True if a row changed."""
        result = await self._db.execute(
            """
            UPDATE site_sources
            SET status = 'pending', discovered_feed_url = NULL,
                last_error_message = NULL, updated_at = NOW()
            WHERE id = $1
            """,
            source_id,
        )
        return result.endswith("1")

    async def count_by_status(self) -> dict[str, int]:
        rows = await self._db.fetch(
            "SELECT status, COUNT(*) AS n FROM site_sources GROUP BY status"
        )
        return {r["status"]: r["n"] for r in rows}


class ChannelSourceRepository:
    """CRUD and scheduling queries for the channel_sources table."""

    def __init__(self, database: Database) -> None:
        self._db = database

    async def create_table(self) -> None:
        """Create the channel_sources table and indexes (idempotent)."""
        await self._db.execute(_CREATE_CHANNEL_TABLE_SQL)
        logger.info("channel_sources table ensured")

    async def get_or_create(self, descriptor: ChannelDescriptor) -> tuple[ChannelSource, bool]:
        """Idempotent on ``channel_id``: the first writer's details win."""
        row = await self._db.fetchrow(
            _INSERT_CHANNEL_SQL,
            descriptor.channel_id,
            descriptor.title,
            descriptor.handle,
            descriptor.description,
            descriptor.thumbnail_url,
        )
        if row is not None:
            logger.info("Created channel source %s (%s)", descriptor.channel_id, descriptor.title)
            return _record_to_channel(row), True

        existing = await self.get_by_channel_id(descriptor.channel_id)
        if existing is None:
            raise RuntimeError(
                f"channel source vanished during get_or_create: {descriptor.channel_id}"
            )
        return existing, False

    async def get(self, source_id: int) -> ChannelSource | None:
        row = await self._db.fetchrow("SELECT * FROM channel_sources WHERE id = $1", source_id)
        return _record_to_channel(row) if row else None

    async def get_by_channel_id(self, channel_id: str) -> ChannelSource | None:
        row = await self._db.fetchrow(
            "SELECT * FROM channel_sources WHERE channel_id = $1", channel_id
        )
        return _record_to_channel(row) if row else None

    async def list_due(
        self, checked_before: datetime, limit: int, now: datetime
    ) -> list[ChannelSource]:
        """Channels not checked since ``checked_before`` and without an active WebSub lease."""
        rows = await self._db.fetch(_SELECT_DUE_CHANNELS_SQL, checked_before, limit, now)
        return [_record_to_channel(r) for r in rows]

    async def touch_checked(self, source_id: int) -> None:
        await self._db.execute(
            "UPDATE channel_sources SET last_checked_at = NOW() WHERE id = $1",
            source_id,
        )

    async def set_lease(self, source_id: int, expires_at: datetime | None) -> None:
        """Store (or clear, with None) the WebSub lease expiry."""
        await self._db.execute(
            "UPDATE channel_sources SET push_lease_expires_at = $2 WHERE id = $1",
            source_id,
            expires_at,
        )

    async def list_without_lease(self, now: datetime, limit: int) -> list[ChannelSource]:
        """Channels with no lease or an already expired one."""
        rows = await self._db.fetch(
            """
            SELECT * FROM channel_sources
            WHERE push_lease_expires_at IS NULL OR push_lease_expires_at <= $1
            ORDER BY id
            LIMIT $2
            """,
            now,
            limit,
        )
        return [_record_to_channel(r) for r in rows]

    async def list_expiring_leases(
        self, now: datetime, expires_before: datetime, limit: int
    ) -> list[ChannelSource]:
        """Channels whose active lease ends before ``expires_before``."""
        rows = await self._db.fetch(
            """
            SELECT * FROM channel_sources
            WHERE push_lease_expires_at > $1 AND push_lease_expires_at < $2
            ORDER BY push_lease_expires_at
            LIMIT $3
            """,
            now,
            expires_before,
            limit,
        )
        return [_record_to_channel(r) for r in rows]
