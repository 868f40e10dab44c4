"""Read-only queries against the subscription tables.

User, subscription and token management belong to another service; this
module only looks up who should hear about a new item. The DDL exists so a
development database created by ``init-db`` has the tables.
"""

import logging

from src.ingestion.schemas import SourceKind
from src.storage.database import Database

logger = logging.getLogger(__name__)

_CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS subscriptions (
    id           BIGSERIAL PRIMARY KEY,
    user_id      TEXT NOT NULL,
    source_kind  TEXT NOT NULL,
    source_id    BIGINT NOT NULL,
    enabled      BOOLEAN NOT NULL DEFAULT TRUE,
    created_at   TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE (user_id, source_kind, source_id)
);

CREATE INDEX IF NOT EXISTS idx_subscriptions_source
    ON subscriptions(source_kind, source_id) WHERE enabled;

CREATE TABLE IF NOT EXISTS user_preferences (
    user_id                TEXT PRIMARY KEY,
    notifications_enabled  BOOLEAN NOT NULL DEFAULT TRUE
);

CREATE TABLE IF NOT EXISTS push_tokens (
    id          BIGSERIAL PRIMARY KEY,
    user_id     TEXT NOT NULL,
    token       TEXT NOT NULL UNIQUE,
    is_active   BOOLEAN NOT NULL DEFAULT TRUE,
    created_at  TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_push_tokens_user ON push_tokens(user_id) WHERE is_active;
"""

# Users without a preferences row have notifications on.
_SELECT_TOKENS_SQL = """
SELECT DISTINCT t.token
FROM subscriptions s
JOIN push_tokens t ON t.user_id = s.user_id AND t.is_active
LEFT JOIN user_preferences p ON p.user_id = s.user_id
WHERE s.source_kind = $1
  AND s.source_id = $2
  AND s.enabled
  AND COALESCE(p.notifications_enabled, TRUE)
"""


class SubscriberRepository:
    """Finds the push tokens interested in a source."""

    def __init__(self, database: Database) -> None:
        self._db = database

    async def create_table(self) -> None:
        await self._db.execute(_CREATE_TABLES_SQL)
        logger.info("subscription tables ensured")

    async def tokens_for_source(self, kind: SourceKind, source_id: int) -> list[str]:
        """Active tokens of users with an enabled subscription and notifications on."""
        rows = await self._db.fetch(_SELECT_TOKENS_SQL, kind.value, source_id)
        return [r["token"] for r in rows]
