"""Job log repository."""

import logging
from datetime import datetime
from typing import Any

from src.jobs.schemas import JobRecord, JobStatus
from src.storage.database import Database

logger = logging.getLogger(__name__)

_CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS job_logs (
    id              BIGSERIAL PRIMARY KEY,
    job_type        TEXT NOT NULL,
    target_id       TEXT,
    status          TEXT NOT NULL DEFAULT 'pending',
    started_at      TIMESTAMPTZ,
    completed_at    TIMESTAMPTZ,
    result_summary  JSONB,
    last_error      TEXT,
    created_at      TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_job_logs_type_created
    ON job_logs(job_type, created_at DESC);
"""

# Finished records are immutable: updates only apply to running rows.
_FINISH_SQL = """
UPDATE job_logs SET
    status = $2,
    completed_at = NOW(),
    result_summary = $3,
    last_error = $4
WHERE id = $1 AND status = 'running'
RETURNING *
"""


def _record_to_job(record) -> JobRecord:
    """Convert an asyncpg Record to a JobRecord dataclass."""
    return JobRecord(
        id=record["id"],
        job_type=record["job_type"],
        target_id=record["target_id"],
        status=JobStatus(record["status"]),
        started_at=record["started_at"],
        completed_at=record["completed_at"],
        result_summary=record["result_summary"] or {},
        last_error=record["last_error"],
        created_at=record["created_at"],
    )


class JobRepository:
    """Writes and prunes job execution records."""

    def __init__(self, database: Database) -> None:
        self._db = database

    async def create_table(self) -> None:
        await self._db.execute(_CREATE_TABLE_SQL)
        logger.info("job_logs table ensured")

    async def start(self, job_type: str, target_id: str | None = None) -> JobRecord:
        """Insert a running record."""
        row = await self._db.fetchrow(
            """
            INSERT INTO job_logs (job_type, target_id, status, started_at)
            VALUES ($1, $2, 'running', NOW())
            RETURNING *
            """,
            job_type,
            target_id,
        )
        return _record_to_job(row)

    async def complete(self, job_id: int, summary: dict[str, Any]) -> JobRecord | None:
        row = await self._db.fetchrow(_FINISH_SQL, job_id, JobStatus.COMPLETED.value, summary, None)
        return _record_to_job(row) if row else None

    async def fail(
        self,
        job_id: int,
        error: str,
        summary: dict[str, Any] | None = None,
    ) -> JobRecord | None:
        row = await self._db.fetchrow(
            _FINISH_SQL, job_id, JobStatus.FAILED.value, summary or {}, error
        )
        return _record_to_job(row) if row else None

    async def get(self, job_id: int) -> JobRecord | None:
        row = await self._db.fetchrow("SELECT * FROM job_logs WHERE id = $1", job_id)
        return _record_to_job(row) if row else None

    async def list_recent(self, job_type: str | None = None, limit: int = 20) -> list[JobRecord]:
        if job_type:
            rows = await self._db.fetch(
                "SELECT * FROM job_logs WHERE job_type = $1 ORDER BY created_at DESC LIMIT $2",
                job_type,
                limit,
            )
        else:
            rows = await self._db.fetch(
                "SELECT * FROM job_logs ORDER BY created_at DESC LIMIT $1", limit
            )
        return [_record_to_job(r) for r in rows]

    async def cleanup(self, older_than: datetime) -> int:
        """Delete finished records created before ``older_than``. Returns the count."""
        result = await self._db.execute(
            """
            DELETE FROM job_logs
            WHERE status IN ('completed', 'failed') AND created_at < $1
            """,
            older_than,
        )
        # asyncpg returns e.g. "DELETE 12"
        return int(result.split()[-1]) if result else 0
