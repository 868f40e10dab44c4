"""Job log records."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class JobRecord:
    """
    One execution of a scheduled job or forced operation.

    Records are append-only: once completed or failed they are only ever
    touched again by the retention job, which deletes them.
    """

    id: int
    job_type: str
    status: JobStatus
    target_id: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    result_summary: dict[str, Any] = field(default_factory=dict)
    last_error: str | None = None
    created_at: datetime | None = None

    @property
    def is_finished(self) -> bool:
        return self.status in (JobStatus.COMPLETED, JobStatus.FAILED)
