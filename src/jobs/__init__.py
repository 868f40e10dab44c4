"""Job execution log."""

from src.jobs.repository import JobRepository
from src.jobs.schemas import JobRecord, JobStatus

__all__ = ["JobRecord", "JobStatus", "JobRepository"]
