"""Scheduler: periodic jobs with cross-process locking."""

from src.scheduler.config import SchedulerConfig
from src.scheduler.jobs import JobSpec, PipelineJobs, TaskDiscoveryQueue
from src.scheduler.runner import GroupRunResult, JobOutcome, JobRunner, run_in_groups
from src.scheduler.service import SchedulerService

__all__ = [
    "SchedulerConfig",
    "JobSpec",
    "PipelineJobs",
    "TaskDiscoveryQueue",
    "JobRunner",
    "JobOutcome",
    "GroupRunResult",
    "run_in_groups",
    "SchedulerService",
]
