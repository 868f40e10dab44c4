"""
Locked job execution and bounded fan-out.

``JobRunner.run`` wraps one tick of a job class:

1. same-process fast path: a tick is skipped while the previous one of the
   same job class is still running here
2. cross-process exclusion: Redis lock ``lock:cron:{name}``; a held lock
   skips the tick
3. a JobRecord moves from running to completed or failed
4. the lock and the running flag are released in ``finally``

Job bodies catch per-source failures themselves; anything escaping them
(the store is unreachable, a bug) marks the run failed.
"""

import asyncio
import time
import uuid
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any, TypeVar

import structlog

from src.jobs.repository import JobRepository
from src.locks.service import LockService
from src.observability.logging import bind_context, clear_context
from src.observability.metrics import get_metrics

logger = structlog.get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")

JobFunc = Callable[[], Awaitable[dict[str, Any]]]


@dataclass
class JobOutcome:
    """Result of one tick of a job class."""

    job: str
    status: str  # completed, failed, skipped
    summary: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    job_id: int | None = None
    duration_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status != "failed"

    def to_dict(self) -> dict[str, Any]:
        return {
            "job": self.job,
            "status": self.status,
            "job_id": self.job_id,
            "duration_seconds": round(self.duration_seconds, 3),
            "error": self.error,
            "summary": self.summary,
        }


@dataclass
class GroupRunResult:
    """Per-item results of a grouped fan-out, in input order.

    Items whose worker raised hold the exception instead of a result.
    """

    results: list[Any] = field(default_factory=list)
    failed: int = 0

    @property
    def processed(self) -> int:
        return len(self.results)

    def successes(self) -> list[Any]:
        return [r for r in self.results if not isinstance(r, BaseException)]


async def run_in_groups(
    items: Iterable[T],
    worker: Callable[[T], Awaitable[R]],
    concurrency: int,
    delay_seconds: float = 0.0,
) -> GroupRunResult:
    """
    Run ``worker`` over ``items`` in groups of ``concurrency``.

    Groups run concurrently with ``asyncio.gather``; ``delay_seconds`` is
    slept between groups. A raising worker is logged and counted, never
    propagated.
    """
    items = list(items)
    outcome = GroupRunResult()

    for start in range(0, len(items), concurrency):
        if start:
            await asyncio.sleep(delay_seconds)
        group = items[start : start + concurrency]
        results = await asyncio.gather(*(worker(item) for item in group), return_exceptions=True)
        for item, result in zip(group, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, Exception):
                outcome.failed += 1
                logger.error("Batch item failed", item=repr(item), error=str(result), error_type=type(result).__name__)
            outcome.results.append(result)

    return outcome


class JobRunner:
    """Runs job ticks under their locks and records them."""

    def __init__(self, locks: LockService, job_logs: JobRepository | None = None) -> None:
        self._locks = locks
        self._job_logs = job_logs
        self._running: set[str] = set()
        self._metrics = get_metrics()

    def is_running(self, name: str) -> bool:
        return name in self._running

    async def run(self, name: str, func: JobFunc, lock_ttl: int, target_id: str | None = None) -> JobOutcome:
        """Run one tick of job ``name`` unless another run holds it."""
        if name in self._running:
            logger.debug("Job already running in this process", job=name)
            self._metrics.record_job(name, "skipped")
            return JobOutcome(name, "skipped", summary={"reason": "running"})

        lock_key = f"cron:{name}"
        if not await self._locks.try_acquire(lock_key, lock_ttl):
            logger.debug("Job lock held elsewhere", job=name)
            self._metrics.record_job(name, "skipped")
            return JobOutcome(name, "skipped", summary={"reason": "locked"})

        self._running.add(name)
        started = time.monotonic()
        bind_context(job=name, run_id=uuid.uuid4().hex[:8])
        outcome = JobOutcome(name, "completed")

        try:
            record = await self._job_logs.start(name, target_id) if self._job_logs else None
            outcome.job_id = record.id if record else None
            try:
                outcome.summary = await func() or {}
            except Exception as e:
                outcome.status = "failed"
                outcome.error = f"{type(e).__name__}: {e}"
                logger.exception("Job failed", error=str(e))
                if record is not None:
                    await self._job_logs.fail(record.id, outcome.error)
            else:
                if record is not None:
                    await self._job_logs.complete(record.id, outcome.summary)
        except Exception as e:
            # The job log itself is unreachable
            outcome.status = "failed"
            outcome.error = outcome.error or f"{type(e).__name__}: {e}"
            logger.error("Job record could not be written", error=str(e))
        finally:
            outcome.duration_seconds = time.monotonic() - started
            self._running.discard(name)
            await self._locks.release(lock_key)
            clear_context("job", "run_id")

        self._metrics.record_job(name, outcome.status, outcome.duration_seconds)
        logger.info(
            "Job finished",
            job=name,
            status=outcome.status,
            duration_seconds=round(outcome.duration_seconds, 2),
            **{k: v for k, v in outcome.summary.items() if isinstance(v, (int, float, str, bool))},
        )
        return outcome
