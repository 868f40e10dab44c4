"""
Scheduler service - runs the periodic jobs.

Each job class gets its own loop task with its own cadence, so a slow feed
scan never delays channel polling. Every tick goes through ``JobRunner``,
which provides the cross-process locking; running several scheduler
processes is safe.

Features:
- Independent cadence per job class
- Graceful shutdown
- Health reporting
"""

import asyncio
import time
from typing import Any

import structlog

from src.scheduler.jobs import JobSpec
from src.scheduler.runner import JobOutcome, JobRunner

logger = structlog.get_logger(__name__)


class SchedulerService:
    """
    Runs job loops until stopped.

    Usage:
        service = SchedulerService(runner, jobs.specs())
        await service.start()  # Runs until stopped
    """

    def __init__(self, runner: JobRunner, specs: list[JobSpec]) -> None:
        self._runner = runner
        self._specs = {spec.name: spec for spec in specs}
        self._running = False
        self._tasks: list[asyncio.Task] = []
        self._last_outcomes: dict[str, JobOutcome] = {}

        logger.info(
            "Scheduler initialized",
            jobs={name: spec.interval_seconds for name, spec in self._specs.items()},
        )

    @property
    def job_names(self) -> list[str]:
        return list(self._specs)

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """
        Start all job loops.

        Runs until stop() is called or the task is cancelled.
        """
        self._running = True
        logger.info("Starting scheduler")

        try:
            self._tasks = [
                asyncio.create_task(self._run_loop(spec), name=f"job_{spec.name}")
                for spec in self._specs.values()
            ]
            await asyncio.gather(*self._tasks, return_exceptions=True)
        except asyncio.CancelledError:
            logger.info("Scheduler cancelled")
        finally:
            self._tasks.clear()
            self._running = False
            logger.info("Scheduler stopped")

    async def stop(self) -> None:
        """Stop all job loops."""
        logger.info("Stopping scheduler")
        self._running = False

        for task in self._tasks:
            task.cancel()

        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    async def _run_loop(self, spec: JobSpec) -> None:
        logger.info("Starting job loop", job=spec.name, interval_seconds=spec.interval_seconds)

        while self._running:
            started = time.monotonic()
            try:
                self._last_outcomes[spec.name] = await self._runner.run(spec.name, spec.func, spec.lock_ttl)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Job loop error", job=spec.name, error=str(e))

            elapsed = time.monotonic() - started
            try:
                await asyncio.sleep(max(0.0, spec.interval_seconds - elapsed))
            except asyncio.CancelledError:
                break

        logger.info("Job loop stopped", job=spec.name)

    async def run_once(self, name: str) -> JobOutcome:
        """
        Run a single locked tick of one job class.

        Raises:
            KeyError: Unknown job name.
        """
        spec = self._specs[name]
        outcome = await self._runner.run(spec.name, spec.func, spec.lock_ttl)
        self._last_outcomes[name] = outcome
        return outcome

    async def health_check(self) -> dict[str, Any]:
        return {
            "running": self._running,
            "active_tasks": len([t for t in self._tasks if not t.done()]),
            "jobs": {
                name: outcome.to_dict() for name, outcome in self._last_outcomes.items()
            },
        }
