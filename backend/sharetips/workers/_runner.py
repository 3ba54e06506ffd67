"""
backend/sharetips/workers/_runner.py

Purpose:
    Execution harness shared by every scheduled job: one active run per job
    per process, run records, metrics and a single failure boundary so a
    crashing job never takes the scheduler down.

Dependencies:
    - sharetips.workers._state
    - sharetips.monitoring.engine_metrics
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from sharetips.monitoring.engine_metrics import (
    METRIC_JOB_DURATION,
    METRIC_JOB_RUNS,
    METRIC_JOB_SKIPPED,
    observe_latency,
)
from sharetips.workers._state import record_run

logger = logging.getLogger("sharetips.jobs")

JobFunc = Callable[[], Awaitable[Optional[dict[str, Any]]]]


class JobAlreadyRunningError(RuntimeError):
    """Raised when a manual run is requested while the same job is active."""


class JobRunner:
    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._active: dict[str, asyncio.Task] = {}

    def _lock(self, job_id: str) -> asyncio.Lock:
        if job_id not in self._locks:
            self._locks[job_id] = asyncio.Lock()
        return self._locks[job_id]

    def is_running(self, job_id: str) -> bool:
        return self._lock(job_id).locked()

    def scheduled(self, job_id: str, func: JobFunc) -> Callable[[], Awaitable[None]]:
        """Wrap a job for the scheduler: overlapping ticks are skipped."""

        async def _tick() -> None:
            try:
                await self.run(job_id, func)
            except JobAlreadyRunningError:
                METRIC_JOB_SKIPPED.labels(job=job_id).inc()
                logger.info("Skipping %s tick: previous run still active", job_id)

        _tick.__name__ = f"tick_{job_id}"
        return _tick

    async def run(self, job_id: str, func: JobFunc) -> dict[str, Any]:
        """Run a job once. Raises JobAlreadyRunningError if it is active.

        Failures are logged and recorded, never raised: the next tick retries.
        """
        lock = self._lock(job_id)
        if lock.locked():
            raise JobAlreadyRunningError(job_id)

        async with lock:
            self._active[job_id] = asyncio.current_task()
            try:
                with observe_latency(METRIC_JOB_DURATION.labels(job=job_id)):
                    summary = await func()
            except Exception as exc:
                logger.exception("Job %s failed", job_id)
                METRIC_JOB_RUNS.labels(job=job_id, outcome="failed").inc()
                await self._safe_record(job_id, "failed", None, f"{type(exc).__name__}: {exc}")
                return {"id": job_id, "outcome": "failed", "summary": None}
            finally:
                self._active.pop(job_id, None)

            METRIC_JOB_RUNS.labels(job=job_id, outcome="ok").inc()
            await self._safe_record(job_id, "ok", summary, None)
            return {"id": job_id, "outcome": "ok", "summary": summary}

    async def _safe_record(
        self, job_id: str, outcome: str, summary: Optional[dict], error: Optional[str],
    ) -> None:
        try:
            await record_run(job_id, outcome, summary, error)
        except Exception:
            logger.warning("Could not persist run record for %s", job_id, exc_info=True)

    async def drain(self, timeout: float) -> None:
        """Wait for in-flight runs to finish (used on shutdown)."""
        tasks = [t for t in self._active.values() if t is not None and not t.done()]
        if not tasks:
            return
        logger.info("Waiting up to %.0fs for %d running job(s)", timeout, len(tasks))
        done, pending = await asyncio.wait(tasks, timeout=timeout)
        if pending:
            logger.warning(
                "%d job(s) still running after %.0fs; they resume on next start",
                len(pending), timeout,
            )


job_runner = JobRunner()
