"""
UrlRefreshScheduler: one background task that keeps presigned URLs fresh.

Each run, in order:
  1. refresh URLs expiring within the look-ahead window
  2. refresh URLs that already expired while still referenced
     (skipped when ``refresh_expired_urls`` is off)
  3. retire stale, unreferenced uploads

Runs never overlap. A timer tick that finds a run in progress is skipped;
a manual ``run_now()`` waits for the current run and then starts its own.
Stopping sets an event: no further ticks start and an in-flight run stops
between items.
"""

from __future__ import annotations

import asyncio
import time
from datetime import datetime, timedelta

import structlog

from portfolio.config.settings import Settings
from portfolio.core.metrics import scheduler_run_duration, scheduler_runs_total
from portfolio.db.base import utcnow
from portfolio.db.session import SessionFactory
from portfolio.schemas.scheduler import RefreshReport, RunResult, SchedulerStatus
from portfolio.services.resources import ResourceService
from portfolio.services.storage import ObjectStorage
from portfolio.services.uploads import UploadService

_log = structlog.get_logger(__name__)


class UrlRefreshScheduler:
    """
    Usage:
        scheduler = UrlRefreshScheduler(session_factory, storage, settings)
        scheduler.start()
        ...
        await scheduler.stop()
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        storage: ObjectStorage,
        settings: Settings,
    ) -> None:
        self._session_factory = session_factory
        self._storage = storage
        self._settings = settings
        self._interval = settings.scheduler_interval_seconds
        self._lock = asyncio.Lock()
        self._stop = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self._next_run_at: datetime | None = None
        self._last_run_at: datetime | None = None
        self._last_result: RunResult | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def last_result(self) -> RunResult | None:
        return self._last_result

    def start(self) -> None:
        if self.running:
            return
        self._stop = asyncio.Event()
        self._task = asyncio.create_task(self._loop(), name="url-refresh-scheduler")
        _log.info("scheduler_started", interval_seconds=self._interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stop.set()
        try:
            await self._task
        finally:
            self._task = None
            self._next_run_at = None
            self._stop = asyncio.Event()
        _log.info("scheduler_stopped")

    async def _loop(self) -> None:
        while not self._stop.is_set():
            self._next_run_at = utcnow() + timedelta(seconds=self._interval)
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self._interval)
                return
            except TimeoutError:
                pass
            await self._tick()

    async def _tick(self) -> None:
        if self._lock.locked():
            scheduler_runs_total.labels(trigger="timer", status="skipped").inc()
            _log.warning("scheduler_tick_skipped", reason="run in progress")
            return
        await self._run("timer")

    async def run_now(self) -> RunResult:
        """Run a full pass immediately, after any run already in progress."""
        return await self._run("manual")

    async def _run(self, trigger: str) -> RunResult:
        async with self._lock:
            started = utcnow()
            clock = time.perf_counter()
            log = _log.bind(trigger=trigger)
            log.info("scheduler_run_started")

            result: RunResult
            try:
                result = await self._passes(started)
                status = "completed"
            except Exception as exc:
                # Reported in the result; the timer loop keeps going
                log.exception("scheduler_run_failed")
                result = RunResult(
                    started_at=started,
                    finished_at=utcnow(),
                    expiring=RefreshReport(),
                    error=str(exc),
                )
                status = "failed"

            scheduler_run_duration.observe(time.perf_counter() - clock)
            scheduler_runs_total.labels(trigger=trigger, status=status).inc()
            self._last_run_at = started
            self._last_result = result
            log.info(
                "scheduler_run_finished",
                status=status,
                refreshed=result.expiring.refreshed,
                failed=result.expiring.failed,
                duration_ms=int((time.perf_counter() - clock) * 1000),
            )
            return result

    async def _passes(self, started: datetime) -> RunResult:
        stop = self._stop
        async with self._session_factory() as db:
            resources = ResourceService(db, self._storage, self._settings)
            expiring = await resources.refresh_expiring(stop=stop)

            expired = None
            if self._settings.refresh_expired_urls and not stop.is_set():
                expired = await resources.refresh_expired(stop=stop)

            cleanup = None
            if not stop.is_set():
                uploads = UploadService(db, self._storage, self._settings)
                cleanup = await uploads.cleanup_stale(stop=stop)

        return RunResult(
            started_at=started,
            finished_at=utcnow(),
            expiring=expiring,
            expired=expired,
            cleanup=cleanup,
        )

    def status(self) -> SchedulerStatus:
        return SchedulerStatus(
            enabled=self._settings.scheduler_enabled,
            running=self.running,
            run_in_progress=self._lock.locked(),
            interval_seconds=self._interval,
            next_run_at=self._next_run_at if self.running else None,
            last_run_at=self._last_run_at,
            last_result=self._last_result,
        )
