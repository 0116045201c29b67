"""Background scheduling and on-demand triggering of sync runs."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Literal

from ..config import Settings
from ..utils import utcnow
from .sync import SyncMode, SyncReport, SyncService

logger = logging.getLogger(__name__)

SchedulerState = Literal["idle", "running"]


@dataclass(slots=True)
class SyncStatus:
    """Snapshot of the scheduler for status endpoints."""

    state: SchedulerState
    running_mode: SyncMode | None
    last_run: datetime | None
    last_full_run: datetime | None
    last_report: SyncReport | None

    def to_payload(self) -> dict[str, Any]:
        return {
            "state": self.state,
            "runningMode": self.running_mode,
            "lastRun": self.last_run.isoformat() if self.last_run else None,
            "lastFullRun": self.last_full_run.isoformat() if self.last_full_run else None,
            "lastReport": self.last_report.to_payload() if self.last_report else None,
        }


class SyncScheduler:
    """Runs at most one sync at a time, periodically and on request."""

    def __init__(self, sync_service: SyncService, settings: Settings):
        self._sync = sync_service
        self._settings = settings
        self._interval_seconds = settings.sync_interval_minutes * 60
        self._full_interval = timedelta(hours=settings.full_sync_interval_hours)
        self._lock = asyncio.Lock()
        self._refresh_task: asyncio.Task[None] | None = None
        self._job: asyncio.Task[SyncReport | None] | None = None
        self._running_mode: SyncMode | None = None
        self._last_run: datetime | None = None
        self._last_full_run: datetime | None = None
        self._last_report: SyncReport | None = None

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    async def start(self) -> None:
        """Launch the periodic loop and, if configured, an initial sync."""

        if self._settings.sync_on_startup:
            self._schedule("incremental")
        if self._refresh_task is None:
            self._refresh_task = asyncio.create_task(self._refresh_loop())

    async def stop(self) -> None:
        """Stop the background loop and any sync still in flight."""

        for task in (self._refresh_task, self._job):
            if task is None or task.done():
                continue
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        self._refresh_task = None
        self._job = None

    def trigger_full_sync(self) -> bool:
        """Start a full sync in the background.

        Returns ``False`` when a sync is already running; the request is
        dropped rather than queued.
        """

        return self._schedule("full")

    def trigger_incremental_sync(self, since: str | None = None) -> bool:
        """Start an incremental sync in the background; see ``trigger_full_sync``."""

        return self._schedule("incremental", since=since)

    def get_sync_status(self) -> SyncStatus:
        return SyncStatus(
            state="running" if self.is_running else "idle",
            running_mode=self._running_mode,
            last_run=self._last_run,
            last_full_run=self._last_full_run,
            last_report=self._last_report,
        )

    async def wait_for_idle(self) -> SyncReport | None:
        """Wait for the in-flight background sync, returning its report."""

        job = self._job
        if job is None:
            return self._last_report
        return await job

    async def run_sync(
        self, mode: SyncMode, *, since: str | None = None
    ) -> SyncReport | None:
        """Run a sync inline, or return ``None`` if one is already running."""

        if self._lock.locked():
            logger.info("Sync already running, ignoring %s request", mode)
            return None
        async with self._lock:
            self._running_mode = mode
            try:
                if mode == "full":
                    report = await self._sync.run_full_sync()
                else:
                    report = await self._sync.run_incremental_sync(since=since)
            finally:
                self._running_mode = None
            self._last_run = report.finished_at or utcnow()
            if mode == "full":
                self._last_full_run = self._last_run
            self._last_report = report
            return report

    def _schedule(self, mode: SyncMode, *, since: str | None = None) -> bool:
        if self._lock.locked() or (self._job is not None and not self._job.done()):
            logger.info("Sync already running, ignoring %s trigger", mode)
            return False

        async def _runner() -> SyncReport | None:
            try:
                return await self.run_sync(mode, since=since)
            except Exception as exc:  # pragma: no cover - background safety net
                logger.exception("Background %s sync failed: %s", mode, exc)
                return None

        self._job = asyncio.create_task(_runner())
        return True

    def _next_mode(self) -> SyncMode:
        if self._last_full_run is None:
            return "full"
        if utcnow() - self._last_full_run >= self._full_interval:
            return "full"
        return "incremental"

    async def _refresh_loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval_seconds)
            try:
                await self.run_sync(self._next_mode())
            except Exception as exc:  # pragma: no cover - background safety net
                logger.exception("Scheduled sync failed: %s", exc)
