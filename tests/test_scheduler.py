from __future__ import annotations

import asyncio

from app.services.scheduler import SyncScheduler
from app.services.sync import SyncReport
from app.utils import utcnow


class BlockingSync:
    """Stand-in sync service that waits until released."""

    def __init__(self) -> None:
        self.release = asyncio.Event()
        self.calls: list[tuple[str, str | None]] = []

    async def _run(self, mode: str) -> SyncReport:
        await self.release.wait()
        return SyncReport(mode=mode, started_at=utcnow(), finished_at=utcnow())

    async def run_full_sync(self) -> SyncReport:
        self.calls.append(("full", None))
        return await self._run("full")

    async def run_incremental_sync(self, since: str | None = None) -> SyncReport:
        self.calls.append(("incremental", since))
        return await self._run("incremental")


def test_trigger_while_running_is_dropped(settings) -> None:
    async def runner():
        sync = BlockingSync()
        scheduler = SyncScheduler(sync, settings)
        first = scheduler.trigger_full_sync()
        await asyncio.sleep(0)
        second = scheduler.trigger_incremental_sync()
        inline = await scheduler.run_sync("incremental")
        running = scheduler.get_sync_status().to_payload()
        sync.release.set()
        report = await scheduler.wait_for_idle()
        idle = scheduler.get_sync_status().to_payload()
        await scheduler.stop()
        return sync, first, second, inline, running, report, idle

    sync, first, second, inline, running, report, idle = asyncio.run(runner())

    assert first is True
    assert second is False
    assert inline is None
    assert sync.calls == [("full", None)]
    assert running["state"] == "running"
    assert running["runningMode"] == "full"
    assert report is not None and report.mode == "full"
    assert idle["state"] == "idle"
    assert idle["runningMode"] is None
    assert idle["lastFullRun"] == idle["lastRun"]
    assert idle["lastReport"]["mode"] == "full"


def test_incremental_passes_since_and_keeps_last_full_run(settings) -> None:
    async def runner():
        sync = BlockingSync()
        sync.release.set()
        scheduler = SyncScheduler(sync, settings)
        report = await scheduler.run_sync("incremental", since="2024-01-01T00:00:00Z")
        return sync, report, scheduler.get_sync_status()

    sync, report, status = asyncio.run(runner())

    assert sync.calls == [("incremental", "2024-01-01T00:00:00Z")]
    assert report is not None and report.mode == "incremental"
    assert status.last_run is not None
    assert status.last_full_run is None


def test_wait_for_idle_without_job_returns_last_report(settings) -> None:
    async def runner():
        scheduler = SyncScheduler(BlockingSync(), settings)
        return await scheduler.wait_for_idle()

    assert asyncio.run(runner()) is None
