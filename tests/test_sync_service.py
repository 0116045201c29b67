"""Sync engine behaviour against an in-memory catalog."""

from __future__ import annotations

import asyncio

from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from app.database import Database
from app.db_models import (
    Scene,
    SceneGroup,
    ScenePerformer,
    SyncState,
    TagParent,
)
from app.services.sync import SyncService


def _service(database: Database, catalog, settings) -> SyncService:
    return SyncService(database.session_factory, catalog, settings)


async def _snapshot(database: Database) -> dict[str, tuple]:
    async with database.session_factory() as session:
        rows = (await session.execute(select(Scene))).scalars().all()
        return {
            scene.id: (scene.title, scene.studio_id, scene.duration, scene.deleted_at)
            for scene in rows
        }


def test_full_sync_mirrors_every_type(database_url, catalog, settings) -> None:
    async def runner():
        database = Database(database_url)
        await database.create_all()
        try:
            report = await _service(database, catalog, settings).run_full_sync()
            async with database.session_factory() as session:
                scenes = (await session.execute(select(Scene).order_by(Scene.id))).scalars().all()
                links = (await session.execute(select(ScenePerformer))).scalars().all()
                groups = (await session.execute(select(SceneGroup))).scalars().all()
                parents = (await session.execute(select(TagParent))).scalars().all()
                states = (await session.execute(select(SyncState))).scalars().all()
            return report, scenes, links, groups, parents, states
        finally:
            await database.dispose()

    report, scenes, links, groups, parents, states = asyncio.run(runner())

    assert report.failed_types == []
    assert report.result_for("scene").created == 4
    assert [scene.id for scene in scenes] == ["1", "10", "2", "3"]
    morning = next(scene for scene in scenes if scene.id == "1")
    assert morning.duration == 600
    assert morning.file_path == "/media/morning.mp4"
    assert {(link.scene_id, link.performer_id) for link in links} == {
        ("1", "1"),
        ("2", "2"),
        ("3", "1"),
        ("3", "2"),
    }
    assert [(group.scene_id, group.group_id, group.scene_index) for group in groups] == [
        ("1", "1", 1)
    ]
    assert {(edge.child_id, edge.parent_id) for edge in parents} == {("2", "1"), ("3", "2")}
    assert len(states) == 7
    assert all(state.last_full_sync is not None for state in states)
    assert all(state.last_error is None for state in states)


def test_second_full_sync_changes_nothing(database_url, catalog, settings) -> None:
    """Running a full sync twice against an unchanged upstream is a no-op."""

    async def runner():
        database = Database(database_url)
        await database.create_all()
        try:
            service = _service(database, catalog, settings)
            await service.run_full_sync()
            before = await _snapshot(database)
            report = await service.run_full_sync()
            after = await _snapshot(database)
            return report, before, after
        finally:
            await database.dispose()

    report, before, after = asyncio.run(runner())

    assert before == after
    for result in report.results:
        assert result.created == 0
        assert result.updated == 0
        assert result.deleted == 0
    assert report.result_for("scene").unchanged == 4
    assert report.changed_types == set()


def test_missing_records_are_soft_deleted_and_restored(database_url, catalog, settings) -> None:
    async def runner():
        database = Database(database_url)
        await database.create_all()
        try:
            service = _service(database, catalog, settings)
            await service.run_full_sync()
            removed = next(record for record in catalog.records["scene"] if record["id"] == "3")
            catalog.remove("scene", "3")
            deletion = await service.run_full_sync()
            deleted_state = await _snapshot(database)
            catalog.records["scene"].append(removed)
            restore = await service.run_full_sync()
            restored_state = await _snapshot(database)
            return deletion, deleted_state, restore, restored_state
        finally:
            await database.dispose()

    deletion, deleted_state, restore, restored_state = asyncio.run(runner())

    assert deletion.result_for("scene").deleted == 1
    assert deleted_state["3"][3] is not None
    assert deleted_state["1"][3] is None
    assert restore.result_for("scene").created == 1
    assert restored_state["3"][3] is None


def test_malformed_records_are_skipped(database_url, catalog, settings) -> None:
    catalog.records["scene"].append({"id": "bad id", "title": "Broken"})
    catalog.records["scene"].append({"id": "20", "title": "Fine", "organized": "maybe"})

    async def runner():
        database = Database(database_url)
        await database.create_all()
        try:
            report = await _service(database, catalog, settings).run_full_sync()
            snapshot = await _snapshot(database)
            return report, snapshot
        finally:
            await database.dispose()

    report, snapshot = asyncio.run(runner())
    result = report.result_for("scene")

    assert result.skipped == 2
    assert len(result.errors) == 2
    assert result.created == 4
    assert set(snapshot) == {"1", "2", "3", "10"}


def test_fetch_failure_only_aborts_that_type(database_url, catalog, settings) -> None:
    catalog.failures.add("performer")

    async def runner():
        database = Database(database_url)
        await database.create_all()
        try:
            report = await _service(database, catalog, settings).run_full_sync()
            async with database.session_factory() as session:
                performer_state = await session.get(SyncState, "performer")
                scene_state = await session.get(SyncState, "scene")
                links = (await session.execute(select(ScenePerformer))).scalars().all()
            snapshot = await _snapshot(database)
            return report, performer_state, scene_state, links, snapshot
        finally:
            await database.dispose()

    report, performer_state, scene_state, links, snapshot = asyncio.run(runner())

    assert report.failed_types == ["performer"]
    assert performer_state.last_error == "Stash is unavailable"
    assert performer_state.last_full_sync is None
    assert scene_state.last_full_sync is not None
    assert set(snapshot) == {"1", "2", "3", "10"}
    # Performer references cannot resolve while performers are missing.
    assert links == []
    assert report.result_for("scene").dropped_references == 4


def test_incremental_sync_only_touches_changed_records(database_url, catalog, settings) -> None:
    async def runner():
        database = Database(database_url)
        await database.create_all()
        try:
            service = _service(database, catalog, settings)
            await service.run_full_sync()
            catalog.calls.clear()
            catalog.replace(
                "scene",
                "2",
                title="Evening (remastered)",
                performers=[{"id": "1"}],
                updated_at="2024-02-01T08:00:00Z",
            )
            report = await service.run_incremental_sync()
            snapshot = await _snapshot(database)
            async with database.session_factory() as session:
                state = await session.get(SyncState, "scene")
                links = (
                    await session.execute(
                        select(ScenePerformer).where(ScenePerformer.scene_id == "2")
                    )
                ).scalars().all()
            return report, snapshot, state, links
        finally:
            await database.dispose()

    report, snapshot, state, links = asyncio.run(runner())
    result = report.result_for("scene")

    assert all(mode == "changed" for mode, _ in catalog.calls)
    assert result.mode == "incremental"
    assert result.updated == 1
    assert result.created == 0
    assert snapshot["2"][0] == "Evening (remastered)"
    assert [link.performer_id for link in links] == ["1"]
    assert state.cursor == "2024-02-01T08:00:00Z"
    assert state.last_incremental_sync is not None


def test_incremental_sync_before_any_full_sync_fetches_everything(
    database_url, catalog, settings
) -> None:
    async def runner():
        database = Database(database_url)
        await database.create_all()
        try:
            report = await _service(database, catalog, settings).run_incremental_sync()
            snapshot = await _snapshot(database)
            return report, snapshot
        finally:
            await database.dispose()

    report, snapshot = asyncio.run(runner())

    assert all(mode == "all" for mode, _ in catalog.calls)
    assert all(result.mode == "full" for result in report.results)
    assert set(snapshot) == {"1", "2", "3", "10"}


def test_links_dropped_during_an_outage_return_on_the_next_full_sync(
    database_url, catalog, settings
) -> None:
    async def runner():
        database = Database(database_url)
        await database.create_all()
        try:
            service = _service(database, catalog, settings)
            await service.run_full_sync()
            catalog.records["performer"].append(
                {"id": "9", "name": "Nia", "created_at": "2024-02-01T00:00:00Z", "updated_at": "2024-02-01T00:00:00Z"}
            )
            catalog.replace(
                "scene", "10", performers=[{"id": "9"}], updated_at="2024-02-02T00:00:00Z"
            )
            catalog.failures.add("performer")
            outage = await service.run_full_sync()
            catalog.failures.clear()
            recovery = await service.run_full_sync()
            settled = await service.run_full_sync()
            async with database.session_factory() as session:
                links = (
                    await session.execute(
                        select(ScenePerformer.performer_id).where(
                            ScenePerformer.scene_id == "10"
                        )
                    )
                ).scalars().all()
            return outage, recovery, settled, links
        finally:
            await database.dispose()

    outage, recovery, settled, links = asyncio.run(runner())

    assert outage.result_for("scene").dropped_references == 1
    assert recovery.result_for("performer").created == 1
    assert recovery.result_for("scene").relinked == 1
    assert recovery.result_for("scene").updated == 0
    assert links == ["9"]
    assert settled.changed_types == set()


def test_malformed_nested_file_skips_only_that_record(database_url, catalog, settings) -> None:
    catalog.records["scene"].append({"id": "30", "files": [{"duration": "abc"}]})

    async def runner():
        database = Database(database_url)
        await database.create_all()
        try:
            report = await _service(database, catalog, settings).run_full_sync()
            snapshot = await _snapshot(database)
            return report, snapshot
        finally:
            await database.dispose()

    report, snapshot = asyncio.run(runner())
    scene_result = report.result_for("scene")

    assert scene_result.skipped == 1
    assert "files" in scene_result.errors[0]
    assert set(snapshot) == {"1", "2", "3", "10"}
    assert report.result_for("image").created == 3
    assert report.finished_at is not None


def test_database_error_rolls_back_the_whole_type(
    monkeypatch, database_url, catalog, settings
) -> None:
    original = SyncService._record_progress

    async def failing_progress(self, session, entity_type, result, cursor):
        if entity_type == "scene":
            raise OperationalError("UPDATE sync_state", {}, Exception("disk I/O error"))
        await original(self, session, entity_type, result, cursor)

    monkeypatch.setattr(SyncService, "_record_progress", failing_progress)

    async def runner():
        database = Database(database_url)
        await database.create_all()
        try:
            report = await _service(database, catalog, settings).run_full_sync()
            snapshot = await _snapshot(database)
            async with database.session_factory() as session:
                links = (await session.execute(select(ScenePerformer))).scalars().all()
                scene_state = await session.get(SyncState, "scene")
            return report, snapshot, links, scene_state
        finally:
            await database.dispose()

    report, snapshot, links, scene_state = asyncio.run(runner())

    assert report.failed_types == ["scene"]
    assert report.result_for("scene").error == "Database error: OperationalError"
    assert snapshot == {}
    assert links == []
    assert scene_state.last_full_sync is None
    assert scene_state.last_error == "Database error: OperationalError"
    assert report.result_for("image").created == 3
