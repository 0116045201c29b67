from __future__ import annotations

import asyncio

from sqlalchemy import select, update

from app.database import Database
from app.db_models import Gallery, Group, Performer, Scene, Studio, Tag
from app.services.counters import CounterService, counter_scope
from app.services.sync import SyncService


def test_counter_scope_follows_dependencies() -> None:
    assert counter_scope(["scene"]) == {"performer", "studio", "tag", "group"}
    assert counter_scope(["image"]) == {"performer", "studio", "tag", "gallery"}
    assert counter_scope([]) == set()


async def _counts(database: Database) -> dict[str, dict[str, tuple]]:
    async with database.session_factory() as session:
        performers = (await session.execute(select(Performer))).scalars().all()
        studios = (await session.execute(select(Studio))).scalars().all()
        tags = (await session.execute(select(Tag))).scalars().all()
        galleries = (await session.execute(select(Gallery))).scalars().all()
        groups = (await session.execute(select(Group))).scalars().all()
    return {
        "performer": {
            row.id: (row.scene_count, row.image_count, row.gallery_count) for row in performers
        },
        "studio": {
            row.id: (row.scene_count, row.image_count, row.gallery_count, row.group_count)
            for row in studios
        },
        "tag": {row.id: (row.scene_count, row.image_count, row.gallery_count) for row in tags},
        "gallery": {row.id: (row.image_count,) for row in galleries},
        "group": {row.id: (row.scene_count,) for row in groups},
    }


def test_counters_reflect_synced_library(database_url, catalog, settings) -> None:
    async def runner():
        database = Database(database_url)
        await database.create_all()
        try:
            await SyncService(database.session_factory, catalog, settings).run_full_sync()
            return await _counts(database)
        finally:
            await database.dispose()

    counts = asyncio.run(runner())

    # Alice: scenes 1 and 3, both images through gallery 1, gallery 1.
    assert counts["performer"]["1"] == (2, 2, 1)
    assert counts["performer"]["2"] == (2, 0, 0)
    assert counts["studio"]["1"] == (1, 1, 0, 1)
    assert counts["studio"]["2"] == (1, 1, 1, 0)
    assert counts["tag"]["1"] == (1, 0, 0)
    assert counts["tag"]["2"] == (0, 1, 1)
    assert counts["gallery"] == {"1": (2,), "2": (1,)}
    assert counts["group"] == {"1": (1,)}


def test_rebuild_ignores_deleted_items(database_url, catalog, settings) -> None:
    async def runner():
        database = Database(database_url)
        await database.create_all()
        try:
            await SyncService(database.session_factory, catalog, settings).run_full_sync()
            async with database.session_factory() as session:
                async with session.begin():
                    await session.execute(
                        update(Scene).where(Scene.id == "3").values(deleted_at=Scene.synced_at)
                    )
            await CounterService(database.session_factory).rebuild_counters({"performer"})
            return await _counts(database)
        finally:
            await database.dispose()

    counts = asyncio.run(runner())

    assert counts["performer"]["1"][0] == 1
    assert counts["performer"]["2"][0] == 1
