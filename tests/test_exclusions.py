from __future__ import annotations

import asyncio

import pytest
from sqlalchemy import select

from app.database import Database
from app.db_models import UserExcludedEntity
from app.errors import FilterValidationError
from app.services.exclusions import ExclusionService
from app.services.sync import SyncService


async def _excluded(database: Database, user_id: int) -> dict[tuple[str, str], str]:
    async with database.session_factory() as session:
        rows = (
            await session.execute(
                select(UserExcludedEntity).where(UserExcludedEntity.user_id == user_id)
            )
        ).scalars().all()
    return {(row.entity_type, row.entity_id): row.reason for row in rows}


def test_tag_restriction_cascades_to_tagged_entities(database_url, catalog, settings) -> None:
    async def runner():
        database = Database(database_url)
        await database.create_all()
        try:
            await SyncService(database.session_factory, catalog, settings).run_full_sync()
            service = ExclusionService(database.session_factory)
            await service.restrict(4, "tag", "4")
            await service.hide(4, "tag", "4")
            return await _excluded(database, 4)
        finally:
            await database.dispose()

    excluded = asyncio.run(runner())

    # Restriction wins over the hidden marker for the same entity.
    assert excluded[("tag", "4")] == "restricted"
    assert excluded[("performer", "1")] == "cascade"
    assert excluded[("image", "2")] == "cascade"
    # Scenes 1 and 3 carry tag 4 only through inheritance from Alice.
    assert excluded[("scene", "1")] == "cascade"
    assert excluded[("scene", "3")] == "cascade"
    assert ("scene", "2") not in excluded


def test_studio_hide_cascades_through_reference_columns(database_url, catalog, settings) -> None:
    async def runner():
        database = Database(database_url)
        await database.create_all()
        try:
            await SyncService(database.session_factory, catalog, settings).run_full_sync()
            service = ExclusionService(database.session_factory)
            await service.hide(2, "studio", "1")
            hidden = await _excluded(database, 2)
            await service.unhide(2, "studio", "1")
            cleared = await _excluded(database, 2)
            return hidden, cleared
        finally:
            await database.dispose()

    hidden, cleared = asyncio.run(runner())

    assert hidden == {
        ("studio", "1"): "hidden",
        ("scene", "2"): "cascade",
        ("image", "2"): "cascade",
        ("group", "1"): "cascade",
        ("gallery", "2"): "empty",
        ("tag", "3"): "empty",
    }
    assert cleared == {}


def test_unknown_entity_type_is_rejected(database_url, settings) -> None:
    async def runner():
        database = Database(database_url)
        await database.create_all()
        try:
            await ExclusionService(database.session_factory).hide(1, "movie", "1")
        finally:
            await database.dispose()

    with pytest.raises(FilterValidationError):
        asyncio.run(runner())


def test_entities_left_without_visible_content_are_excluded_as_empty(
    database_url, catalog, settings
) -> None:
    async def runner():
        database = Database(database_url)
        await database.create_all()
        try:
            await SyncService(database.session_factory, catalog, settings).run_full_sync()
            service = ExclusionService(database.session_factory)
            await service.hide(7, "performer", "1")
            return await _excluded(database, 7)
        finally:
            await database.dispose()

    excluded = asyncio.run(runner())
    empty = {key for key, reason in excluded.items() if reason == "empty"}

    # Child Studio only had Morning and the inherited gallery image.
    assert ("studio", "2") in empty
    assert ("group", "1") in empty
    # Indoor only tagged Alice.
    assert ("tag", "4") in empty
    # House Style still tags Child Studio; emptiness does not chain.
    assert ("tag", "5") not in excluded
    # Outdoor and Beach keep live child tags.
    assert ("tag", "1") not in excluded
    assert ("tag", "2") not in excluded
    assert ("performer", "2") not in excluded
    # Both galleries only hold images that inherit Alice from Holiday.
    assert ("gallery", "1") in empty
    assert ("gallery", "2") in empty
    assert excluded[("performer", "1")] == "hidden"


def test_users_without_markers_get_no_empty_exclusions(
    database_url, catalog, settings
) -> None:
    async def runner():
        database = Database(database_url)
        await database.create_all()
        try:
            await SyncService(database.session_factory, catalog, settings).run_full_sync()
            service = ExclusionService(database.session_factory)
            await service.hide(3, "scene", "10")
            await service.restrict(1, "tag", "5")
            markers = await service.users_with_markers()
            recomputed = await service.recompute_all()
            untouched = await _excluded(database, 6)
            return markers, recomputed, untouched
        finally:
            await database.dispose()

    markers, recomputed, untouched = asyncio.run(runner())

    assert markers == [1, 3]
    assert recomputed == 2
    assert untouched == {}
