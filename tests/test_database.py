from __future__ import annotations

import asyncio

from sqlalchemy import create_engine, inspect, select

from app.database import Database
from app.db_models import Gallery


def test_create_all_builds_every_table(tmp_path) -> None:
    database_path = tmp_path / "fresh.db"
    database = Database(f"sqlite+aiosqlite:///{database_path}")
    asyncio.run(database.create_all())
    asyncio.run(database.dispose())

    inspector_engine = create_engine(f"sqlite:///{database_path}")
    try:
        inspector = inspect(inspector_engine)
        tables = set(inspector.get_table_names())
        gallery_columns = {column["name"] for column in inspector.get_columns("galleries")}
        state_columns = {column["name"] for column in inspector.get_columns("sync_state")}
    finally:
        inspector_engine.dispose()

    assert {
        "scenes",
        "performers",
        "studios",
        "tags",
        "galleries",
        "groups",
        "images",
        "tag_parents",
        "scene_inherited_tags",
        "user_excluded_entities",
        "sync_state",
    } <= tables
    assert "image_count" in gallery_columns
    assert "cursor" in state_columns


def test_create_all_keeps_existing_rows(tmp_path) -> None:
    database_path = tmp_path / "reopened.db"

    async def runner():
        database = Database(f"sqlite+aiosqlite:///{database_path}")
        try:
            await database.create_all()
            async with database.session_factory() as session:
                async with session.begin():
                    session.add(Gallery(id="1", title="Kept"))
            await database.create_all()
            async with database.session_factory() as session:
                return (await session.execute(select(Gallery.title))).scalars().all()
        finally:
            await database.dispose()

    assert asyncio.run(runner()) == ["Kept"]
