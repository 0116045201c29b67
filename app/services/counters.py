"""Denormalized aggregate counters on organizational entities."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

from sqlalchemy import ColumnElement, Table, distinct, exists, func, select, update
from sqlalchemy.ext.asyncio import async_sessionmaker, AsyncSession

from ..db_models import ENTITY_MODELS, JUNCTION_MODELS, UserExcludedEntity
from ..entity_types import EntityType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CounterDefinition:
    """How one count column on ``owner`` is derived.

    Junction based counters follow ``link_table``; the others count items
    whose ``item_column`` points straight at the owner.
    """

    owner: EntityType
    column: str
    item_type: EntityType
    link_table: str | None = None
    link_owner_column: str | None = None
    link_item_column: str | None = None
    item_column: str | None = None


COUNTER_DEFINITIONS: tuple[CounterDefinition, ...] = (
    CounterDefinition("performer", "scene_count", "scene", "scene_performers", "performer_id", "scene_id"),
    CounterDefinition("performer", "image_count", "image", "image_performers", "performer_id", "image_id"),
    CounterDefinition("performer", "gallery_count", "gallery", "gallery_performers", "performer_id", "gallery_id"),
    CounterDefinition("studio", "scene_count", "scene", item_column="studio_id"),
    CounterDefinition("studio", "image_count", "image", item_column="studio_id"),
    CounterDefinition("studio", "gallery_count", "gallery", item_column="studio_id"),
    CounterDefinition("studio", "group_count", "group", item_column="studio_id"),
    CounterDefinition("tag", "scene_count", "scene", "scene_tags", "tag_id", "scene_id"),
    CounterDefinition("tag", "image_count", "image", "image_tags", "tag_id", "image_id"),
    CounterDefinition("tag", "gallery_count", "gallery", "gallery_tags", "tag_id", "gallery_id"),
    CounterDefinition("tag", "performer_count", "performer", "performer_tags", "tag_id", "performer_id"),
    CounterDefinition("tag", "studio_count", "studio", "studio_tags", "tag_id", "studio_id"),
    CounterDefinition("tag", "group_count", "group", "group_tags", "tag_id", "group_id"),
    CounterDefinition("gallery", "image_count", "image", "image_galleries", "gallery_id", "image_id"),
    CounterDefinition("group", "scene_count", "scene", "scene_groups", "group_id", "scene_id"),
)

COUNTER_TYPES: frozenset[str] = frozenset(d.owner for d in COUNTER_DEFINITIONS)

# Counter owners whose values depend on rows of the given entity type.
COUNTER_DEPENDENCIES: dict[str, frozenset[str]] = {
    "scene": frozenset({"performer", "studio", "tag", "group"}),
    "image": frozenset({"performer", "studio", "tag", "gallery"}),
    "gallery": frozenset({"performer", "studio", "tag", "gallery"}),
    "performer": frozenset({"performer", "tag"}),
    "studio": frozenset({"studio", "tag"}),
    "group": frozenset({"group", "studio", "tag"}),
    "tag": frozenset({"tag"}),
}


def counters_for(owner: str) -> list[CounterDefinition]:
    return [definition for definition in COUNTER_DEFINITIONS if definition.owner == owner]


def counter_scope(changed_types: Iterable[str]) -> set[str]:
    """Return the counter owners affected by changes to ``changed_types``."""

    scope: set[str] = set()
    for entity_type in changed_types:
        scope.update(COUNTER_DEPENDENCIES.get(entity_type, ()))
    return scope


def count_expression(
    definition: CounterDefinition,
    owner_id: ColumnElement,
    *,
    user_id: int | None = None,
):
    """Return a correlated scalar subquery counting visible referencing items.

    With ``user_id`` the count also drops items excluded for that user.
    """

    item: Table = ENTITY_MODELS[definition.item_type].__table__
    if definition.link_table is not None:
        link: Table = JUNCTION_MODELS[definition.link_table].__table__
        stmt = (
            select(func.count(distinct(item.c.id)))
            .select_from(
                link.join(item, item.c.id == link.c[definition.link_item_column])
            )
            .where(link.c[definition.link_owner_column] == owner_id)
        )
    else:
        stmt = select(func.count(item.c.id)).where(
            item.c[definition.item_column] == owner_id
        )
    stmt = stmt.where(item.c.deleted_at.is_(None))
    if user_id is not None:
        excluded = UserExcludedEntity.__table__
        stmt = stmt.where(
            ~exists().where(
                excluded.c.user_id == user_id,
                excluded.c.entity_type == definition.item_type,
                excluded.c.entity_id == item.c.id,
            )
        )
    return stmt.scalar_subquery()


class CounterService:
    """Recomputes the global count columns from junction and reference data."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def rebuild_counters(self, scope: Iterable[str] | None = None) -> None:
        """Rebuild every counter column owned by the entity types in ``scope``."""

        owners = COUNTER_TYPES if scope is None else COUNTER_TYPES & set(scope)
        if not owners:
            return
        async with self._session_factory() as session:
            async with session.begin():
                for owner in sorted(owners):
                    table: Table = ENTITY_MODELS[owner].__table__
                    for definition in counters_for(owner):
                        await session.execute(
                            update(table).values(
                                {definition.column: count_expression(definition, table.c.id)}
                            )
                        )
        logger.info("Rebuilt counters for %s", ", ".join(sorted(owners)))
