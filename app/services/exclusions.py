"""Materialized per-user visibility exclusions."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import Table, and_, delete, func, literal, not_, select, union
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..database import dialect_insert
from ..db_models import (
    ENTITY_MODELS,
    JUNCTION_MODELS,
    SceneInheritedTag,
    UserContentRestriction,
    UserExcludedEntity,
    UserHiddenEntity,
)
from ..entity_types import ENTITY_DEFINITION_MAP, EntityType
from ..errors import FilterValidationError
from ..utils import utcnow

logger = logging.getLogger(__name__)

REASON_RESTRICTED = "restricted"
REASON_HIDDEN = "hidden"
REASON_CASCADE = "cascade"
REASON_EMPTY = "empty"


@dataclass(frozen=True)
class CascadeRule:
    """Excluding a ``source`` entity also excludes linked ``target`` entities."""

    source: EntityType
    target: EntityType
    table: str
    source_column: str
    target_column: str


CASCADE_RULES: tuple[CascadeRule, ...] = (
    CascadeRule("performer", "scene", "scene_performers", "performer_id", "scene_id"),
    CascadeRule("performer", "image", "image_performers", "performer_id", "image_id"),
    CascadeRule("studio", "scene", "scenes", "studio_id", "id"),
    CascadeRule("studio", "image", "images", "studio_id", "id"),
    CascadeRule("studio", "gallery", "galleries", "studio_id", "id"),
    CascadeRule("studio", "group", "groups", "studio_id", "id"),
    CascadeRule("tag", "scene", "scene_tags", "tag_id", "scene_id"),
    CascadeRule("tag", "scene", "scene_inherited_tags", "tag_id", "scene_id"),
    CascadeRule("tag", "image", "image_tags", "tag_id", "image_id"),
    CascadeRule("tag", "gallery", "gallery_tags", "tag_id", "gallery_id"),
    CascadeRule("tag", "performer", "performer_tags", "tag_id", "performer_id"),
    CascadeRule("tag", "studio", "studio_tags", "tag_id", "studio_id"),
    CascadeRule("tag", "group", "group_tags", "tag_id", "group_id"),
    CascadeRule("group", "scene", "scene_groups", "group_id", "scene_id"),
    CascadeRule("gallery", "scene", "scene_galleries", "gallery_id", "scene_id"),
    CascadeRule("gallery", "image", "image_galleries", "gallery_id", "image_id"),
)


@dataclass(frozen=True)
class ContentRule:
    """A visible ``item`` linked through ``table`` keeps ``owner`` from being empty."""

    owner: EntityType
    item: EntityType
    table: str
    owner_column: str
    item_column: str


EMPTY_RULES: dict[EntityType, tuple[ContentRule, ...]] = {
    "gallery": (
        ContentRule("gallery", "image", "image_galleries", "gallery_id", "image_id"),
    ),
    "performer": (
        ContentRule("performer", "scene", "scene_performers", "performer_id", "scene_id"),
        ContentRule("performer", "image", "image_performers", "performer_id", "image_id"),
    ),
    "studio": (
        ContentRule("studio", "scene", "scenes", "studio_id", "id"),
        ContentRule("studio", "image", "images", "studio_id", "id"),
    ),
    "group": (
        ContentRule("group", "scene", "scene_groups", "group_id", "scene_id"),
    ),
    "tag": (
        ContentRule("tag", "scene", "scene_tags", "tag_id", "scene_id"),
        ContentRule("tag", "performer", "performer_tags", "tag_id", "performer_id"),
        ContentRule("tag", "studio", "studio_tags", "tag_id", "studio_id"),
        ContentRule("tag", "group", "group_tags", "tag_id", "group_id"),
    ),
}


def _rule_table(rule: CascadeRule) -> Table:
    if rule.table == SceneInheritedTag.__tablename__:
        return SceneInheritedTag.__table__
    if rule.table in JUNCTION_MODELS:
        return JUNCTION_MODELS[rule.table].__table__
    return ENTITY_MODELS[rule.target].__table__


def _empty_owners(user_id: int, owner: EntityType, rules: tuple[ContentRule, ...]):
    """Select live ``owner`` rows with no visible content for ``user_id``.

    Visibility is judged against restricted, hidden and cascaded exclusions
    only, so one empty entity never makes another one empty.
    """

    owner_table = ENTITY_MODELS[owner].__table__
    prior = UserExcludedEntity.__table__.alias("prior_exclusions")
    conditions = [owner_table.c.deleted_at.is_(None)]
    for rule in rules:
        item = ENTITY_MODELS[rule.item].__table__
        item_excluded = (
            select(prior.c.entity_id)
            .where(
                prior.c.user_id == user_id,
                prior.c.entity_type == rule.item,
                prior.c.entity_id == item.c.id,
                prior.c.reason != REASON_EMPTY,
            )
            .exists()
        )
        if rule.table == item.name:
            visible = select(item.c.id).where(
                item.c[rule.owner_column] == owner_table.c.id
            )
        else:
            link = JUNCTION_MODELS[rule.table].__table__
            visible = (
                select(item.c.id)
                .select_from(link.join(item, item.c.id == link.c[rule.item_column]))
                .where(link.c[rule.owner_column] == owner_table.c.id)
            )
        visible = visible.where(item.c.deleted_at.is_(None), not_(item_excluded))
        conditions.append(not_(visible.exists()))

    if owner == "tag":
        edges = JUNCTION_MODELS["tag_parents"].__table__
        child = owner_table.alias("child_tags")
        live_child = (
            select(edges.c.child_id)
            .select_from(edges.join(child, child.c.id == edges.c.child_id))
            .where(edges.c.parent_id == owner_table.c.id, child.c.deleted_at.is_(None))
            .exists()
        )
        conditions.append(not_(live_child))

    return select(
        literal(user_id),
        literal(owner),
        owner_table.c.id,
        literal(REASON_EMPTY),
    ).where(and_(*conditions))


class ExclusionService:
    """Maintains hidden and restricted entities and the exclusions they imply."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @staticmethod
    def _check_entity_type(entity_type: str) -> None:
        if entity_type not in ENTITY_DEFINITION_MAP:
            raise FilterValidationError("entity_type", f"Unknown entity type {entity_type!r}")

    async def hide(self, user_id: int, entity_type: str, entity_id: str) -> None:
        """Hide an entity for ``user_id`` and refresh that user's exclusions."""

        await self._set_marker(UserHiddenEntity, user_id, entity_type, entity_id, True)

    async def unhide(self, user_id: int, entity_type: str, entity_id: str) -> None:
        await self._set_marker(UserHiddenEntity, user_id, entity_type, entity_id, False)

    async def restrict(self, user_id: int, entity_type: str, entity_id: str) -> None:
        """Record an administrator restriction for ``user_id``."""

        await self._set_marker(
            UserContentRestriction, user_id, entity_type, entity_id, True
        )

    async def unrestrict(self, user_id: int, entity_type: str, entity_id: str) -> None:
        await self._set_marker(
            UserContentRestriction, user_id, entity_type, entity_id, False
        )

    async def _set_marker(
        self, model, user_id: int, entity_type: str, entity_id: str, present: bool
    ) -> None:
        self._check_entity_type(entity_type)
        table: Table = model.__table__
        async with self._session_factory() as session:
            async with session.begin():
                if present:
                    stmt = dialect_insert(session.bind.dialect.name, table).values(
                        user_id=user_id,
                        entity_type=entity_type,
                        entity_id=entity_id,
                        created_at=utcnow(),
                    )
                    await session.execute(stmt.on_conflict_do_nothing())
                else:
                    await session.execute(
                        delete(table).where(
                            table.c.user_id == user_id,
                            table.c.entity_type == entity_type,
                            table.c.entity_id == entity_id,
                        )
                    )
        await self.recompute_for_user(user_id)

    async def users_with_markers(self) -> list[int]:
        """Return users that have hidden or restricted entities."""

        hidden = UserHiddenEntity.__table__
        restricted = UserContentRestriction.__table__
        stmt = union(
            select(hidden.c.user_id).distinct(), select(restricted.c.user_id).distinct()
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return sorted(row[0] for row in result.all())

    async def recompute_for_user(self, user_id: int) -> int:
        """Rebuild the materialized exclusions for ``user_id``.

        The delete and the re-insert share one transaction, so readers never
        observe a partially rebuilt set. Returns the number of rows written.
        """

        excluded = UserExcludedEntity.__table__
        async with self._session_factory() as session:
            async with session.begin():
                dialect_name = session.bind.dialect.name
                await session.execute(
                    delete(excluded).where(excluded.c.user_id == user_id)
                )
                for model, reason in (
                    (UserContentRestriction, REASON_RESTRICTED),
                    (UserHiddenEntity, REASON_HIDDEN),
                ):
                    source: Table = model.__table__
                    rows = select(
                        source.c.user_id,
                        source.c.entity_type,
                        source.c.entity_id,
                        literal(reason),
                    ).where(source.c.user_id == user_id)
                    await session.execute(
                        self._insert_ignore(dialect_name, rows)
                    )

                direct = (
                    select(excluded.c.entity_type, excluded.c.entity_id)
                    .where(
                        excluded.c.user_id == user_id,
                        excluded.c.reason.in_((REASON_RESTRICTED, REASON_HIDDEN)),
                    )
                    .subquery("direct_exclusions")
                )
                for rule in CASCADE_RULES:
                    link = _rule_table(rule)
                    rows = (
                        select(
                            literal(user_id),
                            literal(rule.target),
                            link.c[rule.target_column],
                            literal(REASON_CASCADE),
                        )
                        .select_from(
                            link.join(
                                direct,
                                direct.c.entity_id == link.c[rule.source_column],
                            )
                        )
                        .where(direct.c.entity_type == rule.source)
                        .distinct()
                    )
                    await session.execute(self._insert_ignore(dialect_name, rows))

                for owner, rules in EMPTY_RULES.items():
                    await session.execute(
                        self._insert_ignore(
                            dialect_name, _empty_owners(user_id, owner, rules)
                        )
                    )

                total = await session.scalar(
                    select(func.count())
                    .select_from(excluded)
                    .where(excluded.c.user_id == user_id)
                )
        logger.info("Recomputed %s exclusions for user %s", total, user_id)
        return int(total or 0)

    @staticmethod
    def _insert_ignore(dialect_name: str, rows):
        excluded = UserExcludedEntity.__table__
        return (
            dialect_insert(dialect_name, excluded)
            .from_select(["user_id", "entity_type", "entity_id", "reason"], rows)
            .on_conflict_do_nothing()
        )

    async def recompute_all(self) -> int:
        """Recompute exclusions for every user with hidden or restricted rows."""

        user_ids = await self.users_with_markers()
        for user_id in user_ids:
            await self.recompute_for_user(user_id)
        return len(user_ids)
