"""Entry point for library queries against the local cache."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

from sqlalchemy import exists, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import Settings
from ..db_models import SyncState, UserExcludedEntity
from ..entity_types import SYNC_ORDER
from ..errors import CacheNotReadyError, FilterValidationError, QueryTimeoutError
from ..models import IdPage, PagedResult, QuerySpec
from .base import BuiltQuery, EntityQueryBuilder, QueryContext
from .clauses import render_clause
from .galleries import GalleryQueryBuilder
from .groups import GroupQueryBuilder
from .hierarchy import HIERARCHY_LOADERS
from .images import ImageQueryBuilder
from .performers import PerformerQueryBuilder
from .scenes import SceneQueryBuilder
from .studios import StudioQueryBuilder
from .tags import TagQueryBuilder

logger = logging.getLogger(__name__)

BUILDER_CLASSES: tuple[type[EntityQueryBuilder], ...] = (
    SceneQueryBuilder,
    PerformerQueryBuilder,
    StudioQueryBuilder,
    TagQueryBuilder,
    GalleryQueryBuilder,
    GroupQueryBuilder,
    ImageQueryBuilder,
)


class QueryEngine:
    """Runs validated :class:`QuerySpec` requests for any entity type."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], settings: Settings):
        self._session_factory = session_factory
        self._settings = settings
        self._builders: dict[str, EntityQueryBuilder] = {
            builder_cls.entity_type: builder_cls(batch_size=settings.sql_batch_size)
            for builder_cls in BUILDER_CLASSES
        }
        self._ready = False

    def builder_for(self, entity_type: str) -> EntityQueryBuilder:
        builder = self._builders.get(entity_type)
        if builder is None:
            raise FilterValidationError(
                "entity_type", f"Unknown entity type '{entity_type}'"
            )
        return builder

    async def execute(self, entity_type: str, spec: QuerySpec) -> PagedResult:
        """Return one hydrated page of ``entity_type`` rows matching ``spec``."""

        builder = self.builder_for(entity_type)
        return await self._with_timeout(self._execute(builder, spec), entity_type)

    async def execute_ids(self, entity_type: str, spec: QuerySpec) -> IdPage:
        """Return only the ordered identifiers of the matching page."""

        builder = self.builder_for(entity_type)
        return await self._with_timeout(self._execute_ids(builder, spec), entity_type)

    async def is_ready(self) -> bool:
        """Whether every entity type has completed a full sync."""

        if self._ready:
            return True
        async with self._session_factory() as session:
            completed = await session.scalar(
                select(func.count())
                .select_from(SyncState)
                .where(
                    SyncState.entity_type.in_(SYNC_ORDER),
                    SyncState.last_full_sync.is_not(None),
                )
            )
        self._ready = (completed or 0) >= len(SYNC_ORDER)
        return self._ready

    async def _with_timeout(self, awaitable, entity_type: str):
        timeout = self._settings.query_timeout_seconds
        try:
            return await asyncio.wait_for(awaitable, timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("%s query exceeded %.1fs", entity_type, timeout)
            raise QueryTimeoutError(
                f"{entity_type} query exceeded {timeout:g} seconds"
            ) from None

    async def _execute(self, builder: EntityQueryBuilder, spec: QuerySpec) -> PagedResult:
        started = time.perf_counter()
        async with self._session_factory() as session:
            built = await self._prepare(session, builder, spec)
            total = await self._count(session, builder, built)
            stmt = self._paginate(builder.page_statement(built), spec)
            rows = (await session.execute(stmt)).mappings().all()
            items: list[dict[str, Any]] = [dict(row) for row in rows]
            await builder.hydrate(session, built.context, items)

        logger.debug(
            "%s query returned %d of %d rows in %.1fms",
            builder.entity_type,
            len(items),
            total,
            (time.perf_counter() - started) * 1000,
        )
        return PagedResult(
            entity_type=builder.entity_type,
            items=items,
            total=total,
            page=spec.page,
            per_page=self._page_size(spec),
            seed=built.seed,
        )

    async def _execute_ids(self, builder: EntityQueryBuilder, spec: QuerySpec) -> IdPage:
        async with self._session_factory() as session:
            built = await self._prepare(session, builder, spec)
            total = await self._count(session, builder, built)
            stmt = self._paginate(builder.id_statement(built), spec)
            ids = list((await session.scalars(stmt)).all())
        return IdPage(
            entity_type=builder.entity_type, ids=ids, total=total, seed=built.seed
        )

    async def _prepare(
        self, session: AsyncSession, builder: EntityQueryBuilder, spec: QuerySpec
    ) -> BuiltQuery:
        if not await self.is_ready():
            raise CacheNotReadyError(
                "The library cache has not finished its initial sync"
            )

        user_scoped = False
        if not spec.is_admin:
            user_scoped = bool(
                await session.scalar(
                    select(
                        exists().where(UserExcludedEntity.user_id == spec.user_id)
                    )
                )
            )
        ctx = QueryContext(
            builder.entity_type, builder.table, spec, user_scoped_counters=user_scoped
        )
        built = builder.build(ctx)

        if built.pending:
            hierarchies: dict[str, dict[str, set[str]]] = {}
            for clause in built.pending:
                children = hierarchies.get(clause.hierarchy)
                if children is None:
                    children = await HIERARCHY_LOADERS[clause.hierarchy](session)
                    hierarchies[clause.hierarchy] = children
                built.conditions.append(render_clause(clause.expand(children)))
            built.pending = []
        return built

    @staticmethod
    async def _count(
        session: AsyncSession, builder: EntityQueryBuilder, built: BuiltQuery
    ) -> int:
        return int(await session.scalar(builder.count_statement(built)) or 0)

    def _page_size(self, spec: QuerySpec) -> int | None:
        if spec.per_page is None:
            return None
        return min(spec.per_page, self._settings.max_page_size)

    def _paginate(self, stmt, spec: QuerySpec):
        per_page = self._page_size(spec)
        if per_page is None:
            return stmt
        return stmt.limit(per_page).offset((spec.page - 1) * per_page)
