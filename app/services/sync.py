"""Full and incremental mirroring of the upstream catalog."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

from pydantic import ValidationError
from sqlalchemy import Table, delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import Settings
from ..database import dialect_insert
from ..db_models import ENTITY_MODELS, JUNCTION_MODELS, SyncState
from ..entity_types import (
    SYNC_ORDER,
    EntityDefinition,
    RelationDefinition,
    get_definition,
)
from ..errors import UpstreamError
from ..models import UPSTREAM_MODELS, RelationRows
from ..utils import chunked, latest_timestamp, utcnow
from .counters import CounterService, counter_scope
from .exclusions import ExclusionService
from .inheritance import InheritanceProcessor
from .stash import CatalogSource

logger = logging.getLogger(__name__)

SyncMode = Literal["full", "incremental"]

SCENE_TAG_SOURCES = frozenset({"scene", "performer", "studio", "group"})
CONTAINER_TYPES = frozenset({"image", "gallery"})


@dataclass(slots=True)
class EntitySyncResult:
    """Outcome of synchronizing one entity type."""

    entity_type: str
    mode: SyncMode
    created: int = 0
    updated: int = 0
    deleted: int = 0
    skipped: int = 0
    unchanged: int = 0
    relinked: int = 0
    dropped_references: int = 0
    duration_ms: int = 0
    cursor: str | None = None
    errors: list[str] = field(default_factory=list)
    error: str | None = None

    @property
    def changed(self) -> bool:
        return bool(self.created or self.updated or self.deleted or self.relinked)

    @property
    def failed(self) -> bool:
        return self.error is not None

    def to_payload(self) -> dict[str, Any]:
        return {
            "entityType": self.entity_type,
            "mode": self.mode,
            "created": self.created,
            "updated": self.updated,
            "deleted": self.deleted,
            "skipped": self.skipped,
            "unchanged": self.unchanged,
            "relinked": self.relinked,
            "droppedReferences": self.dropped_references,
            "durationMs": self.duration_ms,
            "errors": list(self.errors),
            "error": self.error,
        }


@dataclass(slots=True)
class StagedRecord:
    """A validated upstream record with its column values and relation rows."""

    id: str
    updated_at: str | None
    row: dict[str, Any]
    relations: RelationRows


@dataclass(slots=True)
class SyncReport:
    """Summary of a sync run across every entity type."""

    mode: SyncMode
    started_at: datetime
    finished_at: datetime | None = None
    results: list[EntitySyncResult] = field(default_factory=list)
    hook_errors: list[str] = field(default_factory=list)

    @property
    def changed_types(self) -> set[str]:
        return {result.entity_type for result in self.results if result.changed}

    @property
    def failed_types(self) -> list[str]:
        return [result.entity_type for result in self.results if result.failed]

    def result_for(self, entity_type: str) -> EntitySyncResult | None:
        for result in self.results:
            if result.entity_type == entity_type:
                return result
        return None

    def to_payload(self) -> dict[str, Any]:
        duration_ms = None
        if self.finished_at is not None:
            duration_ms = int((self.finished_at - self.started_at).total_seconds() * 1000)
        return {
            "mode": self.mode,
            "startedAt": self.started_at.isoformat(),
            "finishedAt": self.finished_at.isoformat() if self.finished_at else None,
            "durationMs": duration_ms,
            "results": [result.to_payload() for result in self.results],
            "hookErrors": list(self.hook_errors),
        }


class SyncService:
    """Mirrors upstream entities into the local store, one type at a time."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        source: CatalogSource,
        settings: Settings,
        *,
        inheritance: InheritanceProcessor | None = None,
        counters: CounterService | None = None,
        exclusions: ExclusionService | None = None,
    ):
        self._session_factory = session_factory
        self._source = source
        self._settings = settings
        self._batch_size = settings.sql_batch_size
        self._inheritance = inheritance or InheritanceProcessor(session_factory)
        self._counters = counters or CounterService(session_factory)
        self._exclusions = exclusions or ExclusionService(session_factory)

    async def run_full_sync(self) -> SyncReport:
        """Mirror every entity type, detecting upstream deletions."""

        return await self._run("full")

    async def run_incremental_sync(self, since: str | None = None) -> SyncReport:
        """Mirror records changed since each type's cursor (or ``since``)."""

        return await self._run("incremental", since=since)

    async def _run(self, mode: SyncMode, *, since: str | None = None) -> SyncReport:
        report = SyncReport(mode=mode, started_at=utcnow())
        logger.info("Starting %s sync", mode)
        for entity_type in SYNC_ORDER:
            result = await self._sync_entity_type(entity_type, mode, since=since)
            report.results.append(result)

        await self._run_post_sync_hooks(report)
        await self._mark_completed(report)
        report.finished_at = utcnow()
        logger.info(
            "Finished %s sync (changed: %s, failed: %s)",
            mode,
            ", ".join(sorted(report.changed_types)) or "none",
            ", ".join(report.failed_types) or "none",
        )
        return report

    async def _load_state(self, entity_type: str) -> SyncState | None:
        async with self._session_factory() as session:
            return await session.get(SyncState, entity_type)

    async def _sync_entity_type(
        self, entity_type: str, mode: SyncMode, *, since: str | None = None
    ) -> EntitySyncResult:
        definition = get_definition(entity_type)
        state = await self._load_state(entity_type)
        cursor = since or (state.cursor if state else None)
        never_synced = state is None or (
            state.last_full_sync is None and state.last_incremental_sync is None
        )
        effective_mode: SyncMode = mode
        if mode == "incremental" and (cursor is None or never_synced):
            effective_mode = "full"

        result = EntitySyncResult(entity_type=entity_type, mode=effective_mode)
        started = time.perf_counter()

        try:
            if effective_mode == "full":
                fetch = self._source.fetch_all(entity_type)
            else:
                fetch = self._source.fetch_changed_since(entity_type, cursor)
            raw_records = await asyncio.wait_for(
                fetch, timeout=self._settings.upstream_timeout_seconds
            )
        except asyncio.TimeoutError:
            result.error = (
                f"Timed out fetching {definition.plural} after "
                f"{self._settings.upstream_timeout_seconds:.0f}s"
            )
        except UpstreamError as exc:
            result.error = str(exc)

        if result.error is not None:
            result.duration_ms = int((time.perf_counter() - started) * 1000)
            logger.warning("Aborted %s sync step: %s", entity_type, result.error)
            await self._record_failure(entity_type, result.error)
            return result

        records = self._validate(definition, raw_records, result)
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    await self._apply_records(
                        session,
                        definition,
                        records,
                        result,
                        detect_deletions=effective_mode == "full",
                    )
                    await self._record_progress(session, entity_type, result, cursor)
        except SQLAlchemyError as exc:
            logger.warning("Rolled back %s sync step: %s", entity_type, exc)
            failed = EntitySyncResult(
                entity_type=entity_type,
                mode=effective_mode,
                skipped=result.skipped,
                errors=result.errors,
                error=f"Database error: {exc.__class__.__name__}",
            )
            failed.duration_ms = int((time.perf_counter() - started) * 1000)
            await self._record_failure(entity_type, failed.error)
            return failed

        result.duration_ms = int((time.perf_counter() - started) * 1000)
        logger.info(
            "Synced %s: %s created, %s updated, %s deleted, %s skipped in %sms",
            definition.plural,
            result.created,
            result.updated,
            result.deleted,
            result.skipped,
            result.duration_ms,
        )
        return result

    def _validate(
        self,
        definition: EntityDefinition,
        raw_records: list[dict[str, Any]],
        result: EntitySyncResult,
    ) -> dict[str, StagedRecord]:
        model = UPSTREAM_MODELS[definition.key]
        records: dict[str, StagedRecord] = {}
        for raw in raw_records:
            raw_id = raw.get("id") if isinstance(raw, dict) else None
            try:
                record = model.model_validate(raw)
                staged = StagedRecord(
                    id=record.id,
                    updated_at=record.updated_at,
                    row=record.to_row(),
                    relations=record.relations(),
                )
            except ValidationError as exc:
                problems = "; ".join(
                    f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
                    for error in exc.errors()
                )
                self._skip(definition, raw_id, problems, result)
                continue
            except (TypeError, ValueError) as exc:
                self._skip(definition, raw_id, str(exc), result)
                continue
            records[staged.id] = staged
        return records

    @staticmethod
    def _skip(
        definition: EntityDefinition,
        raw_id: Any,
        problems: str,
        result: EntitySyncResult,
    ) -> None:
        result.skipped += 1
        result.errors.append(f"{definition.key} {raw_id!s}: {problems}")
        logger.warning("Skipping malformed %s %s: %s", definition.key, raw_id, problems)

    async def _apply_records(
        self,
        session: AsyncSession,
        definition: EntityDefinition,
        records: dict[str, StagedRecord],
        result: EntitySyncResult,
        *,
        detect_deletions: bool,
    ) -> None:
        table: Table = ENTITY_MODELS[definition.key].__table__
        now = utcnow()

        existing: dict[str, tuple[str | None, datetime | None]] = {}
        if detect_deletions:
            rows = await session.execute(
                select(table.c.id, table.c.updated_at, table.c.deleted_at)
            )
            existing = {row.id: (row.updated_at, row.deleted_at) for row in rows}
        else:
            for batch in chunked(list(records), self._batch_size):
                rows = await session.execute(
                    select(table.c.id, table.c.updated_at, table.c.deleted_at).where(
                        table.c.id.in_(batch)
                    )
                )
                existing.update(
                    {row.id: (row.updated_at, row.deleted_at) for row in rows}
                )

        changed_rows: list[dict[str, Any]] = []
        unchanged_ids: list[str] = []
        for record_id, record in records.items():
            result.cursor = latest_timestamp(result.cursor, record.updated_at)
            local = existing.get(record_id)
            if local is None or local[1] is not None:
                result.created += 1
            elif local[0] != record.updated_at:
                result.updated += 1
            else:
                result.unchanged += 1
                unchanged_ids.append(record_id)
                continue
            changed_rows.append({**record.row, "synced_at": now, "deleted_at": None})

        dialect_name = session.bind.dialect.name
        for batch in chunked(changed_rows, self._batch_size):
            stmt = dialect_insert(dialect_name, table)
            update_columns = {
                key: stmt.excluded[key] for key in batch[0] if key != "id"
            }
            await session.execute(
                stmt.on_conflict_do_update(index_elements=["id"], set_=update_columns),
                batch,
            )

        if detect_deletions:
            missing = [
                record_id
                for record_id, (_, deleted_at) in existing.items()
                if deleted_at is None and record_id not in records
            ]
            for batch in chunked(missing, self._batch_size):
                await session.execute(
                    update(table).where(table.c.id.in_(batch)).values(deleted_at=now)
                )
            result.deleted = len(missing)

        if not definition.relations:
            return
        relink_ids = [row["id"] for row in changed_rows]
        if detect_deletions and unchanged_ids:
            # Links dropped while a target type was unavailable come back here.
            drifted = await self._drifted_owners(
                session, definition, records, unchanged_ids
            )
            result.relinked = len(drifted)
            relink_ids.extend(drifted)
        if relink_ids:
            await self._rewrite_relations(
                session, definition, records, relink_ids, result
            )

    async def _known_targets(
        self, session: AsyncSession, relation: RelationDefinition, ids: set[str]
    ) -> set[str]:
        target: Table = ENTITY_MODELS[relation.target_type].__table__
        known: set[str] = set()
        for batch in chunked(sorted(ids), self._batch_size):
            found = await session.execute(
                select(target.c.id).where(target.c.id.in_(batch))
            )
            known.update(found.scalars())
        return known

    @staticmethod
    def _link_key(relation: RelationDefinition, target_id: str, entry: Any) -> tuple:
        return (target_id, *(entry.get(column) for column in relation.extra_columns))

    async def _drifted_owners(
        self,
        session: AsyncSession,
        definition: EntityDefinition,
        records: dict[str, StagedRecord],
        owner_ids: list[str],
    ) -> list[str]:
        """Return unchanged records missing links that upstream now resolves.

        Extra stored links are left alone: inheritance fills relations that
        are empty upstream, and removals always come with a new ``updated_at``.
        """

        drifted: set[str] = set()
        for relation in definition.relations:
            link: Table = JUNCTION_MODELS[relation.table].__table__
            columns = [link.c[relation.owner_column], link.c[relation.target_column]]
            columns.extend(link.c[column] for column in relation.extra_columns)

            stored: dict[str, set[tuple]] = {}
            for batch in chunked(owner_ids, self._batch_size):
                rows = await session.execute(
                    select(*columns).where(link.c[relation.owner_column].in_(batch))
                )
                for owner, *key in rows:
                    stored.setdefault(owner, set()).add(tuple(key))

            referenced = {
                entry["id"]
                for owner in owner_ids
                for entry in records[owner].relations.get(relation.name, [])
            }
            known = await self._known_targets(session, relation, referenced)
            for owner in owner_ids:
                wanted = {
                    self._link_key(relation, entry["id"], entry)
                    for entry in records[owner].relations.get(relation.name, [])
                    if entry["id"] in known
                }
                if not wanted <= stored.get(owner, set()):
                    drifted.add(owner)
        return sorted(drifted)

    async def _rewrite_relations(
        self,
        session: AsyncSession,
        definition: EntityDefinition,
        records: dict[str, StagedRecord],
        owner_ids: list[str],
        result: EntitySyncResult,
    ) -> None:
        """Replace the outgoing junction rows of ``owner_ids``."""

        dialect_name = session.bind.dialect.name

        for relation in definition.relations:
            link: Table = JUNCTION_MODELS[relation.table].__table__
            for batch in chunked(owner_ids, self._batch_size):
                await session.execute(
                    delete(link).where(link.c[relation.owner_column].in_(batch))
                )

            wanted: list[dict[str, Any]] = []
            for record_id in owner_ids:
                for entry in records[record_id].relations.get(relation.name, []):
                    row = {
                        relation.owner_column: record_id,
                        relation.target_column: entry["id"],
                    }
                    for column in relation.extra_columns:
                        row[column] = entry.get(column)
                    wanted.append(row)
            if not wanted:
                continue

            known = await self._known_targets(
                session, relation, {row[relation.target_column] for row in wanted}
            )
            valid = [row for row in wanted if row[relation.target_column] in known]
            dropped = len(wanted) - len(valid)
            if dropped:
                result.dropped_references += dropped
                logger.info(
                    "Dropped %s %s references to unknown %s",
                    dropped,
                    relation.table,
                    relation.target_type,
                )
            for batch in chunked(valid, self._batch_size):
                await session.execute(
                    dialect_insert(dialect_name, link).on_conflict_do_nothing(),
                    batch,
                )

    async def _record_progress(
        self,
        session: AsyncSession,
        entity_type: str,
        result: EntitySyncResult,
        previous_cursor: str | None,
    ) -> None:
        table: Table = ENTITY_MODELS[entity_type].__table__
        total = await session.scalar(
            select(func.count()).select_from(table).where(table.c.deleted_at.is_(None))
        )
        result.cursor = latest_timestamp(previous_cursor, result.cursor)

        state = await session.get(SyncState, entity_type)
        if state is None:
            state = SyncState(entity_type=entity_type)
            session.add(state)
        state.cursor = result.cursor
        state.last_sync_count = result.created + result.updated
        state.last_error = None
        state.total_entities = int(total or 0)

    async def _record_failure(self, entity_type: str, error: str) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                state = await session.get(SyncState, entity_type)
                if state is None:
                    state = SyncState(entity_type=entity_type)
                    session.add(state)
                state.last_error = error[:2000]

    async def _run_post_sync_hooks(self, report: SyncReport) -> None:
        """Refresh derived data for the entity types that changed."""

        changed = report.changed_types
        if not changed:
            return

        hooks: list[tuple[str, Any]] = []
        if changed & CONTAINER_TYPES:
            hooks.append(("container inheritance", self._inheritance.apply_container_inheritance))
        if changed & SCENE_TAG_SOURCES:
            hooks.append(("scene tag inheritance", self._inheritance.apply_scene_tag_inheritance))
        scope = counter_scope(changed)
        if scope:
            hooks.append(("counters", lambda: self._counters.rebuild_counters(scope)))
        hooks.append(("exclusions", self._exclusions.recompute_all))

        for name, hook in hooks:
            try:
                await hook()
            except SQLAlchemyError as exc:
                logger.exception("Post-sync %s failed", name)
                report.hook_errors.append(f"{name}: {exc.__class__.__name__}")

    async def _mark_completed(self, report: SyncReport) -> None:
        """Stamp completion times once derived data is in place."""

        finished = utcnow()
        async with self._session_factory() as session:
            async with session.begin():
                for result in report.results:
                    if result.failed:
                        continue
                    state = await session.get(SyncState, result.entity_type)
                    if state is None:
                        continue
                    if result.mode == "full":
                        state.last_full_sync = finished
                    else:
                        state.last_incremental_sync = finished
                    state.last_sync_duration_ms = result.duration_ms
