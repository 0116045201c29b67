"""Shared scaffolding for the per-entity query builders."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, ClassVar, Literal

from sqlalchemy import (
    ColumnElement,
    FromClause,
    Integer,
    Select,
    String,
    Table,
    and_,
    cast,
    collate,
    exists,
    func,
    literal,
    or_,
    select,
)
from sqlalchemy.ext.asyncio import AsyncSession

from ..db_models import (
    ENTITY_MODELS,
    JUNCTION_MODELS,
    SceneInheritedTag,
    UserExcludedEntity,
    UserRating,
)
from ..entity_types import EntityType
from ..errors import FilterValidationError
from ..models import FilterCriterion, FilterModifier, QuerySpec
from ..services.counters import count_expression, counters_for
from ..utils import chunked
from .clauses import (
    Clause,
    Comparison,
    FlagMatch,
    HierarchicalMatch,
    Link,
    Membership,
    RelationMatch,
    TextMatch,
    render_clause,
)
from .ordering import (
    generate_seed,
    normalise_seed,
    parse_random_sort,
    seeded_sort_expression,
)

M = FilterModifier

FieldKind = Literal["number", "date", "text", "flag", "membership", "relation"]

ALLOWED_MODIFIERS: dict[str, frozenset[FilterModifier]] = {
    "number": frozenset(
        {M.EQUALS, M.NOT_EQUALS, M.GREATER_THAN, M.LESS_THAN, M.BETWEEN,
         M.NOT_BETWEEN, M.IS_NULL, M.NOT_NULL}
    ),
    "date": frozenset(
        {M.EQUALS, M.NOT_EQUALS, M.GREATER_THAN, M.LESS_THAN, M.BETWEEN,
         M.NOT_BETWEEN, M.IS_NULL, M.NOT_NULL}
    ),
    "text": frozenset(
        {M.EQUALS, M.NOT_EQUALS, M.INCLUDES, M.EXCLUDES, M.IS_NULL, M.NOT_NULL}
    ),
    "flag": frozenset({M.EQUALS}),
    "membership": frozenset(
        {M.EQUALS, M.NOT_EQUALS, M.INCLUDES, M.INCLUDES_ALL, M.EXCLUDES,
         M.IS_NULL, M.NOT_NULL}
    ),
    "relation": frozenset(
        {M.EQUALS, M.NOT_EQUALS, M.INCLUDES, M.INCLUDES_ALL, M.EXCLUDES,
         M.IS_NULL, M.NOT_NULL}
    ),
}

_NO_VALUE_MODIFIERS = frozenset({M.IS_NULL, M.NOT_NULL})


class QueryContext:
    """Per-request aliases and merged overlay expressions."""

    def __init__(
        self,
        entity_type: EntityType,
        table: Table,
        spec: QuerySpec,
        *,
        user_scoped_counters: bool = False,
    ):
        self.entity_type = entity_type
        self.table = table
        self.spec = spec
        self.user_id = spec.user_id
        self.apply_exclusions = not spec.is_admin
        self.user_scoped_counters = user_scoped_counters and self.apply_exclusions
        self.ratings = UserRating.__table__.alias("r")
        self.excluded = UserExcludedEntity.__table__.alias("e")
        self.joins: list[tuple[FromClause, ColumnElement]] = [
            (
                self.ratings,
                and_(
                    self.ratings.c.user_id == self.user_id,
                    self.ratings.c.entity_type == entity_type,
                    self.ratings.c.entity_id == table.c.id,
                ),
            )
        ]
        self.overlays: dict[str, FromClause] = {}

    def add_overlay(self, name: str, overlay: FromClause, onclause: ColumnElement) -> None:
        self.overlays[name] = overlay
        self.joins.append((overlay, onclause))

    def column(self, name: str) -> ColumnElement:
        return self.table.c[name]

    @property
    def rating(self) -> ColumnElement:
        if "rating100" in self.table.c:
            return func.coalesce(self.ratings.c.rating100, self.table.c.rating100)
        return self.ratings.c.rating100

    @property
    def favorite(self) -> ColumnElement:
        if "favorite" in self.table.c:
            return func.coalesce(self.ratings.c.favorite, self.table.c.favorite)
        return func.coalesce(self.ratings.c.favorite, False)

    def counter(self, name: str) -> ColumnElement:
        """Return a count column, computed for this user when they have exclusions."""

        if self.user_scoped_counters:
            for definition in counters_for(self.entity_type):
                if definition.column == name:
                    return count_expression(
                        definition, self.table.c.id, user_id=self.user_id
                    )
        return self.table.c[name]

    def visible(self, table: Table, entity_type: str) -> ColumnElement:
        """Predicate hiding soft-deleted rows and, for users, excluded ones."""

        condition = table.c.deleted_at.is_(None)
        if self.apply_exclusions:
            excluded = UserExcludedEntity.__table__
            condition = and_(
                condition,
                ~exists().where(
                    excluded.c.user_id == self.user_id,
                    excluded.c.entity_type == entity_type,
                    excluded.c.entity_id == table.c.id,
                ),
            )
        return condition


ColumnFactory = Callable[[QueryContext], ColumnElement]


@dataclass(frozen=True)
class FieldSpec:
    """How a filter key maps onto the store."""

    kind: FieldKind
    column: ColumnFactory | None = None
    links: tuple[Link, ...] = ()
    hierarchy: str | None = None


def column(name: str) -> ColumnFactory:
    return lambda ctx: ctx.table.c[name]


def counter(name: str) -> ColumnFactory:
    return lambda ctx: ctx.counter(name)


def nocase(expression: ColumnElement) -> ColumnElement:
    return collate(expression, "NOCASE")


def link_count(link: Table, owner_column: str) -> ColumnFactory:
    """Number of junction rows owned by the queried entity."""

    def factory(ctx: QueryContext) -> ColumnElement:
        return (
            select(func.count())
            .select_from(link)
            .where(link.c[owner_column] == ctx.table.c.id)
            .scalar_subquery()
        )

    return factory


@dataclass(frozen=True)
class RelatedLoad:
    """A related entity set attached to every returned item.

    ``link`` relations go through a junction; otherwise ``reference_column``
    on the owner points at a single related row.
    """

    name: str
    target_type: EntityType
    columns: tuple[str, ...]
    link: Table | None = None
    owner_column: str | None = None
    target_column: str | None = None
    extra_columns: tuple[str, ...] = ()
    reference_column: str | None = None


@dataclass
class BuiltQuery:
    """The pieces of a rendered query shared by the page and count statements."""

    context: QueryContext
    from_clause: FromClause
    conditions: list[ColumnElement] = field(default_factory=list)
    order_by: list[ColumnElement] = field(default_factory=list)
    seed: int | None = None
    pending: list[HierarchicalMatch] = field(default_factory=list)


class EntityQueryBuilder:
    """Turns a :class:`QuerySpec` into SQL for one entity type.

    Subclasses declare their filterable fields, sort keys, search columns and
    related entity loads; the rendering is shared.
    """

    entity_type: ClassVar[EntityType]
    fields: ClassVar[dict[str, FieldSpec]] = {}
    sorts: ClassVar[dict[str, ColumnFactory]] = {}
    default_sort: ClassVar[str] = "created_at"
    search_columns: ClassVar[tuple[str, ...]] = ()
    related: ClassVar[tuple[RelatedLoad, ...]] = ()

    def __init__(self, batch_size: int = 500):
        self._batch_size = batch_size

    @property
    def table(self) -> Table:
        return ENTITY_MODELS[self.entity_type].__table__

    # Hooks -----------------------------------------------------------------

    def prepare(self, ctx: QueryContext) -> None:
        """Register extra overlay joins on ``ctx``."""

    def extra_columns(self, ctx: QueryContext) -> dict[str, ColumnElement]:
        """Per-type computed or overlay columns added to each row."""

        return {}

    # Validation ------------------------------------------------------------

    def build_clauses(self, ctx: QueryContext) -> list[Clause]:
        """Validate every filter and turn it into a clause.

        Raises :class:`FilterValidationError` naming the offending field.
        """

        clauses: list[Clause] = []
        for name, criterion in ctx.spec.filters.items():
            spec = self.fields.get(name)
            if spec is None:
                raise FilterValidationError(
                    name, f"Unknown filter for {self.entity_type}"
                )
            clauses.append(self._build_clause(ctx, name, spec, criterion))
        return clauses

    def _build_clause(
        self, ctx: QueryContext, name: str, spec: FieldSpec, criterion: FilterCriterion
    ) -> Clause:
        modifier = criterion.modifier
        if modifier not in ALLOWED_MODIFIERS[spec.kind]:
            raise FilterValidationError(
                name, f"Modifier {modifier.value} is not supported for this field"
            )
        needs_value = modifier not in _NO_VALUE_MODIFIERS
        depth = criterion.depth
        if depth is not None and depth != 0:
            if spec.hierarchy is None:
                raise FilterValidationError(name, "Depth is not supported for this field")
            if depth < -1:
                raise FilterValidationError(name, "Depth must be -1, 0 or positive")

        if spec.kind in ("number", "date"):
            value = self._scalar(name, criterion.value, spec.kind, required=needs_value)
            value2 = self._scalar(name, criterion.value2, spec.kind, required=False)
            return Comparison(
                spec.column(ctx), modifier, value, value2, is_date=spec.kind == "date"
            )

        if spec.kind == "text":
            value = criterion.value
            if needs_value and not isinstance(value, str):
                raise FilterValidationError(name, "Expected a text value")
            return TextMatch(spec.column(ctx), modifier, value)

        if spec.kind == "flag":
            value = criterion.value
            if isinstance(value, str) and value.lower() in ("true", "false"):
                value = value.lower() == "true"
            if not isinstance(value, bool):
                raise FilterValidationError(name, "Expected a boolean value")
            return FlagMatch(spec.column(ctx), value)

        groups = self._id_groups(name, criterion.value, required=needs_value)
        if spec.kind == "membership":
            inner: Membership | RelationMatch = Membership(
                spec.column(ctx), modifier, groups
            )
        else:
            inner = RelationMatch(ctx.table.c.id, spec.links, modifier, groups)

        if depth is not None and depth != 0 and needs_value:
            return HierarchicalMatch(inner, spec.hierarchy, depth)
        return inner

    @staticmethod
    def _scalar(name: str, value: Any, kind: str, *, required: bool) -> Any:
        if value is None:
            if required:
                raise FilterValidationError(name, "A value is required")
            return None
        if kind == "number":
            if isinstance(value, bool):
                raise FilterValidationError(name, "Expected a number")
            if isinstance(value, (int, float)):
                return value
            try:
                return float(value) if "." in str(value) else int(value)
            except (TypeError, ValueError):
                raise FilterValidationError(name, "Expected a number") from None
        if not isinstance(value, str) or not value.strip():
            raise FilterValidationError(name, "Expected a date string")
        return value.strip()

    @staticmethod
    def _id_groups(name: str, value: Any, *, required: bool) -> tuple[frozenset[str], ...]:
        if value is None:
            if required:
                raise FilterValidationError(name, "At least one ID is required")
            return ()
        values = value if isinstance(value, (list, tuple, set)) else [value]
        groups: list[frozenset[str]] = []
        for item in values:
            if isinstance(item, bool) or not isinstance(item, (str, int)):
                raise FilterValidationError(name, "IDs must be strings or integers")
            text = str(item).strip()
            if not text:
                raise FilterValidationError(name, "IDs must not be empty")
            groups.append(frozenset({text}))
        if required and not groups:
            raise FilterValidationError(name, "At least one ID is required")
        return tuple(groups)

    # Rendering -------------------------------------------------------------

    def build(self, ctx: QueryContext) -> BuiltQuery:
        """Render the FROM clause, filters and ordering for ``ctx``."""

        self.prepare(ctx)
        clauses = self.build_clauses(ctx)

        from_clause: FromClause = self.table
        for overlay, onclause in ctx.joins:
            from_clause = from_clause.outerjoin(overlay, onclause)

        conditions: list[ColumnElement] = [self.table.c.deleted_at.is_(None)]
        if ctx.apply_exclusions:
            excluded = ctx.excluded
            from_clause = from_clause.outerjoin(
                excluded,
                and_(
                    excluded.c.user_id == ctx.user_id,
                    excluded.c.entity_type == self.entity_type,
                    excluded.c.entity_id == self.table.c.id,
                ),
            )
            conditions.append(excluded.c.id.is_(None))

        built = BuiltQuery(context=ctx, from_clause=from_clause, conditions=conditions)
        for clause in clauses:
            if isinstance(clause, HierarchicalMatch):
                built.pending.append(clause)
            else:
                built.conditions.append(render_clause(clause))

        search = ctx.spec.search
        if search and self.search_columns:
            needle = search.strip().lower()
            built.conditions.append(
                or_(
                    *(
                        func.lower(self.table.c[name], type_=String()).contains(needle, autoescape=True)
                        for name in self.search_columns
                    )
                )
            )

        built.order_by, built.seed = self.order_by(ctx)
        return built

    def order_by(self, ctx: QueryContext) -> tuple[list[ColumnElement], int | None]:
        spec = ctx.spec
        descending = spec.direction == "DESC"
        is_random, seed = parse_random_sort(spec.sort)
        if is_random:
            if seed is None:
                if spec.seed is not None:
                    seed = normalise_seed(spec.seed)
                else:
                    seed = generate_seed(spec.user_id)
            key = seeded_sort_expression(self.table.c.id, seed)
        else:
            factory = self.sorts.get(spec.sort or "") or self.sorts[self.default_sort]
            key = factory(ctx)
            seed = None
        tiebreak = (cast(self.table.c.id, Integer), self.table.c.id)
        expressions = [key, *tiebreak]
        if descending:
            return [expression.desc() for expression in expressions], seed
        return [expression.asc() for expression in expressions], seed

    def row_columns(self, ctx: QueryContext) -> list[ColumnElement]:
        """Scalar columns of each returned row with overlays merged in."""

        overrides: dict[str, ColumnElement] = {}
        if "rating100" in self.table.c:
            overrides["rating100"] = ctx.rating
        overrides["favorite"] = ctx.favorite
        for definition in counters_for(self.entity_type):
            overrides[definition.column] = ctx.counter(definition.column)
        overrides.update(self.extra_columns(ctx))

        columns: list[ColumnElement] = []
        seen: set[str] = set()
        for table_column in self.table.c:
            if table_column.name in ("synced_at", "deleted_at"):
                continue
            expression = overrides.get(table_column.name, table_column)
            columns.append(expression.label(table_column.name))
            seen.add(table_column.name)
        for name, expression in overrides.items():
            if name not in seen:
                columns.append(expression.label(name))
        return columns

    def page_statement(self, built: BuiltQuery) -> Select:
        return (
            select(*self.row_columns(built.context))
            .select_from(built.from_clause)
            .where(*built.conditions)
            .order_by(*built.order_by)
        )

    def id_statement(self, built: BuiltQuery) -> Select:
        return (
            select(self.table.c.id)
            .select_from(built.from_clause)
            .where(*built.conditions)
            .order_by(*built.order_by)
        )

    def count_statement(self, built: BuiltQuery) -> Select:
        return (
            select(func.count())
            .select_from(built.from_clause)
            .where(*built.conditions)
        )

    # Hydration -------------------------------------------------------------

    async def hydrate(
        self, session: AsyncSession, ctx: QueryContext, items: list[dict[str, Any]]
    ) -> list[dict[str, Any]]:
        """Attach related entities to ``items`` using chunked ``IN`` queries."""

        if not items:
            return items
        for load in self.related:
            if load.link is not None:
                await self._attach_many(session, ctx, items, load)
            else:
                await self._attach_one(session, ctx, items, load)
        return items

    async def _attach_many(
        self,
        session: AsyncSession,
        ctx: QueryContext,
        items: list[dict[str, Any]],
        load: RelatedLoad,
    ) -> None:
        link = load.link
        target = ENTITY_MODELS[load.target_type].__table__
        owner_ids = [item["id"] for item in items]
        attached: dict[str, list[dict[str, Any]]] = {owner_id: [] for owner_id in owner_ids}
        selected = [
            link.c[load.owner_column].label("_owner_id"),
            *(target.c[name] for name in load.columns),
            *(link.c[name] for name in load.extra_columns),
        ]
        for batch in chunked(owner_ids, self._batch_size):
            stmt = (
                select(*selected)
                .select_from(link.join(target, target.c.id == link.c[load.target_column]))
                .where(link.c[load.owner_column].in_(batch), ctx.visible(target, load.target_type))
                .order_by(link.c[load.owner_column], cast(target.c.id, Integer), target.c.id)
            )
            for row in (await session.execute(stmt)).mappings():
                payload = {key: value for key, value in row.items() if key != "_owner_id"}
                attached[row["_owner_id"]].append(payload)
        for item in items:
            item[load.name] = attached.get(item["id"], [])

    async def _attach_one(
        self,
        session: AsyncSession,
        ctx: QueryContext,
        items: list[dict[str, Any]],
        load: RelatedLoad,
    ) -> None:
        target = ENTITY_MODELS[load.target_type].__table__
        wanted = sorted(
            {item[load.reference_column] for item in items if item.get(load.reference_column)}
        )
        found: dict[str, dict[str, Any]] = {}
        for batch in chunked(wanted, self._batch_size):
            stmt = select(*(target.c[name] for name in load.columns)).where(
                target.c.id.in_(batch), ctx.visible(target, load.target_type)
            )
            for row in (await session.execute(stmt)).mappings():
                found[row["id"]] = dict(row)
        for item in items:
            item[load.name] = found.get(item.get(load.reference_column))


def relation_link(table_name: str, owner_column: str, target_column: str) -> Link:
    if table_name == SceneInheritedTag.__tablename__:
        table = SceneInheritedTag.__table__
    else:
        table = JUNCTION_MODELS[table_name].__table__
    return Link(table, owner_column, target_column)


SUMMARY_COLUMNS: dict[str, tuple[str, ...]] = {
    "scene": ("id", "title", "date"),
    "performer": ("id", "name", "disambiguation", "gender", "image_path", "favorite"),
    "studio": ("id", "name", "image_path"),
    "tag": ("id", "name", "image_path"),
    "gallery": ("id", "title", "date", "cover_path"),
    "group": ("id", "name", "front_image_path"),
    "image": ("id", "title", "path_thumbnail"),
}


def standard_sorts(*names: str) -> dict[str, ColumnFactory]:
    """Sort factories for plain columns."""

    return {name: column(name) for name in names}


def rating_sort(ctx: QueryContext) -> ColumnElement:
    return func.coalesce(ctx.rating, literal(0))
