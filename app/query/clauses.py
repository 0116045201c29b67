"""Filter clause kinds and their rendering into SQL predicates."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Mapping, Union

from sqlalchemy import ColumnElement, String, Table, and_, exists, func, not_, or_, true

from ..models import FilterModifier
from .hierarchy import expand_ids

M = FilterModifier


@dataclass(frozen=True)
class Link:
    """A junction table joining the queried entity to filter targets."""

    table: Table
    owner_column: str
    target_column: str


@dataclass(frozen=True)
class Comparison:
    """Numeric or date comparison against a single column expression."""

    column: ColumnElement
    modifier: FilterModifier
    value: Any
    value2: Any = None
    is_date: bool = False


@dataclass(frozen=True)
class TextMatch:
    """Case-insensitive text comparison."""

    column: ColumnElement
    modifier: FilterModifier
    value: str | None


@dataclass(frozen=True)
class FlagMatch:
    """Boolean flag; ``False`` also matches rows where the flag is unset."""

    column: ColumnElement
    value: bool


@dataclass(frozen=True)
class Membership:
    """A single-valued reference column matched against ID sets."""

    column: ColumnElement
    modifier: FilterModifier
    groups: tuple[frozenset[str], ...]


@dataclass(frozen=True)
class RelationMatch:
    """Many-to-many relation matched through correlated ``EXISTS`` subqueries.

    Each group is one requested value; ``INCLUDES_ALL`` needs every group to
    match while the other modifiers treat all groups as one set.
    """

    owner_id: ColumnElement
    links: tuple[Link, ...]
    modifier: FilterModifier
    groups: tuple[frozenset[str], ...]


@dataclass(frozen=True)
class HierarchicalMatch:
    """A membership or relation match whose IDs expand to descendants."""

    inner: Union[Membership, RelationMatch]
    hierarchy: str
    depth: int

    def expand(self, children: Mapping[str, set[str]]) -> Union[Membership, RelationMatch]:
        groups = tuple(
            frozenset(expand_ids(group, children, self.depth)) for group in self.inner.groups
        )
        return replace(self.inner, groups=groups)


Clause = Union[Comparison, TextMatch, FlagMatch, Membership, RelationMatch, HierarchicalMatch]


def _all_ids(groups: tuple[frozenset[str], ...]) -> list[str]:
    merged: set[str] = set()
    for group in groups:
        merged.update(group)
    return sorted(merged)


def _render_comparison(clause: Comparison) -> ColumnElement:
    column = clause.column
    value = clause.value
    value2 = clause.value2
    modifier = clause.modifier
    if modifier is M.IS_NULL:
        return column.is_(None)
    if modifier is M.NOT_NULL:
        return column.is_not(None)
    if modifier is M.EQUALS:
        if clause.is_date:
            return func.date(column) == func.date(value)
        return column == value
    if modifier is M.NOT_EQUALS:
        if clause.is_date:
            return or_(column.is_(None), func.date(column) != func.date(value))
        return column != value
    if modifier is M.GREATER_THAN:
        return column > value
    if modifier is M.LESS_THAN:
        return column < value
    if modifier is M.BETWEEN:
        if value2 is None:
            return column >= value
        return column.between(value, value2)
    if modifier is M.NOT_BETWEEN:
        if value2 is None:
            outside = column < value
        else:
            outside = or_(column < value, column > value2)
        if clause.is_date:
            return or_(column.is_(None), outside)
        return outside
    raise ValueError(f"Unsupported comparison modifier {modifier}")


def _render_text(clause: TextMatch) -> ColumnElement:
    column = clause.column
    modifier = clause.modifier
    if modifier is M.IS_NULL:
        return or_(column.is_(None), column == "")
    if modifier is M.NOT_NULL:
        return and_(column.is_not(None), column != "")
    value = (clause.value or "").lower()
    lowered = func.lower(column, type_=String())
    if modifier is M.INCLUDES:
        return lowered.contains(value, autoescape=True)
    if modifier is M.EXCLUDES:
        return or_(column.is_(None), not_(lowered.contains(value, autoescape=True)))
    if modifier is M.EQUALS:
        return lowered == value
    if modifier is M.NOT_EQUALS:
        return or_(column.is_(None), lowered != value)
    raise ValueError(f"Unsupported text modifier {modifier}")


def _render_membership(clause: Membership) -> ColumnElement:
    column = clause.column
    modifier = clause.modifier
    if modifier is M.IS_NULL:
        return column.is_(None)
    if modifier is M.NOT_NULL:
        return column.is_not(None)
    ids = _all_ids(clause.groups)
    if modifier in (M.INCLUDES, M.EQUALS):
        return column.in_(ids)
    if modifier is M.INCLUDES_ALL:
        return and_(true(), *(column.in_(sorted(group)) for group in clause.groups))
    if modifier in (M.EXCLUDES, M.NOT_EQUALS):
        return or_(column.is_(None), column.not_in(ids))
    raise ValueError(f"Unsupported membership modifier {modifier}")


def _link_exists(clause: RelationMatch, ids: list[str] | None) -> ColumnElement:
    matches = []
    for link in clause.links:
        criteria = [link.table.c[link.owner_column] == clause.owner_id]
        if ids is not None:
            criteria.append(link.table.c[link.target_column].in_(ids))
        matches.append(exists().where(*criteria))
    return or_(*matches) if len(matches) > 1 else matches[0]


def _render_relation(clause: RelationMatch) -> ColumnElement:
    modifier = clause.modifier
    if modifier is M.IS_NULL:
        return not_(_link_exists(clause, None))
    if modifier is M.NOT_NULL:
        return _link_exists(clause, None)
    if modifier in (M.INCLUDES, M.EQUALS):
        return _link_exists(clause, _all_ids(clause.groups))
    if modifier is M.INCLUDES_ALL:
        return and_(
            true(), *(_link_exists(clause, sorted(group)) for group in clause.groups)
        )
    if modifier in (M.EXCLUDES, M.NOT_EQUALS):
        return not_(_link_exists(clause, _all_ids(clause.groups)))
    raise ValueError(f"Unsupported relation modifier {modifier}")


def render_clause(clause: Clause) -> ColumnElement:
    """Render any clause kind into a boolean SQL expression."""

    if isinstance(clause, HierarchicalMatch):
        raise ValueError("Hierarchical clauses must be expanded before rendering")
    if isinstance(clause, Comparison):
        return _render_comparison(clause)
    if isinstance(clause, TextMatch):
        return _render_text(clause)
    if isinstance(clause, FlagMatch):
        if clause.value:
            return clause.column.is_(True)
        return clause.column.is_not(True)
    if isinstance(clause, Membership):
        return _render_membership(clause)
    if isinstance(clause, RelationMatch):
        return _render_relation(clause)
    raise TypeError(f"Unknown clause type {type(clause).__name__}")
