"""Walking the tag and studio hierarchies."""

from __future__ import annotations

import logging
from collections import defaultdict, deque
from typing import Iterable, Mapping

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..db_models import Studio, Tag, TagParent

logger = logging.getLogger(__name__)


def expand_ids(
    roots: Iterable[str], children: Mapping[str, Iterable[str]], depth: int
) -> set[str]:
    """Return ``roots`` plus their descendants down to ``depth`` levels.

    ``depth`` 0 keeps the roots only and -1 walks the whole subtree. Nodes
    are visited at most once, so cyclic data terminates.
    """

    found = {str(root) for root in roots}
    if depth == 0 or not found:
        return found

    queue: deque[tuple[str, int]] = deque((root, 0) for root in found)
    cycle_logged = False
    while queue:
        node, level = queue.popleft()
        if depth > 0 and level >= depth:
            continue
        for child in children.get(node, ()):
            if child in found:
                if not cycle_logged and _on_cycle(children, child):
                    logger.warning("Hierarchy cycle detected at %s, stopping expansion", child)
                    cycle_logged = True
                continue
            found.add(child)
            queue.append((child, level + 1))
    return found


def _on_cycle(children: Mapping[str, Iterable[str]], node: str) -> bool:
    seen: set[str] = set()
    stack = list(children.get(node, ()))
    while stack:
        current = stack.pop()
        if current == node:
            return True
        if current in seen:
            continue
        seen.add(current)
        stack.extend(children.get(current, ()))
    return False


async def load_tag_children(session: AsyncSession) -> dict[str, set[str]]:
    """Return a parent to children map for live tags."""

    live = select(Tag.id).where(Tag.deleted_at.is_(None))
    rows = await session.execute(
        select(TagParent.parent_id, TagParent.child_id).where(
            TagParent.child_id.in_(live)
        )
    )
    children: dict[str, set[str]] = defaultdict(set)
    for parent_id, child_id in rows.all():
        children[parent_id].add(child_id)
    return dict(children)


async def load_studio_children(session: AsyncSession) -> dict[str, set[str]]:
    """Return a parent to children map for live studios."""

    rows = await session.execute(
        select(Studio.parent_id, Studio.id).where(
            Studio.parent_id.is_not(None), Studio.deleted_at.is_(None)
        )
    )
    children: dict[str, set[str]] = defaultdict(set)
    for parent_id, studio_id in rows.all():
        children[parent_id].add(studio_id)
    return dict(children)


HIERARCHY_LOADERS = {
    "tag": load_tag_children,
    "studio": load_studio_children,
}
