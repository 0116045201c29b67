"""Tag queries."""

from __future__ import annotations

from ..db_models import TagParent
from .base import (
    SUMMARY_COLUMNS,
    EntityQueryBuilder,
    FieldSpec,
    RelatedLoad,
    column,
    counter,
    nocase,
    relation_link,
    standard_sorts,
)

_parents = TagParent.__table__


class TagQueryBuilder(EntityQueryBuilder):
    entity_type = "tag"
    default_sort = "name"
    search_columns = ("name", "aliases", "description")

    fields = {
        "id": FieldSpec("membership", column("id")),
        "name": FieldSpec("text", column("name")),
        "aliases": FieldSpec("text", column("aliases")),
        "description": FieldSpec("text", column("description")),
        "created_at": FieldSpec("date", column("created_at")),
        "updated_at": FieldSpec("date", column("updated_at")),
        "scene_count": FieldSpec("number", counter("scene_count")),
        "image_count": FieldSpec("number", counter("image_count")),
        "gallery_count": FieldSpec("number", counter("gallery_count")),
        "performer_count": FieldSpec("number", counter("performer_count")),
        "studio_count": FieldSpec("number", counter("studio_count")),
        "group_count": FieldSpec("number", counter("group_count")),
        "favorite": FieldSpec("flag", lambda ctx: ctx.favorite),
        "parents": FieldSpec(
            "relation", links=(relation_link("tag_parents", "child_id", "parent_id"),)
        ),
        "children": FieldSpec(
            "relation", links=(relation_link("tag_parents", "parent_id", "child_id"),)
        ),
    }

    sorts = {
        **standard_sorts("created_at", "updated_at"),
        "name": lambda ctx: nocase(ctx.table.c.name),
        "scene_count": counter("scene_count"),
        "scenes_count": counter("scene_count"),
        "image_count": counter("image_count"),
        "gallery_count": counter("gallery_count"),
        "performer_count": counter("performer_count"),
        "studio_count": counter("studio_count"),
        "group_count": counter("group_count"),
    }

    related = (
        RelatedLoad(
            "parents",
            "tag",
            SUMMARY_COLUMNS["tag"],
            link=_parents,
            owner_column="child_id",
            target_column="parent_id",
        ),
        RelatedLoad(
            "children",
            "tag",
            SUMMARY_COLUMNS["tag"],
            link=_parents,
            owner_column="parent_id",
            target_column="child_id",
        ),
    )
