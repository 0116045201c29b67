"""Group queries."""

from __future__ import annotations

from ..db_models import GroupTag
from .base import (
    SUMMARY_COLUMNS,
    EntityQueryBuilder,
    FieldSpec,
    RelatedLoad,
    column,
    counter,
    nocase,
    rating_sort,
    relation_link,
    standard_sorts,
)


class GroupQueryBuilder(EntityQueryBuilder):
    entity_type = "group"
    default_sort = "name"
    search_columns = ("name", "synopsis", "director")

    fields = {
        "id": FieldSpec("membership", column("id")),
        "name": FieldSpec("text", column("name")),
        "director": FieldSpec("text", column("director")),
        "synopsis": FieldSpec("text", column("synopsis")),
        "date": FieldSpec("date", column("date")),
        "created_at": FieldSpec("date", column("created_at")),
        "updated_at": FieldSpec("date", column("updated_at")),
        "duration": FieldSpec("number", column("duration")),
        "rating100": FieldSpec("number", lambda ctx: ctx.rating),
        "scene_count": FieldSpec("number", counter("scene_count")),
        "favorite": FieldSpec("flag", lambda ctx: ctx.favorite),
        "studios": FieldSpec("membership", column("studio_id"), hierarchy="studio"),
        "tags": FieldSpec(
            "relation",
            links=(relation_link("group_tags", "group_id", "tag_id"),),
            hierarchy="tag",
        ),
        "scenes": FieldSpec(
            "relation", links=(relation_link("scene_groups", "group_id", "scene_id"),)
        ),
    }

    sorts = {
        **standard_sorts("created_at", "updated_at", "date", "duration"),
        "name": lambda ctx: nocase(ctx.table.c.name),
        "rating": rating_sort,
        "scene_count": counter("scene_count"),
        "scenes_count": counter("scene_count"),
    }

    related = (
        RelatedLoad(
            "studio", "studio", SUMMARY_COLUMNS["studio"], reference_column="studio_id"
        ),
        RelatedLoad(
            "tags",
            "tag",
            SUMMARY_COLUMNS["tag"],
            link=GroupTag.__table__,
            owner_column="group_id",
            target_column="tag_id",
        ),
    )
