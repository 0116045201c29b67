"""Studio queries."""

from __future__ import annotations

from ..db_models import StudioTag
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


class StudioQueryBuilder(EntityQueryBuilder):
    entity_type = "studio"
    default_sort = "name"
    search_columns = ("name", "details")

    fields = {
        "id": FieldSpec("membership", column("id")),
        "name": FieldSpec("text", column("name")),
        "details": FieldSpec("text", column("details")),
        "url": FieldSpec("text", column("url")),
        "created_at": FieldSpec("date", column("created_at")),
        "updated_at": FieldSpec("date", column("updated_at")),
        "rating100": FieldSpec("number", lambda ctx: ctx.rating),
        "scene_count": FieldSpec("number", counter("scene_count")),
        "image_count": FieldSpec("number", counter("image_count")),
        "gallery_count": FieldSpec("number", counter("gallery_count")),
        "group_count": FieldSpec("number", counter("group_count")),
        "favorite": FieldSpec("flag", lambda ctx: ctx.favorite),
        "parents": FieldSpec("membership", column("parent_id"), hierarchy="studio"),
        "tags": FieldSpec(
            "relation",
            links=(relation_link("studio_tags", "studio_id", "tag_id"),),
            hierarchy="tag",
        ),
    }

    sorts = {
        **standard_sorts("created_at", "updated_at"),
        "name": lambda ctx: nocase(ctx.table.c.name),
        "rating": rating_sort,
        "scene_count": counter("scene_count"),
        "scenes_count": counter("scene_count"),
        "image_count": counter("image_count"),
        "gallery_count": counter("gallery_count"),
        "group_count": counter("group_count"),
    }

    related = (
        RelatedLoad(
            "parent", "studio", SUMMARY_COLUMNS["studio"], reference_column="parent_id"
        ),
        RelatedLoad(
            "tags",
            "tag",
            SUMMARY_COLUMNS["tag"],
            link=StudioTag.__table__,
            owner_column="studio_id",
            target_column="tag_id",
        ),
    )
