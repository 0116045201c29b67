"""Gallery queries."""

from __future__ import annotations

from sqlalchemy import func

from ..db_models import GalleryPerformer, GalleryTag
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

_performers = GalleryPerformer.__table__
_tags = GalleryTag.__table__


class GalleryQueryBuilder(EntityQueryBuilder):
    entity_type = "gallery"
    default_sort = "created_at"
    search_columns = ("title", "details", "code", "folder_path")

    fields = {
        "id": FieldSpec("membership", column("id")),
        "title": FieldSpec("text", column("title")),
        "code": FieldSpec("text", column("code")),
        "details": FieldSpec("text", column("details")),
        "photographer": FieldSpec("text", column("photographer")),
        "url": FieldSpec("text", column("url")),
        "path": FieldSpec("text", column("folder_path")),
        "date": FieldSpec("date", column("date")),
        "created_at": FieldSpec("date", column("created_at")),
        "updated_at": FieldSpec("date", column("updated_at")),
        "rating100": FieldSpec("number", lambda ctx: ctx.rating),
        "image_count": FieldSpec("number", counter("image_count")),
        "organized": FieldSpec("flag", column("organized")),
        "favorite": FieldSpec("flag", lambda ctx: ctx.favorite),
        "studios": FieldSpec("membership", column("studio_id"), hierarchy="studio"),
        "performers": FieldSpec(
            "relation",
            links=(relation_link("gallery_performers", "gallery_id", "performer_id"),),
        ),
        "tags": FieldSpec(
            "relation",
            links=(relation_link("gallery_tags", "gallery_id", "tag_id"),),
            hierarchy="tag",
        ),
        "scenes": FieldSpec(
            "relation",
            links=(relation_link("scene_galleries", "gallery_id", "scene_id"),),
        ),
    }

    sorts = {
        **standard_sorts("created_at", "updated_at", "date"),
        "title": lambda ctx: nocase(
            func.coalesce(func.nullif(ctx.table.c.title, ""), ctx.table.c.folder_path)
        ),
        "path": lambda ctx: nocase(ctx.table.c.folder_path),
        "rating": rating_sort,
        "image_count": counter("image_count"),
        "images_count": counter("image_count"),
    }

    related = (
        RelatedLoad(
            "studio", "studio", SUMMARY_COLUMNS["studio"], reference_column="studio_id"
        ),
        RelatedLoad(
            "performers",
            "performer",
            SUMMARY_COLUMNS["performer"],
            link=_performers,
            owner_column="gallery_id",
            target_column="performer_id",
        ),
        RelatedLoad(
            "tags",
            "tag",
            SUMMARY_COLUMNS["tag"],
            link=_tags,
            owner_column="gallery_id",
            target_column="tag_id",
        ),
    )
