"""Image queries."""

from __future__ import annotations

from sqlalchemy import ColumnElement, FromClause, and_, func, literal

from ..db_models import ImageGallery, ImagePerformer, ImageTag, ImageViewHistory
from .base import (
    SUMMARY_COLUMNS,
    EntityQueryBuilder,
    FieldSpec,
    QueryContext,
    RelatedLoad,
    column,
    link_count,
    nocase,
    rating_sort,
    relation_link,
    standard_sorts,
)

_performers = ImagePerformer.__table__
_tags = ImageTag.__table__
_galleries = ImageGallery.__table__


def _views(ctx: QueryContext) -> FromClause:
    return ctx.overlays["views"]


def _o_counter(ctx: QueryContext) -> ColumnElement:
    return func.coalesce(_views(ctx).c.o_count, ctx.table.c.o_counter)


class ImageQueryBuilder(EntityQueryBuilder):
    entity_type = "image"
    default_sort = "created_at"
    search_columns = ("title", "details", "code", "file_path")

    fields = {
        "id": FieldSpec("membership", column("id")),
        "title": FieldSpec("text", column("title")),
        "code": FieldSpec("text", column("code")),
        "details": FieldSpec("text", column("details")),
        "photographer": FieldSpec("text", column("photographer")),
        "path": FieldSpec("text", column("file_path")),
        "date": FieldSpec("date", column("date")),
        "created_at": FieldSpec("date", column("created_at")),
        "updated_at": FieldSpec("date", column("updated_at")),
        "last_viewed_at": FieldSpec("date", lambda ctx: _views(ctx).c.last_viewed_at),
        "rating100": FieldSpec("number", lambda ctx: ctx.rating),
        "o_counter": FieldSpec("number", _o_counter),
        "view_count": FieldSpec("number", lambda ctx: _views(ctx).c.view_count),
        "width": FieldSpec("number", column("width")),
        "height": FieldSpec("number", column("height")),
        "file_size": FieldSpec("number", column("file_size")),
        "performer_count": FieldSpec("number", link_count(_performers, "image_id")),
        "tag_count": FieldSpec("number", link_count(_tags, "image_id")),
        "organized": FieldSpec("flag", column("organized")),
        "favorite": FieldSpec("flag", lambda ctx: ctx.favorite),
        "studios": FieldSpec("membership", column("studio_id"), hierarchy="studio"),
        "performers": FieldSpec(
            "relation", links=(relation_link("image_performers", "image_id", "performer_id"),)
        ),
        "tags": FieldSpec(
            "relation",
            links=(relation_link("image_tags", "image_id", "tag_id"),),
            hierarchy="tag",
        ),
        "galleries": FieldSpec(
            "relation", links=(relation_link("image_galleries", "image_id", "gallery_id"),)
        ),
    }

    sorts = {
        **standard_sorts("created_at", "updated_at", "date", "width", "height"),
        "title": lambda ctx: nocase(
            func.coalesce(func.nullif(ctx.table.c.title, ""), ctx.table.c.file_path)
        ),
        "path": lambda ctx: nocase(ctx.table.c.file_path),
        "filesize": column("file_size"),
        "rating": rating_sort,
        "o_counter": lambda ctx: func.coalesce(_o_counter(ctx), literal(0)),
        "view_count": lambda ctx: func.coalesce(_views(ctx).c.view_count, literal(0)),
        "last_viewed_at": lambda ctx: _views(ctx).c.last_viewed_at,
        "performer_count": link_count(_performers, "image_id"),
        "tag_count": link_count(_tags, "image_id"),
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
            owner_column="image_id",
            target_column="performer_id",
        ),
        RelatedLoad(
            "tags",
            "tag",
            SUMMARY_COLUMNS["tag"],
            link=_tags,
            owner_column="image_id",
            target_column="tag_id",
        ),
        RelatedLoad(
            "galleries",
            "gallery",
            SUMMARY_COLUMNS["gallery"],
            link=_galleries,
            owner_column="image_id",
            target_column="gallery_id",
        ),
    )

    def prepare(self, ctx: QueryContext) -> None:
        views = ImageViewHistory.__table__.alias("v")
        ctx.add_overlay(
            "views",
            views,
            and_(views.c.user_id == ctx.user_id, views.c.image_id == ctx.table.c.id),
        )

    def extra_columns(self, ctx: QueryContext) -> dict[str, ColumnElement]:
        views = _views(ctx)
        return {
            "o_counter": _o_counter(ctx),
            "view_count": views.c.view_count,
            "last_viewed_at": views.c.last_viewed_at,
        }
