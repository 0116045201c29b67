"""Scene queries."""

from __future__ import annotations

from sqlalchemy import ColumnElement, FromClause, and_, func, literal, select

from ..db_models import (
    OCounterEvent,
    SceneGallery,
    SceneGroup,
    ScenePerformer,
    SceneTag,
    WatchHistory,
)
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


def _watch(ctx: QueryContext) -> FromClause:
    return ctx.overlays["watch"]


def _play_count(ctx: QueryContext) -> ColumnElement:
    return func.coalesce(_watch(ctx).c.play_count, ctx.table.c.play_count)


def _o_counter(ctx: QueryContext) -> ColumnElement:
    return func.coalesce(_watch(ctx).c.o_count, ctx.table.c.o_counter)


def _last_o_at(ctx: QueryContext) -> ColumnElement:
    events = OCounterEvent.__table__
    return (
        select(func.max(events.c.occurred_at))
        .where(
            events.c.user_id == ctx.user_id,
            events.c.entity_type == "scene",
            events.c.entity_id == ctx.table.c.id,
        )
        .scalar_subquery()
    )


def _display_title(ctx: QueryContext) -> ColumnElement:
    return nocase(
        func.coalesce(func.nullif(ctx.table.c.title, ""), ctx.table.c.file_path)
    )


_performers = ScenePerformer.__table__
_tags = SceneTag.__table__
_groups = SceneGroup.__table__
_galleries = SceneGallery.__table__


class SceneQueryBuilder(EntityQueryBuilder):
    entity_type = "scene"
    default_sort = "created_at"
    search_columns = ("title", "details", "code", "file_path")

    fields = {
        "id": FieldSpec("membership", column("id")),
        "title": FieldSpec("text", column("title")),
        "code": FieldSpec("text", column("code")),
        "details": FieldSpec("text", column("details")),
        "director": FieldSpec("text", column("director")),
        "path": FieldSpec("text", column("file_path")),
        "video_codec": FieldSpec("text", column("video_codec")),
        "date": FieldSpec("date", column("date")),
        "created_at": FieldSpec("date", column("created_at")),
        "updated_at": FieldSpec("date", column("updated_at")),
        "last_played_at": FieldSpec("date", lambda ctx: _watch(ctx).c.last_played_at),
        "rating100": FieldSpec("number", lambda ctx: ctx.rating),
        "duration": FieldSpec("number", column("duration")),
        "file_size": FieldSpec("number", column("file_size")),
        "bit_rate": FieldSpec("number", column("bit_rate")),
        "frame_rate": FieldSpec("number", column("frame_rate")),
        "width": FieldSpec("number", column("width")),
        "height": FieldSpec("number", column("height")),
        "o_counter": FieldSpec("number", _o_counter),
        "play_count": FieldSpec("number", _play_count),
        "play_duration": FieldSpec("number", lambda ctx: _watch(ctx).c.play_duration),
        "performer_count": FieldSpec("number", link_count(_performers, "scene_id")),
        "tag_count": FieldSpec("number", link_count(_tags, "scene_id")),
        "organized": FieldSpec("flag", column("organized")),
        "favorite": FieldSpec("flag", lambda ctx: ctx.favorite),
        "studios": FieldSpec("membership", column("studio_id"), hierarchy="studio"),
        "performers": FieldSpec(
            "relation", links=(relation_link("scene_performers", "scene_id", "performer_id"),)
        ),
        "tags": FieldSpec(
            "relation",
            links=(
                relation_link("scene_tags", "scene_id", "tag_id"),
                relation_link("scene_inherited_tags", "scene_id", "tag_id"),
            ),
            hierarchy="tag",
        ),
        "groups": FieldSpec(
            "relation", links=(relation_link("scene_groups", "scene_id", "group_id"),)
        ),
        "galleries": FieldSpec(
            "relation", links=(relation_link("scene_galleries", "scene_id", "gallery_id"),)
        ),
    }

    sorts = {
        **standard_sorts(
            "created_at", "updated_at", "date", "duration", "bit_rate", "frame_rate"
        ),
        "title": _display_title,
        "filesize": column("file_size"),
        "bitrate": column("bit_rate"),
        "framerate": column("frame_rate"),
        "path": lambda ctx: nocase(ctx.table.c.file_path),
        "performer_count": link_count(_performers, "scene_id"),
        "tag_count": link_count(_tags, "scene_id"),
        "rating": rating_sort,
        "user_rating": rating_sort,
        "last_played_at": lambda ctx: _watch(ctx).c.last_played_at,
        "play_count": lambda ctx: func.coalesce(_play_count(ctx), literal(0)),
        "play_duration": lambda ctx: func.coalesce(_watch(ctx).c.play_duration, literal(0)),
        "resume_time": lambda ctx: func.coalesce(_watch(ctx).c.resume_time, literal(0)),
        "o_counter": lambda ctx: func.coalesce(_o_counter(ctx), literal(0)),
        "last_o_at": _last_o_at,
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
            owner_column="scene_id",
            target_column="performer_id",
        ),
        RelatedLoad(
            "tags",
            "tag",
            SUMMARY_COLUMNS["tag"],
            link=_tags,
            owner_column="scene_id",
            target_column="tag_id",
        ),
        RelatedLoad(
            "groups",
            "group",
            SUMMARY_COLUMNS["group"],
            link=_groups,
            owner_column="scene_id",
            target_column="group_id",
            extra_columns=("scene_index",),
        ),
        RelatedLoad(
            "galleries",
            "gallery",
            SUMMARY_COLUMNS["gallery"],
            link=_galleries,
            owner_column="scene_id",
            target_column="gallery_id",
        ),
    )

    def prepare(self, ctx: QueryContext) -> None:
        watch = WatchHistory.__table__.alias("w")
        ctx.add_overlay(
            "watch",
            watch,
            and_(watch.c.user_id == ctx.user_id, watch.c.scene_id == ctx.table.c.id),
        )

    def extra_columns(self, ctx: QueryContext) -> dict[str, ColumnElement]:
        watch = _watch(ctx)
        return {
            "play_count": _play_count(ctx),
            "o_counter": _o_counter(ctx),
            "play_duration": watch.c.play_duration,
            "resume_time": watch.c.resume_time,
            "last_played_at": watch.c.last_played_at,
            "last_o_at": _last_o_at(ctx),
        }
