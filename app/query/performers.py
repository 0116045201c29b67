"""Performer queries."""

from __future__ import annotations

from ..db_models import PerformerTag
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


class PerformerQueryBuilder(EntityQueryBuilder):
    entity_type = "performer"
    default_sort = "name"
    search_columns = ("name", "alias_list", "disambiguation")

    fields = {
        "id": FieldSpec("membership", column("id")),
        "name": FieldSpec("text", column("name")),
        "disambiguation": FieldSpec("text", column("disambiguation")),
        "aliases": FieldSpec("text", column("alias_list")),
        "details": FieldSpec("text", column("details")),
        "gender": FieldSpec("text", column("gender")),
        "country": FieldSpec("text", column("country")),
        "ethnicity": FieldSpec("text", column("ethnicity")),
        "hair_color": FieldSpec("text", column("hair_color")),
        "eye_color": FieldSpec("text", column("eye_color")),
        "measurements": FieldSpec("text", column("measurements")),
        "birthdate": FieldSpec("date", column("birthdate")),
        "death_date": FieldSpec("date", column("death_date")),
        "created_at": FieldSpec("date", column("created_at")),
        "updated_at": FieldSpec("date", column("updated_at")),
        "height_cm": FieldSpec("number", column("height_cm")),
        "weight": FieldSpec("number", column("weight_kg")),
        "rating100": FieldSpec("number", lambda ctx: ctx.rating),
        "scene_count": FieldSpec("number", counter("scene_count")),
        "image_count": FieldSpec("number", counter("image_count")),
        "gallery_count": FieldSpec("number", counter("gallery_count")),
        "favorite": FieldSpec("flag", lambda ctx: ctx.favorite),
        "tags": FieldSpec(
            "relation",
            links=(relation_link("performer_tags", "performer_id", "tag_id"),),
            hierarchy="tag",
        ),
    }

    sorts = {
        **standard_sorts("created_at", "updated_at", "birthdate", "height_cm"),
        "name": lambda ctx: nocase(ctx.table.c.name),
        "weight": column("weight_kg"),
        "rating": rating_sort,
        "scene_count": counter("scene_count"),
        "scenes_count": counter("scene_count"),
        "image_count": counter("image_count"),
        "gallery_count": counter("gallery_count"),
    }

    related = (
        RelatedLoad(
            "tags",
            "tag",
            SUMMARY_COLUMNS["tag"],
            link=PerformerTag.__table__,
            owner_column="performer_id",
            target_column="tag_id",
        ),
    )
