"""Derived data copied from containers and related entities."""

from __future__ import annotations

import logging

from sqlalchemy import Integer, cast, delete, exists, func, insert, select, union, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import (
    Gallery,
    GalleryPerformer,
    GalleryTag,
    Group,
    GroupTag,
    Image,
    ImageGallery,
    ImagePerformer,
    ImageTag,
    Performer,
    PerformerTag,
    Scene,
    SceneGroup,
    SceneInheritedTag,
    ScenePerformer,
    SceneTag,
    Studio,
    StudioTag,
)

logger = logging.getLogger(__name__)

INHERITED_IMAGE_SCALARS: tuple[str, ...] = ("studio_id", "date", "photographer", "details")


def primary_gallery_subquery():
    """Return ``(image_id, gallery_id)`` for each image's lowest live gallery.

    Gallery IDs are ordered numerically with the raw string as tiebreak.
    """

    links = ImageGallery.__table__
    galleries = Gallery.__table__
    ranked = (
        select(
            links.c.image_id.label("image_id"),
            links.c.gallery_id.label("gallery_id"),
            func.row_number()
            .over(
                partition_by=links.c.image_id,
                order_by=(cast(links.c.gallery_id, Integer), links.c.gallery_id),
            )
            .label("position"),
        )
        .select_from(links.join(galleries, galleries.c.id == links.c.gallery_id))
        .where(galleries.c.deleted_at.is_(None))
        .subquery("ranked_galleries")
    )
    return (
        select(ranked.c.image_id, ranked.c.gallery_id)
        .where(ranked.c.position == 1)
        .subquery("primary_gallery")
    )


class InheritanceProcessor:
    """Applies gallery to image inheritance and scene tag inheritance."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def apply_container_inheritance(self) -> None:
        """Copy gallery metadata onto images that lack it.

        Scalars are filled only where the image value is null. Performer and
        tag links are copied only when the image has no links of that kind.
        Running this twice leaves the store unchanged.
        """

        images = Image.__table__
        galleries = Gallery.__table__
        async with self._session_factory() as session:
            async with session.begin():
                for column in INHERITED_IMAGE_SCALARS:
                    primary = primary_gallery_subquery()
                    result = await session.execute(
                        update(images)
                        .where(
                            images.c.id == primary.c.image_id,
                            galleries.c.id == primary.c.gallery_id,
                            images.c[column].is_(None),
                            galleries.c[column].is_not(None),
                        )
                        .values({column: galleries.c[column]})
                    )
                    if result.rowcount:
                        logger.info("Inherited %s for %s images", column, result.rowcount)

                for target, source, target_column, source_column in (
                    (ImagePerformer, GalleryPerformer, "performer_id", "performer_id"),
                    (ImageTag, GalleryTag, "tag_id", "tag_id"),
                ):
                    target_table = target.__table__
                    source_table = source.__table__
                    primary = primary_gallery_subquery()
                    rows = (
                        select(primary.c.image_id, source_table.c[source_column])
                        .select_from(
                            primary.join(
                                source_table,
                                source_table.c.gallery_id == primary.c.gallery_id,
                            )
                        )
                        .where(
                            ~exists().where(
                                target_table.c.image_id == primary.c.image_id
                            )
                        )
                    )
                    result = await session.execute(
                        insert(target_table).from_select(
                            ["image_id", target_column], rows
                        )
                    )
                    if result.rowcount and result.rowcount > 0:
                        logger.info(
                            "Inherited %s %s links from galleries",
                            result.rowcount,
                            target_column.removesuffix("_id"),
                        )

    async def apply_scene_tag_inheritance(self) -> None:
        """Rebuild the tags scenes inherit from performers, studios and groups."""

        inherited = SceneInheritedTag.__table__
        scenes = Scene.__table__
        direct = SceneTag.__table__
        performer_links = ScenePerformer.__table__
        performers = Performer.__table__
        performer_tags = PerformerTag.__table__
        studios = Studio.__table__
        studio_tags = StudioTag.__table__
        group_links = SceneGroup.__table__
        groups = Group.__table__
        group_tags = GroupTag.__table__

        from_performers = (
            select(
                performer_links.c.scene_id.label("scene_id"),
                performer_tags.c.tag_id.label("tag_id"),
            )
            .select_from(
                performer_links.join(
                    performers, performers.c.id == performer_links.c.performer_id
                ).join(
                    performer_tags,
                    performer_tags.c.performer_id == performer_links.c.performer_id,
                )
            )
            .where(performers.c.deleted_at.is_(None))
        )
        from_studios = (
            select(scenes.c.id, studio_tags.c.tag_id)
            .select_from(
                scenes.join(studios, studios.c.id == scenes.c.studio_id).join(
                    studio_tags, studio_tags.c.studio_id == scenes.c.studio_id
                )
            )
            .where(studios.c.deleted_at.is_(None))
        )
        from_groups = (
            select(group_links.c.scene_id, group_tags.c.tag_id)
            .select_from(
                group_links.join(groups, groups.c.id == group_links.c.group_id).join(
                    group_tags, group_tags.c.group_id == group_links.c.group_id
                )
            )
            .where(groups.c.deleted_at.is_(None))
        )
        candidates = union(from_performers, from_studios, from_groups).subquery(
            "candidates"
        )
        rows = select(candidates.c.scene_id, candidates.c.tag_id).where(
            ~exists().where(
                direct.c.scene_id == candidates.c.scene_id,
                direct.c.tag_id == candidates.c.tag_id,
            )
        )

        async with self._session_factory() as session:
            async with session.begin():
                await session.execute(delete(inherited))
                await session.execute(
                    insert(inherited).from_select(["scene_id", "tag_id"], rows)
                )
                total = await session.scalar(select(func.count()).select_from(inherited))
        logger.info("Rebuilt scene tag inheritance (%s rows)", total or 0)
