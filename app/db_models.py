"""SQLAlchemy ORM models backing the local catalog cache."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    Index,
    Integer,
    BigInteger,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from .database import Base
from .utils import utcnow


class MirroredEntity:
    """Columns shared by every table mirrored from the upstream catalog."""

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    created_at: Mapped[str | None] = mapped_column(String(40), nullable=True)
    updated_at: Mapped[str | None] = mapped_column(String(40), nullable=True)
    synced_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    deleted_at: Mapped[datetime | None] = mapped_column(
        DateTime, nullable=True, index=True
    )


class Scene(MirroredEntity, Base):
    __tablename__ = "scenes"

    title: Mapped[str | None] = mapped_column(Text, nullable=True)
    code: Mapped[str | None] = mapped_column(String(255), nullable=True)
    date: Mapped[str | None] = mapped_column(String(10), nullable=True, index=True)
    details: Mapped[str | None] = mapped_column(Text, nullable=True)
    director: Mapped[str | None] = mapped_column(String(255), nullable=True)
    studio_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    rating100: Mapped[int | None] = mapped_column(Integer, nullable=True)
    organized: Mapped[bool] = mapped_column(Boolean, default=False)
    duration: Mapped[int | None] = mapped_column(Integer, nullable=True)
    file_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    file_size: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    width: Mapped[int | None] = mapped_column(Integer, nullable=True)
    height: Mapped[int | None] = mapped_column(Integer, nullable=True)
    bit_rate: Mapped[int | None] = mapped_column(Integer, nullable=True)
    frame_rate: Mapped[float | None] = mapped_column(Float, nullable=True)
    video_codec: Mapped[str | None] = mapped_column(String(32), nullable=True)
    o_counter: Mapped[int] = mapped_column(Integer, default=0)
    play_count: Mapped[int] = mapped_column(Integer, default=0)


class Performer(MirroredEntity, Base):
    __tablename__ = "performers"

    name: Mapped[str] = mapped_column(String(255))
    disambiguation: Mapped[str | None] = mapped_column(String(255), nullable=True)
    gender: Mapped[str | None] = mapped_column(String(32), nullable=True)
    birthdate: Mapped[str | None] = mapped_column(String(10), nullable=True)
    death_date: Mapped[str | None] = mapped_column(String(10), nullable=True)
    country: Mapped[str | None] = mapped_column(String(64), nullable=True)
    ethnicity: Mapped[str | None] = mapped_column(String(64), nullable=True)
    hair_color: Mapped[str | None] = mapped_column(String(64), nullable=True)
    eye_color: Mapped[str | None] = mapped_column(String(64), nullable=True)
    height_cm: Mapped[int | None] = mapped_column(Integer, nullable=True)
    weight_kg: Mapped[int | None] = mapped_column(Integer, nullable=True)
    measurements: Mapped[str | None] = mapped_column(String(64), nullable=True)
    details: Mapped[str | None] = mapped_column(Text, nullable=True)
    alias_list: Mapped[str | None] = mapped_column(Text, nullable=True)
    favorite: Mapped[bool] = mapped_column(Boolean, default=False)
    rating100: Mapped[int | None] = mapped_column(Integer, nullable=True)
    image_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    scene_count: Mapped[int] = mapped_column(Integer, default=0)
    image_count: Mapped[int] = mapped_column(Integer, default=0)
    gallery_count: Mapped[int] = mapped_column(Integer, default=0)


class Studio(MirroredEntity, Base):
    __tablename__ = "studios"

    name: Mapped[str] = mapped_column(String(255))
    parent_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    details: Mapped[str | None] = mapped_column(Text, nullable=True)
    url: Mapped[str | None] = mapped_column(Text, nullable=True)
    favorite: Mapped[bool] = mapped_column(Boolean, default=False)
    rating100: Mapped[int | None] = mapped_column(Integer, nullable=True)
    image_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    scene_count: Mapped[int] = mapped_column(Integer, default=0)
    image_count: Mapped[int] = mapped_column(Integer, default=0)
    gallery_count: Mapped[int] = mapped_column(Integer, default=0)
    group_count: Mapped[int] = mapped_column(Integer, default=0)


class Tag(MirroredEntity, Base):
    __tablename__ = "tags"

    name: Mapped[str] = mapped_column(String(255))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    aliases: Mapped[str | None] = mapped_column(Text, nullable=True)
    favorite: Mapped[bool] = mapped_column(Boolean, default=False)
    image_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    scene_count: Mapped[int] = mapped_column(Integer, default=0)
    image_count: Mapped[int] = mapped_column(Integer, default=0)
    gallery_count: Mapped[int] = mapped_column(Integer, default=0)
    performer_count: Mapped[int] = mapped_column(Integer, default=0)
    studio_count: Mapped[int] = mapped_column(Integer, default=0)
    group_count: Mapped[int] = mapped_column(Integer, default=0)


class Gallery(MirroredEntity, Base):
    __tablename__ = "galleries"

    title: Mapped[str | None] = mapped_column(Text, nullable=True)
    code: Mapped[str | None] = mapped_column(String(255), nullable=True)
    date: Mapped[str | None] = mapped_column(String(10), nullable=True)
    details: Mapped[str | None] = mapped_column(Text, nullable=True)
    photographer: Mapped[str | None] = mapped_column(String(255), nullable=True)
    url: Mapped[str | None] = mapped_column(Text, nullable=True)
    studio_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    rating100: Mapped[int | None] = mapped_column(Integer, nullable=True)
    organized: Mapped[bool] = mapped_column(Boolean, default=False)
    folder_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    cover_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    image_count: Mapped[int] = mapped_column(Integer, default=0)


class Group(MirroredEntity, Base):
    __tablename__ = "groups"

    name: Mapped[str] = mapped_column(String(255))
    date: Mapped[str | None] = mapped_column(String(10), nullable=True)
    studio_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    duration: Mapped[int | None] = mapped_column(Integer, nullable=True)
    director: Mapped[str | None] = mapped_column(String(255), nullable=True)
    synopsis: Mapped[str | None] = mapped_column(Text, nullable=True)
    rating100: Mapped[int | None] = mapped_column(Integer, nullable=True)
    front_image_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    scene_count: Mapped[int] = mapped_column(Integer, default=0)


class Image(MirroredEntity, Base):
    __tablename__ = "images"

    title: Mapped[str | None] = mapped_column(Text, nullable=True)
    code: Mapped[str | None] = mapped_column(String(255), nullable=True)
    date: Mapped[str | None] = mapped_column(String(10), nullable=True)
    details: Mapped[str | None] = mapped_column(Text, nullable=True)
    photographer: Mapped[str | None] = mapped_column(String(255), nullable=True)
    studio_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    rating100: Mapped[int | None] = mapped_column(Integer, nullable=True)
    o_counter: Mapped[int] = mapped_column(Integer, default=0)
    organized: Mapped[bool] = mapped_column(Boolean, default=False)
    file_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    width: Mapped[int | None] = mapped_column(Integer, nullable=True)
    height: Mapped[int | None] = mapped_column(Integer, nullable=True)
    file_size: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    path_thumbnail: Mapped[str | None] = mapped_column(Text, nullable=True)
    path_image: Mapped[str | None] = mapped_column(Text, nullable=True)


# Junction tables. Rows referencing soft-deleted entities are kept and
# filtered at query time.


class ScenePerformer(Base):
    __tablename__ = "scene_performers"
    __table_args__ = (Index("ix_scene_performers_performer", "performer_id"),)

    scene_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    performer_id: Mapped[str] = mapped_column(String(64), primary_key=True)


class SceneTag(Base):
    __tablename__ = "scene_tags"
    __table_args__ = (Index("ix_scene_tags_tag", "tag_id"),)

    scene_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tag_id: Mapped[str] = mapped_column(String(64), primary_key=True)


class SceneGroup(Base):
    __tablename__ = "scene_groups"
    __table_args__ = (Index("ix_scene_groups_group", "group_id"),)

    scene_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    group_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    scene_index: Mapped[int | None] = mapped_column(Integer, nullable=True)


class SceneGallery(Base):
    __tablename__ = "scene_galleries"
    __table_args__ = (Index("ix_scene_galleries_gallery", "gallery_id"),)

    scene_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    gallery_id: Mapped[str] = mapped_column(String(64), primary_key=True)


class ImagePerformer(Base):
    __tablename__ = "image_performers"
    __table_args__ = (Index("ix_image_performers_performer", "performer_id"),)

    image_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    performer_id: Mapped[str] = mapped_column(String(64), primary_key=True)


class ImageTag(Base):
    __tablename__ = "image_tags"
    __table_args__ = (Index("ix_image_tags_tag", "tag_id"),)

    image_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tag_id: Mapped[str] = mapped_column(String(64), primary_key=True)


class ImageGallery(Base):
    __tablename__ = "image_galleries"
    __table_args__ = (Index("ix_image_galleries_gallery", "gallery_id"),)

    image_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    gallery_id: Mapped[str] = mapped_column(String(64), primary_key=True)


class GalleryPerformer(Base):
    __tablename__ = "gallery_performers"
    __table_args__ = (Index("ix_gallery_performers_performer", "performer_id"),)

    gallery_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    performer_id: Mapped[str] = mapped_column(String(64), primary_key=True)


class GalleryTag(Base):
    __tablename__ = "gallery_tags"
    __table_args__ = (Index("ix_gallery_tags_tag", "tag_id"),)

    gallery_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tag_id: Mapped[str] = mapped_column(String(64), primary_key=True)


class PerformerTag(Base):
    __tablename__ = "performer_tags"
    __table_args__ = (Index("ix_performer_tags_tag", "tag_id"),)

    performer_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tag_id: Mapped[str] = mapped_column(String(64), primary_key=True)


class StudioTag(Base):
    __tablename__ = "studio_tags"
    __table_args__ = (Index("ix_studio_tags_tag", "tag_id"),)

    studio_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tag_id: Mapped[str] = mapped_column(String(64), primary_key=True)


class GroupTag(Base):
    __tablename__ = "group_tags"
    __table_args__ = (Index("ix_group_tags_tag", "tag_id"),)

    group_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tag_id: Mapped[str] = mapped_column(String(64), primary_key=True)


class TagParent(Base):
    """Self-referencing tag hierarchy edge."""

    __tablename__ = "tag_parents"
    __table_args__ = (Index("ix_tag_parents_parent", "parent_id"),)

    child_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    parent_id: Mapped[str] = mapped_column(String(64), primary_key=True)


class SceneInheritedTag(Base):
    """Tags a scene inherits from its performers, studio and groups."""

    __tablename__ = "scene_inherited_tags"
    __table_args__ = (Index("ix_scene_inherited_tags_tag", "tag_id"),)

    scene_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tag_id: Mapped[str] = mapped_column(String(64), primary_key=True)


# Per-user overlays. Never written by the sync engine.


class UserRating(Base):
    __tablename__ = "user_ratings"

    user_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    entity_type: Mapped[str] = mapped_column(String(16), primary_key=True)
    entity_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    rating100: Mapped[int | None] = mapped_column(Integer, nullable=True)
    favorite: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )


class WatchHistory(Base):
    __tablename__ = "watch_history"

    user_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    scene_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    play_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    play_duration: Mapped[float | None] = mapped_column(Float, nullable=True)
    resume_time: Mapped[float | None] = mapped_column(Float, nullable=True)
    last_played_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    o_count: Mapped[int | None] = mapped_column(Integer, nullable=True)


class ImageViewHistory(Base):
    __tablename__ = "image_view_history"

    user_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    image_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    view_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    o_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    last_viewed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)


class OCounterEvent(Base):
    """One row per O-counter increment, used for last-O ordering."""

    __tablename__ = "o_counter_history"
    __table_args__ = (
        Index("ix_o_counter_history_lookup", "user_id", "entity_type", "entity_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer)
    entity_type: Mapped[str] = mapped_column(String(16))
    entity_id: Mapped[str] = mapped_column(String(64))
    occurred_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


# Visibility.


class UserHiddenEntity(Base):
    """An entity a user chose to hide."""

    __tablename__ = "user_hidden_entities"

    user_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    entity_type: Mapped[str] = mapped_column(String(16), primary_key=True)
    entity_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class UserContentRestriction(Base):
    """An entity an administrator has restricted for a user."""

    __tablename__ = "user_content_restrictions"

    user_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    entity_type: Mapped[str] = mapped_column(String(16), primary_key=True)
    entity_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class UserExcludedEntity(Base):
    """Materialized exclusions joined by every non-admin query."""

    __tablename__ = "user_excluded_entities"
    __table_args__ = (
        UniqueConstraint("user_id", "entity_type", "entity_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, index=True)
    entity_type: Mapped[str] = mapped_column(String(16))
    entity_id: Mapped[str] = mapped_column(String(64))
    reason: Mapped[str] = mapped_column(String(16))


class SyncState(Base):
    """Per entity type sync bookkeeping."""

    __tablename__ = "sync_state"

    entity_type: Mapped[str] = mapped_column(String(16), primary_key=True)
    last_full_sync: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_incremental_sync: Mapped[datetime | None] = mapped_column(
        DateTime, nullable=True
    )
    cursor: Mapped[str | None] = mapped_column(String(40), nullable=True)
    last_sync_count: Mapped[int] = mapped_column(Integer, default=0)
    last_sync_duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    total_entities: Mapped[int] = mapped_column(Integer, default=0)


ENTITY_MODELS: dict[str, type[MirroredEntity]] = {
    "scene": Scene,
    "performer": Performer,
    "studio": Studio,
    "tag": Tag,
    "gallery": Gallery,
    "group": Group,
    "image": Image,
}

JUNCTION_MODELS: dict[str, type[Base]] = {
    model.__tablename__: model
    for model in (
        ScenePerformer,
        SceneTag,
        SceneGroup,
        SceneGallery,
        ImagePerformer,
        ImageTag,
        ImageGallery,
        GalleryPerformer,
        GalleryTag,
        PerformerTag,
        StudioTag,
        GroupTag,
        TagParent,
    )
}
