"""Pydantic models describing upstream records and query payloads."""

from __future__ import annotations

import re
from enum import Enum
from typing import Any, Literal

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from .entity_types import EntityType

_ENTITY_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")

RelationRows = dict[str, list[dict[str, Any]]]


def _valid_id(value: object) -> bool:
    return isinstance(value, (str, int)) and bool(_ENTITY_ID_RE.match(str(value)))


def _ref_ids(refs: list[dict[str, Any]] | None) -> list[dict[str, Any]]:
    """Return ``{"id": ...}`` rows for well-formed references, deduplicated."""

    seen: set[str] = set()
    rows: list[dict[str, Any]] = []
    for ref in refs or []:
        if not isinstance(ref, dict) or not _valid_id(ref.get("id")):
            continue
        ref_id = str(ref["id"])
        if ref_id in seen:
            continue
        seen.add(ref_id)
        rows.append({"id": ref_id})
    return rows


def _nested_id(ref: dict[str, Any] | None) -> str | None:
    if isinstance(ref, dict) and _valid_id(ref.get("id")):
        return str(ref["id"])
    return None


class MediaFile(BaseModel):
    """A video or image file attached to a scene or image."""

    model_config = ConfigDict(extra="ignore")

    path: str | None = None
    size: int | None = None
    width: int | None = None
    height: int | None = None
    duration: float | None = None
    bit_rate: int | None = None
    frame_rate: float | None = None
    video_codec: str | None = None


class FolderRef(BaseModel):
    model_config = ConfigDict(extra="ignore")

    path: str | None = None


class MediaPaths(BaseModel):
    """Generated asset paths; galleries expose ``cover``, images the rest."""

    model_config = ConfigDict(extra="ignore")

    cover: str | None = None
    thumbnail: str | None = None
    image: str | None = None


_NO_FILE = MediaFile()
_NO_PATHS = MediaPaths()


def _first(files: list[MediaFile] | None) -> MediaFile | None:
    return files[0] if files else None


class UpstreamRecord(BaseModel):
    """Common shape of every record returned by the upstream catalog."""

    model_config = ConfigDict(extra="ignore")

    id: str
    created_at: str | None = None
    updated_at: str | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _validate_id(cls, value: object) -> str:
        if not _valid_id(value):
            raise ValueError("Entity id must be alphanumeric")
        return str(value)

    def base_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    def to_row(self) -> dict[str, Any]:
        """Return the scalar column values stored for this record."""

        raise NotImplementedError

    def relations(self) -> RelationRows:
        """Return outgoing relation rows keyed by relation name."""

        return {}


class TaggedRecord(UpstreamRecord):
    tags: list[dict[str, Any]] | None = None

    def relations(self) -> RelationRows:
        return {"tags": _ref_ids(self.tags)}


class UpstreamTag(UpstreamRecord):
    name: str
    description: str | None = None
    aliases: list[str] | None = None
    favorite: bool = False
    image_path: str | None = None
    parents: list[dict[str, Any]] | None = None

    def to_row(self) -> dict[str, Any]:
        return {
            **self.base_row(),
            "name": self.name,
            "description": self.description,
            "aliases": ", ".join(self.aliases) if self.aliases else None,
            "favorite": self.favorite,
            "image_path": self.image_path,
        }

    def relations(self) -> RelationRows:
        return {
            "parents": [row for row in _ref_ids(self.parents) if row["id"] != self.id]
        }


class UpstreamStudio(TaggedRecord):
    name: str
    parent_studio: dict[str, Any] | None = None
    details: str | None = None
    url: str | None = None
    favorite: bool = False
    rating100: int | None = None
    image_path: str | None = None

    def to_row(self) -> dict[str, Any]:
        parent_id = _nested_id(self.parent_studio)
        return {
            **self.base_row(),
            "name": self.name,
            "parent_id": parent_id if parent_id != self.id else None,
            "details": self.details,
            "url": self.url,
            "favorite": self.favorite,
            "rating100": self.rating100,
            "image_path": self.image_path,
        }


class UpstreamPerformer(TaggedRecord):
    name: str
    disambiguation: str | None = None
    gender: str | None = None
    birthdate: str | None = None
    death_date: str | None = None
    country: str | None = None
    ethnicity: str | None = None
    hair_color: str | None = None
    eye_color: str | None = None
    height_cm: int | None = None
    weight: int | None = None
    measurements: str | None = None
    details: str | None = None
    alias_list: list[str] | None = None
    favorite: bool = False
    rating100: int | None = None
    image_path: str | None = None

    def to_row(self) -> dict[str, Any]:
        return {
            **self.base_row(),
            "name": self.name,
            "disambiguation": self.disambiguation,
            "gender": self.gender,
            "birthdate": self.birthdate,
            "death_date": self.death_date,
            "country": self.country,
            "ethnicity": self.ethnicity,
            "hair_color": self.hair_color,
            "eye_color": self.eye_color,
            "height_cm": self.height_cm,
            "weight_kg": self.weight,
            "measurements": self.measurements,
            "details": self.details,
            "alias_list": ", ".join(self.alias_list) if self.alias_list else None,
            "favorite": self.favorite,
            "rating100": self.rating100,
            "image_path": self.image_path,
        }


class UpstreamGallery(TaggedRecord):
    title: str | None = None
    code: str | None = None
    date: str | None = None
    details: str | None = None
    photographer: str | None = None
    url: str | None = None
    urls: list[str] | None = None
    studio: dict[str, Any] | None = None
    rating100: int | None = None
    organized: bool = False
    folder: FolderRef | None = None
    paths: MediaPaths | None = None
    performers: list[dict[str, Any]] | None = None

    def to_row(self) -> dict[str, Any]:
        paths = self.paths or _NO_PATHS
        return {
            **self.base_row(),
            "title": self.title,
            "code": self.code,
            "date": self.date,
            "details": self.details,
            "photographer": self.photographer,
            "url": self.url or (self.urls[0] if self.urls else None),
            "studio_id": _nested_id(self.studio),
            "rating100": self.rating100,
            "organized": self.organized,
            "folder_path": self.folder.path if self.folder else None,
            "cover_path": paths.cover,
        }

    def relations(self) -> RelationRows:
        return {
            "performers": _ref_ids(self.performers),
            "tags": _ref_ids(self.tags),
        }


class UpstreamGroup(TaggedRecord):
    name: str
    date: str | None = None
    studio: dict[str, Any] | None = None
    duration: int | None = None
    director: str | None = None
    synopsis: str | None = None
    rating100: int | None = None
    front_image_path: str | None = None

    def to_row(self) -> dict[str, Any]:
        return {
            **self.base_row(),
            "name": self.name,
            "date": self.date,
            "studio_id": _nested_id(self.studio),
            "duration": self.duration,
            "director": self.director,
            "synopsis": self.synopsis,
            "rating100": self.rating100,
            "front_image_path": self.front_image_path,
        }


class UpstreamScene(TaggedRecord):
    title: str | None = None
    code: str | None = None
    date: str | None = None
    details: str | None = None
    director: str | None = None
    studio: dict[str, Any] | None = None
    rating100: int | None = None
    organized: bool = False
    o_counter: int | None = None
    play_count: int | None = None
    files: list[MediaFile] | None = None
    performers: list[dict[str, Any]] | None = None
    groups: list[dict[str, Any]] | None = Field(
        default=None, validation_alias=AliasChoices("groups", "movies")
    )
    galleries: list[dict[str, Any]] | None = None

    def to_row(self) -> dict[str, Any]:
        file = _first(self.files) or _NO_FILE
        duration = file.duration
        return {
            **self.base_row(),
            "title": self.title,
            "code": self.code,
            "date": self.date,
            "details": self.details,
            "director": self.director,
            "studio_id": _nested_id(self.studio),
            "rating100": self.rating100,
            "organized": self.organized,
            "duration": round(duration) if duration else None,
            "file_path": file.path,
            "file_size": file.size,
            "width": file.width,
            "height": file.height,
            "bit_rate": file.bit_rate,
            "frame_rate": file.frame_rate,
            "video_codec": file.video_codec,
            "o_counter": self.o_counter or 0,
            "play_count": self.play_count or 0,
        }

    def relations(self) -> RelationRows:
        groups: list[dict[str, Any]] = []
        seen: set[str] = set()
        for entry in self.groups or []:
            if not isinstance(entry, dict):
                continue
            # Stash nests the group under ``group`` (``movie`` on older servers)
            target = entry.get("group") or entry.get("movie") or entry
            group_id = _nested_id(target)
            if group_id is None or group_id in seen:
                continue
            seen.add(group_id)
            groups.append({"id": group_id, "scene_index": entry.get("scene_index")})
        return {
            "performers": _ref_ids(self.performers),
            "tags": _ref_ids(self.tags),
            "groups": groups,
            "galleries": _ref_ids(self.galleries),
        }


class UpstreamImage(TaggedRecord):
    title: str | None = None
    code: str | None = None
    date: str | None = None
    details: str | None = None
    photographer: str | None = None
    studio: dict[str, Any] | None = None
    rating100: int | None = None
    o_counter: int | None = None
    organized: bool = False
    visual_files: list[MediaFile] | None = None
    files: list[MediaFile] | None = None
    paths: MediaPaths | None = None
    performers: list[dict[str, Any]] | None = None
    galleries: list[dict[str, Any]] | None = None

    def to_row(self) -> dict[str, Any]:
        file = _first(self.visual_files) or _first(self.files) or _NO_FILE
        paths = self.paths or _NO_PATHS
        return {
            **self.base_row(),
            "title": self.title,
            "code": self.code,
            "date": self.date,
            "details": self.details,
            "photographer": self.photographer,
            "studio_id": _nested_id(self.studio),
            "rating100": self.rating100,
            "o_counter": self.o_counter or 0,
            "organized": self.organized,
            "file_path": file.path,
            "width": file.width,
            "height": file.height,
            "file_size": file.size,
            "path_thumbnail": paths.thumbnail,
            "path_image": paths.image,
        }

    def relations(self) -> RelationRows:
        return {
            "performers": _ref_ids(self.performers),
            "tags": _ref_ids(self.tags),
            "galleries": _ref_ids(self.galleries),
        }


UPSTREAM_MODELS: dict[str, type[UpstreamRecord]] = {
    "tag": UpstreamTag,
    "studio": UpstreamStudio,
    "performer": UpstreamPerformer,
    "gallery": UpstreamGallery,
    "group": UpstreamGroup,
    "scene": UpstreamScene,
    "image": UpstreamImage,
}


class FilterModifier(str, Enum):
    EQUALS = "EQUALS"
    NOT_EQUALS = "NOT_EQUALS"
    GREATER_THAN = "GREATER_THAN"
    LESS_THAN = "LESS_THAN"
    BETWEEN = "BETWEEN"
    NOT_BETWEEN = "NOT_BETWEEN"
    INCLUDES = "INCLUDES"
    INCLUDES_ALL = "INCLUDES_ALL"
    EXCLUDES = "EXCLUDES"
    IS_NULL = "IS_NULL"
    NOT_NULL = "NOT_NULL"


class FilterCriterion(BaseModel):
    """A single filter entry keyed by field name inside a query."""

    model_config = ConfigDict(populate_by_name=True)

    modifier: FilterModifier = FilterModifier.EQUALS
    value: Any = None
    value2: Any = None
    depth: int | None = None

    @field_validator("modifier", mode="before")
    @classmethod
    def _upper_modifier(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().upper()
        return value


Direction = Literal["ASC", "DESC"]
Role = Literal["USER", "ADMIN"]


class QuerySpec(BaseModel):
    """Declarative description of a library query."""

    model_config = ConfigDict(populate_by_name=True)

    filters: dict[str, FilterCriterion] = Field(default_factory=dict)
    search: str | None = Field(default=None, validation_alias=AliasChoices("search", "q"))
    sort: str | None = None
    direction: Direction = "DESC"
    seed: int | None = None
    page: int = Field(default=1, ge=1)
    per_page: int | None = Field(
        default=None, ge=1, validation_alias=AliasChoices("per_page", "perPage")
    )
    user_id: int = Field(default=0, validation_alias=AliasChoices("user_id", "userId"))
    role: Role = "USER"

    @field_validator("direction", mode="before")
    @classmethod
    def _upper_direction(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().upper()
        return value

    @field_validator("role", mode="before")
    @classmethod
    def _upper_role(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().upper() or "USER"
        return value

    @model_validator(mode="after")
    def _blank_search(self) -> "QuerySpec":
        if self.search is not None and not self.search.strip():
            self.search = None
        return self

    @property
    def is_admin(self) -> bool:
        return self.role == "ADMIN"


class PagedResult(BaseModel):
    """A hydrated page of entities."""

    entity_type: EntityType
    items: list[dict[str, Any]] = Field(default_factory=list)
    total: int = 0
    page: int = 1
    per_page: int | None = None
    seed: int | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "entityType": self.entity_type,
            "items": self.items,
            "count": self.total,
            "page": self.page,
            "perPage": self.per_page,
            "seed": self.seed,
        }


class IdPage(BaseModel):
    """A page of entity identifiers without hydration."""

    entity_type: EntityType
    ids: list[str] = Field(default_factory=list)
    total: int = 0
    seed: int | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "entityType": self.entity_type,
            "ids": self.ids,
            "count": self.total,
            "seed": self.seed,
        }
