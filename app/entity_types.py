"""Entity type definitions shared by the sync and query layers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal


EntityType = Literal[
    "scene", "performer", "studio", "tag", "gallery", "group", "image"
]


@dataclass(frozen=True)
class RelationDefinition:
    """An outgoing many-to-many relation written by the sync engine."""

    name: str
    table: str
    owner_column: str
    target_column: str
    target_type: EntityType
    extra_columns: tuple[str, ...] = ()


@dataclass(frozen=True)
class EntityDefinition:
    """Describes one mirrored entity type."""

    key: EntityType
    plural: str
    graphql_query: str
    relations: tuple[RelationDefinition, ...] = ()


ENTITY_DEFINITIONS: tuple[EntityDefinition, ...] = (
    EntityDefinition(
        key="tag",
        plural="tags",
        graphql_query="findTags",
        relations=(
            RelationDefinition("parents", "tag_parents", "child_id", "parent_id", "tag"),
        ),
    ),
    EntityDefinition(
        key="studio",
        plural="studios",
        graphql_query="findStudios",
        relations=(
            RelationDefinition("tags", "studio_tags", "studio_id", "tag_id", "tag"),
        ),
    ),
    EntityDefinition(
        key="performer",
        plural="performers",
        graphql_query="findPerformers",
        relations=(
            RelationDefinition("tags", "performer_tags", "performer_id", "tag_id", "tag"),
        ),
    ),
    EntityDefinition(
        key="gallery",
        plural="galleries",
        graphql_query="findGalleries",
        relations=(
            RelationDefinition(
                "performers", "gallery_performers", "gallery_id", "performer_id", "performer"
            ),
            RelationDefinition("tags", "gallery_tags", "gallery_id", "tag_id", "tag"),
        ),
    ),
    EntityDefinition(
        key="group",
        plural="groups",
        graphql_query="findGroups",
        relations=(
            RelationDefinition("tags", "group_tags", "group_id", "tag_id", "tag"),
        ),
    ),
    EntityDefinition(
        key="scene",
        plural="scenes",
        graphql_query="findScenes",
        relations=(
            RelationDefinition(
                "performers", "scene_performers", "scene_id", "performer_id", "performer"
            ),
            RelationDefinition("tags", "scene_tags", "scene_id", "tag_id", "tag"),
            RelationDefinition(
                "groups",
                "scene_groups",
                "scene_id",
                "group_id",
                "group",
                extra_columns=("scene_index",),
            ),
            RelationDefinition(
                "galleries", "scene_galleries", "scene_id", "gallery_id", "gallery"
            ),
        ),
    ),
    EntityDefinition(
        key="image",
        plural="images",
        graphql_query="findImages",
        relations=(
            RelationDefinition(
                "performers", "image_performers", "image_id", "performer_id", "performer"
            ),
            RelationDefinition("tags", "image_tags", "image_id", "tag_id", "tag"),
            RelationDefinition(
                "galleries", "image_galleries", "image_id", "gallery_id", "gallery"
            ),
        ),
    ),
)

# Referenced entities always sync before the entities that reference them.
SYNC_ORDER: tuple[EntityType, ...] = tuple(
    definition.key for definition in ENTITY_DEFINITIONS
)

ENTITY_DEFINITION_MAP: dict[str, EntityDefinition] = {
    definition.key: definition for definition in ENTITY_DEFINITIONS
}


def get_definition(entity_type: str) -> EntityDefinition:
    """Return the definition for ``entity_type`` or raise ``KeyError``."""

    try:
        return ENTITY_DEFINITION_MAP[entity_type]
    except KeyError:
        raise KeyError(f"Unknown entity type: {entity_type}") from None
