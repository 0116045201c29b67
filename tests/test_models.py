import pytest
from pydantic import ValidationError

from app.models import (
    FilterModifier,
    QuerySpec,
    UpstreamGallery,
    UpstreamImage,
    UpstreamScene,
    UpstreamStudio,
    UpstreamTag,
)


def test_scene_row_uses_first_file_and_rounds_duration():
    scene = UpstreamScene.model_validate(
        {
            "id": "12",
            "title": "Harbour",
            "files": [
                {"path": "/media/a.mp4", "size": 1024, "duration": 61.6, "width": 1920},
                {"path": "/media/b.mp4", "size": 1},
            ],
            "studio": {"id": "3"},
            "o_counter": None,
        }
    )

    row = scene.to_row()
    assert row["file_path"] == "/media/a.mp4"
    assert row["duration"] == 62
    assert row["studio_id"] == "3"
    assert row["o_counter"] == 0


def test_scene_relations_accept_nested_groups_and_drop_bad_refs():
    scene = UpstreamScene.model_validate(
        {
            "id": 7,
            "performers": [{"id": "1"}, {"id": "1"}, {"id": "bad id"}, {"name": "no id"}],
            "movies": [{"movie": {"id": "4"}, "scene_index": 2}],
        }
    )

    relations = scene.relations()
    assert scene.id == "7"
    assert relations["performers"] == [{"id": "1"}]
    assert relations["groups"] == [{"id": "4", "scene_index": 2}]


def test_record_with_invalid_id_is_rejected():
    with pytest.raises(ValidationError):
        UpstreamTag.model_validate({"id": "../etc", "name": "x"})


def test_tag_drops_self_parent_and_joins_aliases():
    tag = UpstreamTag.model_validate(
        {"id": "5", "name": "Outdoor", "aliases": ["outside", "exterior"], "parents": [{"id": "5"}, {"id": "1"}]}
    )

    assert tag.to_row()["aliases"] == "outside, exterior"
    assert tag.relations() == {"parents": [{"id": "1"}]}


def test_studio_ignores_self_parent():
    studio = UpstreamStudio.model_validate(
        {"id": "9", "name": "Loop", "parent_studio": {"id": "9"}}
    )

    assert studio.to_row()["parent_id"] is None


def test_gallery_falls_back_to_first_url_and_folder_path():
    gallery = UpstreamGallery.model_validate(
        {"id": "2", "urls": ["https://example.com/g"], "folder": {"path": "/pics/g"}}
    )

    row = gallery.to_row()
    assert row["url"] == "https://example.com/g"
    assert row["folder_path"] == "/pics/g"


def test_image_prefers_visual_files():
    image = UpstreamImage.model_validate(
        {
            "id": "3",
            "visual_files": [{"path": "/pics/1.jpg", "width": 800}],
            "paths": {"thumbnail": "/thumb/3"},
        }
    )

    row = image.to_row()
    assert row["file_path"] == "/pics/1.jpg"
    assert row["path_thumbnail"] == "/thumb/3"


def test_query_spec_normalises_aliases_and_case():
    spec = QuerySpec.model_validate(
        {
            "filters": {"rating100": {"modifier": "greater_than", "value": 60}},
            "q": "   ",
            "direction": "asc",
            "perPage": 25,
            "userId": 4,
            "role": "admin",
        }
    )

    assert spec.filters["rating100"].modifier is FilterModifier.GREATER_THAN
    assert spec.search is None
    assert spec.direction == "ASC"
    assert spec.per_page == 25
    assert spec.user_id == 4
    assert spec.is_admin


def test_query_spec_rejects_page_zero():
    with pytest.raises(ValidationError):
        QuerySpec(page=0)
