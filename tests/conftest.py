"""Pytest configuration and test helpers."""

from __future__ import annotations

import copy
import sys
from pathlib import Path
from typing import Any

import pytest


# Ensure the application package is importable when running tests without an
# editable install. This mirrors the expected runtime layout where ``app`` sits
# at the project root.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.config import Settings  # noqa: E402
from app.errors import UpstreamError  # noqa: E402


class FakeCatalog:
    """In-memory stand-in for the Stash GraphQL client."""

    def __init__(self, records: dict[str, list[dict[str, Any]]] | None = None):
        self.records: dict[str, list[dict[str, Any]]] = copy.deepcopy(records or {})
        self.failures: set[str] = set()
        self.calls: list[tuple[str, str]] = []

    async def fetch_all(self, entity_type: str) -> list[dict[str, Any]]:
        self.calls.append(("all", entity_type))
        if entity_type in self.failures:
            raise UpstreamError("Stash is unavailable", entity_type=entity_type)
        return copy.deepcopy(self.records.get(entity_type, []))

    async def fetch_changed_since(
        self, entity_type: str, since: str
    ) -> list[dict[str, Any]]:
        self.calls.append(("changed", entity_type))
        if entity_type in self.failures:
            raise UpstreamError("Stash is unavailable", entity_type=entity_type)
        return [
            copy.deepcopy(record)
            for record in self.records.get(entity_type, [])
            if (record.get("updated_at") or "") > since
        ]

    def replace(self, entity_type: str, record_id: str, **changes: Any) -> None:
        for record in self.records[entity_type]:
            if record["id"] == record_id:
                record.update(changes)
                return
        raise KeyError(record_id)

    def remove(self, entity_type: str, record_id: str) -> None:
        self.records[entity_type] = [
            record for record in self.records[entity_type] if record["id"] != record_id
        ]


def _stamp(day: int) -> str:
    return f"2024-01-{day:02d}T12:00:00Z"


def sample_library() -> dict[str, list[dict[str, Any]]]:
    """A small library with tag and studio hierarchies and gallery images.

    Tag 1 "Outdoor" has child 2 "Beach" which has child 3 "Sunset". Studio 2
    is a child of studio 1. Image 1 only has a gallery, so it picks up the
    gallery's studio, performers and tags.
    """

    return {
        "tag": [
            {"id": "1", "name": "Outdoor", "created_at": _stamp(1), "updated_at": _stamp(1)},
            {"id": "2", "name": "Beach", "parents": [{"id": "1"}], "created_at": _stamp(1), "updated_at": _stamp(1)},
            {"id": "3", "name": "Sunset", "parents": [{"id": "2"}], "created_at": _stamp(1), "updated_at": _stamp(1)},
            {"id": "4", "name": "Indoor", "created_at": _stamp(1), "updated_at": _stamp(1)},
            {"id": "5", "name": "House Style", "created_at": _stamp(1), "updated_at": _stamp(1)},
        ],
        "studio": [
            {"id": "1", "name": "Parent Studio", "created_at": _stamp(2), "updated_at": _stamp(2)},
            {
                "id": "2",
                "name": "Child Studio",
                "parent_studio": {"id": "1"},
                "tags": [{"id": "5"}],
                "created_at": _stamp(2),
                "updated_at": _stamp(2),
            },
        ],
        "performer": [
            {"id": "1", "name": "Alice", "tags": [{"id": "4"}], "created_at": _stamp(3), "updated_at": _stamp(3)},
            {"id": "2", "name": "bea", "created_at": _stamp(3), "updated_at": _stamp(3)},
        ],
        "gallery": [
            {
                "id": "1",
                "title": "Holiday",
                "date": "2024-01-02",
                "photographer": "Pat",
                "studio": {"id": "2"},
                "performers": [{"id": "1"}],
                "tags": [{"id": "2"}],
                "created_at": _stamp(4),
                "updated_at": _stamp(4),
            },
            {"id": "2", "title": "Second", "created_at": _stamp(4), "updated_at": _stamp(4)},
        ],
        "group": [
            {
                "id": "1",
                "name": "Series",
                "studio": {"id": "1"},
                "tags": [{"id": "3"}],
                "created_at": _stamp(5),
                "updated_at": _stamp(5),
            },
        ],
        "scene": [
            {
                "id": "1",
                "title": "Morning",
                "rating100": 80,
                "studio": {"id": "2"},
                "performers": [{"id": "1"}],
                "tags": [{"id": "1"}],
                "groups": [{"group": {"id": "1"}, "scene_index": 1}],
                "files": [{"path": "/media/morning.mp4", "duration": 600.2}],
                "created_at": _stamp(6),
                "updated_at": _stamp(6),
            },
            {
                "id": "2",
                "title": "Evening",
                "studio": {"id": "1"},
                "performers": [{"id": "2"}],
                "tags": [{"id": "3"}],
                "created_at": _stamp(7),
                "updated_at": _stamp(7),
            },
            {
                "id": "3",
                "title": "Night",
                "performers": [{"id": "1"}, {"id": "2"}],
                "created_at": _stamp(8),
                "updated_at": _stamp(8),
            },
            {
                "id": "10",
                "title": "Late",
                "rating100": 20,
                "created_at": _stamp(9),
                "updated_at": _stamp(9),
            },
        ],
        "image": [
            {"id": "1", "galleries": [{"id": "1"}], "created_at": _stamp(10), "updated_at": _stamp(10)},
            {
                "id": "2",
                "studio": {"id": "1"},
                "tags": [{"id": "4"}],
                "galleries": [{"id": "2"}, {"id": "1"}],
                "created_at": _stamp(10),
                "updated_at": _stamp(10),
            },
            {"id": "3", "title": "Loose", "created_at": _stamp(10), "updated_at": _stamp(10)},
        ],
    }


@pytest.fixture
def catalog() -> FakeCatalog:
    return FakeCatalog(sample_library())


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        SYNC_ON_STARTUP=False,
        SQL_BATCH_SIZE=2,
        QUERY_TIMEOUT_SECONDS=10,
        MAX_PAGE_SIZE=50,
        DEFAULT_PAGE_SIZE=20,
    )  # type: ignore[call-arg]


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'mirror.db'}"
