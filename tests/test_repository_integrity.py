"""Repository-level consistency checks."""

from __future__ import annotations

import re
from pathlib import Path

CONFLICT_PATTERN = re.compile(r"^(<<<<<<<|=======|>>>>>>>)", re.MULTILINE)
IGNORED_PARTS = {".git", "__pycache__", ".mypy_cache", ".pytest_cache", ".venv"}


def test_repository_has_no_merge_conflict_markers() -> None:
    """Ensure no files in the repo still contain git conflict markers."""

    repo_root = Path(__file__).resolve().parents[1]
    offending_files: list[Path] = []

    for path in repo_root.rglob("*"):
        if not path.is_file():
            continue
        if any(part in IGNORED_PARTS for part in path.parts):
            continue

        try:
            contents = path.read_text(encoding="utf-8")
        except UnicodeDecodeError:
            contents = path.read_text(encoding="utf-8", errors="ignore")

        if CONFLICT_PATTERN.search(contents):
            offending_files.append(path.relative_to(repo_root))

    assert not offending_files, (
        "The following files still contain git conflict markers: "
        + ", ".join(str(path) for path in offending_files)
    )


def test_every_entity_type_is_mirrored_and_queryable() -> None:
    """Each synced entity type needs a table and a query builder."""

    from app.db_models import ENTITY_MODELS, JUNCTION_MODELS
    from app.entity_types import ENTITY_DEFINITIONS, SYNC_ORDER
    from app.query.engine import BUILDER_CLASSES

    keys = {definition.key for definition in ENTITY_DEFINITIONS}

    assert set(SYNC_ORDER) == keys
    assert set(ENTITY_MODELS) == keys
    assert {builder.entity_type for builder in BUILDER_CLASSES} == keys
    for definition in ENTITY_DEFINITIONS:
        for relation in definition.relations:
            assert relation.table in JUNCTION_MODELS, relation.table
