from __future__ import annotations

from pathlib import Path

import pytest

PACKAGE_ROOT = Path(__file__).resolve().parent.parent / "app"


@pytest.mark.parametrize(
    "path",
    sorted(PACKAGE_ROOT.rglob("*.py")),
    ids=lambda path: path.relative_to(PACKAGE_ROOT).as_posix(),
)
def test_future_import_stands_apart_from_other_imports(path: Path) -> None:
    lines = path.read_text(encoding="utf-8").splitlines()
    future = "from __future__ import annotations"
    if future not in lines:
        pytest.skip("module has no future import")
    position = lines.index(future)

    assert position + 1 == len(lines) or lines[position + 1] == ""
