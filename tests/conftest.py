from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest

from qdev.ingest.project import LocalProject


@pytest.fixture()
def make_project(tmp_path: Path) -> Callable[[dict[str, str]], LocalProject]:
    """Write `{relative_path: content}` under tmp_path and return the project."""

    def _make(files: dict[str, str]) -> LocalProject:
        for relative, content in files.items():
            target = tmp_path / relative
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")
        return LocalProject(tmp_path)

    return _make
