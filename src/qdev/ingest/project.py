"""Local project model: file lookup, language detection and versions."""

from __future__ import annotations

import os
from collections.abc import Iterator
from pathlib import Path

from qdev.language import language_for_path
from qdev.types import SourceFile

EXCLUDED_DIRS = frozenset(
    {
        ".git",
        ".hg",
        ".svn",
        ".idea",
        ".vscode",
        ".gradle",
        ".mypy_cache",
        ".pytest_cache",
        ".ruff_cache",
        "__pycache__",
        "node_modules",
        ".venv",
        "venv",
        "build",
        "dist",
        "target",
        "out",
    }
)

_TEST_DIR_NAMES = frozenset({"test", "tests"})
_SOURCE_ROOT_CANDIDATES = ("src/main/java", "src/test/java", "src")


class LocalProject:
    """File index over a directory on disk.

    Stands in for the host IDE's project model. Every query is a pure read of
    the file system; nothing is cached here.
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root).resolve()
        if not self.root.is_dir():
            raise ValueError(f"Project root is not a directory: {self.root}")

    def source_file(self, path: str | Path) -> SourceFile:
        file_path = Path(path)
        if not file_path.is_absolute():
            file_path = self.root / file_path
        file_path = file_path.resolve()
        return SourceFile(path=file_path, language=language_for_path(file_path))

    def read_text(self, file: SourceFile) -> str:
        return file.path.read_text(encoding="utf-8", errors="replace")

    def version(self, file: SourceFile) -> tuple[int, int]:
        stat = file.path.stat()
        return stat.st_mtime_ns, stat.st_size

    def contains(self, file: SourceFile) -> bool:
        return self.root in file.path.parents

    def relative_path(self, file: SourceFile) -> str:
        try:
            return file.path.relative_to(self.root).as_posix()
        except ValueError:
            return str(file.path)

    def is_test_source(self, file: SourceFile) -> bool:
        if not self.contains(file):
            return False
        parts = Path(self.relative_path(file)).parts[:-1]
        # Test roots: a top-level test/ or tests/ dir, or src/test in any module.
        if parts and parts[0] in _TEST_DIR_NAMES:
            return True
        return any(
            parent == "src" and child in _TEST_DIR_NAMES
            for parent, child in zip(parts, parts[1:])
        )

    def source_roots(self) -> list[Path]:
        roots = [self.root / candidate for candidate in _SOURCE_ROOT_CANDIDATES]
        return [root for root in roots if root.is_dir()] + [self.root]

    def iter_files(self, suffix: str | None = None) -> Iterator[SourceFile]:
        """Walk the project in sorted order, skipping VCS and build dirs."""

        for dirpath, dirnames, filenames in os.walk(self.root):
            dirnames[:] = sorted(name for name in dirnames if name not in EXCLUDED_DIRS)
            for filename in sorted(filenames):
                if suffix is not None and not filename.endswith(suffix):
                    continue
                yield self.source_file(Path(dirpath) / filename)

    def siblings(self, file: SourceFile, suffix: str) -> list[SourceFile]:
        directory = file.path.parent
        if not directory.is_dir():
            return []
        return [
            self.source_file(candidate)
            for candidate in sorted(directory.iterdir())
            if candidate.is_file() and candidate.name.endswith(suffix) and candidate != file.path
        ]
