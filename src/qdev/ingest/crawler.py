"""Language-specific crawlers that find files related to the one under edit."""

from __future__ import annotations

import ast
import logging
import re
from abc import ABC, abstractmethod
from pathlib import Path

from qdev.ingest.project import LocalProject
from qdev.language import JAVA, PYTHON, ProgrammingLanguage
from qdev.types import SourceFile

LOGGER = logging.getLogger(__name__)


class FileCrawler(ABC):
    """Capability set for enumerating candidate context files."""

    def __init__(self, project: LocalProject) -> None:
        self.project = project

    @abstractmethod
    def list_files_imported(self, file: SourceFile) -> list[SourceFile]:
        """Project files imported by `file`, in import order."""

    @abstractmethod
    def list_files_within_same_package(self, file: SourceFile) -> list[SourceFile]:
        """Other files of the same language in the same package."""

    @abstractmethod
    def find_focal_file_for_test(self, file: SourceFile) -> SourceFile | None:
        """The implementation file exercised by a test file, if any."""


class NoOpFileCrawler(FileCrawler):
    """Crawler bound to languages without crawling support."""

    def list_files_imported(self, file: SourceFile) -> list[SourceFile]:
        return []

    def list_files_within_same_package(self, file: SourceFile) -> list[SourceFile]:
        return []

    def find_focal_file_for_test(self, file: SourceFile) -> SourceFile | None:
        return None


class JavaFileCrawler(FileCrawler):
    _IMPORT_PATTERN = re.compile(
        r"^\s*import\s+(?P<static>static\s+)?(?P<name>[\w.]+?)(?P<wildcard>\.\*)?\s*;",
        flags=re.MULTILINE,
    )
    _PACKAGE_PATTERN = re.compile(r"^\s*package\s+(?P<name>[\w.]+)\s*;", flags=re.MULTILINE)
    test_filename_patterns = (
        re.compile(r"^(?P<name>.+?)Tests?\.java$"),
        re.compile(r"^Test(?P<name>.+)\.java$"),
    )

    def list_files_imported(self, file: SourceFile) -> list[SourceFile]:
        text = self.project.read_text(file)
        found: list[SourceFile] = []
        for match in self._IMPORT_PATTERN.finditer(text):
            name = match.group("name")
            wildcard = match.group("wildcard") is not None
            if match.group("static") and not wildcard:
                # `import static a.b.C.member;` refers to class a.b.C.
                name = name.rpartition(".")[0]
            if wildcard and not match.group("static"):
                candidates = self._resolve_package(name)
            else:
                candidates = self._resolve_class(name)
            for candidate in candidates:
                if candidate != file and candidate not in found:
                    found.append(candidate)
        return found

    def list_files_within_same_package(self, file: SourceFile) -> list[SourceFile]:
        return self.project.siblings(file, ".java")

    def find_focal_file_for_test(self, file: SourceFile) -> SourceFile | None:
        target = _focal_name(file.name, self.test_filename_patterns, ".java")
        if target is None:
            return None
        package_dir = self._package_dir(file)
        candidates = [
            candidate
            for candidate in self.project.iter_files(".java")
            if candidate.name == target and candidate != file
        ]
        if not candidates:
            return None

        def _rank(candidate: SourceFile) -> tuple[bool, bool, str]:
            relative = self.project.relative_path(candidate)
            same_package = Path(relative).parent.as_posix().endswith(package_dir)
            return (
                self.project.is_test_source(candidate),
                not same_package,
                relative,
            )

        return min(candidates, key=_rank)

    def _package_dir(self, file: SourceFile) -> str:
        match = self._PACKAGE_PATTERN.search(self.project.read_text(file))
        return match.group("name").replace(".", "/") if match else ""

    def _resolve_class(self, qualified_name: str) -> list[SourceFile]:
        relative = Path(*qualified_name.split(".")).with_suffix(".java")
        for root in self.project.source_roots():
            candidate = root / relative
            if candidate.is_file():
                return [self.project.source_file(candidate)]
        return []

    def _resolve_package(self, package_name: str) -> list[SourceFile]:
        relative = Path(*package_name.split("."))
        for root in self.project.source_roots():
            directory = root / relative
            if directory.is_dir():
                return [
                    self.project.source_file(candidate)
                    for candidate in sorted(directory.glob("*.java"))
                    if candidate.is_file()
                ]
        return []


class PythonFileCrawler(FileCrawler):
    test_filename_pattern = re.compile(r"^(test_.+|.+_test)\.py$")
    _focal_patterns = (
        re.compile(r"^test_(?P<name>.+)\.py$"),
        re.compile(r"^(?P<name>.+)_test\.py$"),
    )

    def list_files_imported(self, file: SourceFile) -> list[SourceFile]:
        try:
            tree = ast.parse(self.project.read_text(file), filename=str(file.path))
        except SyntaxError:
            LOGGER.debug("Cannot parse imports of %s", file.path)
            return []

        found: list[SourceFile] = []
        for node in ast.walk(tree):
            if isinstance(node, ast.Import):
                paths = [
                    path
                    for alias in node.names
                    for path in self._resolve_module(file, alias.name, level=0)
                ]
            elif isinstance(node, ast.ImportFrom):
                paths = self._resolve_from(file, node)
            else:
                continue
            for path in paths:
                candidate = self.project.source_file(path)
                if candidate != file and candidate not in found:
                    found.append(candidate)
        return found

    def list_files_within_same_package(self, file: SourceFile) -> list[SourceFile]:
        return self.project.siblings(file, ".py")

    def find_focal_file_for_test(self, file: SourceFile) -> SourceFile | None:
        target = _focal_name(file.name, self._focal_patterns, ".py")
        if target is None:
            return None
        root = self.project.root
        for directory in (file.path.parent, file.path.parent.parent):
            if directory != root and root not in directory.parents:
                continue
            candidate = directory / target
            if candidate.is_file():
                return self.project.source_file(candidate)

        candidates = [
            candidate
            for candidate in self.project.iter_files(".py")
            if candidate.name == target
        ]
        if not candidates:
            return None
        return min(
            candidates,
            key=lambda c: (self.project.is_test_source(c), self.project.relative_path(c)),
        )

    def _resolve_from(self, file: SourceFile, node: ast.ImportFrom) -> list[Path]:
        module = node.module or ""
        resolved = self._resolve_module(file, module, level=node.level) if module else []
        # `from pkg import mod` may name submodules rather than attributes.
        for alias in node.names:
            if alias.name == "*":
                continue
            submodule = f"{module}.{alias.name}" if module else alias.name
            for path in self._resolve_module(file, submodule, level=node.level):
                if path not in resolved:
                    resolved.append(path)
        return resolved

    def _resolve_module(self, file: SourceFile, module: str, *, level: int) -> list[Path]:
        if level > 0:
            base = file.path.parent
            for _ in range(level - 1):
                base = base.parent
            bases = [base]
        else:
            bases = [*self.project.source_roots(), file.path.parent]

        relative = Path(*module.split("."))
        for base in bases:
            for candidate in (base / relative.with_suffix(".py"), base / relative / "__init__.py"):
                if candidate.is_file():
                    return [candidate]
        return []


def _focal_name(
    filename: str, patterns: tuple[re.Pattern[str], ...], suffix: str
) -> str | None:
    for pattern in patterns:
        match = pattern.match(filename)
        if match and match.group("name"):
            return match.group("name") + suffix
    return None


def get_file_crawler(language: ProgrammingLanguage, project: LocalProject) -> FileCrawler:
    if language == JAVA:
        return JavaFileCrawler(project)
    if language == PYTHON:
        return PythonFileCrawler(project)
    return NoOpFileCrawler(project)
