"""Shared domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from qdev.language import ProgrammingLanguage


@dataclass(frozen=True, slots=True)
class SourceFile:
    """A project file. Identity is the resolved absolute path."""

    path: Path
    language: ProgrammingLanguage = field(compare=False, hash=False)

    @property
    def name(self) -> str:
        return self.path.name


@dataclass(frozen=True, slots=True)
class Chunk:
    """A bounded slice of a file plus the content of the slice after it."""

    path: str
    content: str
    next_chunk: str = ""
    score: float | None = None


@dataclass(frozen=True, slots=True)
class CaretContext:
    left_file_context: str
    right_file_context: str


@dataclass(frozen=True, slots=True)
class FileContextInfo:
    """Snapshot of the file under edit taken at request time."""

    caret_context: CaretContext
    filename: str
    programming_language: ProgrammingLanguage


@dataclass(slots=True)
class SupplementalContextInfo:
    """Ranked snippets from related files, produced once per request."""

    is_utg: bool
    contents: list[Chunk]
    latency_ms: float
    target_file_name: str

    @property
    def content_length(self) -> int:
        return sum(len(chunk.content) for chunk in self.contents)

    @property
    def is_empty(self) -> bool:
        return not self.contents


@dataclass(frozen=True, slots=True)
class BM25Result:
    doc_string: str
    score: float


class SessionStatePhase(str, Enum):
    INIT = "Init"
    APPROACH = "Approach"
    CODEGEN = "Codegen"


@dataclass(slots=True)
class SessionStateAction:
    task: str
    msg: str


@dataclass(slots=True)
class Interaction:
    content: str | None = None
    interaction_succeeded: bool = True


@dataclass(slots=True)
class NewFileZipInfo:
    """A generated file, addressed relative to the project root."""

    zip_file_path: str
    file_content: str
    rejected: bool = False


@dataclass(slots=True)
class DeletedFileInfo:
    zip_file_path: str
    rejected: bool = False


@dataclass(slots=True)
class CodeReference:
    """Attribution for generated code that matches licensed sources."""

    license_name: str | None = None
    repository: str | None = None
    url: str | None = None
    information: str = ""


@dataclass(slots=True)
class InsertResult:
    """Outcome of a best-effort batch of file writes and deletions."""

    written: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return not self.failed
