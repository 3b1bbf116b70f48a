"""Programming language registry keyed by file extension."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True, slots=True)
class ProgrammingLanguage:
    """A language tag plus the context strategies it supports."""

    language_id: str
    extensions: tuple[str, ...] = ()
    supports_cross_file: bool = False
    supports_utg: bool = False

    def is_supplemental_context_supported(self) -> bool:
        return self.supports_cross_file

    def is_utg_supported(self) -> bool:
        return self.supports_utg


JAVA = ProgrammingLanguage("java", (".java",), supports_cross_file=True, supports_utg=True)
PYTHON = ProgrammingLanguage("python", (".py",), supports_cross_file=True, supports_utg=True)
JAVASCRIPT = ProgrammingLanguage("javascript", (".js", ".jsx", ".mjs"), supports_cross_file=True)
TYPESCRIPT = ProgrammingLanguage("typescript", (".ts", ".tsx"), supports_cross_file=True)
PLAINTEXT = ProgrammingLanguage("plaintext")

_LANGUAGES = (JAVA, PYTHON, JAVASCRIPT, TYPESCRIPT)
_BY_EXTENSION = {ext: lang for lang in _LANGUAGES for ext in lang.extensions}


def language_for_path(path: str | Path) -> ProgrammingLanguage:
    return _BY_EXTENSION.get(Path(path).suffix.lower(), PLAINTEXT)
