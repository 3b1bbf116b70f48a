"""Deterministic feature-dev client used when no LLM is configured."""

from __future__ import annotations

import re

from qdev.featuredev.client import CodeGenerationResult, FeatureDevClient
from qdev.types import NewFileZipInfo

_WORD = re.compile(r"[a-z0-9]+")


class DeterministicFeatureDevClient(FeatureDevClient):
    """Offline client producing plans and notes from the uploaded file list.

    Keeps the same contract as `LangChainFeatureDevClient` so sessions and
    the HTTP layer run unchanged in local/offline environments.
    """

    def __init__(self, max_relevant_files: int = 5) -> None:
        super().__init__()
        self.max_relevant_files = max_relevant_files

    def generate_plan(self, conversation_id: str, upload_id: str, message: str) -> str:
        archive = self._archive(conversation_id, upload_id)
        relevant = _relevant_files(message, archive.file_paths, self.max_relevant_files)
        lines = [f"1. Clarify the change: {message.strip() or 'no description given'}"]
        if relevant:
            lines.append("2. Review the most related files:")
            lines.extend(f"   - {path}" for path in relevant)
        else:
            lines.append("2. No existing file looks related; add new modules.")
        lines.append("3. Implement the change and add tests covering it.")
        return "\n".join(lines)

    def generate_code(
        self, conversation_id: str, upload_id: str, message: str
    ) -> CodeGenerationResult:
        archive = self._archive(conversation_id, upload_id)
        relevant = _relevant_files(message, archive.file_paths, self.max_relevant_files)
        body = [f"# {message.strip() or 'Feature'}", "", "Files to revisit:"]
        body.extend(f"- {path}" for path in relevant or ["(none found)"])
        return CodeGenerationResult(
            new_files=[
                NewFileZipInfo(
                    zip_file_path=f"docs/feature-dev/{_slug(message)}.md",
                    file_content="\n".join(body) + "\n",
                )
            ]
        )


def _relevant_files(message: str, file_paths: list[str], limit: int) -> list[str]:
    terms = set(_WORD.findall(message.lower()))
    scored = []
    for index, path in enumerate(file_paths):
        overlap = len(terms & set(_WORD.findall(path.lower())))
        if overlap:
            scored.append((-overlap, index, path))
    return [path for _, _, path in sorted(scored)[:limit]]


def _slug(text: str) -> str:
    slug = "-".join(_WORD.findall(text.lower()))[:40].strip("-")
    return slug or "feature"
