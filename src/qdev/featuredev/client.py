"""Feature-dev service clients: conversation bookkeeping and LLM generation."""

from __future__ import annotations

import os
import re
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from langchain_core.output_parsers import StrOutputParser
from langchain_core.prompts import ChatPromptTemplate
from pydantic import BaseModel, Field, ValidationError

from qdev.errors import FeatureDevServiceError
from qdev.featuredev.context import RepositoryArchive
from qdev.types import CodeReference, DeletedFileInfo, NewFileZipInfo

_PLAN_SYSTEM_PROMPT = """
You are a senior engineer planning a change to an existing repository.

Rules:
1) Describe the approach as a short numbered list of concrete steps.
2) Name the files you expect to create, modify or delete.
3) Do not write code yet.
""".strip()

_CODEGEN_SYSTEM_PROMPT = """
You are a senior engineer implementing an agreed approach in an existing repository.

Respond with a single JSON object and nothing else:
{{"files": [{{"path": "relative/path", "content": "full file content"}}],
  "deleted": ["relative/path"],
  "references": [{{"license_name": null, "repository": null, "url": null, "information": ""}}]}}

Paths are relative to the repository root. Return complete file contents.
""".strip()

_HUMAN_TEMPLATE = "Repository files:\n{files}\n\nRequest:\n{message}"
_JSON_FENCE = re.compile(r"^```(?:json)?\s*(?P<body>.*?)\s*```$", flags=re.DOTALL)


@dataclass(slots=True)
class CodeGenerationResult:
    new_files: list[NewFileZipInfo] = field(default_factory=list)
    deleted_files: list[DeletedFileInfo] = field(default_factory=list)
    references: list[CodeReference] = field(default_factory=list)


class FeatureDevClient(ABC):
    """Opaque code generation service.

    Conversation and upload bookkeeping is shared; subclasses decide how a
    plan and code are produced.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        # Only the latest upload of each conversation is kept.
        self._uploads: dict[str, tuple[str, RepositoryArchive] | None] = {}

    def create_conversation(self) -> str:
        conversation_id = str(uuid.uuid4())
        with self._lock:
            self._uploads[conversation_id] = None
        return conversation_id

    def upload_repository(self, conversation_id: str, archive: RepositoryArchive) -> str:
        upload_id = str(uuid.uuid4())
        with self._lock:
            if conversation_id not in self._uploads:
                raise FeatureDevServiceError(f"Unknown conversation: {conversation_id}")
            self._uploads[conversation_id] = (upload_id, archive)
        return upload_id

    def close_conversation(self, conversation_id: str) -> None:
        with self._lock:
            self._uploads.pop(conversation_id, None)

    @abstractmethod
    def generate_plan(self, conversation_id: str, upload_id: str, message: str) -> str:
        """Propose an approach for `message` against the uploaded repository."""

    @abstractmethod
    def generate_code(
        self, conversation_id: str, upload_id: str, message: str
    ) -> CodeGenerationResult:
        """Generate file changes for `message` against the uploaded repository."""

    def _archive(self, conversation_id: str, upload_id: str) -> RepositoryArchive:
        with self._lock:
            latest = self._uploads.get(conversation_id)
        if latest is None or latest[0] != upload_id:
            raise FeatureDevServiceError(
                f"Unknown upload {upload_id} for conversation {conversation_id}"
            )
        return latest[1]


class _GeneratedFile(BaseModel):
    path: str = Field(min_length=1)
    content: str


class _GeneratedReference(BaseModel):
    license_name: str | None = None
    repository: str | None = None
    url: str | None = None
    information: str = ""


class _CodeGenerationPayload(BaseModel):
    files: list[_GeneratedFile] = Field(default_factory=list)
    deleted: list[str] = Field(default_factory=list)
    references: list[_GeneratedReference] = Field(default_factory=list)


class LangChainFeatureDevClient(FeatureDevClient):
    """Generates plans and code with a LangChain chat model."""

    def __init__(self, llm: Any, *, max_listed_files: int = 200) -> None:
        super().__init__()
        self.llm = llm
        self.max_listed_files = max_listed_files
        self._plan_chain = (
            ChatPromptTemplate.from_messages(
                [("system", _PLAN_SYSTEM_PROMPT), ("human", _HUMAN_TEMPLATE)]
            )
            | llm
            | StrOutputParser()
        )
        self._code_chain = (
            ChatPromptTemplate.from_messages(
                [("system", _CODEGEN_SYSTEM_PROMPT), ("human", _HUMAN_TEMPLATE)]
            )
            | llm
            | StrOutputParser()
        )

    def generate_plan(self, conversation_id: str, upload_id: str, message: str) -> str:
        archive = self._archive(conversation_id, upload_id)
        return self._invoke(self._plan_chain, archive, message).strip()

    def generate_code(
        self, conversation_id: str, upload_id: str, message: str
    ) -> CodeGenerationResult:
        archive = self._archive(conversation_id, upload_id)
        raw = self._invoke(self._code_chain, archive, message).strip()
        fenced = _JSON_FENCE.match(raw)
        try:
            payload = _CodeGenerationPayload.model_validate_json(
                fenced.group("body") if fenced else raw
            )
        except ValidationError as exc:
            raise FeatureDevServiceError(f"Malformed code generation output: {exc}") from exc

        return CodeGenerationResult(
            new_files=[
                NewFileZipInfo(zip_file_path=item.path, file_content=item.content)
                for item in payload.files
            ],
            deleted_files=[DeletedFileInfo(zip_file_path=path) for path in payload.deleted],
            references=[CodeReference(**item.model_dump()) for item in payload.references],
        )

    def _invoke(self, chain: Any, archive: RepositoryArchive, message: str) -> str:
        listed = archive.file_paths[: self.max_listed_files]
        try:
            return str(chain.invoke({"files": "\n".join(listed), "message": message}))
        except Exception as exc:
            raise FeatureDevServiceError(f"Code generation service failed: {exc}") from exc


def create_client_from_env() -> FeatureDevClient:
    """LangChain client when `OPENAI_API_KEY` is set, else the offline client."""

    if not os.getenv("OPENAI_API_KEY"):
        from qdev.featuredev.fallback import DeterministicFeatureDevClient

        return DeterministicFeatureDevClient()

    from langchain_openai import ChatOpenAI

    llm = ChatOpenAI(model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"), temperature=0)
    return LangChainFeatureDevClient(llm)
