"""FastAPI entrypoint for supplemental context and feature-dev sessions."""

from __future__ import annotations

import dataclasses
import os
import uuid
from dataclasses import asdict
from pathlib import Path
from typing import Any

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from qdev.config import ContextConfig, SessionConfig
from qdev.errors import (
    ConversationIdNotFoundError,
    FeatureDevServiceError,
    IllegalStateTransitionError,
    OperationCancelledError,
    RetrievalError,
)
from qdev.featuredev.client import FeatureDevClient, create_client_from_env
from qdev.featuredev.context import FeatureDevSessionContext
from qdev.featuredev.messages import send_async_event_progress
from qdev.featuredev.registry import SessionEntry, SessionRegistry
from qdev.featuredev.session import Session
from qdev.featuredev.states import PrepareCodeGenerationState
from qdev.ingest.project import LocalProject
from qdev.obs.tracing import TraceStore
from qdev.retrieval.chunk_index import ChunkIndexCache
from qdev.retrieval.retriever import SupplementalContextProvider
from qdev.types import SupplementalContextInfo


class SupplementalContextRequest(BaseModel):
    path: str = Field(min_length=1)
    caret_offset: int | None = Field(default=None, ge=0)


class CreateSessionRequest(BaseModel):
    tab_id: str | None = None


class MessageRequest(BaseModel):
    message: str = Field(min_length=1)


class InsertRequest(BaseModel):
    rejected_paths: list[str] = Field(default_factory=list)


def create_app(
    project_root: str | Path,
    *,
    client: FeatureDevClient | None = None,
    context_config: ContextConfig | None = None,
    session_config: SessionConfig | None = None,
    cache_dir: str | Path | None = None,
) -> FastAPI:
    project = LocalProject(project_root)
    trace_store = TraceStore()
    provider = SupplementalContextProvider(
        project,
        config=context_config,
        cache=ChunkIndexCache(cache_dir),
        trace_store=trace_store,
    )
    feature_client = client or create_client_from_env()
    session_cfg = session_config or SessionConfig()
    registry = SessionRegistry()

    app = FastAPI(title="qdev", version="0.1.0")

    def _entry(tab_id: str) -> SessionEntry:
        try:
            return registry.get(tab_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc

    @app.get("/health")
    def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "project_root": str(project.root),
            "client": type(feature_client).__name__,
            "sessions": len(registry.tab_ids()),
        }

    @app.post("/context/supplemental")
    def supplemental_context(request: SupplementalContextRequest) -> dict[str, Any]:
        file = project.source_file(request.path)
        if not project.contains(file) or not file.path.is_file():
            raise HTTPException(status_code=404, detail=f"File not found: {request.path}")

        caret = request.caret_offset if request.caret_offset is not None else file.path.stat().st_size
        file_context = provider.extract_file_context(file, caret)
        try:
            info = provider.extract_supplemental_file_context(file, file_context)
        except TimeoutError as exc:
            raise HTTPException(status_code=504, detail=str(exc)) from exc
        except OperationCancelledError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        except RetrievalError as exc:
            raise HTTPException(
                status_code=500, detail={"phase": exc.phase, "error": str(exc)}
            ) from exc

        if info is None:
            return {"contents": None, "target_file_name": file_context.filename}
        return _supplemental_payload(info)

    @app.post("/sessions")
    def create_session(request: CreateSessionRequest) -> dict[str, Any]:
        tab_id = request.tab_id or str(uuid.uuid4())
        session = Session(
            tab_id,
            FeatureDevSessionContext(project.root, config=session_cfg),
            feature_client,
        )
        try:
            registry.register(session)
        except ValueError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return _session_payload(session)

    @app.get("/sessions/{tab_id}")
    def session_detail(tab_id: str) -> dict[str, Any]:
        return _session_payload(_entry(tab_id).session)

    @app.delete("/sessions/{tab_id}")
    def close_session(tab_id: str) -> dict[str, Any]:
        session = _entry(tab_id).session
        registry.remove(tab_id)
        if session.has_conversation:
            feature_client.close_conversation(session.conversation_id)
        return {"tab_id": tab_id, "closed": True}

    @app.post("/sessions/{tab_id}/messages")
    def send_message(tab_id: str, request: MessageRequest) -> dict[str, Any]:
        entry = _entry(tab_id)
        session = entry.session
        if session.retries <= 0:
            raise HTTPException(
                status_code=429,
                detail={"error": "No retries left for this phase", "retries": session.retries},
            )
        try:
            session.preloader(request.message, entry.messenger)
            interaction = session.send(request.message)
        except FeatureDevServiceError as exc:
            session.decrease_retries()
            raise HTTPException(
                status_code=502, detail={"error": str(exc), "retries": session.retries}
            ) from exc
        except IllegalStateTransitionError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        finally:
            send_async_event_progress(entry.messenger, tab_id, in_progress=False)

        return {"interaction": asdict(interaction), "session": _session_payload(session)}

    @app.post("/sessions/{tab_id}/codegen")
    def start_codegen(tab_id: str) -> dict[str, Any]:
        entry = _entry(tab_id)
        try:
            entry.session.init_codegen(entry.messenger)
        except ConversationIdNotFoundError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return _session_payload(entry.session)

    @app.post("/sessions/{tab_id}/insert")
    def insert_changes(tab_id: str, request: InsertRequest) -> dict[str, Any]:
        session = _entry(tab_id).session
        state = session.session_state
        if not isinstance(state, PrepareCodeGenerationState):
            raise HTTPException(status_code=409, detail="No generated code to insert")

        rejected = set(request.rejected_paths)
        file_paths = [
            dataclasses.replace(item, rejected=item.rejected or item.zip_file_path in rejected)
            for item in state.file_paths
        ]
        deleted_files = [
            dataclasses.replace(item, rejected=item.rejected or item.zip_file_path in rejected)
            for item in state.deleted_files
        ]
        result = session.insert_changes(file_paths, deleted_files, state.references)
        return {**asdict(result), "succeeded": result.succeeded}

    @app.get("/sessions/{tab_id}/messages")
    def session_messages(tab_id: str) -> dict[str, Any]:
        entry = _entry(tab_id)
        return {
            "items": list(entry.messenger.messages),
            "references": entry.session.reference_log.entries(),
        }

    @app.get("/traces")
    def traces(limit: int = 20) -> dict[str, Any]:
        return {"items": [asdict(record) for record in trace_store.list_recent(limit=limit)]}

    @app.get("/traces/{trace_id}")
    def trace_detail(trace_id: str) -> dict[str, Any]:
        try:
            record = trace_store.get(trace_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return asdict(record)

    @app.get("/metrics")
    def metrics() -> dict[str, Any]:
        return trace_store.summary()

    return app


def _supplemental_payload(info: SupplementalContextInfo) -> dict[str, Any]:
    return {
        "is_utg": info.is_utg,
        "contents": [asdict(chunk) for chunk in info.contents],
        "latency_ms": info.latency_ms,
        "target_file_name": info.target_file_name,
        "content_length": info.content_length,
    }


def _session_payload(session: Session) -> dict[str, Any]:
    state = session.session_state
    return {
        "tab_id": session.tab_id,
        "phase": state.phase.value,
        "state": type(state).__name__,
        "conversation_id": session.conversation_id if session.has_conversation else None,
        "retries": session.retries,
        "task": session.task,
        "latest_message": session.latest_message,
        "approach": state.approach,
    }


app = create_app(os.getenv("QDEV_PROJECT_ROOT", os.getcwd()))
