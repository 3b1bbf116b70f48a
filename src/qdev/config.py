"""Configuration models for context retrieval and feature-dev sessions."""

from __future__ import annotations

from pydantic import BaseModel, Field


class ContextConfig(BaseModel):
    """Configures supplemental context extraction and ranking."""

    max_chunks: int = Field(default=60, ge=1)
    chunk_line_count: int = Field(default=50, ge=1)
    top_n: int = Field(default=3, ge=1)
    # 10 lines of left context plus the caret line.
    query_line_count: int = Field(default=11, ge=1)
    utg_segment_size: int = Field(default=10200, ge=1)
    utg_prefix: str = "UTG\n"
    caret_context_chars: int = Field(default=10240, ge=1)
    index_timeout_seconds: float | None = Field(default=None, gt=0.0)


class SessionConfig(BaseModel):
    """Configures retry budgets and repository upload limits."""

    approach_retry_limit: int = Field(default=3, ge=0)
    code_generation_retry_limit: int = Field(default=4, ge=0)
    max_upload_bytes: int = Field(default=100 * 1024 * 1024, ge=1)
