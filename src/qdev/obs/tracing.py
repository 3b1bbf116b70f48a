"""Retrieval tracing: per-phase latency, chunk counts and failures."""

from __future__ import annotations

import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone

PHASE_CRAWL = "crawl"
PHASE_CHUNK = "chunk"
PHASE_RANK = "rank"


@dataclass(slots=True)
class RetrievalTrace:
    trace_id: str
    timestamp_utc: str
    target_file: str
    strategy: str = "skipped"
    phase_latency_ms: dict[str, float] = field(default_factory=dict)
    chunk_count: int = 0
    result_count: int = 0
    latency_ms: float = 0.0
    failed_phase: str | None = None
    error: str | None = None

    @classmethod
    def start(cls, target_file: str) -> "RetrievalTrace":
        return cls(
            trace_id=str(uuid.uuid4()),
            timestamp_utc=datetime.now(timezone.utc).isoformat(),
            target_file=target_file,
        )

    @contextmanager
    def phase(self, name: str) -> Iterator[None]:
        """Time one pipeline phase and attribute any escaping error to it."""

        start = time.perf_counter()
        try:
            yield
        except BaseException as exc:
            if self.failed_phase is None:
                self.failed_phase = name
                self.error = f"{type(exc).__name__}: {exc}"
            raise
        finally:
            elapsed_ms = (time.perf_counter() - start) * 1000.0
            self.phase_latency_ms[name] = self.phase_latency_ms.get(name, 0.0) + elapsed_ms


class TraceStore:
    """In-memory trace storage for API-level observability."""

    def __init__(self, max_records: int = 1000) -> None:
        self._records: dict[str, RetrievalTrace] = {}
        self._max_records = max_records

    def add(self, record: RetrievalTrace) -> RetrievalTrace:
        self._records[record.trace_id] = record
        while len(self._records) > self._max_records:
            del self._records[next(iter(self._records))]
        return record

    def get(self, trace_id: str) -> RetrievalTrace:
        record = self._records.get(trace_id)
        if record is None:
            raise KeyError(f"Trace not found: {trace_id}")
        return record

    def list_recent(self, limit: int = 20) -> list[RetrievalTrace]:
        return list(self._records.values())[-limit:]

    def summary(self) -> dict[str, float | int]:
        """Aggregate retrieval metrics for dashboard display."""
        records = list(self._records.values())
        total = len(records)
        if total == 0:
            return {
                "total_requests": 0,
                "failed_requests": 0,
                "empty_results": 0,
                "avg_latency_ms": 0.0,
                "p95_latency_ms": 0.0,
                "avg_chunk_count": 0.0,
            }

        latencies = sorted(record.latency_ms for record in records)
        p95_index = max(0, int((len(latencies) * 0.95) - 1))
        return {
            "total_requests": total,
            "failed_requests": sum(1 for record in records if record.failed_phase),
            "empty_results": sum(
                1
                for record in records
                if record.failed_phase is None
                and record.strategy != "skipped"
                and record.result_count == 0
            ),
            "avg_latency_ms": sum(latencies) / total,
            "p95_latency_ms": latencies[p95_index],
            "avg_chunk_count": sum(record.chunk_count for record in records) / total,
        }
