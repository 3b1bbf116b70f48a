"""Per-file chunk index: read-through cache plus its persisted record format."""

from __future__ import annotations

import hashlib
import io
import logging
import os
import struct
import tempfile
import threading
import time
from collections.abc import Callable
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from pathlib import Path
from typing import BinaryIO

from qdev.errors import RetrievalTimeoutError
from qdev.types import Chunk

LOGGER = logging.getLogger(__name__)

ChunkIndexKey = tuple[str, tuple[int, int]]

_COUNT = struct.Struct(">i")
_UTF_LENGTH = struct.Struct(">H")


class ChunkExternalizer:
    """Binary record format for chunk lists.

    Layout: a big-endian int32 count, then per chunk the `path`, `content`
    and `next_chunk` strings in that order, each as a big-endian uint16 byte
    length followed by UTF-8 bytes. Scores are not persisted.
    """

    MAX_UTF_BYTES = 0xFFFF

    @classmethod
    def save(cls, out: BinaryIO, chunks: list[Chunk]) -> None:
        out.write(_COUNT.pack(len(chunks)))
        for chunk in chunks:
            cls._write_utf(out, chunk.path)
            cls._write_utf(out, chunk.content)
            cls._write_utf(out, chunk.next_chunk)

    @classmethod
    def read(cls, inp: BinaryIO) -> list[Chunk]:
        (size,) = _COUNT.unpack(_read_exact(inp, _COUNT.size))
        if size < 0:
            raise ValueError(f"Negative chunk count: {size}")
        return [
            Chunk(
                path=cls._read_utf(inp),
                content=cls._read_utf(inp),
                next_chunk=cls._read_utf(inp),
            )
            for _ in range(size)
        ]

    @classmethod
    def dumps(cls, chunks: list[Chunk]) -> bytes:
        buffer = io.BytesIO()
        cls.save(buffer, chunks)
        return buffer.getvalue()

    @classmethod
    def loads(cls, data: bytes) -> list[Chunk]:
        return cls.read(io.BytesIO(data))

    @classmethod
    def _write_utf(cls, out: BinaryIO, value: str) -> None:
        encoded = value.encode("utf-8")
        if len(encoded) > cls.MAX_UTF_BYTES:
            raise ValueError(f"String too long to encode: {len(encoded)} bytes")
        out.write(_UTF_LENGTH.pack(len(encoded)))
        out.write(encoded)

    @staticmethod
    def _read_utf(inp: BinaryIO) -> str:
        (length,) = _UTF_LENGTH.unpack(_read_exact(inp, _UTF_LENGTH.size))
        return _read_exact(inp, length).decode("utf-8")


def _read_exact(inp: BinaryIO, size: int) -> bytes:
    data = inp.read(size)
    if len(data) != size:
        raise EOFError(f"Expected {size} bytes, got {len(data)}")
    return data


class ChunkIndexCache:
    """Memoized chunk lists keyed by (file path, content version).

    A key is computed at most once; concurrent readers of the same key wait
    on the owner's future. A computation that fails (including cancellation
    or timeout) is dropped from the map and its exception propagates, so a
    later reader recomputes instead of seeing a partial list. Computing a new
    version of a path evicts the older versions.

    With `persist_dir`, computed lists are also written through
    `ChunkExternalizer` and read back on an in-memory miss.
    """

    def __init__(self, persist_dir: str | Path | None = None) -> None:
        self._lock = threading.Lock()
        self._entries: dict[ChunkIndexKey, Future[list[Chunk]]] = {}
        self._persist_dir = Path(persist_dir) if persist_dir is not None else None
        if self._persist_dir is not None:
            self._persist_dir.mkdir(parents=True, exist_ok=True)

    def get_or_compute(
        self,
        key: ChunkIndexKey,
        compute: Callable[[], list[Chunk]],
        *,
        timeout: float | None = None,
    ) -> list[Chunk]:
        deadline = time.monotonic() + timeout if timeout is not None else None
        while True:
            with self._lock:
                future = self._entries.get(key)
                owner = future is None
                if owner:
                    future = Future()
                    for stale in [k for k in self._entries if k[0] == key[0] and k != key]:
                        del self._entries[stale]
                    self._entries[key] = future

            if owner:
                return self._populate(key, future, compute)

            remaining = max(0.0, deadline - time.monotonic()) if deadline is not None else None
            try:
                return list(future.result(timeout=remaining))
            except FutureTimeoutError as exc:
                raise RetrievalTimeoutError(f"timed out waiting for chunk index of {key[0]}") from exc
            except Exception:
                if not future.done():
                    raise
                # The owner failed and dropped its entry; compute afresh.
                continue

    def invalidate(self, path: str) -> None:
        with self._lock:
            for key in [k for k in self._entries if k[0] == path]:
                del self._entries[key]

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _populate(
        self,
        key: ChunkIndexKey,
        future: Future[list[Chunk]],
        compute: Callable[[], list[Chunk]],
    ) -> list[Chunk]:
        try:
            chunks = self._load(key)
            if chunks is None:
                chunks = list(compute())
                self._store(key, chunks)
        except BaseException as exc:
            with self._lock:
                if self._entries.get(key) is future:
                    del self._entries[key]
            future.set_exception(exc)
            raise
        future.set_result(chunks)
        return list(chunks)

    def _record_path(self, key: ChunkIndexKey) -> Path | None:
        if self._persist_dir is None:
            return None
        path, (mtime_ns, size) = key
        digest = hashlib.sha1(f"{path}\0{mtime_ns}\0{size}".encode("utf-8")).hexdigest()
        return self._persist_dir / f"{digest}.chunks"

    def _load(self, key: ChunkIndexKey) -> list[Chunk] | None:
        record = self._record_path(key)
        if record is None or not record.is_file():
            return None
        try:
            with record.open("rb") as handle:
                return ChunkExternalizer.read(handle)
        except (OSError, EOFError, ValueError) as exc:
            LOGGER.warning("Discarding unreadable chunk record %s: %s", record, exc)
            return None

    def _store(self, key: ChunkIndexKey, chunks: list[Chunk]) -> None:
        record = self._record_path(key)
        if record is None:
            return
        try:
            payload = ChunkExternalizer.dumps(chunks)
            fd, tmp_name = tempfile.mkstemp(dir=record.parent, suffix=".tmp")
            with os.fdopen(fd, "wb") as handle:
                handle.write(payload)
            os.replace(tmp_name, record)
        except (OSError, ValueError) as exc:
            LOGGER.warning("Failed to persist chunk record for %s: %s", key[0], exc)
