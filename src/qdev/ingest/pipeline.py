"""Chunk extraction across file producers: crawl -> dedupe -> chunk -> cap."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from time import perf_counter

from qdev.cancellation import CancellationToken
from qdev.config import ContextConfig
from qdev.ingest.chunker import LineChunker
from qdev.ingest.project import LocalProject
from qdev.types import Chunk, SourceFile

LOGGER = logging.getLogger(__name__)

FileProducer = Callable[[SourceFile], list[SourceFile]]


class ChunkExtractor:
    """Turns the files yielded by ordered producers into a capped chunk list.

    Producers run in order (e.g. imports, then same package). A file seen by
    an earlier producer is not chunked again, and files outside the project
    root are never read. Extraction stops as soon as the
    running list exceeds `max_chunks`; the result keeps producer order, then
    file order, then line order, truncated to `max_chunks`.
    """

    def __init__(
        self,
        project: LocalProject,
        chunker: LineChunker | None = None,
        config: ContextConfig | None = None,
    ) -> None:
        self._project = project
        self.config = config or ContextConfig()
        self._chunker = chunker or LineChunker(self.config)

    def extract(
        self,
        anchor: SourceFile,
        producers: Sequence[FileProducer],
        *,
        token: CancellationToken | None = None,
    ) -> list[Chunk]:
        token = token or CancellationToken()
        limit = self.config.max_chunks
        start = perf_counter()
        used: set[SourceFile] = set()
        chunks: list[Chunk] = []

        for producer in producers:
            token.raise_if_cancelled()
            for file in producer(anchor):
                token.raise_if_cancelled()
                if file in used or not self._project.contains(file):
                    continue
                used.add(file)
                try:
                    text = self._project.read_text(file)
                except OSError as exc:
                    LOGGER.warning("Skipping unreadable file %s: %s", file.path, exc)
                    continue
                chunks.extend(self._chunker.chunk_text(self._project.relative_path(file), text))
                if len(chunks) > limit:
                    LOGGER.debug(
                        "Finished fetching %d chunks in %.1f ms",
                        limit,
                        (perf_counter() - start) * 1000.0,
                    )
                    return chunks[:limit]

        LOGGER.debug(
            "Finished fetching %d chunks in %.1f ms",
            min(len(chunks), limit),
            (perf_counter() - start) * 1000.0,
        )
        return chunks[:limit]
