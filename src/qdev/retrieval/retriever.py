"""Supplemental context assembly for code completion requests."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from time import perf_counter

from qdev.cancellation import CancellationToken
from qdev.config import ContextConfig
from qdev.errors import OperationCancelledError, RetrievalError
from qdev.ingest.chunker import LineChunker
from qdev.ingest.crawler import FileCrawler, PythonFileCrawler, get_file_crawler
from qdev.ingest.pipeline import ChunkExtractor, FileProducer
from qdev.ingest.project import LocalProject
from qdev.language import JAVA, PYTHON
from qdev.obs.tracing import PHASE_CHUNK, PHASE_CRAWL, PHASE_RANK, RetrievalTrace, TraceStore
from qdev.retrieval.bm25 import BM25Ranker
from qdev.retrieval.chunk_index import ChunkIndexCache
from qdev.types import CaretContext, Chunk, FileContextInfo, SourceFile, SupplementalContextInfo

LOGGER = logging.getLogger(__name__)


class SupplementalContextProvider:
    """Extracts context from files other than the one being edited.

    Two strategies, chosen by the kind of file under edit:

    1. Source file -> chunk the files it imports plus the files in its
       package, rank the chunks against the last lines before the caret with
       BM25, and return the chunk *after* each of the top matches.
    2. Test file -> find the focal file (`MainTest.java` -> `Main.java`,
       `test_main.py` -> `main.py`) and return its head as a single chunk.

    Languages that support neither strategy yield `None`. Cancellation and
    timeouts propagate to the caller; any other failure is re-raised as a
    `RetrievalError` naming the phase (crawl, chunk or rank) it came from.
    """

    def __init__(
        self,
        project: LocalProject,
        *,
        config: ContextConfig | None = None,
        cache: ChunkIndexCache | None = None,
        trace_store: TraceStore | None = None,
        chunker: LineChunker | None = None,
    ) -> None:
        self.project = project
        self.config = config or ContextConfig()
        self.cache = cache or ChunkIndexCache()
        self.trace_store = trace_store or TraceStore()
        self._extractor = ChunkExtractor(project, chunker, self.config)

    def crawler_for(self, file: SourceFile) -> FileCrawler:
        return get_file_crawler(file.language, self.project)

    def extract_file_context(self, file: SourceFile, caret_offset: int) -> FileContextInfo:
        text = self.project.read_text(file)
        offset = min(max(caret_offset, 0), len(text))
        limit = self.config.caret_context_chars
        return FileContextInfo(
            caret_context=CaretContext(
                left_file_context=text[max(0, offset - limit) : offset],
                right_file_context=text[offset : offset + limit],
            ),
            filename=file.name,
            programming_language=file.language,
        )

    def extract_supplemental_file_context(
        self,
        file: SourceFile,
        file_context: FileContextInfo,
        *,
        token: CancellationToken | None = None,
    ) -> SupplementalContextInfo | None:
        token = token or CancellationToken(self.config.index_timeout_seconds)
        start = perf_counter()
        trace = RetrievalTrace.start(file_context.filename)
        language = file_context.programming_language
        chunks: list[Chunk] | None = None

        try:
            is_test = self.is_test_file(file)
            if is_test and language.is_utg_supported():
                trace.strategy = "utg"
                chunks = self.extract_supplemental_file_context_for_tst(
                    file, file_context, trace=trace
                )
            elif not is_test and language.is_supplemental_context_supported():
                trace.strategy = "crossfile"
                chunks = self.extract_supplemental_file_context_for_src(
                    file, file_context, token=token, trace=trace
                )
            else:
                LOGGER.debug(
                    "%s not supported for %s",
                    "UTG" if is_test else "CrossFile",
                    language.language_id,
                )
        except (OperationCancelledError, TimeoutError, RetrievalError):
            raise
        except Exception as exc:
            raise RetrievalError(trace.failed_phase or PHASE_CRAWL, str(exc)) from exc
        finally:
            trace.latency_ms = (perf_counter() - start) * 1000.0
            trace.result_count = len(chunks) if chunks else 0
            self.trace_store.add(trace)

        if chunks is None:
            return None

        if chunks:
            LOGGER.info("Successfully fetched supplemental context.")
            for index, chunk in enumerate(chunks, start=1):
                LOGGER.info("Chunk %d:\n    content = %s\n    path = %s", index, chunk.content, chunk.path)
        else:
            LOGGER.warning("Failed to fetch supplemental context, empty list.")

        return SupplementalContextInfo(
            is_utg=is_test,
            contents=chunks,
            latency_ms=trace.latency_ms,
            target_file_name=file_context.filename,
        )

    def extract_code_chunks_from_files(
        self,
        file: SourceFile,
        file_producers: Sequence[FileProducer],
        *,
        token: CancellationToken | None = None,
    ) -> list[Chunk]:
        return self._extractor.extract(file, file_producers, token=token)

    def is_test_file(self, file: SourceFile) -> bool:
        if file.language == JAVA:
            return self.project.is_test_source(file)
        if file.language == PYTHON:
            return PythonFileCrawler.test_filename_pattern.match(file.name) is not None
        # Unknown languages are treated as tests so no production-file context leaks.
        return True

    def extract_supplemental_file_context_for_src(
        self,
        file: SourceFile,
        file_context: FileContextInfo,
        *,
        token: CancellationToken | None = None,
        trace: RetrievalTrace | None = None,
    ) -> list[Chunk]:
        if not file_context.programming_language.is_supplemental_context_supported():
            return []
        token = token or CancellationToken()
        trace = trace or RetrievalTrace.start(file_context.filename)

        lines = file_context.caret_context.left_file_context.split("\n")
        query = "\n".join(lines[-self.config.query_line_count :])

        with trace.phase(PHASE_CHUNK):
            first_chunks = self._code_chunk_index(file, token, trace)
            trace.chunk_count = len(first_chunks)
            token.raise_if_cancelled()

        if not first_chunks:
            LOGGER.warning(
                "0 chunks was found for supplemental context, fileName=%s, programmingLanguage=%s",
                file_context.filename,
                file_context.programming_language.language_id,
            )
            return []

        # Identical content in two chunks resolves to the last one inserted.
        content_to_chunk = {chunk.content: chunk for chunk in first_chunks}

        with trace.phase(PHASE_RANK):
            top_chunks = BM25Ranker([chunk.content for chunk in first_chunks]).top_n(
                query, self.config.top_n
            )
            token.raise_if_cancelled()
        LOGGER.info(
            "Time elapsed for BM25 algorithm: %.1f ms; result: %s",
            trace.phase_latency_ms.get(PHASE_RANK, 0.0),
            top_chunks,
        )

        results: list[Chunk] = []
        for match in top_chunks:
            chunk = content_to_chunk.get(match.doc_string)
            if chunk is not None:
                results.append(Chunk(path=chunk.path, content=chunk.next_chunk, score=match.score))
        return results

    def extract_supplemental_file_context_for_tst(
        self,
        file: SourceFile,
        file_context: FileContextInfo,
        *,
        trace: RetrievalTrace | None = None,
    ) -> list[Chunk]:
        if not file_context.programming_language.is_utg_supported():
            return []
        trace = trace or RetrievalTrace.start(file_context.filename)

        with trace.phase(PHASE_CRAWL):
            focal_file = get_file_crawler(
                file_context.programming_language, self.project
            ).find_focal_file_for_test(file)
        if focal_file is None:
            return []

        with trace.phase(PHASE_CHUNK):
            content = self.project.read_text(focal_file)
        trace.chunk_count = 1
        return [
            Chunk(
                path=self.project.relative_path(focal_file),
                content=self.config.utg_prefix + content[: self.config.utg_segment_size],
            )
        ]

    def _code_chunk_index(
        self, file: SourceFile, token: CancellationToken, trace: RetrievalTrace
    ) -> list[Chunk]:
        crawler = self.crawler_for(file)
        producers = [
            _traced(trace, crawler.list_files_imported),
            _traced(trace, crawler.list_files_within_same_package),
        ]
        key = (str(file.path), self.project.version(file))
        return self.cache.get_or_compute(
            key,
            lambda: self.extract_code_chunks_from_files(file, producers, token=token),
            timeout=token.remaining(),
        )


def _traced(trace: RetrievalTrace, producer: FileProducer) -> FileProducer:
    def _produce(anchor: SourceFile) -> list[SourceFile]:
        with trace.phase(PHASE_CRAWL):
            return producer(anchor)

    return _produce
