"""Line-window chunking with successor chaining."""

from __future__ import annotations

from qdev.config import ContextConfig
from qdev.types import Chunk


class LineChunker:
    """Splits source text into fixed-size line windows.

    Each chunk records the content of the window that follows it in
    `next_chunk`. Ranking matches on a chunk's own content, but the
    supplemental payload is its successor: the code right after the lines
    that resemble what the user is typing. The final window has an empty
    `next_chunk`.
    """

    def __init__(self, config: ContextConfig | None = None) -> None:
        self.config = config or ContextConfig()

    def chunk_text(self, path: str, text: str) -> list[Chunk]:
        if not text:
            return []
        lines = text.split("\n")
        size = self.config.chunk_line_count
        windows = [
            "\n".join(lines[start : start + size]).rstrip()
            for start in range(0, len(lines), size)
        ]
        return [
            Chunk(
                path=path,
                content=content,
                next_chunk=windows[index + 1] if index + 1 < len(windows) else "",
            )
            for index, content in enumerate(windows)
        ]
