"""BM25 (Okapi) relevance ranking over chunk contents."""

from __future__ import annotations

from collections.abc import Sequence

from rank_bm25 import BM25Okapi

from qdev.types import BM25Result


def tokenize(text: str) -> list[str]:
    return text.split()


class BM25Ranker:
    """Ranks raw documents against a query with fixed Okapi constants.

    Every document is one chunk's raw text. Scores come from
    `rank_bm25.BM25Okapi` (k1=1.5, b=0.75, epsilon=0.25). Ordering is a
    stable sort on descending score, so equal scores keep corpus order and
    repeated runs over the same input return identical results.
    """

    K1 = 1.5
    B = 0.75
    EPSILON = 0.25

    def __init__(self, documents: Sequence[str]) -> None:
        self.documents = list(documents)
        self._tokenized = [tokenize(document) for document in self.documents]
        # BM25Okapi divides by corpus and vocabulary size.
        self._bm25 = (
            BM25Okapi(self._tokenized, k1=self.K1, b=self.B, epsilon=self.EPSILON)
            if any(self._tokenized)
            else None
        )

    def scores(self, query: str) -> list[float]:
        if self._bm25 is None:
            return [0.0 for _ in self.documents]
        return [float(score) for score in self._bm25.get_scores(tokenize(query))]

    def top_n(self, query: str, n: int = 3) -> list[BM25Result]:
        if self._bm25 is None or n <= 0:
            return []
        scores = self.scores(query)
        order = sorted(range(len(scores)), key=lambda index: -scores[index])
        return [
            BM25Result(doc_string=self.documents[index], score=scores[index])
            for index in order[:n]
        ]
