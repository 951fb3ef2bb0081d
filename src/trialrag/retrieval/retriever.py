"""Semantic retriever — text queries in, cited passages out.

Usage::

    from trialrag.factory import build_retriever

    retriever = build_retriever()
    for r in retriever.search("eligibility criteria for sickle cell gene editing", k=5):
        print(r.citation.short_ref(), r.content[:80])
"""

from __future__ import annotations

import logging

from trialrag.retrieval.base import EmbeddingStore
from trialrag.retrieval.models import Chunk, Citation, RetrievalResult

logger = logging.getLogger(__name__)


class SemanticRetriever:
    """High-level retriever over any :class:`EmbeddingStore`.

    Parameters
    ----------
    store:
        A concrete embedding-store backend.
    default_k:
        Default number of results returned by :meth:`search`.
    score_threshold:
        Minimum cosine similarity; ``0`` or ``None`` disables filtering.
    """

    def __init__(
        self,
        store: EmbeddingStore,
        *,
        default_k: int = 5,
        score_threshold: float | None = None,
    ) -> None:
        self._store = store
        self.default_k = default_k
        self.score_threshold = score_threshold

    def search(
        self,
        query: str,
        *,
        k: int | None = None,
        score_threshold: float | None = None,
    ) -> list[RetrievalResult]:
        """Run a semantic search and return ranked results with citations."""
        k = k or self.default_k
        threshold = score_threshold if score_threshold is not None else self.score_threshold
        logger.info("Similarity search: k=%d threshold=%s query=%r", k, threshold, query[:80])
        hits = self._store.nearest_neighbors_by_text(query, k, threshold)
        return self._to_results(hits)

    def search_by_embedding(
        self,
        embedding: list[float],
        *,
        k: int | None = None,
        score_threshold: float | None = None,
    ) -> list[RetrievalResult]:
        """Same as :meth:`search` but accepts a pre-computed embedding."""
        k = k or self.default_k
        threshold = score_threshold if score_threshold is not None else self.score_threshold
        return self._to_results(self._store.nearest_neighbors(embedding, k, threshold))

    @staticmethod
    def _to_results(hits: list[Chunk]) -> list[RetrievalResult]:
        results: list[RetrievalResult] = []
        for chunk in hits:
            citation = Citation(
                chunk_id=chunk.id,
                source_key=chunk.source_key,
                url=chunk.meta.get("source"),
                score=chunk.score,
                created_at=chunk.created_at,
            )
            results.append(RetrievalResult(content=chunk.text, citation=citation))
        return results
