"""In-process embedding store.

Chunks are held in a ``source_key -> tuple[Chunk, ...]`` mapping.  An upsert
builds the new tuple first and rebinds the key in a single assignment, so
there is no intermediate state to observe.  Used for local dry runs and as
the reference backend in tests.
"""

from __future__ import annotations

import logging

from trialrag.errors import StoreTransactionError
from trialrag.retrieval.base import EmbeddingStore, cosine_similarity
from trialrag.retrieval.models import Chunk

logger = logging.getLogger(__name__)


class InMemoryEmbeddingStore(EmbeddingStore):
    """Exact (brute-force) cosine search over chunks kept in memory."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._chunks: dict[str, tuple[Chunk, ...]] = {}
        self._dimension: int | None = None

    @property
    def dimension(self) -> int | None:
        return self._dimension

    def health_check(self) -> bool:
        return True

    def _replace_source(self, source_key: str, chunks: list[Chunk]) -> int:
        dims = {len(c.embedding) for c in chunks}
        if self._dimension is not None:
            dims.add(self._dimension)
        if len(dims) > 1:
            raise StoreTransactionError(
                source_key, f"embedding dimension mismatch {sorted(dims)}", restored=True
            )

        prior = self._chunks.get(source_key, ())
        if chunks:
            self._chunks[source_key] = tuple(chunks)
            if self._dimension is None:
                self._dimension = len(chunks[0].embedding)
        else:
            self._chunks.pop(source_key, None)
        return len(prior)

    def _candidates(self, query_vector: list[float], k: int) -> list[Chunk]:
        if self._dimension is not None and len(query_vector) != self._dimension:
            raise ValueError(
                f"Query vector has dimension {len(query_vector)}, store holds {self._dimension}"
            )
        return [
            chunk.scored(cosine_similarity(query_vector, chunk.embedding))
            for chunks in self._chunks.values()
            for chunk in chunks
        ]

    def _count(self, source_key: str | None) -> int:
        if source_key is None:
            return sum(len(c) for c in self._chunks.values())
        return len(self._chunks.get(source_key, ()))

    def _distinct_source_keys(self) -> set[str]:
        return set(self._chunks)
