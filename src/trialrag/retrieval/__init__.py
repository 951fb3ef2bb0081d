"""
Retrieval — the embedding store and nearest-neighbour search.

This package owns the persisted chunk set.  Writers go through
:meth:`EmbeddingStore.upsert_by_source`; readers go through
:meth:`EmbeddingStore.nearest_neighbors` or :class:`SemanticRetriever`.

Public surface
--------------
- :class:`EmbeddingStore` — abstract backend with per-source atomic upsert.
- :class:`InMemoryEmbeddingStore` — exact in-process backend.
- :class:`ChromaEmbeddingStore` — default Chroma backend.
- :class:`SemanticRetriever` — text queries with citations.
- :class:`Chunk`, :class:`UpsertResult`, :class:`Citation`, :class:`RetrievalResult` — data models.
"""

from trialrag.retrieval.base import EmbeddingStore, cosine_similarity, rank_candidates
from trialrag.retrieval.memory_store import InMemoryEmbeddingStore
from trialrag.retrieval.models import Chunk, Citation, RetrievalResult, UpsertResult
from trialrag.retrieval.retriever import SemanticRetriever

__all__ = [
    "Chunk",
    "ChromaEmbeddingStore",
    "Citation",
    "EmbeddingStore",
    "InMemoryEmbeddingStore",
    "RetrievalResult",
    "SemanticRetriever",
    "UpsertResult",
    "cosine_similarity",
    "rank_candidates",
]


def __getattr__(name: str):  # noqa: ANN001
    """Lazy-import ChromaEmbeddingStore to avoid pulling in chromadb at import time."""
    if name == "ChromaEmbeddingStore":
        from trialrag.retrieval.chroma_store import ChromaEmbeddingStore

        return ChromaEmbeddingStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
