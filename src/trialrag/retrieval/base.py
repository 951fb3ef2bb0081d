"""Abstract base class for embedding-store backends.

A backend owns the persisted :class:`~trialrag.retrieval.models.Chunk` set.
All mutation goes through :meth:`EmbeddingStore.upsert_by_source`, which

1. serialises upserts for the same source key,
2. embeds every chunk *before* touching the index, so an embedding failure
   leaves the previous chunk set intact, and
3. swaps the old set for the new one under the store-wide index lock that
   readers also take, so an in-process reader sees either the complete old
   set or the complete new set.

Ranking and threshold filtering live in :func:`rank_candidates` so results
do not depend on how a backend orders its raw hits.

Adding a backend only requires implementing the abstract ``_`` methods and
:meth:`health_check`.
"""

from __future__ import annotations

import logging
import math
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from datetime import datetime, timezone

from trialrag.config import settings
from trialrag.errors import UnsupportedOperationError
from trialrag.ingestion.embedder import ChunkEmbedder
from trialrag.retrieval.models import Chunk, UpsertResult

logger = logging.getLogger(__name__)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two equal-length vectors (0.0 for a zero vector)."""
    if len(a) != len(b):
        raise ValueError(f"Vector dimensions differ: {len(a)} != {len(b)}")
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    if norm == 0:
        return 0.0
    return dot / norm


def rank_candidates(
    candidates: Iterable[Chunk],
    k: int,
    similarity_threshold: float | None = None,
) -> list[Chunk]:
    """Order scored chunks by decreasing similarity and keep the top *k*.

    When *similarity_threshold* is given and positive, chunks scoring below
    it are dropped first.
    """
    hits = [c for c in candidates if c.score is not None]
    if similarity_threshold is not None and similarity_threshold > 0:
        hits = [c for c in hits if c.score >= similarity_threshold]
    hits.sort(key=lambda c: c.score, reverse=True)
    return hits[:k]


class _KeyLock:
    """Per-source writer lock, counted so idle keys can be dropped."""

    __slots__ = ("lock", "holders")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.holders = 0


class EmbeddingStore(ABC):
    """Backend-agnostic store of embedded chunks keyed by source.

    Parameters
    ----------
    embedder:
        Embeds chunk texts (and text queries).
    collection_name:
        Logical name of the collection / table.
    min_text_chars:
        Chunks shorter than this are refused.
    """

    def __init__(
        self,
        embedder: ChunkEmbedder,
        collection_name: str = settings.chroma_collection,
        *,
        min_text_chars: int = settings.min_embed_chars,
    ) -> None:
        self.embedder = embedder
        self.collection_name = collection_name
        self.min_text_chars = min_text_chars
        self._index_lock = threading.RLock()
        self._key_locks: dict[str, _KeyLock] = {}
        self._key_locks_guard = threading.Lock()

    # -- public API -----------------------------------------------------------

    def upsert_by_source(
        self,
        source_key: str,
        chunk_texts: Sequence[str],
        metadata: Mapping[str, str] | None = None,
    ) -> UpsertResult:
        """Replace every chunk stored under *source_key* with *chunk_texts*.

        Raises
        ------
        EmbeddingServiceError
            Embedding failed; the store was not modified.
        StoreTransactionError
            The delete/insert failed part-way.
        """
        if not source_key or not source_key.strip():
            raise ValueError("source_key must be a non-empty string")
        texts = list(chunk_texts)
        short = [i for i, t in enumerate(texts) if len(t) < self.min_text_chars]
        if short:
            raise ValueError(
                f"Chunks {short} are shorter than the minimum of {self.min_text_chars} chars"
            )

        with self._source_lock(source_key):
            vectors = self.embedder.embed_documents(texts)
            created_at = datetime.now(timezone.utc)
            frozen_meta = tuple(sorted((metadata or {}).items()))
            chunks = [
                Chunk(
                    text=text,
                    source_key=source_key,
                    embedding=tuple(vector),
                    created_at=created_at,
                    metadata=frozen_meta,
                )
                for text, vector in zip(texts, vectors)
            ]
            with self._index_lock:
                deleted = self._replace_source(source_key, chunks)

        if deleted:
            logger.info("Deleted %d existing chunks for %r", deleted, source_key)
        logger.info("Stored %d chunks for %r", len(chunks), source_key)
        return UpsertResult(source_key=source_key, inserted=len(chunks), deleted_prior=deleted)

    def nearest_neighbors(
        self,
        query_vector: Sequence[float],
        k: int = 5,
        similarity_threshold: float | None = None,
    ) -> list[Chunk]:
        """Return up to *k* chunks closest to *query_vector*, most similar first.

        Each returned chunk carries its cosine similarity in ``score``.
        """
        if k < 1:
            raise ValueError(f"k must be >= 1, got {k}")
        with self._index_lock:
            candidates = self._candidates(list(query_vector), k)
        results = rank_candidates(candidates, k, similarity_threshold)
        logger.debug(
            "nearest_neighbors(k=%d, threshold=%s) -> %d results", k, similarity_threshold, len(results)
        )
        return results

    def nearest_neighbors_by_text(
        self,
        query: str,
        k: int = 5,
        similarity_threshold: float | None = None,
    ) -> list[Chunk]:
        """Embed *query* and delegate to :meth:`nearest_neighbors`."""
        return self.nearest_neighbors(self.embedder.embed_query(query), k, similarity_threshold)

    def count_all(self) -> int:
        with self._index_lock:
            return self._count(None)

    def count_by_source(self, source_key: str) -> int:
        with self._index_lock:
            return self._count(source_key)

    def list_distinct_source_keys(self) -> set[str]:
        with self._index_lock:
            return self._distinct_source_keys()

    def delete(self, ids: list[str]) -> None:
        """Deletion by bare chunk id is not supported; use :meth:`upsert_by_source`."""
        raise UnsupportedOperationError(
            f"{type(self).__name__} does not support delete by id; "
            "replace a source's chunks with upsert_by_source instead"
        )

    @abstractmethod
    def health_check(self) -> bool:
        """Return ``True`` when the backend is reachable and ready."""
        ...

    # -- backend hooks --------------------------------------------------------

    @abstractmethod
    def _replace_source(self, source_key: str, chunks: list[Chunk]) -> int:
        """Atomically swap the chunks of *source_key*; return how many were removed.

        Called with the index lock held.  Must either complete or raise
        :class:`~trialrag.errors.StoreTransactionError`.
        """
        ...

    @abstractmethod
    def _candidates(self, query_vector: list[float], k: int) -> list[Chunk]:
        """Return at least the top-*k* chunks, each with ``score`` set."""
        ...

    @abstractmethod
    def _count(self, source_key: str | None) -> int:
        ...

    @abstractmethod
    def _distinct_source_keys(self) -> set[str]:
        ...

    # -- internals ------------------------------------------------------------

    @contextmanager
    def _source_lock(self, source_key: str) -> Iterator[None]:
        with self._key_locks_guard:
            entry = self._key_locks.get(source_key)
            if entry is None:
                entry = self._key_locks[source_key] = _KeyLock()
            entry.holders += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._key_locks_guard:
                entry.holders -= 1
                if not entry.holders:
                    del self._key_locks[source_key]
