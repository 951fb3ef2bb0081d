"""Chroma implementation of the embedding-store abstraction.

Chroma has no multi-statement transactions, so a source replacement is
done as snapshot → delete → add.  If the add fails, the partially added
chunks are removed and the snapshot is written back before
:class:`~trialrag.errors.StoreTransactionError` is raised; the error says
whether the restore succeeded.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

import chromadb

from trialrag.config import settings
from trialrag.errors import StoreTransactionError
from trialrag.ingestion.embedder import ChunkEmbedder
from trialrag.retrieval.base import EmbeddingStore
from trialrag.retrieval.models import Chunk

logger = logging.getLogger(__name__)

_RESERVED_KEYS = ("source_key", "created_at")


def _as_list(value: Any) -> list:
    """Chroma may hand back numpy arrays; never truth-test them."""
    return [] if value is None else list(value)


def _first_row(results: dict[str, Any], key: str) -> list:
    rows = _as_list(results.get(key))
    return _as_list(rows[0]) if rows else []


def _chunk_metadata(chunk: Chunk) -> dict[str, Any]:
    meta: dict[str, Any] = {k: v for k, v in chunk.metadata if isinstance(v, (str, int, float, bool))}
    meta["source_key"] = chunk.source_key
    meta["created_at"] = chunk.created_at.isoformat()
    return meta


def _chunk_from_record(
    chunk_id: str,
    document: str | None,
    meta: dict[str, Any] | None,
    embedding: Any,
    score: float | None = None,
) -> Chunk:
    meta = dict(meta or {})
    created = meta.get("created_at")
    return Chunk(
        id=chunk_id,
        text=document or "",
        source_key=str(meta.get("source_key", "unknown")),
        embedding=tuple(float(x) for x in _as_list(embedding)),
        created_at=datetime.fromisoformat(created) if created else datetime.fromtimestamp(0, tz=timezone.utc),
        metadata=tuple(sorted((k, str(v)) for k, v in meta.items() if k not in _RESERVED_KEYS)),
        score=score,
    )


class ChromaEmbeddingStore(EmbeddingStore):
    """Chroma-backed embedding store using cosine distance.

    Parameters
    ----------
    embedder:
        Embeds chunk texts and text queries.
    collection_name:
        Name of the Chroma collection.
    host / port:
        Chroma server location (HTTP client).
    persist_dir:
        When given, an embedded persistent client is used instead of HTTP.
    client:
        Pre-built Chroma client; overrides *host*, *port* and *persist_dir*.
    batch_size:
        Max records per ``add`` / ``get`` call.
    """

    def __init__(
        self,
        embedder: ChunkEmbedder,
        collection_name: str = settings.chroma_collection,
        *,
        host: str = settings.chroma_host,
        port: int = settings.chroma_port,
        persist_dir: str = settings.chroma_persist_dir,
        client: Any = None,
        batch_size: int = 5000,
        min_text_chars: int = settings.min_embed_chars,
    ) -> None:
        super().__init__(embedder, collection_name, min_text_chars=min_text_chars)
        if client is None:
            if persist_dir:
                client = chromadb.PersistentClient(path=persist_dir)
            else:
                client = chromadb.HttpClient(host=host, port=port)
        self._client = client
        self._collection = client.get_or_create_collection(
            name=collection_name,
            metadata={"hnsw:space": "cosine"},
        )
        self.batch_size = batch_size

    # -- EmbeddingStore overrides ---------------------------------------------

    def health_check(self) -> bool:
        try:
            self._client.heartbeat()
            return True
        except Exception:
            logger.warning("Chroma health-check failed", exc_info=True)
            return False

    def _replace_source(self, source_key: str, chunks: list[Chunk]) -> int:
        try:
            prior = self._collection.get(
                where={"source_key": source_key},
                include=["embeddings", "documents", "metadatas"],
            )
        except Exception as exc:
            raise StoreTransactionError(source_key, f"snapshot failed: {exc}", restored=True) from exc

        prior_ids = _as_list(prior.get("ids"))
        new_ids = [c.id for c in chunks]
        try:
            if prior_ids:
                self._collection.delete(ids=prior_ids)
            for start in range(0, len(chunks), self.batch_size):
                batch = chunks[start : start + self.batch_size]
                self._collection.add(
                    ids=[c.id for c in batch],
                    embeddings=[list(c.embedding) for c in batch],
                    documents=[c.text for c in batch],
                    metadatas=[_chunk_metadata(c) for c in batch],
                )
        except Exception as exc:
            logger.error("Upsert for %r failed mid-way, restoring %d prior chunks", source_key, len(prior_ids))
            restored = self._restore(new_ids, prior)
            raise StoreTransactionError(source_key, str(exc), restored=restored) from exc
        return len(prior_ids)

    def _candidates(self, query_vector: list[float], k: int) -> list[Chunk]:
        n = min(k, self._collection.count())
        if n == 0:
            return []
        results = self._collection.query(
            query_embeddings=[query_vector],
            n_results=n,
            include=["documents", "metadatas", "distances", "embeddings"],
        )
        ids = _first_row(results, "ids")
        docs = _first_row(results, "documents")
        metas = _first_row(results, "metadatas")
        dists = _first_row(results, "distances")
        embs = _first_row(results, "embeddings")

        hits: list[Chunk] = []
        for i, chunk_id in enumerate(ids):
            # cosine space: distance = 1 - similarity
            hits.append(
                _chunk_from_record(
                    chunk_id,
                    docs[i] if i < len(docs) else None,
                    metas[i] if i < len(metas) else None,
                    embs[i] if i < len(embs) else None,
                    score=1.0 - float(dists[i]),
                )
            )
        return hits

    def _count(self, source_key: str | None) -> int:
        if source_key is None:
            return self._collection.count()
        return len(_as_list(self._collection.get(where={"source_key": source_key}, include=[]).get("ids")))

    def _distinct_source_keys(self) -> set[str]:
        keys: set[str] = set()
        offset = 0
        while True:
            page = self._collection.get(include=["metadatas"], limit=self.batch_size, offset=offset)
            metas = _as_list(page.get("metadatas"))
            for meta in metas:
                if meta and meta.get("source_key"):
                    keys.add(str(meta["source_key"]))
            if len(metas) < self.batch_size:
                return keys
            offset += self.batch_size

    # -- internals ------------------------------------------------------------

    def _restore(self, new_ids: list[str], prior: dict[str, Any]) -> bool:
        try:
            if new_ids:
                self._collection.delete(ids=new_ids)
            prior_ids = _as_list(prior.get("ids"))
            if prior_ids:
                self._collection.upsert(
                    ids=prior_ids,
                    embeddings=[[float(x) for x in e] for e in _as_list(prior.get("embeddings"))],
                    documents=_as_list(prior.get("documents")),
                    metadatas=_as_list(prior.get("metadatas")),
                )
            return True
        except Exception:
            logger.exception("Restoring prior chunks failed; source is left incomplete")
            return False
