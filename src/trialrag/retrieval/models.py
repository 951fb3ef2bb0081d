"""Domain models for stored chunks, upsert results and citations."""

from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Chunk(BaseModel):
    """One stored span of normalised text with its embedding.

    Attributes
    ----------
    id:
        Store-assigned identifier.
    text:
        The chunk content.
    source_key:
        Key of the logical document the chunk belongs to.
    embedding:
        Dense vector; every chunk in a store shares the same dimension.
    created_at:
        UTC timestamp of insertion.
    metadata:
        Flat document metadata (url, title, shape, …).
    score:
        Cosine similarity to the query, set only on search results.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid4().hex)
    text: str
    source_key: str
    embedding: tuple[float, ...]
    created_at: datetime = Field(default_factory=_utcnow)
    metadata: tuple[tuple[str, str], ...] = ()
    score: float | None = None

    @property
    def meta(self) -> dict[str, str]:
        return dict(self.metadata)

    def scored(self, score: float) -> Chunk:
        return self.model_copy(update={"score": score})


class UpsertResult(BaseModel):
    """Outcome of :meth:`EmbeddingStore.upsert_by_source`."""

    model_config = ConfigDict(frozen=True)

    source_key: str
    inserted: int
    deleted_prior: int

    @property
    def overwritten(self) -> bool:
        return self.deleted_prior > 0


class Citation(BaseModel):
    """Provenance record linking a retrieved chunk back to its source.

    Attributes
    ----------
    chunk_id:
        Store identifier of the chunk.
    source_key:
        Key the chunk is stored under, e.g. ``"CLINICAL TRIAL: NCT01234567"``.
    url:
        Original fetch URL, when known.
    score:
        Cosine similarity to the query.
    created_at:
        When the chunk was stored.
    """

    citation_id: str = Field(default_factory=lambda: uuid4().hex[:12])
    chunk_id: str | None = None
    source_key: str = "unknown"
    url: str | None = None
    score: float | None = None
    created_at: datetime | None = None
    retrieved_at: datetime = Field(default_factory=_utcnow)

    def short_ref(self) -> str:
        """Return a compact ``[source_key]`` reference string."""
        return f"[{self.source_key}]"


class RetrievalResult(BaseModel):
    """A single retrieved passage together with its citation."""

    content: str
    citation: Citation

    def __str__(self) -> str:  # noqa: D105
        return f"{self.citation.short_ref()} {self.content[:120]}…"
