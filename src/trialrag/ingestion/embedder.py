"""Embedding backends, resolved once from configuration.

The backend is named explicitly by ``settings.embedding_backend``:

* ``"huggingface"`` — local sentence-transformers model,
* ``"openai"`` — OpenAI (or any OpenAI-compatible) embeddings endpoint,
* ``"fake"`` — deterministic hash-based vectors for dry runs and tests.

Every backend is a LangChain :class:`~langchain_core.embeddings.Embeddings`
wrapped in :class:`ChunkEmbedder`, which batches requests, checks the
vector dimension and turns any backend failure into
:class:`~trialrag.errors.EmbeddingServiceError`.
"""

from __future__ import annotations

import logging
import time

from langchain_core.embeddings import DeterministicFakeEmbedding, Embeddings

from trialrag.config import Settings, settings
from trialrag.errors import EmbeddingServiceError

logger = logging.getLogger(__name__)

EMBEDDING_BACKENDS = ("huggingface", "openai", "fake")


def build_embeddings(config: Settings = settings) -> Embeddings:
    """Instantiate the embedding backend named in *config*."""
    backend = config.embedding_backend.lower()

    if backend == "huggingface":
        from langchain_huggingface import HuggingFaceEmbeddings

        return HuggingFaceEmbeddings(
            model_name=config.embedding_model,
            encode_kwargs={"normalize_embeddings": config.normalize_embeddings},
        )

    if backend == "openai":
        from langchain_openai import OpenAIEmbeddings

        kwargs: dict = {
            "model": config.embedding_model,
            "api_key": config.openai_api_key,
            "timeout": config.embedding_timeout,
            "max_retries": 0,
        }
        if config.embedding_base_url:
            logger.info("Using OpenAI-compatible embeddings endpoint: %s", config.embedding_base_url)
            kwargs["base_url"] = config.embedding_base_url
        return OpenAIEmbeddings(**kwargs)

    if backend == "fake":
        return DeterministicFakeEmbedding(size=config.embedding_dimension)

    raise ValueError(
        f"Unsupported embedding_backend={config.embedding_backend!r}. "
        f"Choose from: {', '.join(EMBEDDING_BACKENDS)}."
    )


class ChunkEmbedder:
    """Batching, validating front-end over an :class:`Embeddings` backend.

    Parameters
    ----------
    embeddings:
        Concrete LangChain embeddings object.
    batch_size:
        Number of texts sent per backend call.
    """

    def __init__(self, embeddings: Embeddings, *, batch_size: int = settings.embedding_batch_size) -> None:
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        self.embeddings = embeddings
        self.batch_size = batch_size

    @classmethod
    def from_settings(cls, config: Settings = settings) -> ChunkEmbedder:
        return cls(build_embeddings(config), batch_size=config.embedding_batch_size)

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        """Embed every text or raise; a partial result is never returned."""
        if not texts:
            return []

        vectors: list[list[float]] = []
        t0 = time.monotonic()
        for start in range(0, len(texts), self.batch_size):
            batch = texts[start : start + self.batch_size]
            try:
                result = self.embeddings.embed_documents(batch)
            except Exception as exc:
                raise EmbeddingServiceError(
                    f"Embedding backend failed on chunks {start}-{start + len(batch) - 1}: {exc}"
                ) from exc
            if len(result) != len(batch):
                raise EmbeddingServiceError(
                    f"Embedding backend returned {len(result)} vectors for {len(batch)} texts"
                )
            vectors.extend(list(map(float, v)) for v in result)
            logger.debug("  embedded %d / %d", len(vectors), len(texts))

        self._check_dimension(vectors)
        logger.info(
            "Embedded %d chunks (dim=%d) in %.1fs", len(vectors), len(vectors[0]), time.monotonic() - t0
        )
        return vectors

    def embed_query(self, text: str) -> list[float]:
        try:
            vector = self.embeddings.embed_query(text)
        except Exception as exc:
            raise EmbeddingServiceError(f"Embedding backend failed on query: {exc}") from exc
        return [float(x) for x in vector]

    @staticmethod
    def _check_dimension(vectors: list[list[float]]) -> None:
        dims = {len(v) for v in vectors}
        if len(dims) != 1 or 0 in dims:
            raise EmbeddingServiceError(f"Inconsistent embedding dimensions: {sorted(dims)}")
