"""Wiring — build the pipeline objects from :class:`~trialrag.config.Settings`.

Backends are chosen here, once, from explicit configuration values.
"""

from __future__ import annotations

import threading

from trialrag.config import Settings, settings
from trialrag.ingestion.chunker import TextChunker
from trialrag.ingestion.embedder import ChunkEmbedder
from trialrag.ingestion.extractor import ContentExtractor, WebPageReader
from trialrag.ingestion.fetcher import PageFetcher
from trialrag.ingestion.normalizer import TextNormalizer
from trialrag.ingestion.orchestrator import IngestionOrchestrator
from trialrag.retrieval.base import EmbeddingStore
from trialrag.retrieval.memory_store import InMemoryEmbeddingStore
from trialrag.retrieval.retriever import SemanticRetriever

VECTOR_BACKENDS = ("chroma", "memory")


def build_store(config: Settings = settings, embedder: ChunkEmbedder | None = None) -> EmbeddingStore:
    """Instantiate the vector-store backend named in *config*."""
    embedder = embedder or ChunkEmbedder.from_settings(config)
    backend = config.vector_backend.lower()

    if backend == "chroma":
        from trialrag.retrieval.chroma_store import ChromaEmbeddingStore

        return ChromaEmbeddingStore(
            embedder,
            config.chroma_collection,
            host=config.chroma_host,
            port=config.chroma_port,
            persist_dir=config.chroma_persist_dir,
            min_text_chars=config.min_embed_chars,
        )
    if backend == "memory":
        return InMemoryEmbeddingStore(embedder, config.chroma_collection, min_text_chars=config.min_embed_chars)

    raise ValueError(
        f"Unsupported vector_backend={config.vector_backend!r}. Choose from: {', '.join(VECTOR_BACKENDS)}."
    )


def build_chunker(config: Settings = settings) -> TextChunker:
    return TextChunker(
        chunk_size=config.chunk_size_tokens,
        chunk_overlap=config.chunk_overlap_tokens,
        min_chunk_chars=config.min_chunk_chars,
        min_embed_chars=config.min_embed_chars,
        max_chunks=config.max_chunks,
        keep_separator=config.keep_separator,
        encoding_name=config.tokenizer_encoding,
    )


def build_orchestrator(
    config: Settings = settings,
    *,
    store: EmbeddingStore | None = None,
    stop_event: threading.Event | None = None,
) -> IngestionOrchestrator:
    stop_event = stop_event or threading.Event()
    fetcher = PageFetcher(
        timeout=config.fetch_timeout,
        max_retries=config.fetch_max_retries,
        stop_event=stop_event,
    )
    return IngestionOrchestrator(
        WebPageReader(fetcher, ContentExtractor()),
        TextNormalizer(min_chars=config.min_document_chars),
        build_chunker(config),
        store or build_store(config),
        category=config.source_category,
        base_url=config.clinical_trial_base_url,
        drop_low_quality_chunks=config.drop_low_quality_chunks,
        stop_event=stop_event,
    )


def build_retriever(
    config: Settings = settings,
    *,
    store: EmbeddingStore | None = None,
    default_k: int = 5,
    score_threshold: float | None = None,
) -> SemanticRetriever:
    return SemanticRetriever(store or build_store(config), default_k=default_k, score_threshold=score_threshold)
