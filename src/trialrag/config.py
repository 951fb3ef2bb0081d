"""Shared configuration loaded from environment / .env file."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application-wide settings, populated from env vars or .env file."""

    # Embedding
    embedding_backend: str = Field(
        default="huggingface",
        description="Embedding backend: 'huggingface', 'openai' or 'fake' (deterministic, offline)",
    )
    embedding_model: str = "sentence-transformers/all-MiniLM-L6-v2"
    embedding_dimension: int = Field(default=384, description="Vector size for the 'fake' backend")
    embedding_batch_size: int = 64
    normalize_embeddings: bool = True
    embedding_timeout: float = 60.0
    openai_api_key: str = Field(default="", description="OpenAI API key (openai backend only)")
    embedding_base_url: str = Field(
        default="",
        description=(
            "Base URL for an OpenAI-compatible embeddings endpoint. "
            "Leave empty to use OpenAI cloud."
        ),
    )

    # Vector store
    vector_backend: str = Field(default="chroma", description="'chroma' or 'memory'")
    chroma_host: str = "localhost"
    chroma_port: int = 8000
    chroma_persist_dir: str = Field(
        default="",
        description="When set, use an embedded persistent Chroma client instead of the HTTP client",
    )
    chroma_collection: str = "document_embeddings"

    # Sources
    source_category: str = "clinical_trial"
    clinical_trial_base_url: str = "https://scge.mcw.edu/platform/data/report"

    # Fetch
    fetch_timeout: float = 30.0
    fetch_max_retries: int = 1
    user_agent: str = "trialrag/0.1 (+https://scge.mcw.edu)"

    # Normalizer / quality gate
    min_document_chars: int = 50
    quality_min_words: int = 10
    quality_max_format_ratio: float = 0.6
    drop_low_quality_chunks: bool = False

    # Chunker
    chunk_size_tokens: int = 800
    chunk_overlap_tokens: int = 50
    min_chunk_chars: int = 200
    min_embed_chars: int = 50
    max_chunks: int = 10_000
    keep_separator: bool = True
    tokenizer_encoding: str = "cl100k_base"

    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


# Singleton, import `settings` wherever needed.
settings = Settings()
