"""Shared pytest configuration and fixtures."""

from __future__ import annotations

from collections.abc import Mapping, Sequence

import pytest
from langchain_core.embeddings import DeterministicFakeEmbedding, Embeddings

from trialrag.ingestion.chunker import TextChunker
from trialrag.ingestion.embedder import ChunkEmbedder
from trialrag.retrieval.memory_store import InMemoryEmbeddingStore


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: marks tests requiring external services")


def word_count(text: str) -> int:
    """Whitespace word counter standing in for a real tokenizer."""
    return len(text.split())


class TableEmbeddings(Embeddings):
    """Embeddings looked up from a table, with switchable failures."""

    def __init__(
        self,
        table: Mapping[str, Sequence[float]] | None = None,
        *,
        default: Sequence[float] = (1.0, 0.0),
        fail_on: str | None = None,
        fail_queries: bool = False,
    ) -> None:
        self.table = dict(table or {})
        self.default = tuple(default)
        self.fail_on = fail_on
        self.fail_queries = fail_queries
        self.document_calls = 0

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        self.document_calls += 1
        if self.fail_on is not None and any(self.fail_on in t for t in texts):
            raise RuntimeError("embedding service timed out")
        return [list(self.table.get(t, self.default)) for t in texts]

    def embed_query(self, text: str) -> list[float]:
        if self.fail_queries:
            raise RuntimeError("embedding service unreachable")
        return list(self.table.get(text, self.default))


REPORT_HTML = """
<html>
<head><title>SCGE Clinical Trial Report</title></head>
<body>
<nav>Home | Trials | Contact</nav>
<div class="sidenav">Jump to section</div>
<h2 class="brief-title">Base editing in sickle cell disease</h2>
<div class="dynamic-heading"><h3 class="ctSubHeading">Study Overview</h3></div>
<table class="ctReportTable">
<tr><td>NCTID</td><td>NCT04208529 (View at ClinicalTrials.gov)</td></tr>
<tr><td>Sponsor</td><td>Beam Therapeutics</td></tr>
<tr><td>Phase</td><td>Phase 1/2</td></tr>
</table>
<script>trackPageView();</script>
<footer>Copyright SCGE</footer>
</body>
</html>
"""


@pytest.fixture()
def report_html() -> str:
    return REPORT_HTML


@pytest.fixture()
def fake_embedder() -> ChunkEmbedder:
    return ChunkEmbedder(DeterministicFakeEmbedding(size=16), batch_size=8)


@pytest.fixture()
def memory_store(fake_embedder: ChunkEmbedder) -> InMemoryEmbeddingStore:
    return InMemoryEmbeddingStore(fake_embedder, "test-collection")


@pytest.fixture()
def chunker() -> TextChunker:
    return TextChunker(
        chunk_size=800,
        chunk_overlap=50,
        min_chunk_chars=200,
        min_embed_chars=50,
        max_chunks=10_000,
        length_function=word_count,
    )


@pytest.fixture()
def table_embeddings() -> type[TableEmbeddings]:
    """The :class:`TableEmbeddings` class, for tests that build their own table."""
    return TableEmbeddings


@pytest.fixture()
def word_counter():
    return word_count
