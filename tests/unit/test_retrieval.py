"""Unit tests for the retrieval layer — models and SemanticRetriever."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from trialrag.ingestion.embedder import ChunkEmbedder
from trialrag.retrieval import InMemoryEmbeddingStore, SemanticRetriever
from trialrag.retrieval.models import Chunk, Citation, RetrievalResult, UpsertResult

BASE_EDITING = "Base editing corrects the sickle cell mutation in hematopoietic stem cells."
DELIVERY = "Lipid nanoparticles deliver the editor to the liver after infusion."
UNRELATED = "The consortium meets every spring to review progress reports."


@pytest.fixture()
def retriever(table_embeddings) -> SemanticRetriever:
    table = {
        BASE_EDITING: (1.0, 0.0),
        DELIVERY: (0.8, 0.6),
        UNRELATED: (0.0, 1.0),
        "sickle cell editing": (1.0, 0.0),
    }
    store = InMemoryEmbeddingStore(ChunkEmbedder(table_embeddings(table)), min_text_chars=10)
    store.upsert_by_source(
        "CLINICAL TRIAL: NCT04208529",
        [BASE_EDITING, DELIVERY],
        {"source": "https://scge.mcw.edu/platform/data/report/clinicalTrials/NCT04208529"},
    )
    store.upsert_by_source("news:https://example.org/news", [UNRELATED], {"source": "https://example.org/news"})
    return SemanticRetriever(store, default_k=5)


# ── models ──────────────────────────────────────────────────────────────


class TestCitation:
    def test_short_ref(self) -> None:
        assert Citation(source_key="CLINICAL TRIAL: NCT1").short_ref() == "[CLINICAL TRIAL: NCT1]"

    def test_default_source_is_unknown(self) -> None:
        assert Citation().source_key == "unknown"

    def test_citation_id_is_populated(self) -> None:
        assert len(Citation().citation_id) == 12

    def test_retrieved_at_is_set(self) -> None:
        assert Citation().retrieved_at is not None


class TestRetrievalResult:
    def test_str_includes_reference(self) -> None:
        result = RetrievalResult(content="Some passage", citation=Citation(source_key="k"))
        assert str(result).startswith("[k] Some passage")


class TestRecords:
    def test_chunk_is_frozen(self) -> None:
        chunk = Chunk(text="t", source_key="k", embedding=(1.0,))
        with pytest.raises(ValidationError):
            chunk.text = "changed"  # type: ignore[misc]

    def test_scored_returns_copy(self) -> None:
        chunk = Chunk(text="t", source_key="k", embedding=(1.0,))
        scored = chunk.scored(0.5)
        assert scored.score == 0.5
        assert chunk.score is None
        assert scored.id == chunk.id

    def test_upsert_result_overwritten(self) -> None:
        assert UpsertResult(source_key="k", inserted=2, deleted_prior=0).overwritten is False
        assert UpsertResult(source_key="k", inserted=2, deleted_prior=3).overwritten is True


# ── SemanticRetriever ───────────────────────────────────────────────────


class TestSemanticRetriever:
    def test_search_ranks_and_cites(self, retriever: SemanticRetriever) -> None:
        results = retriever.search("sickle cell editing")
        assert [r.content for r in results] == [BASE_EDITING, DELIVERY, UNRELATED]
        top = results[0].citation
        assert top.source_key == "CLINICAL TRIAL: NCT04208529"
        assert top.url.endswith("/clinicalTrials/NCT04208529")
        assert top.score == pytest.approx(1.0)
        assert top.chunk_id

    def test_search_respects_k(self, retriever: SemanticRetriever) -> None:
        assert len(retriever.search("sickle cell editing", k=1)) == 1

    def test_search_threshold(self, retriever: SemanticRetriever) -> None:
        results = retriever.search("sickle cell editing", score_threshold=0.7)
        assert [r.content for r in results] == [BASE_EDITING, DELIVERY]

    def test_default_threshold(self, retriever: SemanticRetriever) -> None:
        retriever.score_threshold = 0.9
        assert [r.content for r in retriever.search("sickle cell editing")] == [BASE_EDITING]

    def test_search_by_embedding(self, retriever: SemanticRetriever) -> None:
        results = retriever.search_by_embedding([0.0, 1.0], k=1)
        assert results[0].content == UNRELATED
        assert results[0].citation.url == "https://example.org/news"
