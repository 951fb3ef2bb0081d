"""Unit tests for the Chroma backend with a mocked client and collection."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from trialrag.errors import EmbeddingServiceError, StoreTransactionError
from trialrag.ingestion.embedder import ChunkEmbedder
from trialrag.retrieval.chroma_store import ChromaEmbeddingStore

KEY = "CLINICAL TRIAL: NCT04208529"

PRIOR = {
    "ids": ["old-1", "old-2"],
    "embeddings": [[1.0, 0.0], [0.0, 1.0]],
    "documents": ["old chunk one", "old chunk two"],
    "metadatas": [
        {"source_key": KEY, "created_at": "2024-01-01T00:00:00+00:00"},
        {"source_key": KEY, "created_at": "2024-01-01T00:00:00+00:00"},
    ],
}


@pytest.fixture()
def collection() -> MagicMock:
    coll = MagicMock()
    coll.get.return_value = {"ids": [], "embeddings": [], "documents": [], "metadatas": []}
    return coll


@pytest.fixture()
def client(collection: MagicMock) -> MagicMock:
    cli = MagicMock()
    cli.get_or_create_collection.return_value = collection
    return cli


@pytest.fixture()
def store(client: MagicMock, table_embeddings) -> ChromaEmbeddingStore:
    return ChromaEmbeddingStore(
        ChunkEmbedder(table_embeddings()),
        "test-collection",
        client=client,
        min_text_chars=1,
    )


class TestConstruction:
    def test_collection_uses_cosine_space(self, store: ChromaEmbeddingStore, client: MagicMock) -> None:
        client.get_or_create_collection.assert_called_once_with(
            name="test-collection",
            metadata={"hnsw:space": "cosine"},
        )

    def test_health_check(self, store: ChromaEmbeddingStore, client: MagicMock) -> None:
        assert store.health_check() is True
        client.heartbeat.side_effect = ConnectionError("refused")
        assert store.health_check() is False


class TestUpsert:
    def test_new_source_is_added(self, store: ChromaEmbeddingStore, collection: MagicMock) -> None:
        result = store.upsert_by_source(KEY, ["first chunk", "second chunk"], {"source": "https://x"})

        assert result.inserted == 2
        assert result.deleted_prior == 0
        collection.delete.assert_not_called()
        kwargs = collection.add.call_args.kwargs
        assert kwargs["documents"] == ["first chunk", "second chunk"]
        assert kwargs["embeddings"] == [[1.0, 0.0], [1.0, 0.0]]
        meta = kwargs["metadatas"][0]
        assert meta["source_key"] == KEY
        assert meta["source"] == "https://x"
        assert "created_at" in meta

    def test_prior_chunks_are_replaced(self, store: ChromaEmbeddingStore, collection: MagicMock) -> None:
        collection.get.return_value = PRIOR
        result = store.upsert_by_source(KEY, ["replacement chunk"])

        assert result.deleted_prior == 2
        assert result.overwritten is True
        collection.get.assert_called_once_with(
            where={"source_key": KEY},
            include=["embeddings", "documents", "metadatas"],
        )
        collection.delete.assert_called_once_with(ids=["old-1", "old-2"])
        collection.add.assert_called_once()

    def test_adds_in_batches(self, client: MagicMock, collection: MagicMock, table_embeddings) -> None:
        store = ChromaEmbeddingStore(
            ChunkEmbedder(table_embeddings()), client=client, batch_size=2, min_text_chars=1
        )
        store.upsert_by_source(KEY, ["a chunk", "b chunk", "c chunk"])
        assert collection.add.call_count == 2

    def test_failed_add_restores_prior(self, store: ChromaEmbeddingStore, collection: MagicMock) -> None:
        collection.get.return_value = PRIOR
        collection.add.side_effect = RuntimeError("disk full")

        with pytest.raises(StoreTransactionError) as info:
            store.upsert_by_source(KEY, ["replacement chunk"])

        assert info.value.restored is True
        assert info.value.source_key == KEY
        assert "prior chunks restored" in str(info.value)
        collection.upsert.assert_called_once()
        restored = collection.upsert.call_args.kwargs
        assert restored["ids"] == ["old-1", "old-2"]
        assert restored["documents"] == ["old chunk one", "old chunk two"]

    def test_failed_restore_is_reported(self, store: ChromaEmbeddingStore, collection: MagicMock) -> None:
        collection.get.return_value = PRIOR
        collection.add.side_effect = RuntimeError("disk full")
        collection.upsert.side_effect = RuntimeError("still full")

        with pytest.raises(StoreTransactionError) as info:
            store.upsert_by_source(KEY, ["replacement chunk"])

        assert info.value.restored is False
        assert "NOT restored" in str(info.value)

    def test_embedding_failure_never_touches_collection(
        self, client: MagicMock, collection: MagicMock, table_embeddings
    ) -> None:
        store = ChromaEmbeddingStore(
            ChunkEmbedder(table_embeddings(fail_on="chunk")), client=client, min_text_chars=1
        )
        with pytest.raises(EmbeddingServiceError):
            store.upsert_by_source(KEY, ["a chunk"])
        collection.get.assert_not_called()
        collection.delete.assert_not_called()


class TestQueries:
    def test_nearest_neighbors_converts_distance(self, store: ChromaEmbeddingStore, collection: MagicMock) -> None:
        collection.count.return_value = 3
        collection.query.return_value = {
            "ids": [["x", "y"]],
            "documents": [["close chunk", "far chunk"]],
            "metadatas": [[
                {"source_key": KEY, "created_at": "2024-01-01T00:00:00+00:00", "source": "https://x"},
                {"source_key": "other", "created_at": "2024-01-02T00:00:00+00:00"},
            ]],
            "distances": [[0.1, 0.4]],
            "embeddings": [[[1.0, 0.0], [0.6, 0.8]]],
        }

        hits = store.nearest_neighbors([1.0, 0.0], k=5, similarity_threshold=0.8)

        assert [h.id for h in hits] == ["x"]
        assert hits[0].score == pytest.approx(0.9)
        assert hits[0].source_key == KEY
        assert hits[0].meta == {"source": "https://x"}
        assert collection.query.call_args.kwargs["n_results"] == 3

    def test_empty_collection_skips_query(self, store: ChromaEmbeddingStore, collection: MagicMock) -> None:
        collection.count.return_value = 0
        assert store.nearest_neighbors([1.0, 0.0]) == []
        collection.query.assert_not_called()

    def test_count_by_source(self, store: ChromaEmbeddingStore, collection: MagicMock) -> None:
        collection.get.return_value = {"ids": ["a", "b"]}
        assert store.count_by_source(KEY) == 2
        collection.get.assert_called_with(where={"source_key": KEY}, include=[])

    def test_count_all(self, store: ChromaEmbeddingStore, collection: MagicMock) -> None:
        collection.count.return_value = 42
        assert store.count_all() == 42

    def test_distinct_keys_paginate(self, client: MagicMock, collection: MagicMock, table_embeddings) -> None:
        store = ChromaEmbeddingStore(ChunkEmbedder(table_embeddings()), client=client, batch_size=2)
        collection.get.side_effect = [
            {"metadatas": [{"source_key": "A"}, {"source_key": "B"}]},
            {"metadatas": [{"source_key": "A"}]},
        ]
        assert store.list_distinct_source_keys() == {"A", "B"}
        assert collection.get.call_count == 2
        assert collection.get.call_args.kwargs["offset"] == 2
