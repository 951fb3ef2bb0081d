"""Unit tests for the chunker module."""

from __future__ import annotations

import pytest

from trialrag.ingestion.chunker import ChunkBatch, TextChunker


def _paragraphs(n: int, words: int = 15) -> str:
    return "\n\n".join(f"Paragraph {i} " + "lorem " * words for i in range(n))


def _chunker(word_counter, **overrides) -> TextChunker:
    params = dict(
        chunk_size=800,
        chunk_overlap=50,
        min_chunk_chars=200,
        min_embed_chars=50,
        max_chunks=10_000,
        length_function=word_counter,
    )
    params.update(overrides)
    return TextChunker(**params)


class TestTextChunker:
    def test_splits_long_text(self, word_counter) -> None:
        """A text longer than chunk_size should be split."""
        chunker = _chunker(word_counter, chunk_size=100, chunk_overlap=10)
        batch = chunker.chunk("word " * 500)
        assert len(batch) > 1
        assert all(len(c) >= 50 for c in batch.chunks)

    def test_short_text_is_single_chunk(self, chunker: TextChunker) -> None:
        text = "A short note about the trial that is still long enough to embed."
        batch = chunker.chunk(text)
        assert batch.chunks == (text,)

    def test_only_content_may_be_below_min_chunk_chars(self, chunker: TextChunker) -> None:
        text = "Sponsor: Beam Therapeutics, Phase 1/2, Recruiting adults."
        assert len(text) < 200
        assert len(chunker.chunk(text)) == 1

    def test_small_pieces_are_merged(self, word_counter) -> None:
        chunker = _chunker(word_counter, chunk_size=20, chunk_overlap=0, min_chunk_chars=80, min_embed_chars=10)
        text = "\n\n".join(
            ["Tiny.", "Paragraph one " + "ipsum " * 15, "Small tail.", "Paragraph two " + "dolor " * 15, "End."]
        )
        batch = chunker.chunk(text)
        assert len(batch) > 1
        assert all(len(c) >= 80 for c in batch.chunks)

    def test_merge_does_not_repeat_overlap(self, word_counter) -> None:
        chunker = _chunker(word_counter, chunk_size=20, chunk_overlap=5, min_chunk_chars=10_000, min_embed_chars=1)
        text = " ".join(f"w{i}" for i in range(60))
        (chunk,) = chunker.chunk(text).chunks
        assert chunk == text
        assert chunk.split().count("w18") == 1

    def test_overlap_kept_between_unmerged_chunks(self, word_counter) -> None:
        chunker = _chunker(word_counter, chunk_size=20, chunk_overlap=5, min_chunk_chars=0, min_embed_chars=1)
        text = " ".join(f"w{i}" for i in range(60))
        batch = chunker.chunk(text)
        assert len(batch) > 1
        assert batch.chunks[0].split()[-1] in batch.chunks[1].split()

    def test_discards_chunks_below_min_embed_chars(self, chunker: TextChunker) -> None:
        batch = chunker.chunk("tiny")
        assert batch.chunks == ()
        assert batch.discarded == 1

    def test_empty_text(self, chunker: TextChunker) -> None:
        assert chunker.chunk("   \n ") == ChunkBatch(chunks=())

    def test_caps_chunk_count_and_drops_tail(self, word_counter) -> None:
        chunker = _chunker(word_counter, chunk_size=20, chunk_overlap=0, min_chunk_chars=0, min_embed_chars=1, max_chunks=3)
        batch = chunker.chunk(_paragraphs(10))
        assert len(batch) == 3
        assert batch.truncated == 7
        for i, chunk in enumerate(batch.chunks):
            assert chunk.startswith(f"Paragraph {i} ")

    def test_order_preserved(self, word_counter) -> None:
        chunker = _chunker(word_counter, chunk_size=20, chunk_overlap=0, min_chunk_chars=0, min_embed_chars=1)
        batch = chunker.chunk(_paragraphs(5))
        assert [c.split()[1] for c in batch.chunks] == ["0", "1", "2", "3", "4"]
        assert batch.truncated == 0

    def test_separators_kept_inside_chunk(self, chunker: TextChunker) -> None:
        text = "Line one of the eligibility section.\nLine two of the eligibility section."
        (chunk,) = chunker.chunk(text).chunks
        assert "\n" in chunk

    def test_overlap_must_be_smaller_than_size(self, word_counter) -> None:
        with pytest.raises(ValueError, match="chunk_overlap"):
            _chunker(word_counter, chunk_size=50, chunk_overlap=50)

    def test_max_chunks_must_be_positive(self, word_counter) -> None:
        with pytest.raises(ValueError, match="max_chunks"):
            _chunker(word_counter, max_chunks=0)
