"""Token-aware text chunking."""

from __future__ import annotations

import logging
from collections.abc import Callable
from functools import lru_cache

from langchain_text_splitters import RecursiveCharacterTextSplitter
from pydantic import BaseModel, ConfigDict

from trialrag.config import settings

logger = logging.getLogger(__name__)

DEFAULT_SEPARATORS = ("\n\n", "\n", ". ", " ", "")


@lru_cache(maxsize=4)
def token_counter(encoding_name: str = "cl100k_base") -> Callable[[str], int]:
    """Return a function counting tiktoken tokens for *encoding_name*."""
    import tiktoken

    encoding = tiktoken.get_encoding(encoding_name)

    def _count(text: str) -> int:
        return len(encoding.encode(text, disallowed_special=()))

    return _count


class ChunkBatch(BaseModel):
    """Ordered chunk texts for one document plus what was cut off."""

    model_config = ConfigDict(frozen=True)

    chunks: tuple[str, ...]
    truncated: int = 0
    discarded: int = 0

    def __len__(self) -> int:
        return len(self.chunks)


class TextChunker:
    """Split normalised text into bounded, slightly overlapping chunks.

    Parameters
    ----------
    chunk_size:
        Target size of each chunk, in tokens.
    chunk_overlap:
        Tokens shared between consecutive chunks.
    min_chunk_chars:
        A chunk shorter than this is merged into its neighbour, unless it is
        the only content.
    min_embed_chars:
        Chunks shorter than this after trimming are discarded.
    max_chunks:
        Hard cap on chunks per document.  Excess tail content is dropped and
        reported in :attr:`ChunkBatch.truncated`.
    keep_separator:
        Keep paragraph / sentence separators inside chunks.
    length_function:
        Token counter.  Defaults to tiktoken with *encoding_name*.
    """

    def __init__(
        self,
        *,
        chunk_size: int = settings.chunk_size_tokens,
        chunk_overlap: int = settings.chunk_overlap_tokens,
        min_chunk_chars: int = settings.min_chunk_chars,
        min_embed_chars: int = settings.min_embed_chars,
        max_chunks: int = settings.max_chunks,
        keep_separator: bool = settings.keep_separator,
        separators: tuple[str, ...] = DEFAULT_SEPARATORS,
        length_function: Callable[[str], int] | None = None,
        encoding_name: str = settings.tokenizer_encoding,
    ) -> None:
        if chunk_overlap >= chunk_size:
            raise ValueError(f"chunk_overlap ({chunk_overlap}) must be < chunk_size ({chunk_size})")
        if max_chunks < 1:
            raise ValueError(f"max_chunks must be >= 1, got {max_chunks}")

        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.min_chunk_chars = min_chunk_chars
        self.min_embed_chars = min_embed_chars
        self.max_chunks = max_chunks
        self.keep_separator = keep_separator
        self._splitter = RecursiveCharacterTextSplitter(
            chunk_size=chunk_size,
            chunk_overlap=chunk_overlap,
            length_function=length_function or token_counter(encoding_name),
            separators=list(separators),
            keep_separator=keep_separator,
            strip_whitespace=False,
        )

    def chunk(self, text: str) -> ChunkBatch:
        """Split *text* into a :class:`ChunkBatch`."""
        if not text or not text.strip():
            return ChunkBatch(chunks=())

        pieces = self._merge_small(text, self._splitter.split_text(text))

        kept: list[str] = []
        discarded = 0
        for piece in pieces:
            piece = piece.strip()
            if len(piece) < self.min_embed_chars:
                discarded += 1
                continue
            kept.append(piece)

        truncated = 0
        if len(kept) > self.max_chunks:
            truncated = len(kept) - self.max_chunks
            logger.warning(
                "Document produced %d chunks; dropping %d tail chunks over the limit of %d",
                len(kept),
                truncated,
                self.max_chunks,
            )
            kept = kept[: self.max_chunks]

        logger.debug("Split %d chars into %d chunks", len(text), len(kept))
        return ChunkBatch(chunks=tuple(kept), truncated=truncated, discarded=discarded)

    def _merge_small(self, text: str, pieces: list[str]) -> list[str]:
        """Fold undersized pieces into their neighbour.

        Pieces are exact substrings of *text* (whitespace is not stripped by
        the splitter), so a merge takes the covering span of *text*.  Text the
        splitter repeated as overlap therefore appears once in the result.
        """
        spans: list[tuple[int, int]] = []
        cursor = 0
        for piece in pieces:
            start = text.index(piece, cursor)
            cursor = start + 1
            if not piece.strip():
                continue
            end = start + len(piece)
            if spans and (
                len(piece.strip()) < self.min_chunk_chars
                or len(text[slice(*spans[-1])].strip()) < self.min_chunk_chars
            ):
                spans[-1] = (spans[-1][0], max(spans[-1][1], end))
            else:
                spans.append((start, end))
        return [text[start:end] for start, end in spans]
