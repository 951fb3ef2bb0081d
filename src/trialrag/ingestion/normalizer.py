"""Text normalisation and the chunk quality gate.

:class:`TextNormalizer` works on text from any origin, not only on the
extractor's output.  Passes run in a fixed order:

1. strip residual markup tags (and control characters),
2. ``[label](target)`` → ``label``,
3. flatten pipe-delimited table lines, dropping separator rows,
4. strip ``[n]`` footnote markers,
5. strip page-number artefacts,
6. collapse whitespace runs,
7. trim lines and drop blank ones.

A result shorter than ``min_chars`` is rejected (empty string).
"""

from __future__ import annotations

import logging
import re
import string
import unicodedata

from trialrag.config import settings
from trialrag.errors import NormalizationRejected
from trialrag.ingestion.models import ExtractedDocument

logger = logging.getLogger(__name__)

_HTML_TAGS = re.compile(r"<[^>]+>")
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f]")
_MARKDOWN_LINKS = re.compile(r"\[([^\]]+)\]\([^)]+\)")
_FOOTNOTE_REFS = re.compile(r"\[\d+\]")
_PAGE_LINE = re.compile(r"^[ \t]*(?:page[ \t]+)?\d+(?:[ \t]+of[ \t]+\d+)?[ \t]*$", re.IGNORECASE | re.MULTILINE)
_TRAILING_PAGE = re.compile(r"[ \t]*\bpage[ \t]+\d+(?:[ \t]+of[ \t]+\d+)?[ \t]*$", re.IGNORECASE | re.MULTILINE)
_MULTIPLE_NEWLINES = re.compile(r"\n{3,}")
_EXCESSIVE_SPACES = re.compile(r"[^\S\n]{3,}")
_FORMATTING_ONLY = re.compile(r"^[\s\-_=*]+$")

_BOILERPLATE = (
    re.compile(r"\(View at.*?\)"),
    re.compile(r"\(Click here for.*?\)"),
)

FORMAT_CHARS = frozenset("|-_=*+~^<>[]{}()")


def strip_boilerplate(value: str) -> str:
    """Remove known link boilerplate such as ``(View at …)`` from a value."""
    for pattern in _BOILERPLATE:
        value = pattern.sub("", value)
    return value.strip()


def _is_separator_row(line: str) -> bool:
    stripped = line.strip()
    return stripped.startswith("|") and "-" in stripped and set(stripped) <= set("|-: ")


def _is_table_row(line: str) -> bool:
    stripped = line.strip()
    return len(stripped) > 1 and stripped.startswith("|") and stripped.endswith("|")


def flatten_table_row(line: str) -> str:
    """Flatten one ``| a | b |`` line.

    Two non-empty cells become ``label: value``; any other shape keeps only
    meaningful cells (not bare numbers, not formatting) joined by spaces.
    """
    cells = [c.strip() for c in line.strip().strip("|").split("|")]
    cells = [c for c in cells if c]
    if len(cells) == 2:
        label, value = cells[0], strip_boilerplate(cells[1])
        return f"{label}: {value}".rstrip()
    kept = [
        c for c in cells
        if len(c) > 1 and not c.isdigit() and not _FORMATTING_ONLY.match(c)
    ]
    return " ".join(kept)


def flatten_tables(text: str) -> str:
    lines: list[str] = []
    for line in text.splitlines():
        if _is_separator_row(line):
            continue
        if _is_table_row(line):
            flat = flatten_table_row(line)
            if flat:
                lines.append(flat)
        else:
            lines.append(line)
    return "\n".join(lines)


def is_quality_chunk(
    text: str,
    *,
    min_words: int = settings.quality_min_words,
    max_format_ratio: float = settings.quality_max_format_ratio,
) -> bool:
    """Return ``True`` when *text* carries enough meaningful content to embed.

    A token is meaningful when it is longer than one character and is neither
    purely numeric nor purely punctuation.  Text whose formatting characters
    (``|-_=*+~^<>[]{}()``) exceed *max_format_ratio* of its length is rejected
    regardless of word count.
    """
    trimmed = (text or "").strip()
    if not trimmed:
        return False

    meaningful = sum(
        1
        for word in trimmed.split()
        if len(word) > 1 and not word.isdigit() and not all(ch in string.punctuation for ch in word)
    )
    if meaningful < min_words:
        logger.debug("Rejecting chunk - too few meaningful words: %d", meaningful)
        return False

    format_chars = sum(1 for ch in trimmed if ch in FORMAT_CHARS)
    if format_chars > len(trimmed) * max_format_ratio:
        logger.debug("Rejecting chunk - too much formatting: %d%%", format_chars * 100 // len(trimmed))
        return False
    return True


class TextNormalizer:
    """Deterministic cleaner with a minimum-length rejection rule.

    Parameters
    ----------
    min_chars:
        Cleaned text shorter than this is rejected.
    """

    def __init__(self, min_chars: int = settings.min_document_chars) -> None:
        self.min_chars = min_chars

    def clean(self, text: str) -> str:
        """Run every pass and return the cleaned text, however short."""
        if not text or not text.strip():
            return ""

        cleaned = unicodedata.normalize("NFC", text)
        cleaned = _HTML_TAGS.sub("", cleaned)
        cleaned = _CONTROL_CHARS.sub("", cleaned)
        cleaned = _MARKDOWN_LINKS.sub(r"\1", cleaned)
        cleaned = flatten_tables(cleaned)
        cleaned = _FOOTNOTE_REFS.sub("", cleaned)
        cleaned = _PAGE_LINE.sub("", cleaned)
        cleaned = _TRAILING_PAGE.sub("", cleaned)
        cleaned = _MULTIPLE_NEWLINES.sub("\n\n", cleaned)
        cleaned = _EXCESSIVE_SPACES.sub(" ", cleaned)

        lines = (line.strip() for line in cleaned.splitlines())
        return "\n".join(line for line in lines if line)

    def normalize(self, text: str) -> str:
        """Clean *text*; return ``""`` when the result is below ``min_chars``."""
        cleaned = self.clean(text)
        if len(cleaned) < self.min_chars:
            logger.warning(
                "Skipping document - too short after cleaning: %d chars (minimum %d)",
                len(cleaned),
                self.min_chars,
            )
            return ""
        logger.debug("Cleaned content length: %d -> %d", len(text), len(cleaned))
        return cleaned

    def normalize_document(self, document: ExtractedDocument) -> ExtractedDocument:
        """Return a cleaned copy of *document* or raise :class:`NormalizationRejected`."""
        cleaned = self.clean(document.text)
        if len(cleaned) < self.min_chars:
            raise NormalizationRejected(len(cleaned), self.min_chars)
        return document.with_text(cleaned)
