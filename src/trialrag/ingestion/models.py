"""Immutable records passed between the ingestion stages."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict


class PageShape(str, Enum):
    """Structural shape detected for a fetched page."""

    CLINICAL_TRIAL = "clinical_trial"
    GENERIC = "generic"


class DocumentMetadata(BaseModel):
    """Metadata attached to one extracted document.

    Attributes
    ----------
    source_url:
        The URL the markup was fetched from.
    title:
        ``<title>`` of the page (may be empty).
    origin:
        Tag describing how the document entered the system (``"url"``).
    shape:
        Which extractor handled the page.
    file_name:
        Filename-like identifier derived from the URL.
    source_key:
        Stable key the chunks are stored under.  For report pages with a
        detectable trial identifier this is ``"CLINICAL TRIAL: <ID>"``,
        otherwise it equals :attr:`file_name`.
    trial_id:
        Structured identifier extracted from a report page, if any.
    """

    model_config = ConfigDict(frozen=True)

    source_url: str
    title: str = ""
    origin: str = "url"
    shape: PageShape = PageShape.GENERIC
    file_name: str
    source_key: str
    trial_id: str | None = None

    def as_dict(self) -> dict[str, str]:
        """Flat ``str -> str`` view suitable for vector-index metadata."""
        data = {
            "source": self.source_url,
            "title": self.title,
            "type": self.origin,
            "shape": self.shape.value,
            "file_name": self.file_name,
            "source_key": self.source_key,
        }
        if self.trial_id:
            data["trial_id"] = self.trial_id
        return data


class ExtractedDocument(BaseModel):
    """Full extracted body of one source, before normalisation."""

    model_config = ConfigDict(frozen=True)

    text: str
    metadata: DocumentMetadata

    @property
    def source_key(self) -> str:
        return self.metadata.source_key

    def with_text(self, text: str) -> ExtractedDocument:
        """Return a copy carrying *text* and the same metadata."""
        return ExtractedDocument(text=text, metadata=self.metadata)
