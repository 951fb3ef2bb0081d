"""Exception hierarchy shared by the ingestion and retrieval layers.

Everything that can fail for a single source derives from
:class:`TrialRagError` so the orchestrator can contain it at the source
boundary.  :class:`BackendUnavailableError` is the one error that aborts a
whole run.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from trialrag.ingestion.orchestrator import RunSummary


class TrialRagError(Exception):
    """Base class for all errors raised by trialrag."""


class FetchError(TrialRagError):
    """Network, timeout or HTTP failure while downloading a page."""

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"Failed to fetch {url}: {reason}")
        self.url = url
        self.reason = reason


class ExtractionEmptyError(TrialRagError):
    """No usable content was found for a source."""


class NormalizationRejected(ExtractionEmptyError):
    """Content was present but fell below the minimum usefulness bar."""

    def __init__(self, length: int, minimum: int) -> None:
        super().__init__(f"Content too short after cleaning: {length} chars (minimum {minimum})")
        self.length = length
        self.minimum = minimum


class EmbeddingServiceError(TrialRagError):
    """The embedding backend failed or returned an unusable vector."""


class StoreTransactionError(TrialRagError):
    """The delete/insert of an upsert failed part-way through."""

    def __init__(self, source_key: str, reason: str, *, restored: bool) -> None:
        state = "prior chunks restored" if restored else "prior chunks NOT restored"
        super().__init__(f"Upsert for {source_key!r} failed ({state}): {reason}")
        self.source_key = source_key
        self.restored = restored


class UnsupportedOperationError(TrialRagError):
    """The requested store operation is deliberately not supported."""


class BackendUnavailableError(TrialRagError):
    """The persistence or embedding backend cannot be reached at all.

    When raised part-way through a run, ``summary`` holds the
    :class:`~trialrag.ingestion.orchestrator.RunSummary` of what was attempted
    before the abort; it is ``None`` when the run never started.
    """

    def __init__(self, message: str, *, summary: RunSummary | None = None) -> None:
        super().__init__(message)
        self.summary = summary
