"""Batch ingestion: drive each source through fetch → store.

Per-source state machine::

    PENDING → FETCHING → EXTRACTING → NORMALIZING → CHUNKING → STORING
            → PROCESSED | OVERWRITTEN | FAILED

Any exception raised for one source is contained here and recorded on its
:class:`SourceOutcome`; the batch always moves on to the next identifier.
Only :class:`~trialrag.errors.BackendUnavailableError` aborts a run.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Iterable
from enum import Enum

from pydantic import BaseModel, ConfigDict

from trialrag.config import settings
from trialrag.errors import (
    BackendUnavailableError,
    EmbeddingServiceError,
    ExtractionEmptyError,
    FetchError,
    StoreTransactionError,
)
from trialrag.ingestion.chunker import TextChunker
from trialrag.ingestion.extractor import WebPageReader
from trialrag.ingestion.normalizer import TextNormalizer, is_quality_chunk
from trialrag.ingestion.sources import SourceCategory, build_source_url, iter_nonblank
from trialrag.retrieval.base import EmbeddingStore

logger = logging.getLogger(__name__)


class SourceState(str, Enum):
    PENDING = "pending"
    FETCHING = "fetching"
    EXTRACTING = "extracting"
    NORMALIZING = "normalizing"
    CHUNKING = "chunking"
    STORING = "storing"
    PROCESSED = "processed"
    OVERWRITTEN = "overwritten"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (SourceState.PROCESSED, SourceState.OVERWRITTEN, SourceState.FAILED)


class StageEvent(BaseModel):
    """A diagnostic emitted while a source was in *stage*."""

    model_config = ConfigDict(frozen=True)

    stage: SourceState
    level: str
    message: str


class SourceOutcome(BaseModel):
    """Terminal result for one source identifier."""

    model_config = ConfigDict(frozen=True)

    identifier: str
    url: str
    state: SourceState
    source_key: str | None = None
    chunks_stored: int = 0
    deleted_prior: int = 0
    failed_stage: SourceState | None = None
    error_type: str | None = None
    error: str | None = None
    events: tuple[StageEvent, ...] = ()

    @property
    def succeeded(self) -> bool:
        return self.state in (SourceState.PROCESSED, SourceState.OVERWRITTEN)


class RunSummary(BaseModel):
    """Aggregate of every :class:`SourceOutcome` in a run."""

    model_config = ConfigDict(frozen=True)

    outcomes: tuple[SourceOutcome, ...] = ()
    skipped: tuple[str, ...] = ()
    cancelled: bool = False
    aborted: bool = False
    elapsed_seconds: float = 0.0

    def _ids(self, state: SourceState) -> list[str]:
        return [o.identifier for o in self.outcomes if o.state is state]

    @property
    def total(self) -> int:
        return len(self.outcomes)

    @property
    def processed(self) -> list[str]:
        return self._ids(SourceState.PROCESSED)

    @property
    def overwritten(self) -> list[str]:
        return self._ids(SourceState.OVERWRITTEN)

    @property
    def failed(self) -> list[str]:
        return self._ids(SourceState.FAILED)

    @property
    def failures(self) -> dict[str, str]:
        """``identifier -> "ErrorType: message"`` for every failed source."""
        return {
            o.identifier: f"{o.error_type}: {o.error}"
            for o in self.outcomes
            if o.state is SourceState.FAILED
        }

    @property
    def succeeded(self) -> bool:
        return not self.failed and not self.cancelled and not self.aborted

    @property
    def elapsed_display(self) -> str:
        minutes, seconds = divmod(int(self.elapsed_seconds), 60)
        return f"{minutes}m {seconds}s"

    def log(self, log: logging.Logger = logger) -> None:
        log.info(
            "Processing complete. Total: %d, Processed: %d, Overwritten: %d, Failed: %d",
            self.total,
            len(self.processed),
            len(self.overwritten),
            len(self.failed),
        )
        log.info("Processed: %s", self.processed)
        log.info("Overwritten: %s", self.overwritten)
        log.info("Failed: %s", self.failed)
        for identifier, reason in self.failures.items():
            log.info("  %s -> %s", identifier, reason)
        if self.cancelled:
            log.warning("Run cancelled; %d sources not attempted: %s", len(self.skipped), list(self.skipped))
        if self.aborted:
            log.error("Run aborted; %d sources not attempted: %s", len(self.skipped), list(self.skipped))
        log.info("Total execution time: %s", self.elapsed_display)


class _SourceRun:
    """Mutable bookkeeping for one source, frozen into a SourceOutcome at the end."""

    def __init__(self, identifier: str, url: str) -> None:
        self.identifier = identifier
        self.url = url
        self.state = SourceState.PENDING
        self.source_key: str | None = None
        self.events: list[StageEvent] = []

    def enter(self, state: SourceState) -> None:
        logger.debug("%s: %s -> %s", self.identifier, self.state.value, state.value)
        self.state = state

    def note(self, message: str, level: str = "info") -> None:
        getattr(logger, level)("%s: %s", self.identifier, message)
        self.events.append(StageEvent(stage=self.state, level=level, message=message))

    def finish(self, state: SourceState, **fields) -> SourceOutcome:
        return SourceOutcome(
            identifier=self.identifier,
            url=self.url,
            state=state,
            source_key=self.source_key,
            events=tuple(self.events),
            **fields,
        )


class IngestionOrchestrator:
    """Run a batch of source identifiers through the ingestion pipeline.

    Parameters
    ----------
    reader:
        Fetch + extract collaborator.
    normalizer / chunker / store:
        Pipeline stages.
    category:
        How identifiers map to URLs (see :func:`build_source_url`).
    base_url:
        Base for clinical-trial report URLs.
    drop_low_quality_chunks:
        Filter chunks through :func:`is_quality_chunk` before storing.
    stop_event:
        Checked before each source; when set the remaining sources are
        skipped and the run is flagged cancelled.
    """

    def __init__(
        self,
        reader: WebPageReader,
        normalizer: TextNormalizer,
        chunker: TextChunker,
        store: EmbeddingStore,
        *,
        category: SourceCategory | str = settings.source_category,
        base_url: str = settings.clinical_trial_base_url,
        drop_low_quality_chunks: bool = settings.drop_low_quality_chunks,
        stop_event: threading.Event | None = None,
    ) -> None:
        self.reader = reader
        self.normalizer = normalizer
        self.chunker = chunker
        self.store = store
        self.category = SourceCategory(category)
        self.base_url = base_url
        self.drop_low_quality_chunks = drop_low_quality_chunks
        self.stop_event = stop_event or threading.Event()

    # -- public API -----------------------------------------------------------

    def preflight(self) -> None:
        """Raise :class:`BackendUnavailableError` unless both backends respond."""
        if not self.store.health_check():
            raise BackendUnavailableError(f"Vector store {type(self.store).__name__} is unreachable")
        try:
            self.store.embedder.embed_query("health check")
        except EmbeddingServiceError as exc:
            raise BackendUnavailableError(f"Embedding backend is unreachable: {exc}") from exc

    def run(self, identifiers: Iterable[str | None], *, preflight: bool = True) -> RunSummary:
        """Ingest every non-blank identifier in order and summarise the run.

        A :class:`BackendUnavailableError` raised part-way carries the summary
        of the sources attempted so far in its ``summary`` attribute.
        """
        t0 = time.monotonic()
        if preflight:
            self.preflight()

        pending = list(iter_nonblank(identifiers))
        logger.info("Starting ingestion of %d sources", len(pending))

        outcomes: list[SourceOutcome] = []
        skipped: tuple[str, ...] = ()
        for index, identifier in enumerate(pending):
            if self.stop_event.is_set():
                skipped = tuple(pending[index:])
                break
            outcome = self.ingest_source(identifier)
            outcomes.append(outcome)
            if not outcome.succeeded and not any(o.succeeded for o in outcomes):
                try:
                    self._check_backends(outcome)
                except BackendUnavailableError as exc:
                    exc.summary = RunSummary(
                        outcomes=tuple(outcomes),
                        skipped=tuple(pending[index + 1 :]),
                        aborted=True,
                        elapsed_seconds=time.monotonic() - t0,
                    )
                    exc.summary.log()
                    raise

        summary = RunSummary(
            outcomes=tuple(outcomes),
            skipped=skipped,
            cancelled=bool(skipped),
            elapsed_seconds=time.monotonic() - t0,
        )
        summary.log()
        return summary

    def ingest_source(self, identifier: str) -> SourceOutcome:
        """Drive one identifier to a terminal state; never raises."""
        identifier = identifier.strip()
        url = build_source_url(identifier, self.category, base_url=self.base_url)
        run = _SourceRun(identifier, url)
        logger.info("Processing source: %s", identifier)

        try:
            run.enter(SourceState.FETCHING)
            try:
                documents = self.reader.load(url, strict=True)
            except FetchError as exc:
                run.note(f"fetch failed: {exc.reason}", "error")
                raise ExtractionEmptyError(f"Failed to fetch content from URL: {url} ({exc.reason})") from exc
            if not documents:
                raise ExtractionEmptyError(f"Failed to fetch content from URL: {url}")

            run.enter(SourceState.EXTRACTING)
            document = documents[0]
            run.source_key = document.source_key
            if not document.text.strip():
                raise ExtractionEmptyError(f"No text extracted from {url}")

            run.enter(SourceState.NORMALIZING)
            document = self.normalizer.normalize_document(document)

            run.enter(SourceState.CHUNKING)
            batch = self.chunker.chunk(document.text)
            if batch.truncated:
                run.note(f"dropped {batch.truncated} tail chunks over the chunk limit", "warning")
            texts = list(batch.chunks)
            if self.drop_low_quality_chunks:
                kept = [t for t in texts if is_quality_chunk(t)]
                if len(kept) < len(texts):
                    run.note(f"quality gate dropped {len(texts) - len(kept)} of {len(texts)} chunks")
                texts = kept
            if not texts:
                raise ExtractionEmptyError("No chunks long enough to embed")

            run.enter(SourceState.STORING)
            existing = self.store.count_by_source(document.source_key)
            if existing:
                run.note(f"overwriting {existing} existing chunks for {document.source_key!r}")
            result = self.store.upsert_by_source(
                document.source_key, texts, document.metadata.as_dict()
            )
        except Exception as exc:
            logger.exception("Failed to process source %s during %s", identifier, run.state.value)
            return run.finish(
                SourceState.FAILED,
                failed_stage=run.state,
                error_type=type(exc).__name__,
                error=str(exc),
            )

        state = SourceState.OVERWRITTEN if result.overwritten else SourceState.PROCESSED
        logger.info("Successfully processed source: %s (%s)", identifier, state.value)
        return run.finish(state, chunks_stored=result.inserted, deleted_prior=result.deleted_prior)

    def cancel(self) -> None:
        self.stop_event.set()

    # -- internals ------------------------------------------------------------

    def _check_backends(self, outcome: SourceOutcome) -> None:
        """Abort when nothing has succeeded yet and a backend has gone away."""
        if outcome.error_type == EmbeddingServiceError.__name__:
            try:
                self.store.embedder.embed_query("health check")
            except EmbeddingServiceError as exc:
                raise BackendUnavailableError(
                    f"Embedding backend became unreachable before any source succeeded: {exc}"
                ) from exc
        elif outcome.error_type == StoreTransactionError.__name__ and not self.store.health_check():
            raise BackendUnavailableError(
                f"Vector store became unreachable before any source succeeded ({outcome.error})"
            )
