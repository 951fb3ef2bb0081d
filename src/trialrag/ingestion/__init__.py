"""
Ingestion — fetching, extraction, normalisation, chunking and embedding.

This package turns a list of source identifiers into embedded chunks
handed to the embedding store, one source at a time, via
:class:`~trialrag.ingestion.orchestrator.IngestionOrchestrator`.
"""
