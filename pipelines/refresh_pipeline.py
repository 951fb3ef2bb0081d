"""KFP v2 pipeline — Scheduled refresh of indexed sources.

Wraps the single ``refresh_sources`` component so a list of trial IDs (or
URLs) can be re-ingested on a schedule.  Each source replaces its previous
chunk set in the vector store.

Compile
-------
    python -m pipelines.refresh_pipeline --compile
"""

from kfp import compiler, dsl

from pipelines.components.refresh import refresh_sources


@dsl.pipeline(
    name="trialrag-refresh-pipeline",
    description=(
        "Fetch, extract, normalise, chunk, embed and store a batch of "
        "clinical-trial report pages or web pages, replacing prior chunks."
    ),
)
def refresh_pipeline(
    # ── Source ──────────────────────────────────────────────────────
    identifiers: str = "[]",
    category: str = "clinical_trial",
    # ── Embedding ──────────────────────────────────────────────────
    embedding_backend: str = "huggingface",
    embedding_model: str = "sentence-transformers/all-MiniLM-L6-v2",
    # ── Vector DB ──────────────────────────────────────────────────
    vector_backend: str = "chroma",
    chroma_host: str = "chroma.kubeflow.svc.cluster.local",
    chroma_port: int = 8000,
    collection_name: str = "document_embeddings",
    fail_on_source_error: bool = False,
) -> None:
    """One-step refresh: ingest every identifier.

    Parameters
    ----------
    identifiers:
        JSON list of trial IDs or URLs.
    category:
        ``"clinical_trial"`` | ``"url"``
    embedding_backend / embedding_model:
        Embedding backend and model identifier.
    vector_backend / chroma_host / chroma_port / collection_name:
        Vector-store connection details.
    fail_on_source_error:
        Fail the run when any single source failed.
    """
    refresh_sources(
        identifiers=identifiers,
        category=category,
        vector_backend=vector_backend,
        chroma_host=chroma_host,
        chroma_port=chroma_port,
        collection_name=collection_name,
        embedding_backend=embedding_backend,
        embedding_model=embedding_model,
        fail_on_source_error=fail_on_source_error,
    )


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="trialrag refresh pipeline")
    parser.add_argument(
        "--compile",
        action="store_true",
        help="Compile pipeline to YAML",
    )
    parser.add_argument(
        "--output",
        default="pipelines/compiled/refresh_pipeline.yaml",
        help="Output path for compiled YAML",
    )
    args = parser.parse_args()

    if args.compile:
        compiler.Compiler().compile(refresh_pipeline, args.output)
        print(f"Pipeline compiled → {args.output}")
