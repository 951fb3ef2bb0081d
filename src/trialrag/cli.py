"""Command-line entry point.

Examples
--------
    trialrag ingest NCT04208529 NCT03745287
    trialrag ingest --ids-file trials.txt
    trialrag ingest --category url https://example.org/about
    trialrag search "base editing for sickle cell disease" -k 5 --threshold 0.75
    trialrag stats
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from typing import TYPE_CHECKING

from trialrag.config import Settings, settings
from trialrag.errors import BackendUnavailableError
from trialrag.ingestion.sources import SourceCategory, read_identifiers

if TYPE_CHECKING:
    from trialrag.ingestion.orchestrator import RunSummary

logger = logging.getLogger("trialrag")

EXIT_OK = 0
EXIT_FAILURES = 1
EXIT_ABORTED = 2
EXIT_CANCELLED = 130


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="trialrag", description="Document ingestion into a vector store")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    sub = parser.add_subparsers(dest="command", required=True)

    ingest = sub.add_parser("ingest", help="Fetch, chunk, embed and store sources")
    ingest.add_argument("identifiers", nargs="*", help="Trial IDs or URLs")
    ingest.add_argument("--ids-file", help="File with one identifier per line")
    ingest.add_argument(
        "--category",
        choices=[c.value for c in SourceCategory],
        default=None,
        help="How identifiers map to URLs (default: SOURCE_CATEGORY)",
    )

    search = sub.add_parser("search", help="Nearest-neighbour search for a text query")
    search.add_argument("query")
    search.add_argument("-k", type=int, default=5)
    search.add_argument("--threshold", type=float, default=None, help="Minimum cosine similarity")

    sub.add_parser("stats", help="Show chunk count and stored source keys")
    return parser


def _print_summary(summary: RunSummary) -> None:
    print(
        f"Processed: {len(summary.processed)}  Overwritten: {len(summary.overwritten)}  "
        f"Failed: {len(summary.failed)}  Not attempted: {len(summary.skipped)}"
    )
    for identifier, reason in summary.failures.items():
        print(f"  FAILED {identifier}: {reason}")
    for identifier in summary.skipped:
        print(f"  SKIPPED {identifier}")


def _cmd_ingest(args: argparse.Namespace, config: Settings) -> int:
    from trialrag.factory import build_orchestrator

    identifiers = list(args.identifiers)
    if args.ids_file:
        identifiers.extend(read_identifiers(args.ids_file))
    if not identifiers:
        logger.error("No identifiers given (pass them as arguments or with --ids-file)")
        return EXIT_FAILURES

    if args.category:
        config = config.model_copy(update={"source_category": args.category})

    stop_event = threading.Event()

    def _request_stop(signum, frame) -> None:  # noqa: ANN001
        logger.warning("Received signal %d; finishing current source then stopping", signum)
        stop_event.set()

    previous = {sig: signal.signal(sig, _request_stop) for sig in (signal.SIGINT, signal.SIGTERM)}

    logger.info("=== Ingestion run starting ===")
    try:
        summary = build_orchestrator(config, stop_event=stop_event).run(identifiers)
    except BackendUnavailableError as exc:
        logger.error("=== Ingestion run ABORTED: %s ===", exc)
        if exc.summary is not None:
            _print_summary(exc.summary)
        return EXIT_ABORTED
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)

    if summary.cancelled:
        return EXIT_CANCELLED
    if summary.failed:
        logger.error("=== Ingestion run finished with %d failed sources ===", len(summary.failed))
        return EXIT_FAILURES
    logger.info("=== Ingestion run complete ===")
    return EXIT_OK


def _cmd_search(args: argparse.Namespace, config: Settings) -> int:
    from trialrag.factory import build_retriever

    results = build_retriever(config).search(args.query, k=args.k, score_threshold=args.threshold)
    if not results:
        print("No results.")
    for rank, result in enumerate(results, 1):
        score = result.citation.score if result.citation.score is not None else float("nan")
        print(f"{rank}. {result.citation.short_ref()} score={score:.3f}")
        print(f"   {result.content[:200]}")
    return EXIT_OK


def _cmd_stats(args: argparse.Namespace, config: Settings) -> int:
    from trialrag.factory import build_store

    store = build_store(config)
    keys = sorted(store.list_distinct_source_keys())
    print(f"Chunks: {store.count_all()}")
    print(f"Sources: {len(keys)}")
    for key in keys:
        print(f"  {key}")
    return EXIT_OK


_COMMANDS = {"ingest": _cmd_ingest, "search": _cmd_search, "stats": _cmd_stats}


def main(argv: list[str] | None = None, config: Settings = settings) -> int:
    args = _build_parser().parse_args(argv)
    logging.basicConfig(
        level=(args.log_level or config.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )
    return _COMMANDS[args.command](args, config)


if __name__ == "__main__":
    sys.exit(main())
