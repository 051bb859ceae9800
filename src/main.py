# src/main.py — v3
"""CLI entry point — ingest, run, chunk, reap, export-graph commands.

Usage:
    factgraph ingest <file> [--title T] [--source-url URL]
    factgraph run <file> --document-id ID [--env dev]
    factgraph chunk <document_id>
    factgraph reap [--timeout-minutes N]
    factgraph export-graph <out.graphml> [--run-id ID]
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from factgraph.config.settings import Settings, load_settings
from factgraph.logging.logger import setup_logging
from factgraph.version import __version__

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    settings = load_settings()
    setup_logging(
        level="DEBUG" if args.verbose else settings.log_level,
        log_format=settings.log_format,
        log_file=settings.log_file,
        max_bytes=settings.log_max_bytes,
        backup_count=settings.log_backup_count,
    )

    try:
        return asyncio.run(args.func(args, settings))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except Exception as exc:
        logger.error("Fatal error: %s", exc, exc_info=args.verbose)
        return 1


def _build_parser() -> argparse.ArgumentParser:
    """Build CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="factgraph",
        description=f"factgraph v{__version__} — staged fact extraction into a knowledge graph",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command")

    # --- ingest ---
    p_ingest = subparsers.add_parser("ingest", help="Register a text document")
    p_ingest.add_argument("file", type=Path, help="Path to a UTF-8 text file")
    p_ingest.add_argument("--title", default=None, help="Title (default: file name)")
    p_ingest.add_argument("--source-url", default=None, help="Source URL used as evidence fallback")
    p_ingest.set_defaults(func=_cmd_ingest)

    # --- run ---
    p_run = subparsers.add_parser("run", help="Run the pipeline over a document")
    p_run.add_argument("file", type=Path, help="Path to the document text")
    p_run.add_argument("--document-id", required=True, help="Id returned by 'ingest'")
    p_run.add_argument(
        "--env", default="dev", choices=["dev", "staging", "prod"],
        help="Environment tag (default: dev)",
    )
    p_run.add_argument("--api-token", default=None, help="API token when API_KEY is set")
    p_run.set_defaults(func=_cmd_run)

    # --- chunk ---
    p_chunk = subparsers.add_parser("chunk", help="Index a stored document into chunks")
    p_chunk.add_argument("document_id", help="Stored document id")
    p_chunk.set_defaults(func=_cmd_chunk)

    # --- reap ---
    p_reap = subparsers.add_parser("reap", help="Time out runs stuck in 'running'")
    p_reap.add_argument(
        "--timeout-minutes", type=int, default=None,
        help="Age after which a running run is stale (default: REAPER_TIMEOUT_MINUTES)",
    )
    p_reap.set_defaults(func=_cmd_reap)

    # --- export-graph ---
    p_export = subparsers.add_parser("export-graph", help="Export entities and facts as GraphML")
    p_export.add_argument("output", type=Path, help="Output .graphml path")
    p_export.add_argument("--run-id", default=None, help="Only records created by this run")
    p_export.set_defaults(func=_cmd_export_graph)

    return parser


def _read_text(path: Path) -> str | None:
    if not path.is_file():
        logger.error("File not found: %s", path)
        return None
    return path.read_text(encoding="utf-8")


async def _cmd_ingest(args: argparse.Namespace, settings: Settings) -> int:
    """Store a document and print its id."""
    from factgraph.core.models import Document
    from factgraph.storage.ledger_factory import create_ledger

    text = _read_text(args.file)
    if text is None:
        return 1

    ledger = create_ledger(settings)
    try:
        document = await ledger.add_document(
            Document(title=args.title or args.file.name, text=text, source_url=args.source_url)
        )
    finally:
        await ledger.close()

    logger.info("Ingested %s as %s", args.file.name, document.id)
    print(document.id)
    return 0


async def _cmd_run(args: argparse.Namespace, settings: Settings) -> int:
    """Run the pipeline and print the RunResult as JSON."""
    from factgraph.api.facade import run_pipeline

    text = _read_text(args.file)
    if text is None:
        return 1

    result = await run_pipeline(
        {"documentText": text, "documentId": args.document_id, "environment": args.env},
        settings=settings,
        api_token=args.api_token,
        caller="cli",
    )
    print(result.model_dump_json(indent=2))
    return 0 if result.success else 1


async def _cmd_chunk(args: argparse.Namespace, settings: Settings) -> int:
    """Chunk a stored document."""
    from factgraph.chunking.word_window_chunker import WordWindowChunker, index_document_chunks
    from factgraph.storage.ledger_factory import create_ledger

    ledger = create_ledger(settings)
    try:
        chunks = await index_document_chunks(
            ledger, args.document_id, WordWindowChunker.from_settings(settings)
        )
    finally:
        await ledger.close()

    print(f"{len(chunks)} chunks indexed for {args.document_id}")
    return 0


async def _cmd_reap(args: argparse.Namespace, settings: Settings) -> int:
    """Move stale running runs to 'timeout'."""
    from factgraph.guard.reaper import reap_stale_runs
    from factgraph.storage.ledger_factory import create_ledger

    timeout = args.timeout_minutes or settings.reaper_timeout_minutes
    ledger = create_ledger(settings)
    try:
        report = await reap_stale_runs(ledger, timeout_minutes=timeout)
    finally:
        await ledger.close()

    print(f"Cleaned {report.cleaned} run(s)")
    for run_id in report.run_ids:
        print(f"  {run_id}")
    return 0


async def _cmd_export_graph(args: argparse.Namespace, settings: Settings) -> int:
    """Write the knowledge graph view as GraphML."""
    from factgraph.graph.builder import build_knowledge_graph, write_graphml
    from factgraph.storage.ledger_factory import create_ledger

    ledger = create_ledger(settings)
    try:
        entities = await ledger.list_entities(args.run_id)
        facts = await ledger.list_facts(args.run_id)
    finally:
        await ledger.close()

    graph = build_knowledge_graph(entities, facts)
    path = write_graphml(graph, args.output)
    print(f"Wrote {graph.number_of_nodes()} nodes, {graph.number_of_edges()} edges to {path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
