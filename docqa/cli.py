"""Command-line interface for the document Q&A system.

Usage:
    docqa ingest docs/              # Ingest a directory (recursive)
    docqa ingest notes.md           # Ingest (or re-ingest) one file
    docqa ingest docs/ --type md    # Only Markdown files
    docqa query "How does X work?"  # Ask a question
    docqa stats                     # Show store statistics
    docqa clear                     # Remove all documents
"""
import argparse
import asyncio
import sys
from datetime import datetime
from pathlib import Path
from typing import List, Optional
import structlog

from docqa import config
from docqa.errors import DocQAError
from docqa.logging_config import configure_logging
from docqa.rag.ingest import IngestReport
from docqa.rag.vector_store import VectorStore
from docqa.service import DocumentQA

logger = structlog.get_logger()


class ProgressReporter:
    """Simple progress reporter for CLI."""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose
        self.start_time = None

    def start(self, message: str):
        self.start_time = datetime.now()
        print(f"\n{'=' * 60}")
        print(f"  {message}")
        print(f"{'=' * 60}\n")

    def update(self, current: int, file_path: Path):
        if self.verbose:
            print(f"  ({current}) {file_path}")
        else:
            print(f"\r  Processing #{current}: {file_path.name[:40]:<40}", end="", flush=True)

    def finish(self, report: IngestReport):
        print("\n")
        elapsed_seconds = (datetime.now() - self.start_time).total_seconds()

        print(f"{'=' * 60}")
        print("  Ingestion Complete!")
        print(f"{'=' * 60}\n")
        print(f"  Documents processed: {report.documents_processed}")
        print(f"  Chunks created:      {report.chunks_created}")
        print(f"  Skipped:             {len(report.skipped)}")
        print(f"  Time elapsed:        {elapsed_seconds:.1f}s")

        for skipped in report.skipped:
            print(f"    - {skipped.source}: {skipped.reason}")

        print(f"\n{'=' * 60}\n")


def print_stats(stats) -> None:
    print("\nDocument Store Statistics")
    print("-" * 31)
    print(f"  Documents:    {stats.total_sources}")
    print(f"  Total chunks: {stats.total_records}")
    print(f"  File types:   {', '.join(stats.file_types) or 'None'}")
    print(f"  Dimension:    {stats.dimension or 'n/a'}")
    print(f"  Last updated: {stats.last_updated or 'Never'}\n")


async def run_ingest(qa: DocumentQA, args: argparse.Namespace) -> int:
    progress = ProgressReporter(verbose=args.verbose)
    progress.start(f"Ingesting {args.path}")

    report = await qa.ingest(
        args.path,
        recursive=args.recursive,
        type_filter=args.type,
        progress_callback=progress.update,
    )
    progress.finish(report)
    print_stats(await qa.stats())

    return 1 if report.skipped else 0


async def run_query(qa: DocumentQA, args: argparse.Namespace) -> int:
    result = await qa.answer(args.question, k=args.k)
    print(f"\nQuestion: {args.question}\n")
    print(f"Answer:\n{result.text}\n")
    return 0


async def run_stats(qa: DocumentQA, args: argparse.Namespace) -> int:
    print_stats(await qa.stats())
    return 0


async def run_clear(qa: DocumentQA, args: argparse.Namespace) -> int:
    deleted = await qa.clear()
    print(f"\nCleared {deleted} chunk(s).\n")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="docqa",
        description="Document question answering over a local vector store",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--db",
        type=Path,
        default=None,
        help=f"SQLite database (default: {config.DB_PATH})",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Show verbose output"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    ingest = subparsers.add_parser("ingest", help="Ingest a file or directory")
    ingest.add_argument("path", type=Path, help="File or directory to ingest")
    ingest.add_argument(
        "--no-recursive",
        dest="recursive",
        action="store_false",
        help="Do not descend into subdirectories",
    )
    ingest.add_argument(
        "--type",
        "-t",
        choices=config.SUPPORTED_EXTENSIONS,
        default=None,
        help="Only ingest this file type",
    )
    ingest.set_defaults(handler=run_ingest)

    query = subparsers.add_parser("query", help="Ask a question")
    query.add_argument("question", help="Question to ask")
    query.add_argument(
        "-k",
        type=int,
        default=config.RETRIEVAL_TOP_K,
        help=f"Chunks to retrieve (default: {config.RETRIEVAL_TOP_K})",
    )
    query.set_defaults(handler=run_query)

    stats = subparsers.add_parser("stats", help="Show store statistics")
    stats.set_defaults(handler=run_stats)

    clear = subparsers.add_parser("clear", help="Remove all documents")
    clear.set_defaults(handler=run_clear)

    return parser


async def run(args: argparse.Namespace) -> int:
    async with DocumentQA(store=_store_for(args)) as qa:
        return await args.handler(qa, args)


def _store_for(args: argparse.Namespace) -> Optional[VectorStore]:
    return VectorStore(args.db) if args.db else None


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the docqa command."""
    args = build_parser().parse_args(argv)
    configure_logging(
        level="DEBUG" if args.verbose else "WARNING",
        fmt="console",
    )

    try:
        return asyncio.run(run(args))

    except KeyboardInterrupt:
        print("\n\nCancelled by user.\n")
        return 1

    except (FileNotFoundError, ValueError) as e:
        print(f"\nError: {e}\n")
        return 1

    except DocQAError as e:
        print(f"\nError: {e}\n")
        logger.error("cli_command_failed", error=str(e), error_type=type(e).__name__)
        return 1


if __name__ == "__main__":
    sys.exit(main())
