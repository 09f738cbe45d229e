"""
Mnemo - Vector Database Setup Script
======================================
CLI entry point that:
    1. Loads settings (fail-fast on a bad ``.env``).
    2. Opens the LanceDB embedding tables, creating any that are missing.
    3. Optionally drops them first, reports row counts, or indexes one
       plain-text file.
    4. Prints a summary with a timing breakdown.

Flags:
    --drop        Drop every embedding table, then recreate them empty.
    --drop-only   Drop every embedding table and exit.
    --status      Print row counts per table and exit.
    --verbose     Log at DEBUG level regardless of ``ENV`` / ``LOG_LEVEL``.
    --index-file  Chunk, embed and store a UTF-8 text file
                  (requires ``--file-id``; vectorization must be enabled).

A dimensionality change (new ``EMBEDDING_DIMENSIONS`` / model) requires
``--drop`` followed by re-embedding every message, conversation and file.

Usage:
    python -m mnemo.scripts.setup_db
    python -m mnemo.scripts.setup_db --status
    python -m mnemo.scripts.setup_db --drop
    python -m mnemo.scripts.setup_db --index-file notes.txt --file-id 7 --user-id 42
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import mimetypes
import sys
import time
from pathlib import Path

from mnemo.src.database.record_sources import ConversationRecord, FileRecord, MessageRecord


# ── CLI record sources ─────────────────────────────────────────────────

class _SingleFileSource:
    """Serves the metadata of the one file named on the command line."""

    def __init__(self, record: FileRecord | None) -> None:
        self._record = record

    def get_file(self, file_id: int) -> FileRecord | None:
        if self._record is not None and self._record.id == file_id:
            return self._record
        return None


class _NoConversations:
    def get_message(self, message_id: int) -> MessageRecord | None:
        return None

    def get_conversation(self, conversation_id: int) -> ConversationRecord | None:
        return None

    def list_conversation_messages(self, conversation_id: int) -> list[MessageRecord]:
        return []


# ── CLI Argument Parsing ───────────────────────────────────────────────

def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="setup_db", description="Mnemo — Initialise the embedding tables and optionally index a text file.")
    parser.add_argument("--drop", action="store_true", default=False, help="Drop every embedding table, then recreate them empty.")
    parser.add_argument("--drop-only", action="store_true", default=False, help="Drop every embedding table and exit.")
    parser.add_argument("--status", action="store_true", default=False, help="Print row counts per table and exit.")
    parser.add_argument("--index-file", type=Path, default=None, help="Plain-text file to chunk, embed and store.")
    parser.add_argument("--file-id", type=int, default=None, help="Identifier to store the file's chunks under.")
    parser.add_argument("--user-id", type=int, default=0, help="Owner of the indexed file (default 0).")
    parser.add_argument("--project-id", type=int, default=None, help="Optional project of the indexed file.")
    parser.add_argument("--verbose", action="store_true", default=False, help="Log at DEBUG level.")
    args = parser.parse_args(argv)
    if args.index_file is not None and args.file_id is None:
        parser.error("--index-file requires --file-id")
    return args


# ── Main Orchestration ─────────────────────────────────────────────────

def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    t_start = time.perf_counter()

    # ── 0. Load settings + .env (timed) ────────────────────────────────
    t_settings = time.perf_counter()
    try:
        from mnemo.config.settings import settings
    except Exception as exc:
        print("\n[FATAL] Configuration error — check your .env file:\n")
        print(f"  {exc}")
        print()
        return 1
    settings_ms = (time.perf_counter() - t_settings) * 1000

    from mnemo.src.utils.logger import get_logger, set_level
    logger = get_logger(__name__)
    if args.verbose:
        set_level(logging.DEBUG)
    logger.info("Settings loaded in %.1fms", settings_ms)

    _print_header(settings)

    # ── 1. Open the vector store (timed) ───────────────────────────────
    from mnemo.src.core.embedding_generator import EmbeddingGenerator
    from mnemo.src.core.worker_pool import EmbeddingWorkerPool
    from mnemo.src.database.vector_store import VectorStore

    file_record = None
    if args.index_file is not None:
        mime_type = mimetypes.guess_type(args.index_file.name)[0] or "text/plain"
        file_record = FileRecord(id=args.file_id, user_id=args.user_id, name=args.index_file.name, mime_type=mime_type, project_id=args.project_id)

    pool = EmbeddingWorkerPool()
    generator = EmbeddingGenerator(pool)

    def open_store() -> VectorStore:
        return VectorStore(generator, conversations=_NoConversations(), files=_SingleFileSource(file_record))

    t_lancedb = time.perf_counter()
    logger.info("Connecting to LanceDB at: %s", settings.LANCEDB_PATH)
    try:
        store = open_store()
    except Exception:
        logger.exception("Failed to open the embedding tables.")
        return 1
    lancedb_ms = (time.perf_counter() - t_lancedb) * 1000

    if args.status:
        _print_status(store.status())
        return 0

    if args.drop or args.drop_only:
        logger.warning("Dropping every embedding table as requested.")
        store.drop_tables()
        if args.drop_only:
            logger.info("--drop-only: Tables dropped. Exiting.")
            _print_footer(None, 0, time.perf_counter() - t_start, settings_ms, lancedb_ms)
            return 0
        store = open_store()

    # ── 2. Optional file indexing ──────────────────────────────────────
    chunks = 0
    if args.index_file is not None:
        if not store.enabled:
            logger.error("Vectorization is disabled; set VECTORIZATION_ENABLED=true to index files.")
            return 1
        try:
            text = args.index_file.read_text(encoding="utf-8")
        except OSError as exc:
            logger.error("Cannot read %s: %s", args.index_file, exc)
            return 1
        try:
            chunks = asyncio.run(store.reindex_file(args.file_id, text))
        finally:
            pool.shutdown()

    _print_status(store.status())
    _print_footer(args.index_file, chunks, time.perf_counter() - t_start, settings_ms, lancedb_ms)
    return 0


# ── Pretty-print helpers ──────────────────────────────────────────────

def _print_header(settings: object) -> None:
    print()
    print("=" * 60)
    print("  MNEMO — Vector Database Setup")
    print("=" * 60)
    print(f"  Environment  : {settings.ENV}")                        # type: ignore[attr-defined]
    print(f"  Vectorization: {'enabled' if settings.vectorization_enabled else 'disabled'}")  # type: ignore[attr-defined]
    print(f"  Backend      : {settings.EMBEDDING_BACKEND}")          # type: ignore[attr-defined]
    print(f"  Model        : {settings.EMBEDDING_MODEL_ID}")         # type: ignore[attr-defined]
    print(f"  Dimensions   : {settings.EMBEDDING_DIMENSIONS}")       # type: ignore[attr-defined]
    print(f"  LanceDB path : {settings.LANCEDB_PATH}")               # type: ignore[attr-defined]
    print(f"  Chunk size   : {settings.CHUNK_SIZE} chars (overlap {settings.CHUNK_OVERLAP})")  # type: ignore[attr-defined]
    print(f"  Workers      : {settings.worker_pool_size}")           # type: ignore[attr-defined]
    print("=" * 60)
    print()


def _print_status(counts: dict[str, int]) -> None:
    print()
    print("  TABLES")
    print("-" * 60)
    for name, rows in counts.items():
        print(f"  {name:<24}: {rows:>8} rows")
    print("-" * 60)


def _print_footer(indexed_file: Path | None, chunks: int, elapsed: float, settings_ms: float, lancedb_ms: float) -> None:
    print()
    print("=" * 60)
    print("  EXECUTION SUMMARY")
    print("-" * 60)
    if indexed_file is not None:
        print(f"  Indexed file         : {indexed_file}")
        print(f"  Chunks stored        : {chunks}")
        print("-" * 60)
    print(f"  Settings + .env load : {settings_ms:>8.1f}ms")
    print(f"  LanceDB connection   : {lancedb_ms:>8.1f}ms")
    print(f"  Total elapsed        : {elapsed:>8.2f}s")
    print("=" * 60)
    print()


# ── Entry point ────────────────────────────────────────────────────────

if __name__ == "__main__":
    sys.exit(main())
