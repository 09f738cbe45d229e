"""
Mnemo - VectorStore
=====================
LanceDB-backed persistence and nearest-neighbour search for the three
embedding kinds Mnemo knows about:

  • ``message_embeddings``       one row per message
  • ``conversation_embeddings``  one row per conversation (upserted)
  • ``file_embeddings``          one row per (file, chunk_index)

Design decisions:
  • **Singleton DB connection** — ``_get_connection()`` caches the
    ``lancedb.DBConnection`` per path behind a lock.
  • **Fixed-width vectors** — each table's ``vector`` column is a
    fixed-size ``float32`` list.  A store is bound to one
    dimensionality; a mismatch on open or write raises
    ``EmbeddingDimensionError``, a mismatch on query degrades.
  • **Denormalised scope** — ``user_id`` / ``project_id`` (and display
    fields) are copied onto each row at write time from the record
    sources, so every search is a pre-filtered ANN query.  Mutable
    status (archived conversations, inactive files) is checked live
    against the sources after the search.
  • **Over-fetch then trim** — searches ask LanceDB for ``2 × limit``
    rows, drop those at or below the threshold or failing the live
    checks, and keep the top ``limit`` by similarity.
  • **One model per comparison** — searches prefilter on the query's
    ``embedding_model``, so hash-fallback rows and primary-model rows
    never rank against each other even though they share a width.
  • **Queries never raise** — ``query_*`` methods return ``Ok`` or
    ``Degraded(reason, [])``; the ``find_*`` wrappers unwrap to a list.
    A missing ``user_id`` is misuse and raises ``ScopeError``.

Usage:
    store = VectorStore(generator, conversations=repo, files=repo)
    store.store_message_embedding(message_id, vector)
    hits = store.find_similar_messages(query_vector, user_id=42, limit=3, threshold=0.75)
"""

from __future__ import annotations

import asyncio
import math
import threading
from collections.abc import Callable, Iterable
from datetime import datetime
from typing import Any, TypeVar

import lancedb
import pyarrow as pa

from mnemo.config.settings import settings
from mnemo.src.core.embedding_generator import EmbeddingGenerator
from mnemo.src.core.models import EmbeddingVector, FileChunkMatch, SimilarConversation, SimilarMessage, utcnow
from mnemo.src.core.outcome import Degraded, EmbeddingDimensionError, Ok, Outcome, require_user_id
from mnemo.src.database.record_sources import ConversationSource, FileSource
from mnemo.src.utils.logger import get_logger
from mnemo.src.utils.text_utils import split_text_into_chunks

logger = get_logger(__name__)

R = TypeVar("R")
Row = dict[str, Any]

# ── Table names ────────────────────────────────────────────────────────
MESSAGE_TABLE = "message_embeddings"
CONVERSATION_TABLE = "conversation_embeddings"
FILE_TABLE = "file_embeddings"
TABLE_NAMES = (MESSAGE_TABLE, CONVERSATION_TABLE, FILE_TABLE)

# ── Constants ──────────────────────────────────────────────────────────
_OVERFETCH_FACTOR = 2
_DB_LOCK = threading.Lock()
_db_connection_cache: dict[str, lancedb.DBConnection] = {}

_TIMESTAMP = pa.timestamp("us", tz="UTC")


# ── LanceDB Table Schemas ──────────────────────────────────────────────

def _vector_field(dimensions: int) -> pa.Field:
    return pa.field("vector", pa.list_(pa.float32(), dimensions))


def message_schema(dimensions: int) -> pa.Schema:
    return pa.schema([
        _vector_field(dimensions),
        pa.field("message_id", pa.int64()),
        pa.field("conversation_id", pa.int64()),
        pa.field("user_id", pa.int64()),
        pa.field("project_id", pa.int64(), nullable=True),
        pa.field("role", pa.utf8()),
        pa.field("content", pa.utf8()),
        pa.field("message_created_at", _TIMESTAMP),
        pa.field("embedding_model", pa.utf8()),
        pa.field("embedding_dimensions", pa.int32()),
        pa.field("created_at", _TIMESTAMP),
    ])


def conversation_schema(dimensions: int) -> pa.Schema:
    return pa.schema([
        _vector_field(dimensions),
        pa.field("conversation_id", pa.int64()),
        pa.field("user_id", pa.int64()),
        pa.field("project_id", pa.int64(), nullable=True),
        pa.field("title", pa.utf8()),
        pa.field("summary", pa.utf8()),
        pa.field("conversation_created_at", _TIMESTAMP),
        pa.field("embedding_model", pa.utf8()),
        pa.field("embedding_dimensions", pa.int32()),
        pa.field("updated_at", _TIMESTAMP),
    ])


def file_schema(dimensions: int) -> pa.Schema:
    return pa.schema([
        _vector_field(dimensions),
        pa.field("file_id", pa.int64()),
        pa.field("chunk_index", pa.int32()),
        pa.field("chunk_text", pa.utf8()),
        pa.field("user_id", pa.int64()),
        pa.field("project_id", pa.int64(), nullable=True),
        pa.field("file_name", pa.utf8()),
        pa.field("mime_type", pa.utf8()),
        pa.field("embedding_model", pa.utf8()),
        pa.field("embedding_dimensions", pa.int32()),
        pa.field("created_at", _TIMESTAMP),
    ])


_SCHEMA_BUILDERS: dict[str, Callable[[int], pa.Schema]] = {MESSAGE_TABLE: message_schema, CONVERSATION_TABLE: conversation_schema, FILE_TABLE: file_schema}


def _get_connection(db_path: str) -> lancedb.DBConnection:
    """Return a process-wide ``lancedb.DBConnection`` for *db_path*."""
    if db_path not in _db_connection_cache:
        with _DB_LOCK:
            if db_path not in _db_connection_cache:
                logger.info("[STORE] Opening new LanceDB connection: %s", db_path)
                _db_connection_cache[db_path] = lancedb.connect(db_path)
    return _db_connection_cache[db_path]


def _scope_filter(user_id: int, project_id: int | None) -> str:
    clause = f"user_id = {int(user_id)}"
    if project_id is not None:
        clause += f" AND project_id = {int(project_id)}"
    return clause


def _model_filter(model: str) -> str:
    quoted = model.replace("'", "''")
    return f"embedding_model = '{quoted}'"


def _similarity(row: Row) -> float:
    return 1.0 - float(row["_distance"])


class VectorStore:
    """
    Embedding persistence and similarity search over LanceDB.

    Parameters
    ----------
    generator : EmbeddingGenerator
        Used by ``index_file_content`` to embed chunks.
    conversations : ConversationSource
        Read access to messages / conversations (scope + live status).
    files : FileSource
        Read access to file metadata (scope + live status).
    db_path
        Database directory.  Defaults to ``settings.LANCEDB_PATH``.
    dimensions
        Vector column width.  Defaults to ``settings.EMBEDDING_DIMENSIONS``.
    enabled
        Vectorization feature flag.  Defaults to
        ``settings.vectorization_enabled``.

    Raises
    ------
    EmbeddingDimensionError
        If an existing table was created with a different width.
    """

    __slots__ = ("generator", "conversations", "files", "dimensions", "enabled", "_db_path", "_chunk_size", "_chunk_overlap", "db", "tables")

    def __init__(self, generator: EmbeddingGenerator, conversations: ConversationSource, files: FileSource, db_path: str | None = None, dimensions: int | None = None, enabled: bool | None = None, chunk_size: int | None = None, chunk_overlap: int | None = None) -> None:
        self.generator: EmbeddingGenerator = generator
        self.conversations: ConversationSource = conversations
        self.files: FileSource = files
        self.dimensions: int = dimensions or settings.EMBEDDING_DIMENSIONS
        self.enabled: bool = settings.vectorization_enabled if enabled is None else enabled
        self._db_path: str = str(db_path or settings.LANCEDB_PATH)
        self._chunk_size: int = chunk_size or settings.CHUNK_SIZE
        self._chunk_overlap: int = settings.CHUNK_OVERLAP if chunk_overlap is None else chunk_overlap
        self.db: lancedb.DBConnection | None = None
        self.tables: dict[str, Any] = {}
        self._connect()


    def _connect(self) -> None:
        """Open (or re-use) the connection and open / create every table."""
        try:
            self.db = _get_connection(self._db_path)
            existing = set(self.db.table_names())

            for name, build_schema in _SCHEMA_BUILDERS.items():
                if name in existing:
                    table = self.db.open_table(name)
                    width = table.schema.field("vector").type.list_size
                    if width != self.dimensions:
                        raise EmbeddingDimensionError(f"Table '{name}' stores {width}-dim vectors but the store is configured for {self.dimensions}; drop and re-embed to migrate")
                    logger.info("[STORE] Opened existing table '%s' (%d rows).", name, table.count_rows())
                else:
                    table = self.db.create_table(name, schema=build_schema(self.dimensions))
                    logger.info("[STORE] Created new table '%s' (%d dims).", name, self.dimensions)
                self.tables[name] = table

        except EmbeddingDimensionError:
            raise
        except OSError as exc:
            logger.error("[STORE] LanceDB filesystem error at %s: %s", self._db_path, exc)
            raise
        except Exception:
            logger.exception("[STORE] Unexpected error connecting to LanceDB.")
            raise


    def _check_width(self, vector: EmbeddingVector) -> None:
        if vector.dimensions != self.dimensions:
            raise EmbeddingDimensionError(f"Vector from '{vector.model}' has {vector.dimensions} dims; store expects {self.dimensions}")


    def _write(self, table_name: str, rows: list[Row]) -> None:
        data = pa.Table.from_pylist(rows, schema=_SCHEMA_BUILDERS[table_name](self.dimensions))
        try:
            self.tables[table_name].add(data)
        except OSError as exc:
            logger.error("[STORE] Failed to write %d rows to '%s': %s", len(rows), table_name, exc)
            raise


    # ══════════════════════════════════════════════════════════════════
    #  WRITES
    # ══════════════════════════════════════════════════════════════════

    def store_message_embedding(self, message_id: int, vector: EmbeddingVector) -> bool:
        """
        Persist the embedding of one message.

        Returns
        -------
        bool
            ``False`` when nothing was written (feature off, empty
            vector).

        Raises
        ------
        EmbeddingDimensionError
            If the vector width differs from the table's.
        LookupError
            If the message or its conversation no longer exists.
        """
        if not self.enabled or vector.is_empty:
            return False
        self._check_width(vector)

        message = self.conversations.get_message(message_id)
        if message is None:
            raise LookupError(f"Message {message_id} not found")
        conversation = self.conversations.get_conversation(message.conversation_id)
        if conversation is None:
            raise LookupError(f"Conversation {message.conversation_id} for message {message_id} not found")

        self._write(MESSAGE_TABLE, [{
            "vector": vector.values,
            "message_id": message.id,
            "conversation_id": conversation.id,
            "user_id": conversation.user_id,
            "project_id": conversation.project_id,
            "role": message.role,
            "content": message.content,
            "message_created_at": message.created_at,
            "embedding_model": vector.model,
            "embedding_dimensions": vector.dimensions,
            "created_at": utcnow(),
        }])
        logger.debug("[STORE] Stored embedding for message %d (%s)", message_id, vector.model)
        return True


    def store_conversation_embedding(self, conversation_id: int, summary: str, vector: EmbeddingVector) -> bool:
        """
        Upsert the summary embedding of one conversation.  At most one
        row per conversation; a later call replaces summary, vector and
        ``updated_at``.

        Raises
        ------
        EmbeddingDimensionError
            If the vector width differs from the table's.
        LookupError
            If the conversation no longer exists.
        """
        if not self.enabled or vector.is_empty:
            return False
        self._check_width(vector)

        conversation = self.conversations.get_conversation(conversation_id)
        if conversation is None:
            raise LookupError(f"Conversation {conversation_id} not found")

        row = {
            "vector": vector.values,
            "conversation_id": conversation.id,
            "user_id": conversation.user_id,
            "project_id": conversation.project_id,
            "title": conversation.title or "",
            "summary": summary,
            "conversation_created_at": conversation.created_at,
            "embedding_model": vector.model,
            "embedding_dimensions": vector.dimensions,
            "updated_at": utcnow(),
        }
        data = pa.Table.from_pylist([row], schema=conversation_schema(self.dimensions))
        try:
            self.tables[CONVERSATION_TABLE].merge_insert("conversation_id").when_matched_update_all().when_not_matched_insert_all().execute(data)
        except OSError as exc:
            logger.error("[STORE] Failed to upsert conversation %d: %s", conversation_id, exc)
            raise
        logger.debug("[STORE] Upserted summary embedding for conversation %d", conversation_id)
        return True


    async def index_file_content(self, file_id: int, text: str) -> int:
        """
        Chunk *text*, embed every chunk and persist the results.

        A chunk whose embedding comes back empty or with the wrong width
        is skipped; the rest are still stored.

        Parameters
        ----------
        file_id
            Identifier of a file known to the ``FileSource``.
        text
            Extracted plain text of the file.

        Returns
        -------
        int
            Number of chunks stored (0 when disabled, blank, or unknown
            file).
        """
        if not self.enabled:
            return 0

        record = await asyncio.to_thread(self.files.get_file, file_id)
        if record is None:
            logger.warning("[STORE] Cannot index unknown file %d", file_id)
            return 0

        chunks = split_text_into_chunks(text, self._chunk_size, self._chunk_overlap)
        if not chunks:
            logger.info("[STORE] File %d has no text to index", file_id)
            return 0

        vectors = await self.generator.generate_batch([chunk for _, chunk in chunks])

        now = utcnow()
        rows: list[Row] = []
        for (index, chunk), vector in zip(chunks, vectors):
            if vector.is_empty or vector.dimensions != self.dimensions:
                logger.warning("[STORE] Skipping chunk %d of file %d (%s, %d dims)", index, file_id, vector.model, vector.dimensions)
                continue
            rows.append({
                "vector": vector.values,
                "file_id": record.id,
                "chunk_index": index,
                "chunk_text": chunk,
                "user_id": record.user_id,
                "project_id": record.project_id,
                "file_name": record.name,
                "mime_type": record.mime_type,
                "embedding_model": vector.model,
                "embedding_dimensions": vector.dimensions,
                "created_at": now,
            })

        if rows:
            await asyncio.to_thread(self._write, FILE_TABLE, rows)
        logger.info("[STORE] Indexed %d/%d chunks for file %d ('%s')", len(rows), len(chunks), file_id, record.name)
        return len(rows)


    def clear_file_embeddings(self, file_id: int) -> None:
        """Delete every chunk row of *file_id*.  Idempotent."""
        self.tables[FILE_TABLE].delete(f"file_id = {int(file_id)}")
        logger.info("[STORE] Cleared embeddings for file %d", file_id)


    async def reindex_file(self, file_id: int, text: str) -> int:
        """Replace the chunks of *file_id* with a fresh index of *text*."""
        await asyncio.to_thread(self.clear_file_embeddings, file_id)
        return await self.index_file_content(file_id, text)


    # ══════════════════════════════════════════════════════════════════
    #  SEARCH
    # ══════════════════════════════════════════════════════════════════

    def _search(self, kind: str, table_name: str, query_vector: EmbeddingVector, where: str, limit: int, threshold: float | None, convert: Callable[[Row, float], R | None]) -> Outcome[list[R]]:
        """
        Shared ANN query: pre-filtered search, threshold, live checks,
        sort and trim.  A ``None`` threshold ranks without a cut.  Any
        failure becomes ``Degraded(reason, [])``.
        """
        if not self.enabled or limit <= 0 or query_vector.is_empty:
            return Ok([])
        if query_vector.dimensions != self.dimensions:
            reason = f"{kind} search skipped: query has {query_vector.dimensions} dims, store has {self.dimensions}"
            logger.warning("[STORE] %s", reason)
            return Degraded(reason, [])

        try:
            table = self.tables[table_name]
            if table.count_rows() == 0:
                return Ok([])
            rows: list[Row] = (
                table
                .search(query_vector.values, vector_column_name="vector")
                .distance_type("cosine")
                .where(f"{where} AND {_model_filter(query_vector.model)}", prefilter=True)
                .limit(limit * _OVERFETCH_FACTOR)
                .to_list()
            )
            results: list[tuple[float, R]] = []
            for row in rows:
                similarity = _similarity(row)
                if not math.isfinite(similarity):
                    continue
                if threshold is not None and similarity <= threshold:
                    continue
                item = convert(row, similarity)
                if item is not None:
                    results.append((similarity, item))
        except Exception as exc:
            logger.warning("[STORE] %s search failed: %s", kind, exc)
            return Degraded(f"{kind} search failed: {exc}", [])

        results.sort(key=lambda pair: pair[0], reverse=True)
        return Ok([item for _, item in results[:limit]])


    def query_similar_messages(self, query_vector: EmbeddingVector, user_id: int, limit: int, threshold: float, project_id: int | None = None) -> Outcome[list[SimilarMessage]]:
        require_user_id(user_id)

        def convert(row: Row, similarity: float) -> SimilarMessage | None:
            if self.conversations.get_conversation(row["conversation_id"]) is None:
                return None
            return SimilarMessage(id=row["message_id"], content=row["content"], role=row["role"], conversation_id=row["conversation_id"], similarity=similarity, created_at=row["message_created_at"])

        return self._search("message", MESSAGE_TABLE, query_vector, _scope_filter(user_id, project_id), limit, threshold, convert)


    def query_similar_conversations(self, query_vector: EmbeddingVector, user_id: int, limit: int, threshold: float, project_id: int | None = None) -> Outcome[list[SimilarConversation]]:
        require_user_id(user_id)

        def convert(row: Row, similarity: float) -> SimilarConversation | None:
            conversation = self.conversations.get_conversation(row["conversation_id"])
            if conversation is None or conversation.is_archived:
                return None
            return SimilarConversation(id=row["conversation_id"], title=conversation.title or "", summary=row["summary"], similarity=similarity, created_at=row["conversation_created_at"])

        return self._search("conversation", CONVERSATION_TABLE, query_vector, _scope_filter(user_id, project_id), limit, threshold, convert)


    def _file_converter(self) -> Callable[[Row, float], FileChunkMatch | None]:
        def convert(row: Row, similarity: float) -> FileChunkMatch | None:
            record = self.files.get_file(row["file_id"])
            if record is None or not record.is_active:
                return None
            return FileChunkMatch(file_id=row["file_id"], chunk_index=row["chunk_index"], text=row["chunk_text"], similarity=similarity, name=record.name, mime_type=record.mime_type)

        return convert


    def query_relevant_file_chunks(self, query_vector: EmbeddingVector, user_id: int, limit: int, threshold: float, project_id: int | None = None) -> Outcome[list[FileChunkMatch]]:
        require_user_id(user_id)
        return self._search("file chunk", FILE_TABLE, query_vector, _scope_filter(user_id, project_id), limit, threshold, self._file_converter())


    def query_relevant_file_chunks_for_files(self, query_vector: EmbeddingVector, user_id: int, file_ids: Iterable[int], limit: int, threshold: float | None = None, project_id: int | None = None) -> Outcome[list[FileChunkMatch]]:
        """
        Search restricted to *file_ids*.

        With no threshold (or one at or below zero) the best chunks of the
        attached files come back however weakly they match the query,
        including orthogonal and anti-correlated ones.
        """
        require_user_id(user_id)
        ids = sorted({int(file_id) for file_id in file_ids})
        if not ids:
            return Ok([])
        where = f"{_scope_filter(user_id, project_id)} AND file_id IN ({', '.join(str(i) for i in ids)})"
        cut = threshold if threshold is not None and threshold > 0.0 else None
        return self._search("attached file chunk", FILE_TABLE, query_vector, where, limit, cut, self._file_converter())


    # ── List-returning wrappers ────────────────────────────────────────
    # "No results" and "search unavailable" look the same to callers.

    def find_similar_messages(self, query_vector: EmbeddingVector, user_id: int, limit: int, threshold: float, project_id: int | None = None) -> list[SimilarMessage]:
        return self.query_similar_messages(query_vector, user_id, limit, threshold, project_id).unwrap_or([])


    def find_similar_conversations(self, query_vector: EmbeddingVector, user_id: int, limit: int, threshold: float, project_id: int | None = None) -> list[SimilarConversation]:
        return self.query_similar_conversations(query_vector, user_id, limit, threshold, project_id).unwrap_or([])


    def find_relevant_file_chunks(self, query_vector: EmbeddingVector, user_id: int, limit: int, threshold: float, project_id: int | None = None) -> list[FileChunkMatch]:
        return self.query_relevant_file_chunks(query_vector, user_id, limit, threshold, project_id).unwrap_or([])


    def find_relevant_file_chunks_for_files(self, query_vector: EmbeddingVector, user_id: int, file_ids: Iterable[int], limit: int, threshold: float | None = None, project_id: int | None = None) -> list[FileChunkMatch]:
        return self.query_relevant_file_chunks_for_files(query_vector, user_id, file_ids, limit, threshold, project_id).unwrap_or([])


    # ══════════════════════════════════════════════════════════════════
    #  MAINTENANCE
    # ══════════════════════════════════════════════════════════════════

    def count(self, table_name: str, where: str | None = None) -> int:
        table = self.tables.get(table_name)
        if table is None:
            return 0
        return table.count_rows(where) if where else table.count_rows()


    def status(self) -> dict[str, int]:
        """Row count per embedding table."""
        return {name: self.count(name) for name in TABLE_NAMES}


    def conversation_embedding_updated_at(self, conversation_id: int) -> datetime | None:
        """``updated_at`` of the conversation's summary row, if any."""
        rows = self.tables[CONVERSATION_TABLE].search().where(f"conversation_id = {int(conversation_id)}").limit(1).to_list()
        return rows[0]["updated_at"] if rows else None


    def drop_tables(self) -> None:
        """Drop every embedding table (forces a full re-embedding)."""
        if self.db is None:
            logger.warning("[STORE] No database connection; nothing to drop.")
            return
        for name in TABLE_NAMES:
            try:
                self.db.drop_table(name)
                logger.info("[STORE] Dropped table '%s'.", name)
            except ValueError:
                logger.warning("[STORE] Table '%s' does not exist; nothing to drop.", name)
            except OSError as exc:
                logger.error("[STORE] Filesystem error dropping table '%s': %s", name, exc)
                raise
        self.tables = {}


    def __repr__(self) -> str:
        return f"VectorStore(db='{self._db_path}', dims={self.dimensions}, enabled={self.enabled})"
