"""
Mnemo - ContextEngine
=======================
Wires the worker pool, embedding generator, vector store, queue and
context enhancer together and exposes the calls the surrounding chat
application needs:

  • ``enhance_messages_with_context``   prompt assembly, per request
  • ``queue_message_vectorization``     after a message is saved
  • ``queue_conversation_vectorization`` after a conversation changes
  • ``index_file_content`` / ``clear_file_embeddings`` / ``reindex_file``
    on file upload, delete, and text change

Every component reads the same ``enabled`` flag given here, so one
engine can be switched off without touching process-wide settings.

Usage:
    engine = ContextEngine(conversations=repo, files=repo)
    await engine.start()
    ctx = await engine.enhance_messages_with_context(messages, user_id=42)
    await engine.shutdown()
"""

from __future__ import annotations

from typing import Any

from mnemo.config.settings import settings
from mnemo.src.core.context_enhancer import ContextEnhancer, ContextOptions, PresetName
from mnemo.src.core.embedding_generator import EmbeddingGenerator
from mnemo.src.core.models import ChatMessage, EnhancedContext, Priority
from mnemo.src.core.vectorization_queue import VectorizationQueue
from mnemo.src.core.worker_pool import EmbeddingWorkerPool
from mnemo.src.database.record_sources import ConversationSource, FileSource
from mnemo.src.database.vector_store import VectorStore
from mnemo.src.utils.logger import get_logger

logger = get_logger(__name__)


class ContextEngine:
    """
    Parameters
    ----------
    conversations : ConversationSource
        Message / conversation records.
    files : FileSource
        File metadata records.
    enabled
        Feature flag shared by every component.  Defaults to
        ``settings.vectorization_enabled``.
    pool
        Pre-built worker pool; one is created from settings otherwise.
    db_path / dimensions
        Forwarded to ``VectorStore``.
    """

    __slots__ = ("enabled", "pool", "generator", "store", "queue", "enhancer")

    def __init__(self, conversations: ConversationSource, files: FileSource, enabled: bool | None = None, pool: EmbeddingWorkerPool | None = None, db_path: str | None = None, dimensions: int | None = None) -> None:
        self.enabled: bool = settings.vectorization_enabled if enabled is None else enabled
        dims = dimensions or settings.EMBEDDING_DIMENSIONS
        self.pool: EmbeddingWorkerPool = pool or EmbeddingWorkerPool()
        self.generator = EmbeddingGenerator(self.pool, enabled=self.enabled, fallback_dimensions=dims)
        self.store = VectorStore(self.generator, conversations=conversations, files=files, db_path=db_path, dimensions=dims, enabled=self.enabled)
        self.queue = VectorizationQueue(self.generator, self.store, conversations=conversations, enabled=self.enabled)
        self.enhancer = ContextEnhancer(self.generator, self.store, enabled=self.enabled)
        logger.info("[ENGINE] Initialised (enabled=%s, dims=%d)", self.enabled, dims)


    # ── Lifecycle ──────────────────────────────────────────────────────

    async def start(self) -> None:
        """Warm the worker pool and start the background queue loop."""
        if not self.enabled:
            logger.info("[ENGINE] Vectorization disabled; nothing to start")
            return
        await self.pool.warm_up()
        self.queue.start()


    async def shutdown(self) -> None:
        await self.queue.shutdown()
        self.pool.shutdown(wait=True)


    # ── Chat path ──────────────────────────────────────────────────────

    async def enhance_messages_with_context(self, messages: list[ChatMessage], user_id: int, options: ContextOptions | PresetName | dict[str, Any] | None = None, project_id: int | None = None) -> EnhancedContext:
        return await self.enhancer.enhance_messages_with_context(messages, user_id, options, project_id)


    # ── Write path ─────────────────────────────────────────────────────

    def queue_message_vectorization(self, message_id: int, conversation_id: int, priority: Priority = "normal") -> bool:
        return self.queue.queue_message_vectorization(message_id, conversation_id, priority)


    def queue_conversation_vectorization(self, conversation_id: int, priority: Priority = "low") -> bool:
        return self.queue.queue_conversation_vectorization(conversation_id, priority)


    async def index_file_content(self, file_id: int, text: str) -> int:
        return await self.store.index_file_content(file_id, text)


    def clear_file_embeddings(self, file_id: int) -> None:
        self.store.clear_file_embeddings(file_id)


    async def reindex_file(self, file_id: int, text: str) -> int:
        return await self.store.reindex_file(file_id, text)


    def status(self) -> dict[str, Any]:
        return {"enabled": self.enabled, "pool": self.pool.stats(), "queue": self.queue.status(), "tables": self.store.status()}
