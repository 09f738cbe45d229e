"""
Mnemo - VectorizationQueue
============================
Decouples "a message was saved" from "its embedding exists".

Producers enqueue jobs from any thread; a background ``asyncio`` loop
drains them every ``QUEUE_DRAIN_INTERVAL`` seconds, embeds the target
text and hands the vector to the ``VectorStore``.

Semantics:
  • Two independent queues (``message`` and ``conversation``).
    Priority orders jobs *within* a queue only: high → normal → low,
    FIFO inside a priority.
  • A drain takes a snapshot of each queue when it starts; jobs added
    meanwhile wait for the next cycle.  Only one drain per queue runs
    at a time.
  • A pending conversation is never queued twice.
  • A failing job is logged and dropped.  Nothing is retried.
  • A ``high`` enqueue wakes the background loop immediately.
  • With vectorization disabled every public call is a no-op and
    ``status()`` reports zeros.

Usage:
    queue = VectorizationQueue(generator, store, conversations=repo)
    queue.start()                                  # inside a running loop
    queue.queue_message_vectorization(101, conversation_id=7, priority="high")
    await queue.shutdown()
"""

from __future__ import annotations

import asyncio
import threading
import time

from mnemo.config.settings import settings
from mnemo.src.core.embedding_generator import EmbeddingGenerator
from mnemo.src.core.models import PRIORITY_ORDER, Priority, TargetKind, VectorizationJob
from mnemo.src.database.record_sources import ConversationSource
from mnemo.src.database.vector_store import VectorStore
from mnemo.src.utils.logger import get_logger
from mnemo.src.utils.text_utils import ELLIPSIS

logger = get_logger(__name__)

EMPTY_CONVERSATION_SUMMARY = "Empty conversation"
_KINDS: tuple[TargetKind, ...] = ("message", "conversation")


class VectorizationQueue:
    """
    Parameters
    ----------
    generator : EmbeddingGenerator
        Embeds job text.
    store : VectorStore
        Receives the resulting vectors.
    conversations : ConversationSource
        Supplies message content and conversation transcripts.
    enabled
        Feature flag.  Defaults to ``settings.vectorization_enabled``.
    drain_interval
        Seconds between background drains.
    summary_max_chars
        Length bound for generated conversation summaries.
    """

    __slots__ = ("generator", "store", "conversations", "enabled", "drain_interval", "_summary_max_chars", "_lock", "_queues", "_draining", "_loop", "_wake", "_task", "_stopping")

    def __init__(self, generator: EmbeddingGenerator, store: VectorStore, conversations: ConversationSource, enabled: bool | None = None, drain_interval: float | None = None, summary_max_chars: int | None = None) -> None:
        self.generator: EmbeddingGenerator = generator
        self.store: VectorStore = store
        self.conversations: ConversationSource = conversations
        self.enabled: bool = settings.vectorization_enabled if enabled is None else enabled
        self.drain_interval: float = drain_interval if drain_interval is not None else settings.QUEUE_DRAIN_INTERVAL
        self._summary_max_chars: int = summary_max_chars or settings.SUMMARY_MAX_CHARS
        self._lock = threading.Lock()
        self._queues: dict[TargetKind, list[VectorizationJob]] = {kind: [] for kind in _KINDS}
        self._draining: dict[TargetKind, bool] = {kind: False for kind in _KINDS}
        self._loop: asyncio.AbstractEventLoop | None = None
        self._wake: asyncio.Event | None = None
        self._task: asyncio.Task | None = None
        self._stopping = False


    # ══════════════════════════════════════════════════════════════════
    #  PRODUCERS
    # ══════════════════════════════════════════════════════════════════

    def enqueue(self, target_id: int, target_kind: TargetKind, conversation_id: int, priority: Priority = "normal") -> bool:
        """
        Add a job.  Safe to call from any thread.

        Returns
        -------
        bool
            ``False`` if the job was not added (feature off, or the
            conversation is already pending).
        """
        if not self.enabled:
            return False
        if target_kind not in self._queues:
            raise ValueError(f"Unknown target kind: {target_kind!r}")
        if priority not in PRIORITY_ORDER:
            raise ValueError(f"Unknown priority: {priority!r}")

        job = VectorizationJob(target_id=target_id, target_kind=target_kind, priority=priority, conversation_id=conversation_id)
        with self._lock:
            queue = self._queues[target_kind]
            if target_kind == "conversation" and any(pending.conversation_id == conversation_id for pending in queue):
                logger.debug("[QUEUE] Conversation %d already queued for summary vectorization", conversation_id)
                return False
            queue.append(job)
            size = len(queue)

        logger.debug("[QUEUE] Queued %s %d (priority=%s, queue size=%d)", target_kind, target_id, priority, size)
        if priority == "high":
            self._wake_loop()
        return True


    def queue_message_vectorization(self, message_id: int, conversation_id: int, priority: Priority = "normal") -> bool:
        return self.enqueue(message_id, "message", conversation_id, priority)


    def queue_multiple_messages(self, message_ids: list[int], conversation_id: int) -> int:
        """Queue several messages at normal priority; returns how many were added."""
        return sum(self.queue_message_vectorization(message_id, conversation_id) for message_id in message_ids)


    def queue_conversation_vectorization(self, conversation_id: int, priority: Priority = "low") -> bool:
        return self.enqueue(conversation_id, "conversation", conversation_id, priority)


    def status(self) -> dict[str, int | bool]:
        if not self.enabled:
            return {"message_queue_len": 0, "conversation_queue_len": 0, "is_draining": False, "total_pending": 0}
        with self._lock:
            messages = len(self._queues["message"])
            conversations = len(self._queues["conversation"])
            draining = any(self._draining.values())
        return {"message_queue_len": messages, "conversation_queue_len": conversations, "is_draining": draining, "total_pending": messages + conversations}


    def clear(self) -> None:
        """Drop every pending job (jobs already in a running drain finish)."""
        if not self.enabled:
            return
        with self._lock:
            for kind in _KINDS:
                self._queues[kind] = []
        logger.info("[QUEUE] Cleared all vectorization queues")


    # ══════════════════════════════════════════════════════════════════
    #  DRAIN
    # ══════════════════════════════════════════════════════════════════

    def _take_snapshot(self, kind: TargetKind) -> list[VectorizationJob] | None:
        """Claim the queue for one drain; ``None`` if another drain holds it."""
        with self._lock:
            if self._draining[kind]:
                return None
            self._draining[kind] = True
            jobs, self._queues[kind] = self._queues[kind], []
        rank = {priority: i for i, priority in enumerate(PRIORITY_ORDER)}
        return sorted(jobs, key=lambda job: rank[job.priority])


    async def drain(self) -> dict[str, int]:
        """
        Process every job present when the drain starts.

        Returns
        -------
        dict[str, int]
            ``{"processed": n, "failed": n}`` over both queues.
        """
        processed = failed = 0
        if not self.enabled:
            return {"processed": 0, "failed": 0}

        for kind in _KINDS:
            jobs = self._take_snapshot(kind)
            if jobs is None:
                logger.debug("[QUEUE] %s queue already draining; skipping", kind)
                continue
            try:
                for job in jobs:
                    try:
                        if await self._process(job):
                            processed += 1
                    except Exception as exc:
                        failed += 1
                        logger.warning("[QUEUE] Dropping %s job %d: %s", job.target_kind, job.target_id, exc)
            finally:
                with self._lock:
                    self._draining[kind] = False

        if processed or failed:
            logger.info("[QUEUE] Drain complete: %d processed, %d failed", processed, failed)
        return {"processed": processed, "failed": failed}


    async def _process(self, job: VectorizationJob) -> bool:
        t_start = time.perf_counter()
        if job.target_kind == "message":
            message = await asyncio.to_thread(self.conversations.get_message, job.target_id)
            if message is None:
                raise LookupError(f"message {job.target_id} not found")
            vector = await self.generator.generate(message.content)
            stored = await asyncio.to_thread(self.store.store_message_embedding, job.target_id, vector)
        else:
            summary = await asyncio.to_thread(self.generate_conversation_summary, job.conversation_id)
            vector = await self.generator.generate(summary)
            stored = await asyncio.to_thread(self.store.store_conversation_embedding, job.conversation_id, summary, vector)

        if stored:
            logger.debug("[QUEUE] Vectorized %s %d in %.1fms (%s)", job.target_kind, job.target_id, (time.perf_counter() - t_start) * 1000, vector.model)
        else:
            logger.debug("[QUEUE] Nothing stored for %s %d (%s)", job.target_kind, job.target_id, vector.model)
        return stored


    def generate_conversation_summary(self, conversation_id: int) -> str:
        """
        Plain-text digest of a conversation: ``"role: content"`` per
        message in order, cut to ``summary_max_chars`` plus ``...``.
        """
        messages = self.conversations.list_conversation_messages(conversation_id)
        if not messages:
            return EMPTY_CONVERSATION_SUMMARY
        summary = "\n".join(f"{m.role}: {m.content}" for m in messages)
        if len(summary) > self._summary_max_chars:
            return summary[: self._summary_max_chars] + ELLIPSIS
        return summary


    # ══════════════════════════════════════════════════════════════════
    #  BACKGROUND LOOP
    # ══════════════════════════════════════════════════════════════════

    def _wake_loop(self) -> None:
        loop, wake = self._loop, self._wake
        if loop is None or wake is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(wake.set)


    def start(self) -> None:
        """Start the background drain loop on the running event loop."""
        if not self.enabled:
            logger.info("[QUEUE] Vectorization disabled; background loop not started")
            return
        if self._task is not None and not self._task.done():
            return
        self._loop = asyncio.get_running_loop()
        self._wake = asyncio.Event()
        self._stopping = False
        self._task = asyncio.create_task(self._run())
        logger.info("[QUEUE] Started background loop (interval=%.1fs)", self.drain_interval)


    async def _run(self) -> None:
        while not self._stopping:
            try:
                await self.drain()
            except Exception:
                logger.exception("[QUEUE] Unexpected error in drain cycle")
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self.drain_interval)
            except asyncio.TimeoutError:
                pass
            self._wake.clear()


    async def stop(self) -> None:
        """Stop the background loop after its current drain finishes."""
        task, self._task = self._task, None
        if task is None:
            return
        self._stopping = True
        self._wake_loop()
        await task
        self._loop = None
        self._wake = None
        logger.info("[QUEUE] Stopped background loop")


    async def shutdown(self) -> None:
        """Stop the loop and run one last drain of whatever is pending."""
        await self.stop()
        await self.drain()


    def __repr__(self) -> str:
        return f"VectorizationQueue(enabled={self.enabled}, status={self.status()})"
