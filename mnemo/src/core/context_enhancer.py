"""
Mnemo - ContextEnhancer
=========================
Builds the contextual system message that is prepended to an outgoing
chat request.

Pipeline per call:
  1. Feature flag off          → basic context.
  2. No ``user`` message       → basic context.
  3. Embed the last user message; an empty vector → basic context.
  4. File excerpts: attached files first (ranked with no threshold cut), then a
     supplemental general search de-duplicated by ``file_id:chunk_index``.
  5. Similar messages and similar conversations.
  6. Render one system message and bound it to ``max_context_length``.
  7. Replace any existing system messages with it.

Steps 4 and 5 run concurrently on worker threads.  Any exception in
steps 3–6 falls back to the basic context, so a retrieval problem never
prevents the chat turn from being answered.  Recovered failures are
listed on ``EnhancedContext.degraded_reasons``.
"""

from __future__ import annotations

import asyncio
import dataclasses
import time
from dataclasses import dataclass
from typing import Any, Literal

from mnemo.config import prompt_templates as tpl
from mnemo.config.settings import settings
from mnemo.src.core.embedding_generator import EmbeddingGenerator
from mnemo.src.core.models import ChatMessage, EmbeddingVector, EnhancedContext, FileChunkMatch, FileSnippet, SimilarConversation, SimilarMessage
from mnemo.src.core.outcome import Degraded, Outcome, require_user_id
from mnemo.src.database.vector_store import VectorStore
from mnemo.src.utils.logger import get_logger
from mnemo.src.utils.text_utils import ELLIPSIS, clip, format_relative_date, format_similarity, truncate_with_marker

logger = get_logger(__name__)

PresetName = Literal["minimal", "standard", "comprehensive"]

SNIPPET_CHARS = 400
CONVERSATION_SUMMARY_CHARS = 300
MESSAGE_CONTENT_CHARS = 200
RELEVANT_CONTEXT_SIMILARITY = 0.7

ATTACHED_FILE_IDS_KEY = "attachedFileIds"


# ══════════════════════════════════════════════════════════════════════
#  OPTIONS
# ══════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class ContextOptions:
    max_similar_messages: int = 3
    max_similar_conversations: int = 2
    similarity_threshold: float = 0.75
    include_conversation_context: bool = True
    include_message_context: bool = True
    max_context_length: int = 2000
    max_file_chunks: int = 8
    file_similarity_threshold: float = 0.7
    max_attached_file_chunks: int = 12
    attached_file_threshold: float | None = None

    @classmethod
    def preset(cls, name: PresetName) -> ContextOptions:
        """Named parameterisations; unknown names resolve to ``standard``."""
        return PRESETS.get(name, PRESETS["standard"])


PRESETS: dict[str, ContextOptions] = {
    "minimal": ContextOptions(max_similar_messages=1, max_similar_conversations=1, similarity_threshold=0.85, include_message_context=False, max_context_length=800),
    "standard": ContextOptions(),
    "comprehensive": ContextOptions(max_similar_messages=5, max_similar_conversations=3, similarity_threshold=0.65, max_context_length=3000),
}


def _resolve_options(options: ContextOptions | PresetName | dict[str, Any] | None) -> ContextOptions:
    if options is None:
        return ContextOptions()
    if isinstance(options, ContextOptions):
        return options
    if isinstance(options, str):
        return ContextOptions.preset(options)
    return dataclasses.replace(ContextOptions(), **options)


# ══════════════════════════════════════════════════════════════════════
#  HELPERS
# ══════════════════════════════════════════════════════════════════════


def find_last_user_message(messages: list[ChatMessage]) -> ChatMessage | None:
    for message in reversed(messages):
        if message.get("role") == "user":
            return message
    return None


def attached_file_ids(message: ChatMessage) -> list[int]:
    """File ids the user attached to *message* (``metadata.attachedFileIds``)."""
    metadata = message.get("metadata") or {}
    ids = metadata.get(ATTACHED_FILE_IDS_KEY) if isinstance(metadata, dict) else None
    if not isinstance(ids, (list, tuple)):
        return []
    return [int(file_id) for file_id in ids]


def with_system_message(messages: list[ChatMessage], system_message: str) -> list[ChatMessage]:
    """Drop existing system messages and prepend *system_message*."""
    return [{"role": "system", "content": system_message}, *(m for m in messages if m.get("role") != "system")]


def basic_context(messages: list[ChatMessage], degraded_reasons: list[str] | None = None) -> EnhancedContext:
    return EnhancedContext(
        similar_messages=[],
        similar_conversations=[],
        file_snippets=[],
        contextual_system_message=tpl.BASIC_SYSTEM_MESSAGE,
        enhanced_messages=with_system_message(messages, tpl.BASIC_SYSTEM_MESSAGE),
        degraded_reasons=list(degraded_reasons or []),
    )


def to_snippet(chunk: FileChunkMatch) -> FileSnippet:
    return FileSnippet(file_id=chunk.file_id, file_name=chunk.name, mime_type=chunk.mime_type, similarity=chunk.similarity, snippet=(chunk.text or "")[:SNIPPET_CHARS])


def render_context(similar_messages: list[SimilarMessage], similar_conversations: list[SimilarConversation], file_snippets: list[FileSnippet], max_length: int) -> str:
    """
    Render the contextual system message.

    Sections appear only when they have entries; the result is cut to
    exactly *max_length* characters (ending in ``...``) when longer.
    """
    parts: list[str] = list(tpl.BASE_INSTRUCTIONS)

    if similar_conversations:
        parts.append(tpl.CONVERSATIONS_HEADER)
        for conv in similar_conversations:
            parts.append(tpl.CONVERSATION_ENTRY.format(date=format_relative_date(conv.created_at), title=conv.title or tpl.UNTITLED_CONVERSATION, summary=clip(conv.summary, CONVERSATION_SUMMARY_CHARS), similarity=format_similarity(conv.similarity)))

    if similar_messages:
        parts.append(tpl.MESSAGES_HEADER)
        for msg in similar_messages:
            parts.append(tpl.MESSAGE_ENTRY.format(date=format_relative_date(msg.created_at), role=msg.role, content=clip(msg.content, MESSAGE_CONTENT_CHARS), similarity=format_similarity(msg.similarity)))

    if file_snippets:
        parts.append(tpl.FILES_HEADER)
        for fs in file_snippets:
            snippet = fs.snippet + (ELLIPSIS if len(fs.snippet) >= SNIPPET_CHARS else "")
            parts.append(tpl.FILE_ENTRY.format(similarity=format_similarity(fs.similarity), name=fs.file_name, mime_type=fs.mime_type, snippet=snippet))

    parts.append(tpl.GUIDELINES_HEADER)
    parts.extend(tpl.USAGE_GUIDELINES)

    full = "\n".join(parts)
    bounded = truncate_with_marker(full, max_length)
    if len(bounded) < len(full):
        logger.debug("[CONTEXT] Truncated context from %d to %d characters", len(full), len(bounded))
    return bounded


# ══════════════════════════════════════════════════════════════════════
#  ENHANCER
# ══════════════════════════════════════════════════════════════════════


class ContextEnhancer:
    """
    Parameters
    ----------
    generator : EmbeddingGenerator
        Embeds the current user message.
    store : VectorStore
        Similarity search backend.
    enabled
        Feature flag.  Defaults to ``settings.vectorization_enabled``.
    """

    __slots__ = ("generator", "store", "enabled")

    def __init__(self, generator: EmbeddingGenerator, store: VectorStore, enabled: bool | None = None) -> None:
        self.generator: EmbeddingGenerator = generator
        self.store: VectorStore = store
        self.enabled: bool = settings.vectorization_enabled if enabled is None else enabled


    async def enhance_messages_with_context(self, messages: list[ChatMessage], user_id: int, options: ContextOptions | PresetName | dict[str, Any] | None = None, project_id: int | None = None) -> EnhancedContext:
        """
        Prepend a retrieval-grounded system message to *messages*.

        Parameters
        ----------
        messages
            Chat history as ``{"role", "content", "metadata"?}`` dicts.
        user_id
            Owner scope for every search.  Required.
        options
            ``ContextOptions``, a preset name, or a dict of overrides
            applied on top of the defaults.
        project_id
            Optional project scope.

        Returns
        -------
        EnhancedContext
            Never raises for environmental failures.

        Raises
        ------
        ScopeError
            If *user_id* is missing.
        """
        require_user_id(user_id)
        opts = _resolve_options(options)

        if not self.enabled:
            return basic_context(messages)

        current = find_last_user_message(messages)
        if current is None:
            logger.debug("[CONTEXT] No user message found; using basic context")
            return basic_context(messages)

        reasons: list[str] = []
        t_start = time.perf_counter()
        try:
            outcome = await self.generator.generate_outcome(str(current.get("content") or ""))
            if isinstance(outcome, Degraded):
                reasons.append(f"embedding: {outcome.reason}")
            vector = outcome.unwrap_or(EmbeddingVector.empty(""))
            if vector.is_empty:
                return basic_context(messages, reasons)

            file_chunks, similar_messages, similar_conversations = await asyncio.gather(
                self._find_file_chunks(vector, user_id, attached_file_ids(current), opts, project_id, reasons),
                self._query(self.store.query_similar_messages, vector, user_id, opts.max_similar_messages, opts.similarity_threshold, project_id, reasons=reasons) if opts.include_message_context else _nothing(),
                self._query(self.store.query_similar_conversations, vector, user_id, opts.max_similar_conversations, opts.similarity_threshold, project_id, reasons=reasons) if opts.include_conversation_context else _nothing(),
            )

            snippets = [to_snippet(chunk) for chunk in file_chunks]
            system_message = render_context(similar_messages, similar_conversations, snippets, opts.max_context_length)
        except Exception as exc:
            logger.exception("[CONTEXT] Context enhancement failed; using basic context")
            return basic_context(messages, [*reasons, f"enhancement failed: {exc}"])

        logger.info("[CONTEXT] user=%s: %d messages, %d conversations, %d file excerpts in %.1fms", user_id, len(similar_messages), len(similar_conversations), len(snippets), (time.perf_counter() - t_start) * 1000)
        return EnhancedContext(
            similar_messages=similar_messages,
            similar_conversations=similar_conversations,
            file_snippets=snippets,
            contextual_system_message=system_message,
            enhanced_messages=with_system_message(messages, system_message),
            degraded_reasons=reasons,
        )


    async def _query(self, query_fn, *args: Any, reasons: list[str]) -> list:
        """Run a blocking store query on a worker thread and record degradation."""
        outcome: Outcome[list] = await asyncio.to_thread(query_fn, *args)
        if isinstance(outcome, Degraded):
            reasons.append(outcome.reason)
        return outcome.unwrap_or([])


    async def _find_file_chunks(self, vector: EmbeddingVector, user_id: int, attached: list[int], opts: ContextOptions, project_id: int | None, reasons: list[str]) -> list[FileChunkMatch]:
        if not attached:
            return await self._query(self.store.query_relevant_file_chunks, vector, user_id, opts.max_file_chunks, opts.file_similarity_threshold, project_id, reasons=reasons)

        chunks: list[FileChunkMatch] = await self._query(self.store.query_relevant_file_chunks_for_files, vector, user_id, attached, opts.max_attached_file_chunks, opts.attached_file_threshold, project_id, reasons=reasons)
        seen = {chunk.key for chunk in chunks}
        supplemental: list[FileChunkMatch] = await self._query(self.store.query_relevant_file_chunks, vector, user_id, opts.max_file_chunks, opts.file_similarity_threshold, project_id, reasons=reasons)
        chunks.extend(chunk for chunk in supplemental if chunk.key not in seen)
        return chunks


    @staticmethod
    def analyze_context_quality(context: EnhancedContext) -> dict[str, bool | float | int]:
        """Summary numbers for monitoring one ``EnhancedContext``."""
        similarities = [m.similarity for m in context.similar_messages] + [c.similarity for c in context.similar_conversations]
        average = sum(similarities) / len(similarities) if similarities else 0.0
        return {
            "has_relevant_context": bool(similarities) and average > RELEVANT_CONTEXT_SIMILARITY,
            "average_similarity": average,
            "context_length": len(context.contextual_system_message),
            "message_count": len(context.similar_messages),
            "conversation_count": len(context.similar_conversations),
        }


async def _nothing() -> list:
    return []
