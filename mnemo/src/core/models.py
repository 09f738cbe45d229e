"""
Mnemo - Data Model
===================
Value types shared by the embedding, storage and context layers.

Ownership
---------
- Embedding rows (``MessageEmbedding``, ``ConversationEmbedding``,
  ``FileChunk``) are written and owned exclusively by ``VectorStore``.
- ``VectorizationJob`` is transient and lives only inside the queue;
  jobs are never persisted and are lost on restart.
- ``EnhancedContext`` is derived per request and never stored.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

# ── Type aliases ───────────────────────────────────────────────────────
ChatMessage = dict[str, Any]
Priority = Literal["high", "normal", "low"]
TargetKind = Literal["message", "conversation"]

PRIORITY_ORDER: tuple[Priority, ...] = ("high", "normal", "low")

EMPTY_TEXT_MODEL = "empty-text"
DISABLED_MODEL = "vectors-disabled"
LOCAL_HASH_MODEL = "local-hash-embedding-v1"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ══════════════════════════════════════════════════════════════════════
#  EMBEDDINGS
# ══════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class EmbeddingVector:
    """
    A fixed-dimension embedding.

    ``len(values) == dimensions`` always holds; a zero-dimension vector
    is the "no signal" sentinel (empty text, vectorization disabled).
    """

    values: list[float]
    model: str
    dimensions: int

    def __post_init__(self) -> None:
        if len(self.values) != self.dimensions:
            raise ValueError(f"Embedding from '{self.model}' declares {self.dimensions} dimensions but has {len(self.values)} values")

    @property
    def is_empty(self) -> bool:
        return self.dimensions == 0

    @classmethod
    def empty(cls, model: str) -> EmbeddingVector:
        return cls(values=[], model=model, dimensions=0)


@dataclass(frozen=True)
class MessageEmbedding:
    message_id: int
    vector: EmbeddingVector
    created_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class ConversationEmbedding:
    conversation_id: int
    summary: str
    vector: EmbeddingVector
    updated_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class FileChunk:
    file_id: int
    chunk_index: int
    text: str
    vector: EmbeddingVector


# ══════════════════════════════════════════════════════════════════════
#  QUEUE JOBS
# ══════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class VectorizationJob:
    target_id: int
    target_kind: TargetKind
    priority: Priority
    conversation_id: int


# ══════════════════════════════════════════════════════════════════════
#  SEARCH RESULTS
# ══════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class SimilarMessage:
    id: int
    content: str
    role: str
    conversation_id: int
    similarity: float
    created_at: datetime


@dataclass(frozen=True)
class SimilarConversation:
    id: int
    title: str
    summary: str
    similarity: float
    created_at: datetime


@dataclass(frozen=True)
class FileChunkMatch:
    file_id: int
    chunk_index: int
    text: str
    similarity: float
    name: str
    mime_type: str

    @property
    def key(self) -> str:
        """Dedup key across attached and supplemental result sets."""
        return f"{self.file_id}:{self.chunk_index}"


@dataclass(frozen=True)
class FileSnippet:
    file_id: int
    file_name: str
    mime_type: str
    similarity: float
    snippet: str


# ══════════════════════════════════════════════════════════════════════
#  ENHANCED CONTEXT
# ══════════════════════════════════════════════════════════════════════


@dataclass
class EnhancedContext:
    similar_messages: list[SimilarMessage]
    similar_conversations: list[SimilarConversation]
    file_snippets: list[FileSnippet]
    contextual_system_message: str
    enhanced_messages: list[ChatMessage]
    degraded_reasons: list[str] = field(default_factory=list)
