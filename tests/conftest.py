"""Shared test fixtures for Mnemo."""

from __future__ import annotations

import math
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from mnemo.src.core.embedding_generator import EmbeddingGenerator
from mnemo.src.core.embedding_worker import EmbeddingTask, EmbeddingWorkerResult
from mnemo.src.core.models import EmbeddingVector
from mnemo.src.core.worker_pool import EmbeddingWorkerPool
from mnemo.src.database.record_sources import ConversationRecord, FileRecord, MessageRecord
from mnemo.src.database.vector_store import VectorStore
from mnemo.src.utils.text_utils import local_hash_embedding

DIMS = 16
FAKE_MODEL = "fake/hash"


# ── Vectors ────────────────────────────────────────────────────────────

def vec(*values: float) -> EmbeddingVector:
    """Unit-normalised test vector; missing trailing components are zero."""
    padded = list(values) + [0.0] * (DIMS - len(values))
    norm = math.sqrt(sum(v * v for v in padded)) or 1.0
    return EmbeddingVector(values=[v / norm for v in padded], model=FAKE_MODEL, dimensions=DIMS)


# ── Worker tasks (run on threads in tests) ─────────────────────────────

def fake_embedding_task(task: EmbeddingTask) -> EmbeddingWorkerResult:
    values = local_hash_embedding(task.text, DIMS)
    return EmbeddingWorkerResult(success=True, embedding=values, model=FAKE_MODEL, dimensions=DIMS, task_id=task.task_id)


def failing_embedding_task(task: EmbeddingTask) -> EmbeddingWorkerResult:
    return EmbeddingWorkerResult(success=False, error="model offline", task_id=task.task_id)


def thread_executor(max_workers: int) -> ThreadPoolExecutor:
    return ThreadPoolExecutor(max_workers=max_workers)


# ── In-memory record source ────────────────────────────────────────────

class InMemoryRecords:
    """Conversation, message and file records held in dicts."""

    def __init__(self) -> None:
        self.messages: dict[int, MessageRecord] = {}
        self.conversations: dict[int, ConversationRecord] = {}
        self.files: dict[int, FileRecord] = {}

    def add_conversation(self, conversation_id: int, user_id: int, title: str = "", project_id: int | None = None, archived: bool = False, days_ago: int = 0) -> ConversationRecord:
        created = datetime.now(timezone.utc) - timedelta(days=days_ago)
        record = ConversationRecord(id=conversation_id, user_id=user_id, title=title, created_at=created, project_id=project_id, archived_at=created if archived else None)
        self.conversations[conversation_id] = record
        return record

    def add_message(self, message_id: int, conversation_id: int, content: str, role: str = "user", days_ago: int = 0) -> MessageRecord:
        record = MessageRecord(id=message_id, content=content, role=role, conversation_id=conversation_id, created_at=datetime.now(timezone.utc) - timedelta(days=days_ago))
        self.messages[message_id] = record
        return record

    def add_file(self, file_id: int, user_id: int, name: str = "notes.txt", mime_type: str = "text/plain", status: str = "active", project_id: int | None = None) -> FileRecord:
        record = FileRecord(id=file_id, user_id=user_id, name=name, mime_type=mime_type, status=status, project_id=project_id)
        self.files[file_id] = record
        return record

    def get_message(self, message_id: int) -> MessageRecord | None:
        return self.messages.get(message_id)

    def get_conversation(self, conversation_id: int) -> ConversationRecord | None:
        return self.conversations.get(conversation_id)

    def list_conversation_messages(self, conversation_id: int) -> list[MessageRecord]:
        return sorted((m for m in self.messages.values() if m.conversation_id == conversation_id), key=lambda m: m.id)

    def get_file(self, file_id: int) -> FileRecord | None:
        return self.files.get(file_id)


# ── Fixtures ───────────────────────────────────────────────────────────

@pytest.fixture
def records() -> InMemoryRecords:
    return InMemoryRecords()


@pytest.fixture
def pool():
    pool = EmbeddingWorkerPool(max_workers=2, backend="sentence-transformers", model_id="test-model", task_timeout=5.0, executor_factory=thread_executor, task_fn=fake_embedding_task)
    yield pool
    pool.shutdown()


@pytest.fixture
def generator(pool: EmbeddingWorkerPool) -> EmbeddingGenerator:
    return EmbeddingGenerator(pool, enabled=True, fallback_dimensions=DIMS, max_chars=8000)


@pytest.fixture
def db_path(tmp_path: Path) -> str:
    return str(tmp_path / "lancedb")


@pytest.fixture
def store(generator: EmbeddingGenerator, records: InMemoryRecords, db_path: str) -> VectorStore:
    return VectorStore(generator, conversations=records, files=records, db_path=db_path, dimensions=DIMS, enabled=True, chunk_size=100, chunk_overlap=20)
