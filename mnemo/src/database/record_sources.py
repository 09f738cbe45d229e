"""
Mnemo - Record Sources
=======================
Structural types for the collaborators that own the raw conversation,
message and file records.  Mnemo only *reads* through these; it never
writes a message, conversation or file row.

Any object with matching methods satisfies the protocols (a SQL
repository, an ORM session wrapper, a test double).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol, runtime_checkable

FILE_STATUS_ACTIVE = "active"


# ── Records ────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class MessageRecord:
    id: int
    content: str
    role: str
    conversation_id: int
    created_at: datetime


@dataclass(frozen=True)
class ConversationRecord:
    id: int
    user_id: int
    title: str
    created_at: datetime
    project_id: int | None = None
    archived_at: datetime | None = None

    @property
    def is_archived(self) -> bool:
        return self.archived_at is not None


@dataclass(frozen=True)
class FileRecord:
    id: int
    user_id: int
    name: str
    mime_type: str
    status: str = FILE_STATUS_ACTIVE
    project_id: int | None = None

    @property
    def is_active(self) -> bool:
        return self.status == FILE_STATUS_ACTIVE


# ── Protocols ──────────────────────────────────────────────────────────

@runtime_checkable
class ConversationSource(Protocol):
    """Read access to conversations and their messages."""

    def get_message(self, message_id: int) -> MessageRecord | None: ...

    def get_conversation(self, conversation_id: int) -> ConversationRecord | None: ...

    def list_conversation_messages(self, conversation_id: int) -> list[MessageRecord]: ...


@runtime_checkable
class FileSource(Protocol):
    """Read access to file metadata (text is handed to the store directly)."""

    def get_file(self, file_id: int) -> FileRecord | None: ...
