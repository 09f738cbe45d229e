"""
Mnemo - Step Outcomes & Error Kinds
====================================
Tagged outcomes returned by the internal steps of the retrieval
pipeline, so the orchestrator can branch on *what happened* instead of
relying on exceptions being swallowed somewhere below it.

Taxonomy
--------
``Ok``
    The step produced its real value.
``Degraded``
    An environmental failure (model down, query error, bad chunk) was
    recovered locally; ``fallback`` is a valid-but-worse value and
    ``reason`` says why.
``ScopeError`` / ``EmbeddingDimensionError``
    Caller misuse.  These are *raised*, never degraded.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    def unwrap_or(self, default: T) -> T:
        return self.value


@dataclass(frozen=True)
class Degraded(Generic[T]):
    reason: str
    fallback: T

    def unwrap_or(self, default: T) -> T:
        return self.fallback


Outcome = Ok[T] | Degraded[T]


class ScopeError(ValueError):
    """Raised when a call is missing its required ``user_id`` scope."""


class EmbeddingDimensionError(ValueError):
    """Raised when a vector's width does not match the store's column."""


def require_user_id(user_id: int | str | None) -> None:
    """Reject a missing user scope; this is a programming error."""
    if user_id is None or user_id == "":
        raise ScopeError("user_id is required to scope similarity search")
