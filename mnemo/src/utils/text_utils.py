"""
Mnemo - Text Utilities
=======================
Helper functions for text cleaning, deterministic hash embeddings,
sliding-window chunking and human-friendly formatting.

These utilities are consumed by the ``EmbeddingGenerator``, the
``VectorStore`` and the ``ContextEnhancer`` and must remain stateless
and side-effect-free: the hash embedding in particular is a pure
function of its input text.
"""

from __future__ import annotations

import math
import re
from datetime import datetime, timezone

# ── Patterns ───────────────────────────────────────────────────────────
_RE_WHITESPACE = re.compile(r"\s+")
_RE_NON_ALNUM = re.compile(r"[^a-z0-9\s]")

# ── FNV-1a (32-bit) constants ──────────────────────────────────────────
_FNV_OFFSET_BASIS = 0x811C9DC5
_FNV_PRIME = 0x01000193
_UINT32_MASK = 0xFFFFFFFF

ELLIPSIS = "..."


# ── Cleaning ───────────────────────────────────────────────────────────

def collapse_whitespace(text: str) -> str:
    """Collapse every whitespace run to a single space and trim."""
    return _RE_WHITESPACE.sub(" ", text or "").strip()


def clean_text_for_embedding(text: str, max_chars: int) -> str:
    """
    Prepare text for an embedding model.

    Steps:
        1. Collapse whitespace runs (spaces, tabs, newlines) to one space.
        2. Trim leading / trailing whitespace.
        3. Hard-truncate to *max_chars* characters.

    Args:
        text:      Raw message / document text.
        max_chars: Upper bound on the returned length.

    Returns:
        Cleaned text; possibly empty.
    """
    return collapse_whitespace(text)[:max_chars]


def clip(text: str, limit: int) -> str:
    """Return *text* cut to *limit* characters, plus ``...`` when cut."""
    text = text or ""
    if len(text) > limit:
        return text[:limit] + ELLIPSIS
    return text


def truncate_with_marker(text: str, max_length: int) -> str:
    """
    Bound *text* to exactly *max_length* characters.

    When truncation happens the last three characters are the
    ``...`` marker, so the result length is always ``max_length``.
    """
    if len(text) <= max_length:
        return text
    if max_length <= len(ELLIPSIS):
        return ELLIPSIS[:max_length]
    return text[: max_length - len(ELLIPSIS)] + ELLIPSIS


# ── Deterministic hash embedding ───────────────────────────────────────

def fnv1a_32(token: str) -> int:
    """32-bit FNV-1a over the character codes of *token*."""
    h = _FNV_OFFSET_BASIS
    for ch in token:
        h ^= ord(ch)
        h = (h * _FNV_PRIME) & _UINT32_MASK
    return h


def tokenize(text: str) -> list[str]:
    """Lowercase alphanumeric word tokens; everything else separates."""
    return _RE_NON_ALNUM.sub(" ", (text or "").lower()).split()


def local_hash_embedding(text: str, dimensions: int) -> list[float]:
    """
    Keyless embedding using the hashing trick.

    Each token is hashed with FNV-1a; the hash picks a slot
    (``h % dimensions``) and bit 1 of the hash picks the sign of a
    unit contribution.  The result is L2-normalised.  A text with no
    tokens yields the all-zero vector (norm treated as 1).

    Args:
        text:       Input text (already cleaned).
        dimensions: Output width.

    Returns:
        A list of *dimensions* floats.
    """
    vector = [0.0] * dimensions
    for token in tokenize(text):
        h = fnv1a_32(token)
        sign = 1.0 if (h >> 1) & 1 else -1.0
        vector[h % dimensions] += sign

    norm = math.sqrt(sum(v * v for v in vector)) or 1.0
    return [v / norm for v in vector]


# ── Chunking ───────────────────────────────────────────────────────────

def split_text_into_chunks(text: str, chunk_size: int, overlap: int) -> list[tuple[int, str]]:
    """
    Split text into overlapping fixed-size windows.

    The text is whitespace-collapsed first.  Window *i+1* starts
    ``overlap`` characters before window *i* ends, so concatenating
    chunk 0 with ``chunk[overlap:]`` of every later chunk reproduces
    the cleaned text.  The final window may be shorter.

    Args:
        text:       Raw file text.
        chunk_size: Window length in characters.
        overlap:    Shared characters between consecutive windows
                    (must be smaller than *chunk_size*).

    Returns:
        ``[(chunk_index, chunk_text), ...]`` with contiguous 0-based
        indices; empty for blank input.

    Raises:
        ValueError: If the window parameters cannot make progress.
    """
    if chunk_size <= 0 or not 0 <= overlap < chunk_size:
        raise ValueError(f"Invalid chunking window: size={chunk_size}, overlap={overlap}")

    clean = collapse_whitespace(text)
    if not clean:
        return []

    chunks: list[tuple[int, str]] = []
    start = 0
    length = len(clean)

    while start < length:
        end = min(start + chunk_size, length)
        chunks.append((len(chunks), clean[start:end]))
        if end == length:
            break
        start = end - overlap

    return chunks


# ── Formatting ─────────────────────────────────────────────────────────

def format_relative_date(when: datetime, now: datetime | None = None) -> str:
    """
    Render *when* relative to *now*: ``Today``, ``Yesterday``,
    ``N days ago``, ``N weeks ago`` or ``N months ago``.
    """
    if now is None:
        now = datetime.now(timezone.utc) if when.tzinfo else datetime.now()
    days = math.floor((now - when).total_seconds() / 86400)

    if days <= 0:
        return "Today"
    if days == 1:
        return "Yesterday"
    if days < 7:
        return f"{days} days ago"
    if days < 30:
        return f"{days // 7} weeks ago"
    return f"{days // 30} months ago"


def format_similarity(similarity: float) -> str:
    """Percentage with one decimal, e.g. ``0.8734`` → ``87.3%``."""
    return f"{similarity * 100:.1f}%"
