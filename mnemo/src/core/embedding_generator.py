"""
Mnemo - EmbeddingGenerator
============================
Turns text into a fixed-dimension ``EmbeddingVector``.

Resolution order for a single text:
  1. Feature flag off        → empty vector tagged ``vectors-disabled``
                               (no cleaning, no dispatch).
  2. Clean (collapse whitespace, trim, truncate to ``MAX_EMBED_CHARS``).
  3. Empty after cleaning    → empty vector tagged ``empty-text``.
  4. Dispatch to the worker pool; a successful result is returned with
     the model tag and dimensionality the worker reported.
  5. Anything else           → deterministic local hash embedding with
     ``EMBEDDING_DIMENSIONS`` dimensions (``local-hash-embedding-v1``).

``generate()`` never raises.  ``generate_outcome()`` returns the same
vector wrapped in ``Ok`` / ``Degraded`` so callers can tell a real
model vector from the hash fallback.
"""

from __future__ import annotations

import time

from mnemo.config.settings import settings
from mnemo.src.core.models import DISABLED_MODEL, EMPTY_TEXT_MODEL, LOCAL_HASH_MODEL, EmbeddingVector
from mnemo.src.core.outcome import Degraded, Ok, Outcome
from mnemo.src.core.worker_pool import EmbeddingWorkerPool
from mnemo.src.utils.logger import get_logger
from mnemo.src.utils.text_utils import clean_text_for_embedding, local_hash_embedding

logger = get_logger(__name__)


class EmbeddingGenerator:
    """
    Parameters
    ----------
    pool
        Worker pool running the primary model; ``None`` means every
        text goes straight to the hash fallback.
    enabled
        Vectorization feature flag.  Defaults to
        ``settings.vectorization_enabled``; read on every call.
    fallback_dimensions
        Width of the hash fallback.  Defaults to ``EMBEDDING_DIMENSIONS``.
    max_chars
        Truncation applied while cleaning.  Defaults to ``MAX_EMBED_CHARS``.
    """

    __slots__ = ("pool", "enabled", "fallback_dimensions", "_max_chars")

    def __init__(self, pool: EmbeddingWorkerPool | None = None, enabled: bool | None = None, fallback_dimensions: int | None = None, max_chars: int | None = None) -> None:
        self.pool: EmbeddingWorkerPool | None = pool
        self.enabled: bool = settings.vectorization_enabled if enabled is None else enabled
        self.fallback_dimensions: int = fallback_dimensions or settings.EMBEDDING_DIMENSIONS
        self._max_chars: int = max_chars or settings.MAX_EMBED_CHARS


    def fallback_embedding(self, clean_text: str) -> EmbeddingVector:
        """Deterministic hash embedding of already-cleaned text."""
        return EmbeddingVector(values=local_hash_embedding(clean_text, self.fallback_dimensions), model=LOCAL_HASH_MODEL, dimensions=self.fallback_dimensions)


    async def generate_outcome(self, text: str) -> Outcome[EmbeddingVector]:
        """
        Embed *text*, reporting whether the primary model was used.

        Returns
        -------
        Ok[EmbeddingVector]
            Primary-model vector, or an empty sentinel (disabled / empty).
        Degraded[EmbeddingVector]
            Hash fallback, with the reason the primary path failed.
        """
        if not self.enabled:
            return Ok(EmbeddingVector.empty(DISABLED_MODEL))

        clean = clean_text_for_embedding(text, self._max_chars)
        if not clean:
            return Ok(EmbeddingVector.empty(EMPTY_TEXT_MODEL))

        if self.pool is None:
            return Degraded("no embedding worker pool configured", self.fallback_embedding(clean))

        t_start = time.perf_counter()
        result = await self.pool.dispatch(clean)
        if result.success and result.embedding:
            logger.debug("[EMBED] %s produced %d dims in %.1fms", result.model, len(result.embedding), (time.perf_counter() - t_start) * 1000)
            return Ok(EmbeddingVector(values=list(result.embedding), model=result.model or "unknown", dimensions=len(result.embedding)))

        reason = result.error or "worker returned no embedding"
        logger.warning("[EMBED] Primary model unavailable (%s); using local hash embedding", reason)
        return Degraded(reason, self.fallback_embedding(clean))


    async def generate(self, text: str) -> EmbeddingVector:
        """Embed *text*; never raises."""
        return (await self.generate_outcome(text)).unwrap_or(EmbeddingVector.empty(EMPTY_TEXT_MODEL))


    async def generate_batch(self, texts: list[str]) -> list[EmbeddingVector]:
        """
        Embed many texts.  Result order matches input order; each text
        resolves independently (one failure falls back alone).
        """
        if not self.enabled:
            return [EmbeddingVector.empty(DISABLED_MODEL) for _ in texts]

        cleaned = [clean_text_for_embedding(text, self._max_chars) for text in texts]
        vectors: list[EmbeddingVector | None] = [None if clean else EmbeddingVector.empty(EMPTY_TEXT_MODEL) for clean in cleaned]
        pending = [i for i, clean in enumerate(cleaned) if clean]

        if self.pool is None:
            for i in pending:
                vectors[i] = self.fallback_embedding(cleaned[i])
            return vectors

        results = await self.pool.dispatch_batch([cleaned[i] for i in pending])
        fallbacks = 0
        for i, result in zip(pending, results):
            if result.success and result.embedding:
                vectors[i] = EmbeddingVector(values=list(result.embedding), model=result.model or "unknown", dimensions=len(result.embedding))
            else:
                vectors[i] = self.fallback_embedding(cleaned[i])
                fallbacks += 1

        if fallbacks:
            logger.warning("[EMBED] %d/%d batch items fell back to local hash embedding", fallbacks, len(pending))
        return vectors


    def __repr__(self) -> str:
        return f"EmbeddingGenerator(enabled={self.enabled}, pool={self.pool!r}, fallback_dims={self.fallback_dimensions})"
