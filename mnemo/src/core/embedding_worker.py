"""
Mnemo - Embedding Worker
=========================
Code that runs *inside* a worker process of ``EmbeddingWorkerPool``.

Each worker process loads the primary embedding model once and caches
it for every later task it receives.  Nothing here touches the state of
the request-handling process: a task comes in by value, a
``EmbeddingWorkerResult`` goes back by value.

Backends
--------
``sentence-transformers``
    Local model (default ``all-MiniLM-L6-v2``, 384 dims), mean-pooled
    and L2-normalised.
``google-genai``
    ``GoogleGenerativeAIEmbeddings`` via ``langchain-google-genai``;
    needs an API key in the task.

Any failure (import error, model download, bad output) is reported as
``success=False``; the caller decides what to do about it.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Any

from mnemo.src.utils.logger import get_logger

logger = get_logger(__name__)

# ── Per-process model cache ────────────────────────────────────────────
_MODEL_LOCK = threading.Lock()
_model_cache: dict[tuple[str, str], Any] = {}


@dataclass(frozen=True)
class EmbeddingTask:
    text: str
    backend: str
    model_id: str
    api_key: str | None = None
    task_id: str | None = None


@dataclass(frozen=True)
class EmbeddingWorkerResult:
    success: bool
    embedding: list[float] | None = None
    model: str | None = None
    dimensions: int | None = None
    error: str | None = None
    task_id: str | None = None
    elapsed_ms: float = 0.0


def _load_model(task: EmbeddingTask) -> Any:
    """Return the cached model for *task*, loading it on first use."""
    key = (task.backend, task.model_id)
    if key not in _model_cache:
        with _MODEL_LOCK:
            if key not in _model_cache:
                t_load = time.perf_counter()
                if task.backend == "sentence-transformers":
                    from sentence_transformers import SentenceTransformer

                    _model_cache[key] = SentenceTransformer(task.model_id)
                elif task.backend == "google-genai":
                    from langchain_google_genai import GoogleGenerativeAIEmbeddings

                    if not task.api_key:
                        raise RuntimeError("google-genai backend requires GOOGLE_API_KEY")
                    _model_cache[key] = GoogleGenerativeAIEmbeddings(model=task.model_id, google_api_key=task.api_key)
                else:
                    raise ValueError(f"Unknown embedding backend: {task.backend!r}")
                logger.info("[WORKER] Loaded %s model '%s' in %.1fms", task.backend, task.model_id, (time.perf_counter() - t_load) * 1000)
    return _model_cache[key]


def _encode(model: Any, backend: str, text: str) -> list[float]:
    if backend == "sentence-transformers":
        return [float(v) for v in model.encode(text, normalize_embeddings=True)]
    return [float(v) for v in model.embed_query(text)]


def process_embedding_task(task: EmbeddingTask) -> EmbeddingWorkerResult:
    """
    Worker entry point: embed ``task.text`` with the primary model.

    Returns
    -------
    EmbeddingWorkerResult
        ``success=True`` with the vector, model tag and dimensionality
        exactly as produced by the model, or ``success=False`` with an
        error message.
    """
    t_start = time.perf_counter()

    if not task.text:
        return EmbeddingWorkerResult(success=False, error="Invalid task: text is required", task_id=task.task_id)

    try:
        model = _load_model(task)
        vector = _encode(model, task.backend, task.text)
        if not vector:
            raise RuntimeError("Model returned an empty embedding")
    except Exception as exc:
        logger.warning("[WORKER] Embedding failed for task %s: %s", task.task_id, exc)
        return EmbeddingWorkerResult(success=False, error=str(exc) or type(exc).__name__, task_id=task.task_id, elapsed_ms=(time.perf_counter() - t_start) * 1000)

    return EmbeddingWorkerResult(success=True, embedding=vector, model=f"{task.backend}/{task.model_id}", dimensions=len(vector), task_id=task.task_id, elapsed_ms=(time.perf_counter() - t_start) * 1000)
