"""
Mnemo - EmbeddingWorkerPool
=============================
Runs CPU-heavy model inference off the request-handling thread.

The pool owns a ``ProcessPoolExecutor`` (``spawn`` context, so each
worker starts with a clean interpreter and its own model copy).  The
executor hands each submitted task to the next idle worker, which is
least-busy-first dispatch without any bookkeeping on our side.

Design decisions:
  • **Lazy single-flight init** — the executor is built on first use
    behind a double-checked ``threading.Lock``; concurrent first
    callers observe exactly one executor.
  • **Failures are values** — a crashed worker, a timeout or a model
    error comes back as ``EmbeddingWorkerResult(success=False)``; the
    pool never retries and never raises from ``dispatch``.
  • **Broken executors heal** — a ``BrokenExecutor`` drops the
    executor so the next dispatch builds a fresh one.
  • **Injectable seams** — ``executor_factory`` and ``task_fn`` let
    tests drive the pool with a ``ThreadPoolExecutor`` and a fake task.

Usage:
    pool = EmbeddingWorkerPool()
    await pool.warm_up()
    result = await pool.dispatch("hello world")
    pool.shutdown()
"""

from __future__ import annotations

import asyncio
import multiprocessing
import threading
import time
import uuid
from collections.abc import Callable
from concurrent.futures import BrokenExecutor, Executor, ProcessPoolExecutor

from mnemo.config.settings import settings
from mnemo.src.core.embedding_worker import EmbeddingTask, EmbeddingWorkerResult, process_embedding_task
from mnemo.src.utils.logger import get_logger

logger = get_logger(__name__)

ExecutorFactory = Callable[[int], Executor]
TaskFn = Callable[[EmbeddingTask], EmbeddingWorkerResult]

_WARM_UP_TEXT = "warm up"


def _default_executor_factory(max_workers: int) -> Executor:
    return ProcessPoolExecutor(max_workers=max_workers, mp_context=multiprocessing.get_context("spawn"))


class EmbeddingWorkerPool:
    """
    Bounded pool of embedding workers.

    Parameters
    ----------
    max_workers
        Worker count.  Defaults to ``settings.worker_pool_size``.
    backend / model_id / api_key
        Primary model passed to every task.  Default from settings.
    task_timeout
        Seconds before an in-flight task is reported failed.
    executor_factory
        ``(max_workers) -> Executor``.  Defaults to a spawn-context
        ``ProcessPoolExecutor``.
    task_fn
        Picklable callable executed in the worker.
    """

    __slots__ = ("max_workers", "_backend", "_model_id", "_api_key", "_task_timeout", "_executor_factory", "_task_fn", "_executor", "_init_lock", "_stats_lock", "_completed", "_failed", "_in_flight", "_total_ms", "_warmed_up")

    def __init__(self, max_workers: int | None = None, backend: str | None = None, model_id: str | None = None, api_key: str | None = None, task_timeout: float | None = None, executor_factory: ExecutorFactory | None = None, task_fn: TaskFn = process_embedding_task) -> None:
        self.max_workers: int = max_workers or settings.worker_pool_size
        self._backend: str = backend or settings.EMBEDDING_BACKEND
        self._model_id: str = model_id or settings.EMBEDDING_MODEL_ID
        if api_key is None and settings.GOOGLE_API_KEY is not None:
            api_key = settings.GOOGLE_API_KEY.get_secret_value()
        self._api_key: str | None = api_key
        self._task_timeout: float = task_timeout if task_timeout is not None else settings.WORKER_TASK_TIMEOUT
        self._executor_factory: ExecutorFactory = executor_factory or _default_executor_factory
        self._task_fn: TaskFn = task_fn
        self._executor: Executor | None = None
        self._init_lock = threading.Lock()
        self._stats_lock = threading.Lock()
        self._completed = 0
        self._failed = 0
        self._in_flight = 0
        self._total_ms = 0.0
        self._warmed_up = False


    # ── Lifecycle ──────────────────────────────────────────────────────

    def _ensure_executor(self) -> Executor:
        """Return the executor, building it exactly once on first use."""
        if self._executor is None:
            with self._init_lock:
                if self._executor is None:
                    logger.info("[POOL] Starting %d embedding workers (%s / %s)", self.max_workers, self._backend, self._model_id)
                    self._executor = self._executor_factory(self.max_workers)
        return self._executor


    def is_ready(self) -> bool:
        return self._executor is not None


    async def warm_up(self) -> bool:
        """
        Build the executor and push one throwaway task through it so the
        model is loaded before real traffic arrives.

        Returns
        -------
        bool
            Whether the warm-up task succeeded.  A failed warm-up leaves
            the pool usable; callers fall back per request.
        """
        if self._warmed_up:
            return True
        result = await self.dispatch(_WARM_UP_TEXT, task_id="warm-up")
        if result.success:
            self._warmed_up = True
            logger.info("[POOL] Warm-up complete in %.1fms (%s, %d dims)", result.elapsed_ms, result.model, result.dimensions or 0)
        else:
            logger.warning("[POOL] Warm-up failed: %s", result.error)
        return result.success


    def shutdown(self, wait: bool = True) -> None:
        """Stop the workers.  In-flight tasks finish when *wait* is true."""
        with self._init_lock:
            executor, self._executor = self._executor, None
            self._warmed_up = False
        if executor is None:
            return
        logger.info("[POOL] Shutting down embedding workers (wait=%s)", wait)
        executor.shutdown(wait=wait, cancel_futures=not wait)


    def _discard_broken(self, executor: Executor) -> None:
        with self._init_lock:
            if self._executor is executor:
                self._executor = None
                self._warmed_up = False
        executor.shutdown(wait=False, cancel_futures=True)


    # ── Dispatch ───────────────────────────────────────────────────────

    async def dispatch(self, text: str, task_id: str | None = None) -> EmbeddingWorkerResult:
        """
        Run one embedding task on the next free worker.

        Parameters
        ----------
        text
            Cleaned, non-empty text.
        task_id
            Correlation id; generated when omitted.

        Returns
        -------
        EmbeddingWorkerResult
            Never raises for worker-side problems.
        """
        task = EmbeddingTask(text=text, backend=self._backend, model_id=self._model_id, api_key=self._api_key, task_id=task_id or uuid.uuid4().hex)
        t_start = time.perf_counter()

        with self._stats_lock:
            self._in_flight += 1
        try:
            result = await self._run(task)
        finally:
            with self._stats_lock:
                self._in_flight -= 1

        elapsed_ms = (time.perf_counter() - t_start) * 1000
        with self._stats_lock:
            if result.success:
                self._completed += 1
                self._total_ms += elapsed_ms
            else:
                self._failed += 1
        return result


    async def _run(self, task: EmbeddingTask) -> EmbeddingWorkerResult:
        try:
            executor = self._ensure_executor()
        except Exception as exc:
            logger.error("[POOL] Could not start workers: %s", exc)
            return EmbeddingWorkerResult(success=False, error=f"pool unavailable: {exc}", task_id=task.task_id)

        try:
            future = executor.submit(self._task_fn, task)
            return await asyncio.wait_for(asyncio.wrap_future(future), timeout=self._task_timeout)
        except asyncio.TimeoutError:
            logger.warning("[POOL] Task %s timed out after %.1fs", task.task_id, self._task_timeout)
            return EmbeddingWorkerResult(success=False, error=f"timed out after {self._task_timeout}s", task_id=task.task_id)
        except BrokenExecutor as exc:
            logger.error("[POOL] Worker crashed while running task %s: %s", task.task_id, exc)
            self._discard_broken(executor)
            return EmbeddingWorkerResult(success=False, error=f"worker crashed: {exc}", task_id=task.task_id)
        except Exception as exc:
            # submit() after shutdown, or the task callable itself raised
            logger.warning("[POOL] Task %s failed: %s", task.task_id, exc)
            return EmbeddingWorkerResult(success=False, error=str(exc) or type(exc).__name__, task_id=task.task_id)


    async def dispatch_batch(self, texts: list[str]) -> list[EmbeddingWorkerResult]:
        """Dispatch every text concurrently; results keep input order."""
        if not texts:
            return []
        return list(await asyncio.gather(*(self.dispatch(text) for text in texts)))


    # ── Stats ──────────────────────────────────────────────────────────

    def stats(self) -> dict[str, int | float | bool]:
        """
        Snapshot of pool activity.

        ``queued`` and ``running`` are derived from the in-flight count:
        at most ``max_workers`` tasks run, the rest wait in the executor.
        """
        with self._stats_lock:
            in_flight = self._in_flight
            completed = self._completed
            failed = self._failed
            total_ms = self._total_ms
        running = min(in_flight, self.max_workers)
        return {
            "completed": completed,
            "failed": failed,
            "queued": max(in_flight - self.max_workers, 0),
            "running": running,
            "available_workers": self.max_workers - running if self.is_ready() else 0,
            "total_workers": self.max_workers,
            "average_processing_ms": total_ms / completed if completed else 0.0,
            "is_running": self.is_ready(),
        }


    def reset_stats(self) -> None:
        with self._stats_lock:
            self._completed = 0
            self._failed = 0
            self._total_ms = 0.0


    def __repr__(self) -> str:
        return f"EmbeddingWorkerPool(workers={self.max_workers}, backend='{self._backend}', ready={self.is_ready()})"
