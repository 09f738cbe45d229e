"""Tests for the embedding generator."""

from __future__ import annotations

import asyncio

from conftest import DIMS, FAKE_MODEL, failing_embedding_task, thread_executor

from mnemo.src.core.embedding_generator import EmbeddingGenerator
from mnemo.src.core.models import DISABLED_MODEL, EMPTY_TEXT_MODEL, LOCAL_HASH_MODEL
from mnemo.src.core.outcome import Degraded, Ok
from mnemo.src.core.worker_pool import EmbeddingWorkerPool
from mnemo.src.utils.text_utils import local_hash_embedding


class _RecordingPool:
    """Stands in for the pool and records every dispatched text."""

    def __init__(self) -> None:
        self.texts: list[str] = []

    async def dispatch(self, text: str, task_id: str | None = None):
        self.texts.append(text)
        raise AssertionError("dispatch must not be reached")


class TestFastPaths:
    def test_disabled_returns_empty_without_dispatch(self):
        pool = _RecordingPool()
        gen = EmbeddingGenerator(pool, enabled=False, fallback_dimensions=DIMS)
        vector = asyncio.run(gen.generate("hello world"))
        assert vector.dimensions == 0
        assert vector.values == []
        assert vector.model == DISABLED_MODEL
        assert pool.texts == []

    def test_flag_is_read_per_call(self, generator):
        generator.enabled = False
        assert asyncio.run(generator.generate("hello")).model == DISABLED_MODEL
        generator.enabled = True
        assert asyncio.run(generator.generate("hello")).model == FAKE_MODEL

    def test_blank_text_is_empty_vector(self):
        pool = _RecordingPool()
        gen = EmbeddingGenerator(pool, enabled=True, fallback_dimensions=DIMS)
        vector = asyncio.run(gen.generate("  \n\t "))
        assert vector.is_empty
        assert vector.model == EMPTY_TEXT_MODEL
        assert pool.texts == []


class TestPrimaryAndFallback:
    def test_primary_vector_as_reported(self, generator):
        outcome = asyncio.run(generator.generate_outcome("hello   world"))
        assert isinstance(outcome, Ok)
        assert outcome.value.model == FAKE_MODEL
        assert outcome.value.dimensions == DIMS

    def test_text_is_cleaned_before_dispatch(self, generator):
        a = asyncio.run(generator.generate("hello   world"))
        b = asyncio.run(generator.generate("\nhello world "))
        assert a.values == b.values

    def test_worker_failure_falls_back_to_hash(self):
        pool = EmbeddingWorkerPool(max_workers=1, task_timeout=5.0, executor_factory=thread_executor, task_fn=failing_embedding_task)
        gen = EmbeddingGenerator(pool, enabled=True, fallback_dimensions=DIMS)
        outcome = asyncio.run(gen.generate_outcome("Hello,   World"))
        pool.shutdown()

        assert isinstance(outcome, Degraded)
        assert outcome.reason == "model offline"
        assert outcome.fallback.model == LOCAL_HASH_MODEL
        assert outcome.fallback.dimensions == DIMS
        assert outcome.fallback.values == local_hash_embedding("Hello, World", DIMS)

    def test_no_pool_uses_hash(self):
        gen = EmbeddingGenerator(None, enabled=True, fallback_dimensions=DIMS)
        vector = asyncio.run(gen.generate("some text"))
        assert vector.model == LOCAL_HASH_MODEL
        assert len(vector.values) == vector.dimensions == DIMS

    def test_fallback_is_deterministic(self):
        gen = EmbeddingGenerator(None, enabled=True, fallback_dimensions=DIMS)
        assert asyncio.run(gen.generate("repeatable")).values == asyncio.run(gen.generate("repeatable")).values


class TestBatch:
    def test_order_and_mixed_inputs(self, generator):
        vectors = asyncio.run(generator.generate_batch(["alpha", "", "beta"]))
        assert [v.model for v in vectors] == [FAKE_MODEL, EMPTY_TEXT_MODEL, FAKE_MODEL]
        assert vectors[0].values == local_hash_embedding("alpha", DIMS)
        assert vectors[2].values == local_hash_embedding("beta", DIMS)

    def test_batch_disabled(self):
        gen = EmbeddingGenerator(None, enabled=False, fallback_dimensions=DIMS)
        vectors = asyncio.run(gen.generate_batch(["a", "b"]))
        assert [v.model for v in vectors] == [DISABLED_MODEL, DISABLED_MODEL]

    def test_batch_failures_fall_back_individually(self):
        pool = EmbeddingWorkerPool(max_workers=2, task_timeout=5.0, executor_factory=thread_executor, task_fn=failing_embedding_task)
        gen = EmbeddingGenerator(pool, enabled=True, fallback_dimensions=DIMS)
        vectors = asyncio.run(gen.generate_batch(["one", "two"]))
        pool.shutdown()
        assert all(v.model == LOCAL_HASH_MODEL for v in vectors)
