"""End-to-end tests through the ContextEngine facade and the setup CLI."""

from __future__ import annotations

import asyncio
import logging

import pytest
from conftest import DIMS

from mnemo.config import prompt_templates as tpl
from mnemo.scripts import setup_db
from mnemo.src.core.engine import ContextEngine
from mnemo.src.database.vector_store import FILE_TABLE, MESSAGE_TABLE


def _engine(pool, records, db_path, enabled=True) -> ContextEngine:
    return ContextEngine(conversations=records, files=records, enabled=enabled, pool=pool, db_path=db_path, dimensions=DIMS)


class TestContextEngine:
    def test_message_round_trip(self, pool, records, db_path):
        records.add_conversation(1, user_id=42, title="Garden")
        records.add_message(10, 1, "When should I plant tomatoes?")
        engine = _engine(pool, records, db_path)

        async def scenario():
            await engine.start()
            engine.queue_message_vectorization(10, 1, priority="high")
            engine.queue_conversation_vectorization(1)
            await engine.shutdown()
            return await engine.enhance_messages_with_context([{"role": "user", "content": "When should I plant tomatoes?"}], user_id=42, options={"similarity_threshold": 0.5})

        ctx = asyncio.run(scenario())
        assert [m.id for m in ctx.similar_messages] == [10]
        assert [c.id for c in ctx.similar_conversations] == [1]
        assert engine.store.count(MESSAGE_TABLE) == 1

    def test_file_lifecycle(self, pool, records, db_path):
        records.add_file(7, user_id=42, name="guide.txt")
        engine = _engine(pool, records, db_path)
        stored = asyncio.run(engine.index_file_content(7, "Tomatoes need full sun and warm soil."))
        assert stored == 1
        assert asyncio.run(engine.reindex_file(7, "Tomatoes need full sun and warm soil.")) == 1
        engine.clear_file_embeddings(7)
        assert engine.store.count(FILE_TABLE) == 0

    def test_disabled_engine_is_inert(self, pool, records, db_path):
        records.add_conversation(1, user_id=42)
        records.add_message(10, 1, "hello")
        engine = _engine(pool, records, db_path, enabled=False)

        async def scenario():
            await engine.start()
            queued = engine.queue_message_vectorization(10, 1)
            ctx = await engine.enhance_messages_with_context([{"role": "user", "content": "hello"}], user_id=42)
            await engine.shutdown()
            return queued, ctx

        queued, ctx = asyncio.run(scenario())
        assert queued is False
        assert ctx.contextual_system_message == tpl.BASIC_SYSTEM_MESSAGE
        assert pool.is_ready() is False
        assert engine.status()["queue"]["total_pending"] == 0


class TestSetupDbCli:
    def test_status(self, tmp_path, monkeypatch, capsys):
        monkeypatch.setattr("mnemo.config.settings.settings.LANCEDB_PATH", tmp_path / "lancedb")
        assert setup_db.main(["--status"]) == 0
        out = capsys.readouterr().out
        assert "message_embeddings" in out
        assert "file_embeddings" in out

    def test_index_file_requires_file_id(self, tmp_path):
        with pytest.raises(SystemExit):
            setup_db.main(["--index-file", str(tmp_path / "notes.txt")])

    def test_verbose_switches_to_debug(self, tmp_path, monkeypatch):
        monkeypatch.setattr("mnemo.config.settings.settings.LANCEDB_PATH", tmp_path / "lancedb")
        monkeypatch.setattr("mnemo.src.utils.logger._loggers", {})
        monkeypatch.setattr("mnemo.src.utils.logger._level_override", None)
        assert setup_db.main(["--status", "--verbose"]) == 0
        assert logging.getLogger("mnemo.scripts.setup_db").level == logging.DEBUG
