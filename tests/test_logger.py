"""Tests for the Mnemo logger factory."""

from __future__ import annotations

import logging

import pytest

from mnemo.src.utils import logger as log_module
from mnemo.src.utils.logger import get_logger, set_level


@pytest.fixture(autouse=True)
def _isolated_registry(monkeypatch):
    monkeypatch.setattr(log_module, "_loggers", {})
    monkeypatch.setattr(log_module, "_level_override", None)


class TestGetLogger:
    def test_configured_once(self):
        first = get_logger("mnemo.tests.once", level=logging.INFO)
        second = get_logger("mnemo.tests.once", level=logging.ERROR)
        assert first is second
        assert len(first.handlers) == 1
        assert first.propagate is False
        assert first.level == logging.INFO

    def test_default_level_from_settings(self, monkeypatch):
        monkeypatch.setattr("mnemo.config.settings.settings.LOG_LEVEL", "ERROR")
        assert get_logger("mnemo.tests.settings_level").level == logging.ERROR


class TestSetLevel:
    def test_relevels_existing_and_later_loggers(self):
        existing = get_logger("mnemo.tests.existing", level=logging.WARNING)
        set_level(logging.DEBUG)
        later = get_logger("mnemo.tests.later")

        assert existing.level == logging.DEBUG
        assert all(h.level == logging.DEBUG for h in existing.handlers)
        assert later.level == logging.DEBUG
