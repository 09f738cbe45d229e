"""Tests for Mnemo configuration."""

from __future__ import annotations

import logging

import pytest
from pydantic import ValidationError

from mnemo.config.settings import Settings


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in ("VECTORIZATION_ENABLED", "VECTORS_ENABLED", "ENABLE_VECTORIZATION", "VECTORIZATION_DISABLED", "DISABLE_VECTORIZATION", "WORKER_POOL_SIZE", "CHUNK_SIZE", "CHUNK_OVERLAP", "EMBEDDING_DIMENSIONS"):
        monkeypatch.delenv(name, raising=False)


class TestFeatureFlag:
    def test_off_by_default(self):
        assert Settings(_env_file=None).vectorization_enabled is False

    @pytest.mark.parametrize("name", ["VECTORIZATION_ENABLED", "VECTORS_ENABLED", "ENABLE_VECTORIZATION"])
    def test_enable_aliases(self, monkeypatch, name):
        monkeypatch.setenv(name, "true")
        assert Settings(_env_file=None).vectorization_enabled is True

    def test_kill_switch_wins(self, monkeypatch):
        monkeypatch.setenv("VECTORIZATION_ENABLED", "1")
        monkeypatch.setenv("DISABLE_VECTORIZATION", "yes")
        assert Settings(_env_file=None).vectorization_enabled is False


class TestDerivedValues:
    def test_worker_pool_default_is_clamped(self):
        assert 1 <= Settings(_env_file=None).worker_pool_size <= 4

    def test_explicit_worker_pool(self, monkeypatch):
        monkeypatch.setenv("WORKER_POOL_SIZE", "8")
        assert Settings(_env_file=None).worker_pool_size == 8


class TestValidation:
    def test_overlap_must_be_below_size(self, monkeypatch):
        monkeypatch.setenv("CHUNK_SIZE", "100")
        monkeypatch.setenv("CHUNK_OVERLAP", "100")
        with pytest.raises(ValidationError):
            Settings(_env_file=None)

    def test_worker_pool_range(self, monkeypatch):
        monkeypatch.setenv("WORKER_POOL_SIZE", "64")
        with pytest.raises(ValidationError):
            Settings(_env_file=None)

    def test_dimensions_positive(self, monkeypatch):
        monkeypatch.setenv("EMBEDDING_DIMENSIONS", "0")
        with pytest.raises(ValidationError):
            Settings(_env_file=None)


class TestLogLevel:
    def test_env_mode_default(self, monkeypatch):
        monkeypatch.delenv("LOG_LEVEL", raising=False)
        monkeypatch.setenv("ENV", "prod")
        assert Settings(_env_file=None).log_level == logging.WARNING
        monkeypatch.setenv("ENV", "dev")
        assert Settings(_env_file=None).log_level == logging.DEBUG

    def test_explicit_level_wins(self, monkeypatch):
        monkeypatch.setenv("ENV", "prod")
        monkeypatch.setenv("LOG_LEVEL", "INFO")
        assert Settings(_env_file=None).log_level == logging.INFO
