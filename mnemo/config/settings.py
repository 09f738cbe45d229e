"""
Mnemo - Centralized Configuration
==================================
Uses ``pydantic-settings`` (``BaseSettings``) to load *all* configuration
from environment variables and the project-level ``.env`` file.

Feature Flag
------------
``VECTORIZATION_ENABLED`` is the process-wide *default* for the
vectorization feature flag.  It is **off** unless explicitly enabled,
so a missing ``.env`` fails safe.  Services receive the value at
construction time (``enabled=...``) and never read this module again
on the hot path, which lets tests toggle the flag per instance.

Accepted spellings (first match wins):
  • ``VECTORIZATION_DISABLED`` / ``DISABLE_VECTORIZATION`` truthy → off
  • ``VECTORIZATION_ENABLED`` / ``VECTORS_ENABLED`` / ``ENABLE_VECTORIZATION``

Security
--------
``GOOGLE_API_KEY`` is typed as ``SecretStr`` and is only required when
``EMBEDDING_BACKEND`` is ``"google-genai"``.  The raw value is never
exposed in repr, logs, or tracebacks.

Concurrency
-----------
``WORKER_POOL_SIZE`` controls the ``ProcessPoolExecutor`` used for
embedding computation.  When unset it defaults to half the CPU cores,
clamped to 1–4, leaving headroom for request handling.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Literal

from pydantic import AliasChoices, Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application-wide settings.

    Every field is loaded from environment variables (or ``.env``) and
    has a default, so importing this module never fails.

    Attributes
    ----------
    ENV : Literal["dev", "prod"]
        Environment mode controlling logging verbosity.
    LOG_LEVEL : Literal["DEBUG", "INFO", "WARNING", "ERROR"] | None
        Explicit log level; overrides the ``ENV``-derived default.
    VECTORIZATION_ENABLED : bool
        Default for the vectorization feature flag.
    VECTORIZATION_DISABLED : bool
        Kill switch; wins over ``VECTORIZATION_ENABLED``.
    LANCEDB_PATH : Path
        On-disk LanceDB directory holding the embedding tables.
    EMBEDDING_BACKEND : Literal["sentence-transformers", "google-genai"]
        Primary embedding model backend run inside the worker pool.
    EMBEDDING_MODEL_ID : str
        Model identifier passed to the backend.
    GOOGLE_API_KEY : SecretStr | None
        API key for the ``google-genai`` backend.
    EMBEDDING_DIMENSIONS : int
        Width of every stored vector and of the local hash fallback.
    MAX_EMBED_CHARS : int
        Hard truncation applied to cleaned text before embedding.
    WORKER_POOL_SIZE : int | None
        Explicit worker count; ``None`` derives it from the CPU count.
    WORKER_TASK_TIMEOUT : float
        Seconds before a worker task is reported as failed.
    CHUNK_SIZE / CHUNK_OVERLAP : int
        Sliding-window parameters for file chunking.
    QUEUE_DRAIN_INTERVAL : float
        Seconds between background drain cycles.
    SUMMARY_MAX_CHARS : int
        Truncation length for conversation summaries.
    """

    # ── Resolved Absolute Paths ────────────────────────────────────────
    BASE_DIR: Path = Path(__file__).resolve().parent.parent
    LANCEDB_PATH: Path = BASE_DIR / "data" / "lancedb"

    # ── Environment Mode ───────────────────────────────────────────────
    ENV: Literal["dev", "prod"] = "dev"
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR"] | None = None

    # ── Feature Flag ───────────────────────────────────────────────────
    VECTORIZATION_ENABLED: bool = Field(default=False, validation_alias=AliasChoices("VECTORIZATION_ENABLED", "VECTORS_ENABLED", "ENABLE_VECTORIZATION"))
    VECTORIZATION_DISABLED: bool = Field(default=False, validation_alias=AliasChoices("VECTORIZATION_DISABLED", "DISABLE_VECTORIZATION"))

    # ── Embedding Model ────────────────────────────────────────────────
    EMBEDDING_BACKEND: Literal["sentence-transformers", "google-genai"] = "sentence-transformers"
    EMBEDDING_MODEL_ID: str = "sentence-transformers/all-MiniLM-L6-v2"
    GOOGLE_API_KEY: SecretStr | None = None
    EMBEDDING_DIMENSIONS: int = 384
    MAX_EMBED_CHARS: int = 8000

    # ── Worker Pool ────────────────────────────────────────────────────
    WORKER_POOL_SIZE: int | None = None
    WORKER_TASK_TIMEOUT: float = 30.0

    # ── File Chunking ──────────────────────────────────────────────────
    CHUNK_SIZE: int = 1000
    CHUNK_OVERLAP: int = 200

    # ── Vectorization Queue ────────────────────────────────────────────
    QUEUE_DRAIN_INTERVAL: float = 5.0
    SUMMARY_MAX_CHARS: int = 500

    # ── Validators ─────────────────────────────────────────────────────

    @field_validator("EMBEDDING_DIMENSIONS")
    @classmethod
    def _dimensions_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"EMBEDDING_DIMENSIONS must be ≥ 1, got {v}")
        return v


    @field_validator("WORKER_POOL_SIZE")
    @classmethod
    def _workers_range(cls, v: int | None) -> int | None:
        if v is not None and not 1 <= v <= 16:
            raise ValueError(f"WORKER_POOL_SIZE must be 1–16, got {v}")
        return v


    @model_validator(mode="after")
    def _overlap_below_size(self) -> Settings:
        if not 0 <= self.CHUNK_OVERLAP < self.CHUNK_SIZE:
            raise ValueError(f"CHUNK_OVERLAP must be in [0, CHUNK_SIZE), got {self.CHUNK_OVERLAP} for size {self.CHUNK_SIZE}")
        return self

    # ── Derived Values ─────────────────────────────────────────────────

    @property
    def vectorization_enabled(self) -> bool:
        """Resolved feature flag: the kill switch beats the enable switch."""
        if self.VECTORIZATION_DISABLED:
            return False
        return self.VECTORIZATION_ENABLED


    @property
    def log_level(self) -> int:
        """``LOG_LEVEL`` when set, else DEBUG in dev and WARNING in prod."""
        if self.LOG_LEVEL is not None:
            return logging.getLevelName(self.LOG_LEVEL)
        return logging.DEBUG if self.ENV == "dev" else logging.WARNING


    @property
    def worker_pool_size(self) -> int:
        """Explicit ``WORKER_POOL_SIZE`` or half the CPUs, clamped to 1–4."""
        if self.WORKER_POOL_SIZE is not None:
            return self.WORKER_POOL_SIZE
        return min(max((os.cpu_count() or 1) // 2, 1), 4)

    # ── Pydantic Settings Configuration ────────────────────────────────
    model_config = SettingsConfigDict(env_file=Path(__file__).resolve().parent.parent / ".env", env_file_encoding="utf-8", extra="ignore", populate_by_name=True)


# ── Singleton Instance ─────────────────────────────────────────────────
# Import this throughout the project:
#     from mnemo.config.settings import settings
settings = Settings()
