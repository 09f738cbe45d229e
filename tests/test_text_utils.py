"""Tests for Mnemo text utilities."""

from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone

import pytest

from mnemo.src.utils.text_utils import (
    clean_text_for_embedding,
    clip,
    fnv1a_32,
    format_relative_date,
    format_similarity,
    local_hash_embedding,
    split_text_into_chunks,
    tokenize,
    truncate_with_marker,
)


class TestCleaning:
    def test_collapses_whitespace_and_trims(self):
        assert clean_text_for_embedding("  hello \n\t world  ", 100) == "hello world"

    def test_truncates(self):
        assert clean_text_for_embedding("a" * 50, 10) == "a" * 10

    def test_blank_becomes_empty(self):
        assert clean_text_for_embedding(" \n\t ", 100) == ""


class TestFnv1a:
    def test_known_values(self):
        assert fnv1a_32("") == 0x811C9DC5
        assert fnv1a_32("a") == 0xE40C292C
        assert fnv1a_32("foobar") == 0xBF9CF968

    def test_stays_32_bit(self):
        assert 0 <= fnv1a_32("x" * 1000) <= 0xFFFFFFFF


class TestHashEmbedding:
    def test_tokenize_lowercases_and_splits_on_punctuation(self):
        assert tokenize("Hello, World! it's 2024") == ["hello", "world", "it", "s", "2024"]

    def test_is_deterministic(self):
        assert local_hash_embedding("the quick brown fox", 384) == local_hash_embedding("the quick brown fox", 384)

    def test_has_requested_width_and_unit_norm(self):
        vector = local_hash_embedding("the quick brown fox", 384)
        assert len(vector) == 384
        assert math.isclose(math.sqrt(sum(v * v for v in vector)), 1.0, rel_tol=1e-9)

    def test_case_and_punctuation_insensitive(self):
        assert local_hash_embedding("Hello, WORLD!", 64) == local_hash_embedding("hello world", 64)

    def test_no_tokens_gives_zero_vector(self):
        assert local_hash_embedding("!!! ???", 8) == [0.0] * 8

    def test_single_token_is_signed_unit_slot(self):
        h = fnv1a_32("hello")
        vector = local_hash_embedding("hello", 32)
        expected_sign = 1.0 if (h >> 1) & 1 else -1.0
        assert vector[h % 32] == expected_sign
        assert sum(1 for v in vector if v != 0.0) == 1


class TestChunking:
    def test_short_text_is_one_chunk(self):
        assert split_text_into_chunks("short text", 1000, 200) == [(0, "short text")]

    def test_blank_text_has_no_chunks(self):
        assert split_text_into_chunks("   ", 1000, 200) == []

    def test_windows_overlap_and_cover_text(self):
        text = "".join(chr(ord("a") + i % 26) for i in range(2500))
        chunks = split_text_into_chunks(text, 1000, 200)

        assert [index for index, _ in chunks] == [0, 1, 2]
        assert [len(chunk) for _, chunk in chunks] == [1000, 1000, 900]
        assert chunks[0][1][-200:] == chunks[1][1][:200]

        rebuilt = chunks[0][1] + "".join(chunk[200:] for _, chunk in chunks[1:])
        assert rebuilt == text

    def test_exact_multiple_does_not_emit_empty_tail(self):
        chunks = split_text_into_chunks("x" * 1000, 1000, 200)
        assert len(chunks) == 1

    def test_rejects_window_that_cannot_advance(self):
        with pytest.raises(ValueError):
            split_text_into_chunks("abc", 100, 100)


class TestFormatting:
    def test_clip(self):
        assert clip("abcdef", 3) == "abc..."
        assert clip("abc", 3) == "abc"

    def test_truncate_with_marker_is_exact_length(self):
        result = truncate_with_marker("x" * 5000, 2000)
        assert len(result) == 2000
        assert result.endswith("...")

    def test_truncate_leaves_short_text(self):
        assert truncate_with_marker("short", 2000) == "short"

    def test_similarity_percentage(self):
        assert format_similarity(0.8734) == "87.3%"

    @pytest.mark.parametrize(("days", "expected"), [(0, "Today"), (1, "Yesterday"), (3, "3 days ago"), (14, "2 weeks ago"), (65, "2 months ago")])
    def test_relative_dates(self, days, expected):
        now = datetime(2024, 6, 30, 12, tzinfo=timezone.utc)
        assert format_relative_date(now - timedelta(days=days), now=now) == expected
