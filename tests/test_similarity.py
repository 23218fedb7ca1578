"""
Tests for lexbrain.similarity — normalization, stemming, token overlap.
"""

import pytest

from lexbrain.similarity import (
    DEFAULT_MATCH_THRESHOLD,
    normalize,
    overlap,
    stem,
    tokenize,
)


# ── Normalization ──────────────────────────────────────────────────────────


class TestNormalize:
    def test_lowercase(self):
        assert normalize("Hello WORLD") == "hello world"

    def test_punctuation_splits_words(self):
        assert normalize("auth/handshake-timeout!") == "auth handshake timeout"

    def test_collapse_whitespace(self):
        assert normalize("  hello   world\t\nfoo ") == "hello world foo"

    def test_empty(self):
        assert normalize("") == ""
        assert normalize("  \t ") == ""


# ── Stemming ───────────────────────────────────────────────────────────────


class TestStem:
    @pytest.mark.parametrize("word,expected", [
        ("policies", "policy"),
        ("parsing", "pars"),
        ("fixed", "fix"),
        ("boxes", "box"),
        ("patches", "patch"),
        ("classes", "class"),
        ("tokens", "token"),
        ("class", "class"),
        ("bus", "bus"),
        ("thing", "thing"),
        ("red", "red"),
    ])
    def test_rules(self, word, expected):
        assert stem(word) == expected


# ── Tokenization ───────────────────────────────────────────────────────────


class TestTokenize:
    def test_stop_words_dropped(self):
        assert tokenize("fix the auth timeout") == ["fix", "auth", "timeout"]

    def test_only_stop_words_kept(self):
        assert tokenize("the and of") == ["the", "and", "of"]

    def test_stemmed_and_deduped(self):
        assert tokenize("Tokens token TOKEN") == ["token"]

    def test_empty(self):
        assert tokenize("") == []


# ── Scores ─────────────────────────────────────────────────────────────────


class TestOverlap:
    def test_full(self):
        assert overlap(["a", "b"], ["a", "b", "c"]) == 1.0

    def test_half(self):
        assert overlap(["a", "b"], ["a"]) == 0.5

    def test_empty_query(self):
        assert overlap([], ["a"]) == 0.0

    def test_default_threshold(self):
        assert DEFAULT_MATCH_THRESHOLD == 0.5
