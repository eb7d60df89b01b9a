# tests/test_similarity.py
"""
Tests for the text similarity primitives.
"""

import pytest

from persona_context.generation.similarity import (
    content_hash,
    cosine_similarity,
    normalize_for_comparison,
    string_similarity,
    strip_bot_footers,
    word_jaccard_similarity,
)


class TestContentHash:
    """Tests for content_hash."""

    def test_length(self):
        assert len(content_hash("hello")) == 16

    def test_case_and_whitespace_insensitive(self):
        assert content_hash("  Hello World ") == content_hash("hello world")

    def test_different_text(self):
        assert content_hash("hello") != content_hash("hello!")


class TestNormalize:
    """Tests for normalize_for_comparison."""

    def test_markdown_and_punctuation(self):
        assert normalize_for_comparison("**Hello**, _World_!") == "hello world"

    def test_whitespace_collapsed(self):
        assert normalize_for_comparison("a \n\n b\t c") == "a b c"

    def test_apostrophes_kept(self):
        assert normalize_for_comparison("Don't stop") == "don't stop"


class TestWordJaccard:
    """Tests for word_jaccard_similarity."""

    def test_identical_after_normalisation(self):
        assert word_jaccard_similarity("Hello, world!", "hello world") == 1.0

    def test_partial_overlap(self):
        assert word_jaccard_similarity("the cat sat", "the cat sat down") == pytest.approx(0.75)

    def test_disjoint(self):
        assert word_jaccard_similarity("apples pears", "cars boats") == 0.0

    def test_one_empty(self):
        assert word_jaccard_similarity("", "something") == 0.0

    def test_word_order_ignored(self):
        assert word_jaccard_similarity("one two three", "three two one") == 1.0


class TestStringSimilarity:
    """Tests for the bigram Dice coefficient."""

    def test_identical(self):
        assert string_similarity("hello", "hello") == 1.0

    def test_case_insensitive(self):
        assert string_similarity("Hello", "hELLO") == 1.0

    def test_known_value(self):
        # ni ig gh ht vs na ac ch ht: one shared bigram out of eight
        assert string_similarity("night", "nacht") == pytest.approx(0.25)

    def test_single_characters(self):
        assert string_similarity("a", "b") == 0.0

    def test_empty(self):
        assert string_similarity("", "abc") == 0.0

    def test_repeated_bigrams_counted_once_each(self):
        assert string_similarity("aaaa", "aa") == pytest.approx(0.5)

    def test_symmetric(self):
        a, b = "the weather is lovely", "the weather was lovely"
        assert string_similarity(a, b) == pytest.approx(string_similarity(b, a))


class TestCosine:
    """Tests for cosine_similarity."""

    def test_orthogonal(self):
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == 0.0

    def test_parallel(self):
        assert cosine_similarity([1.0, 2.0], [2.0, 4.0]) == pytest.approx(1.0)

    def test_length_mismatch(self):
        assert cosine_similarity([1.0], [1.0, 2.0]) == 0.0

    def test_zero_vector(self):
        assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0

    def test_empty(self):
        assert cosine_similarity([], []) == 0.0


class TestStripBotFooters:
    """Tests for strip_bot_footers."""

    def test_model_footer(self):
        assert strip_bot_footers("Hi there\n-# Model: [gpt-4o](<https://example.com/m>)") == "Hi there"

    def test_model_footer_with_auto_marker(self):
        assert strip_bot_footers("Hi\n-# Model: [m](<https://x>) • 📍 auto") == "Hi"

    def test_stacked_footers(self):
        text = "Hi\n-# 🆓 Using free model (no API key required)\n-# 📍 auto-response"
        assert strip_bot_footers(text) == "Hi"

    def test_footer_in_middle_kept(self):
        text = "Hi\n-# 📍 auto-response\nmore text"
        assert strip_bot_footers(text) == text

    def test_no_footer(self):
        assert strip_bot_footers("plain reply") == "plain reply"
