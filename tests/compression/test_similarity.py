"""Tests for the similarity contract."""

import pytest

from context_optimizer.compression.similarity import SimilarityScorer, shingles, similarity

BASE = "the quick brown fox jumps over the lazy dog near the river bank today"


class TestSimilarity:
    """Reflexive, symmetric, monotonic under edits, bounded."""

    @pytest.mark.parametrize("text", [BASE, "", "   ", "...", "a"])
    def test_reflexive(self, text):
        assert similarity(text, text) == 1.0

    @pytest.mark.parametrize(
        "a, b",
        [
            (BASE, "the quick brown fox"),
            (BASE, "a completely different sentence"),
            ("", "word"),
            ("one two three", "three two one"),
        ],
    )
    def test_symmetric(self, a, b):
        assert similarity(a, b) == similarity(b, a)

    def test_bounded(self):
        score = similarity(BASE, "the quick brown cat")
        assert 0.0 <= score <= 1.0

    def test_monotonic_under_edits(self):
        words = BASE.split()
        previous = 1.0
        for edits in range(1, 6):
            edited = list(words)
            for position in range(edits):
                edited[position * 2 + 1] = f"edit{position}"
            score = similarity(BASE, " ".join(edited))
            assert score < previous
            previous = score

    def test_case_and_whitespace_insensitive(self):
        assert similarity("Hello   World", "hello world") == 1.0

    def test_disjoint(self):
        assert similarity("alpha beta", "gamma delta") == 0.0

    def test_wordless_texts(self):
        assert similarity("  ...  ", "...") == 1.0
        assert similarity("...", "!!!") == 0.0
        assert similarity("...", "words") == 0.0

    def test_word_order_lowers_score(self):
        reordered = similarity("one two three four", "four three two one")
        assert 0.0 < reordered < 1.0

    def test_shingles(self):
        assert shingles("A b") == frozenset({("a",), ("b",), ("a", "b")})

    def test_scorer(self):
        scorer = SimilarityScorer()
        assert scorer(BASE, BASE) == 1.0
        assert scorer.is_similar(BASE, BASE + " again", 0.8)
        assert not scorer.is_similar(BASE, "unrelated", 0.8)
