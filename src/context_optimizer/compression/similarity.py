"""
Text similarity.

Jaccard index over the union of lower-cased word unigrams and word
bigrams. Unigrams make the score tolerant to reordering; bigrams make it
drop as local word order is edited.

Contract (tested directly):
- sim(a, a) == 1.0
- sim(a, b) == sim(b, a)
- each additional edit can only lower the score
"""

import re
from functools import lru_cache
from typing import FrozenSet, Tuple

_WORD = re.compile(r"\w+", re.UNICODE)


@lru_cache(maxsize=4096)
def shingles(text: str) -> FrozenSet[Tuple[str, ...]]:
    """Word unigrams and bigrams of text, lower-cased."""
    words = [w.lower() for w in _WORD.findall(text)]
    grams = {(w,) for w in words}
    grams.update(zip(words, words[1:]))
    return frozenset(grams)


def similarity(a: str, b: str) -> float:
    """
    Normalized similarity in [0, 1].

    Two texts without any word (empty, whitespace, punctuation only) are
    identical when equal after stripping, otherwise they share nothing.
    """
    if a == b:
        return 1.0

    sa = shingles(a)
    sb = shingles(b)
    if not sa and not sb:
        return 1.0 if a.strip() == b.strip() else 0.0
    if not sa or not sb:
        return 0.0

    intersection = len(sa & sb)
    union = len(sa | sb)
    return intersection / union


class SimilarityScorer:
    """
    Pluggable similarity used by the deduplicator and the quality scorer.

    The default is the Jaccard similarity above. Subclasses override
    __call__ to substitute another metric with the same contract.
    """

    def __call__(self, a: str, b: str) -> float:
        return similarity(a, b)

    @property
    def is_jaccard(self) -> bool:
        """True unless a subclass replaced the metric."""
        return type(self).__call__ is SimilarityScorer.__call__

    def is_similar(self, a: str, b: str, threshold: float) -> bool:
        return self(a, b) >= threshold
