"""
Segment importance scoring.

The Pruner ranks segments through an ImportanceScorer. The default
PatternImportanceScorer combines a structural base score with what the
agent's learned patterns say about a segment; tests substitute
FixedImportanceScorer for reproducible rankings.
"""

import re
from typing import Dict, List, Mapping, Optional, Protocol, Sequence, runtime_checkable

from context_optimizer.compression.segmenter import (
    BOILERPLATE,
    CODE,
    HEADING,
    LIST,
    PROSE,
    Segment,
)
from context_optimizer.compression.similarity import shingles, similarity
from context_optimizer.models.pattern import Pattern, PatternType, normalize_pattern_text

# Structural fallback when no pattern applies
STRUCTURAL_SCORES: Dict[str, float] = {
    BOILERPLATE: 0.2,
    PROSE: 0.5,
    LIST: 0.5,
    CODE: 0.8,
    HEADING: 0.9,
}

# High-value patterns whose importance fell below this no longer protect
HIGH_VALUE_MIN_IMPORTANCE = 0.5

# Truncated pattern texts match as a prefix once they are this long
PREFIX_MATCH_MIN_CHARS = 80

_WORD = re.compile(r"\w+")

REMOVAL_TYPES = (PatternType.REDUNDANT.value, PatternType.BOILERPLATE.value)


class PatternMatcher:
    """
    Finds the learned pattern a segment corresponds to.

    A segment matches a pattern when their normalized texts are equal, when
    a long (possibly truncated) pattern is a prefix of the segment, or when
    their similarity reaches the threshold.
    """

    def __init__(self, patterns: Sequence[Pattern], threshold: float = 0.9):
        self.threshold = threshold
        self._patterns: List[Pattern] = list(patterns)
        self._normalized = [normalize_pattern_text(p.pattern_text) for p in self._patterns]

    def __len__(self) -> int:
        return len(self._patterns)

    def match(self, text: str, types: Optional[Sequence[str]] = None) -> Optional[Pattern]:
        """Best matching pattern of the given types, or None."""
        if not self._patterns:
            return None

        normalized = normalize_pattern_text(text)
        if not normalized:
            return None
        size = len(shingles(normalized))

        best: Optional[Pattern] = None
        best_score = 0.0
        for pattern, pattern_text in zip(self._patterns, self._normalized):
            if types is not None and str(pattern.pattern_type) not in types:
                continue

            if pattern_text == normalized:
                return pattern
            if len(pattern_text) >= PREFIX_MATCH_MIN_CHARS and normalized.startswith(pattern_text):
                score = 1.0
            else:
                # Jaccard >= t needs the smaller shingle set to be >= t of the larger
                other = len(shingles(pattern_text))
                if not size or not other or min(size, other) < self.threshold * max(size, other):
                    continue
                score = similarity(normalized, pattern_text)

            if score >= self.threshold and score > best_score:
                best, best_score = pattern, score

        return best

    def protecting_pattern(self, text: str) -> Optional[Pattern]:
        """High-value pattern that shields text from pruning, if any."""
        pattern = self.match(text, (PatternType.HIGH_VALUE.value,))
        if pattern is not None and pattern.importance_score >= HIGH_VALUE_MIN_IMPORTANCE:
            return pattern
        return None

    def is_protected(self, segment: Segment) -> bool:
        return self.protecting_pattern(segment.body) is not None

    def removal_pattern(self, text: str) -> Optional[Pattern]:
        """Redundant/boilerplate pattern matching text, if any."""
        return self.match(text, REMOVAL_TYPES)


@runtime_checkable
class ImportanceScorer(Protocol):
    """Scores a segment in [0, 1]; higher means keep."""

    def score(self, segment: Segment, matcher: PatternMatcher) -> float:
        ...  # pragma: no cover


def lexical_density(text: str) -> float:
    """Distinct words over total words (0.0 for no words)."""
    words = [w.lower() for w in _WORD.findall(text)]
    if not words:
        return 0.0
    return len(set(words)) / len(words)


class PatternImportanceScorer:
    """
    Default scorer.

    score = 0.6 * structural base + 0.4 * lexical density
    - protected by a high_value pattern: 1.0
    - matching a redundant/boilerplate pattern: multiplied by that
      pattern's importance, so feedback can make removals more or less
      likely
    """

    STRUCTURE_WEIGHT = 0.6

    def score(self, segment: Segment, matcher: PatternMatcher) -> float:
        if matcher.is_protected(segment):
            return 1.0

        base = STRUCTURAL_SCORES.get(segment.tag, 0.5)
        score = self.STRUCTURE_WEIGHT * base + (1 - self.STRUCTURE_WEIGHT) * lexical_density(
            segment.body
        )

        removal = matcher.removal_pattern(segment.body)
        if removal is not None:
            score *= removal.importance_score

        return max(0.0, min(1.0, score))


class FixedImportanceScorer:
    """
    Deterministic scorer for tests and reproducible runs.

    Looks the score up by segment index, then by exact body text, then
    falls back to default.
    """

    def __init__(
        self,
        by_index: Optional[Mapping[int, float]] = None,
        by_text: Optional[Mapping[str, float]] = None,
        default: float = 0.5,
    ):
        self.by_index = dict(by_index or {})
        self.by_text = dict(by_text or {})
        self.default = default

    def score(self, segment: Segment, matcher: PatternMatcher) -> float:
        if segment.index in self.by_index:
            return self.by_index[segment.index]
        return self.by_text.get(segment.body, self.default)
