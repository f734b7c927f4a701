"""
Quality scoring of a compression result.

quality = w * similarity(original, compressed)
        + (1 - w) * fraction of high-value segments retained

High-value segments are code blocks, headings and segments matching an
agent's high_value pattern. A text without any high-value segment gets
full structural credit. A condensed segment still counts as retained.
"""

from dataclasses import dataclass
from typing import Collection, List, Optional

from context_optimizer.compression.config import CompressionConfig
from context_optimizer.compression.scoring import PatternMatcher
from context_optimizer.compression.segmenter import CODE, HEADING, Segment
from context_optimizer.compression.similarity import SimilarityScorer

HIGH_VALUE_TAGS = (CODE, HEADING)


@dataclass
class QualityReport:
    score: float
    similarity: float
    structural_retention: float
    high_value_total: int
    high_value_kept: int


class QualityScorer:
    """Estimates how much content a compression preserved."""

    def __init__(
        self,
        config: Optional[CompressionConfig] = None,
        similarity_scorer: Optional[SimilarityScorer] = None,
    ):
        self.config = config or CompressionConfig()
        self.similarity = similarity_scorer or SimilarityScorer()

    def high_value_segments(
        self, segments: List[Segment], matcher: Optional[PatternMatcher] = None
    ) -> List[Segment]:
        return [
            s
            for s in segments
            if s.tag in HIGH_VALUE_TAGS or (matcher is not None and matcher.is_protected(s))
        ]

    def evaluate(
        self,
        original: str,
        compressed: str,
        segments: List[Segment],
        kept_indices: Collection[int],
        matcher: Optional[PatternMatcher] = None,
    ) -> QualityReport:
        if original == compressed:
            return QualityReport(1.0, 1.0, 1.0, 0, 0)

        weight = self.config.similarity_weight
        text_similarity = self.similarity(original, compressed)

        high_value = self.high_value_segments(segments, matcher)
        kept = sum(1 for s in high_value if s.index in kept_indices)
        retention = kept / len(high_value) if high_value else 1.0

        score = weight * text_similarity + (1 - weight) * retention
        return QualityReport(
            score=max(0.0, min(1.0, score)),
            similarity=text_similarity,
            structural_retention=retention,
            high_value_total=len(high_value),
            high_value_kept=kept,
        )

    def score(
        self,
        original: str,
        compressed: str,
        segments: List[Segment],
        kept_indices: Collection[int],
        matcher: Optional[PatternMatcher] = None,
    ) -> float:
        return self.evaluate(original, compressed, segments, kept_indices, matcher).score

    def accepts(self, score: float) -> bool:
        return score >= self.config.quality_threshold
