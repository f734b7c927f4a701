"""
Compression engine: segmentation, strategy, quality gate and fallback.

Pure computation over (text, patterns, config). Quota, persistence and
learning are the service layer's job; the engine never touches storage.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from context_optimizer.compression.config import CompressionConfig
from context_optimizer.compression.quality import QualityScorer
from context_optimizer.compression.scoring import ImportanceScorer, PatternMatcher
from context_optimizer.compression.segmenter import Segment, Segmenter
from context_optimizer.compression.similarity import SimilarityScorer
from context_optimizer.compression.strategies import StrategyResult, get_compression_strategy
from context_optimizer.core.logging import logger
from context_optimizer.core.token_counter import SmartTokenCounter
from context_optimizer.core.tracing import metrics, tracer
from context_optimizer.models.compression import StrategyType, compression_ratio
from context_optimizer.models.pattern import Pattern

IDENTITY = StrategyType.IDENTITY.value


@dataclass
class CompressionOutcome:
    """Accepted result of one engine run."""

    text: str
    strategy_used: str
    quality_score: float
    original_tokens: int
    compressed_tokens: int
    segments: List[Segment] = field(default_factory=list)
    result: Optional[StrategyResult] = None
    strategies_tried: List[str] = field(default_factory=list)

    @property
    def tokens_saved(self) -> int:
        return self.original_tokens - self.compressed_tokens

    @property
    def ratio(self) -> float:
        return compression_ratio(self.original_tokens, self.compressed_tokens)

    @property
    def is_identity(self) -> bool:
        return self.strategy_used == IDENTITY


class CompressionEngine:
    """
    Runs a strategy and falls back until the quality bar is met.

    Order per requested strategy (see FALLBACK_CHAINS):
    hybrid -> prune -> dedup -> identity. A candidate scoring below
    quality_threshold is rejected. Fallback is for quality only: when the
    requested strategy itself saves nothing the text is returned as is
    (identity), and a later candidate that saves nothing is skipped.
    Exhausting the chain returns the original text unmodified (identity,
    quality 1.0, zero savings). That is a successful result, not an error.
    """

    def __init__(
        self,
        config: Optional[CompressionConfig] = None,
        counter: Optional[SmartTokenCounter] = None,
        scorer: Optional[ImportanceScorer] = None,
        similarity_scorer: Optional[SimilarityScorer] = None,
    ):
        self.config = config or CompressionConfig()
        self.counter = counter or SmartTokenCounter()
        self.scorer = scorer
        self.similarity = similarity_scorer or SimilarityScorer()
        self.segmenter = Segmenter(self.config.segment_mode, self.counter)
        self.quality = QualityScorer(self.config, self.similarity)

    def run(
        self,
        text: str,
        patterns: Sequence[Pattern] = (),
        strategy: Optional[str] = None,
    ) -> CompressionOutcome:
        chain = self.config.fallback_chain(strategy)

        if not text:
            return CompressionOutcome(
                text=text,
                strategy_used=IDENTITY,
                quality_score=1.0,
                original_tokens=0,
                compressed_tokens=0,
            )

        original_tokens = self.counter.count_tokens(text)
        segments = self.segmenter.segment(text)
        matcher = PatternMatcher(patterns, self.config.pattern_match_threshold)
        tried: List[str] = []

        for name in chain:
            tried.append(name)
            if name == IDENTITY:
                break

            with tracer.span("compression.strategy", {"strategy": name, "segments": len(segments)}):
                result = get_compression_strategy(
                    name, self.scorer, self.counter, self.similarity
                ).compress(segments, matcher, self.config)
            compressed = result.text
            compressed_tokens = self.counter.count_tokens(compressed) if compressed else 0

            if compressed_tokens <= 0 or compressed_tokens >= original_tokens:
                logger.debug(
                    "Strategy saved nothing, skipping",
                    strategy=name,
                    original_tokens=original_tokens,
                    compressed_tokens=compressed_tokens,
                )
                if name == chain[0]:
                    # Nothing to do for the requested strategy: no other transform runs
                    break
                continue

            report = self.quality.evaluate(text, compressed, segments, result.kept.keys(), matcher)
            if self.quality.accepts(report.score):
                logger.debug(
                    "Compression accepted",
                    strategy=name,
                    quality=round(report.score, 4),
                    ratio=round(compressed_tokens / original_tokens, 4),
                )
                return CompressionOutcome(
                    text=compressed,
                    strategy_used=name,
                    quality_score=report.score,
                    original_tokens=original_tokens,
                    compressed_tokens=compressed_tokens,
                    segments=segments,
                    result=result,
                    strategies_tried=tried,
                )

            metrics.increment("compression.fallbacks")
            logger.info(
                "Compression below quality threshold, falling back",
                strategy=name,
                quality=round(report.score, 4),
                similarity=round(report.similarity, 4),
                structural_retention=round(report.structural_retention, 4),
                threshold=self.config.quality_threshold,
            )

        metrics.increment("compression.identity")
        if IDENTITY not in tried:
            tried.append(IDENTITY)
        return CompressionOutcome(
            text=text,
            strategy_used=IDENTITY,
            quality_score=1.0,
            original_tokens=original_tokens,
            compressed_tokens=original_tokens,
            segments=segments,
            strategies_tried=tried,
        )
