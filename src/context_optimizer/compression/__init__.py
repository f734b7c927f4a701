"""
Compression engine.

Pure, side-effect-free pieces: segmentation, similarity, importance
scoring, strategies, quality gate and the fallback engine.
"""

from context_optimizer.compression.config import CompressionConfig, FALLBACK_CHAINS
from context_optimizer.compression.engine import CompressionEngine, CompressionOutcome
from context_optimizer.compression.quality import QualityReport, QualityScorer
from context_optimizer.compression.scoring import (
    FixedImportanceScorer,
    ImportanceScorer,
    PatternImportanceScorer,
    PatternMatcher,
)
from context_optimizer.compression.segmenter import Segment, Segmenter, reassemble
from context_optimizer.compression.similarity import SimilarityScorer, similarity
from context_optimizer.compression.strategies import (
    CompressionStrategy,
    Deduplicator,
    HybridStrategy,
    Pruner,
    StrategyResult,
    Summarizer,
    get_compression_strategy,
)

__all__ = [
    "CompressionConfig",
    "FALLBACK_CHAINS",
    "CompressionEngine",
    "CompressionOutcome",
    "QualityReport",
    "QualityScorer",
    "FixedImportanceScorer",
    "ImportanceScorer",
    "PatternImportanceScorer",
    "PatternMatcher",
    "Segment",
    "Segmenter",
    "reassemble",
    "SimilarityScorer",
    "similarity",
    "CompressionStrategy",
    "Deduplicator",
    "HybridStrategy",
    "Pruner",
    "StrategyResult",
    "Summarizer",
    "get_compression_strategy",
]
