"""
Compression strategies.

Every strategy takes (segments, pattern matcher, configuration) and
returns a StrategyResult: the surviving segments (possibly condensed),
what was removed and why, and per-strategy metrics. Strategies are pure:
no I/O, no shared mutable state, safe to run in parallel across requests.

Aggressiveness, least to most: dedup, summarize, prune, hybrid.
"""

import math
import re
import zlib
from collections import defaultdict
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Optional, Set, Tuple

import numpy as np

from context_optimizer.compression.config import CompressionConfig
from context_optimizer.compression.scoring import (
    ImportanceScorer,
    PatternImportanceScorer,
    PatternMatcher,
)
from context_optimizer.compression.segmenter import CODE, Segment, reassemble
from context_optimizer.compression.similarity import SimilarityScorer, shingles
from context_optimizer.core.exceptions import ValidationError
from context_optimizer.core.token_counter import SmartTokenCounter

CONDENSED_MARKER = re.compile(r"\[condensed \d+ tokens\]")
_FENCE_LINE = re.compile(r"^\s*(```|~~~)")
_WHITESPACE = re.compile(r"\s+")


@dataclass
class StrategyResult:
    """
    Output of one strategy run.

    source is the full segment list the text is rebuilt from; kept maps
    segment index to the surviving (possibly condensed) segment.
    """

    strategy: str
    source: List[Segment]
    kept: Dict[int, Segment]
    deduplicated: List[Segment] = field(default_factory=list)
    pruned: List[Segment] = field(default_factory=list)
    protected: List[Segment] = field(default_factory=list)
    summarized: List[Segment] = field(default_factory=list)
    merged_into: Dict[int, int] = field(default_factory=dict)
    metrics: Dict[str, Any] = field(default_factory=dict)

    @property
    def text(self) -> str:
        return reassemble(self.source, self.kept)

    @property
    def kept_segments(self) -> List[Segment]:
        return [self.kept[i] for i in sorted(self.kept)]

    @property
    def removed(self) -> List[Segment]:
        return self.deduplicated + self.pruned

    @property
    def kept_tokens(self) -> int:
        return sum(s.tokens for s in self.kept.values())

    @property
    def source_tokens(self) -> int:
        return sum(s.tokens for s in self.source)

    @property
    def ratio(self) -> float:
        """Segment-level token ratio (1.0 for empty input)."""
        total = self.source_tokens
        return self.kept_tokens / total if total else 1.0


def _unchanged(strategy: str, segments: List[Segment]) -> StrategyResult:
    return StrategyResult(
        strategy=strategy,
        source=list(segments),
        kept={s.index: s for s in segments},
        metrics={"ratio": 1.0, "quality": 1.0},
    )


class CompressionStrategy(ABC):
    """Base class for strategies."""

    name: str = ""

    def compress(
        self,
        segments: List[Segment],
        matcher: Optional[PatternMatcher] = None,
        config: Optional[CompressionConfig] = None,
    ) -> StrategyResult:
        """
        Run the strategy.

        Empty input is returned unchanged with ratio 1.0 and quality 1.0.
        """
        if not segments:
            return _unchanged(self.name, segments)
        return self._compress(
            list(segments), matcher or PatternMatcher([]), config or CompressionConfig()
        )

    @abstractmethod
    def _compress(
        self, segments: List[Segment], matcher: PatternMatcher, config: CompressionConfig
    ) -> StrategyResult:
        pass


class _PrefixIndex:
    """
    Candidate lookup for Jaccard >= threshold (prefix filtering).

    With every shingle set sorted in one global order, two sets whose
    Jaccard index reaches t share at least one of their first
    |s| - ceil(t * |s|) + 1 elements, so only those are indexed.

    The global order is a stable hash, not alphabetical, so common words
    ("and", "the") do not sit in every prefix.
    """

    def __init__(self, threshold: float):
        self.threshold = threshold
        self._postings: Dict[Tuple[str, ...], Set[int]] = defaultdict(set)
        self._prefixes: Dict[int, List[Tuple[str, ...]]] = {}

    @staticmethod
    def _order(gram: Tuple[str, ...]) -> Tuple[int, Tuple[str, ...]]:
        return zlib.crc32("\x1f".join(gram).encode("utf-8")), gram

    def _prefix(self, grams: FrozenSet[Tuple[str, ...]]) -> List[Tuple[str, ...]]:
        ordered = sorted(grams, key=self._order)
        overlap = math.ceil(self.threshold * len(ordered) - 1e-9)
        return ordered[: max(1, len(ordered) - overlap + 1)]

    def add(self, key: int, grams: FrozenSet[Tuple[str, ...]]) -> None:
        prefix = self._prefix(grams)
        self._prefixes[key] = prefix
        for gram in prefix:
            self._postings[gram].add(key)

    def remove(self, key: int) -> None:
        for gram in self._prefixes.pop(key, []):
            self._postings[gram].discard(key)

    def candidates(self, grams: FrozenSet[Tuple[str, ...]]) -> Set[int]:
        if self.threshold <= 0:
            return set(self._prefixes)
        found: Set[int] = set()
        for gram in self._prefix(grams):
            found |= self._postings.get(gram, set())
        return found


class Deduplicator(CompressionStrategy):
    """
    Removes near-duplicate segments.

    Each segment is compared with the retained representatives (all of
    them, or the last `dedup_window`). On a match the denser segment
    survives: higher tag priority, then longer body. A representative that
    already absorbed a duplicate is never replaced, so every removal pairs
    two directly similar segments and A~B, B~C never collapses A with C.

    Candidate lookup uses a Jaccard prefix filter for the default scorer;
    any other scorer is compared against every retained representative.
    """

    name = "dedup"

    def __init__(self, similarity_scorer: Optional[SimilarityScorer] = None):
        self.similarity = similarity_scorer or SimilarityScorer()

    def _compress(
        self, segments: List[Segment], matcher: PatternMatcher, config: CompressionConfig
    ) -> StrategyResult:
        threshold = config.dedup_threshold
        window = config.dedup_window

        representatives: Dict[int, Segment] = {}
        order: List[int] = []
        # Threshold 0 disables prefix filtering
        index = _PrefixIndex(threshold if self.similarity.is_jaccard else 0.0)
        absorbed: Set[int] = set()
        removed: List[Segment] = []
        merged_into: Dict[int, int] = {}
        comparisons = 0

        for segment in segments:
            grams = shingles(segment.body)
            if not grams:
                # Nothing comparable (whitespace, punctuation)
                representatives[segment.index] = segment
                order.append(segment.index)
                continue

            candidates = index.candidates(grams)
            if window > 0:
                candidates &= set(order[-window:])

            best: Optional[Segment] = None
            best_similarity = 0.0
            for key in sorted(candidates):
                representative = representatives[key]
                comparisons += 1
                score = self.similarity(segment.body, representative.body)
                if score >= threshold and score > best_similarity:
                    best, best_similarity = representative, score

            if best is None:
                representatives[segment.index] = segment
                order.append(segment.index)
                index.add(segment.index, grams)
            elif best.index in absorbed or not _denser(segment, best):
                removed.append(segment)
                merged_into[segment.index] = best.index
                absorbed.add(best.index)
            else:
                del representatives[best.index]
                order.remove(best.index)
                index.remove(best.index)
                representatives[segment.index] = segment
                order.append(segment.index)
                index.add(segment.index, grams)
                removed.append(best)
                merged_into[best.index] = segment.index
                absorbed.add(segment.index)

        result = StrategyResult(
            strategy=self.name,
            source=segments,
            kept=dict(representatives),
            deduplicated=sorted(removed, key=lambda s: s.index),
            merged_into=merged_into,
        )
        result.metrics = {
            "comparisons": comparisons,
            "duplicates": len(removed),
            "ratio": result.ratio,
        }
        return result


def _denser(a: Segment, b: Segment) -> bool:
    """True when a carries strictly more information than b."""
    return (a.priority, len(a.body)) > (b.priority, len(b.body))


class Pruner(CompressionStrategy):
    """
    Removes the least important segments.

    Segments protected by a high_value pattern are never removed. The rest
    are removed lowest score first until the removed tokens reach
    (1 - prune_target_ratio) of the input, but never below the floor of
    ceil(prune_min_retained_fraction * n) retained segments (at least one),
    which keeps the highest-scoring quartile by default.
    """

    name = "prune"

    def __init__(self, scorer: Optional[ImportanceScorer] = None):
        self.scorer: ImportanceScorer = scorer or PatternImportanceScorer()

    def _compress(
        self, segments: List[Segment], matcher: PatternMatcher, config: CompressionConfig
    ) -> StrategyResult:
        n = len(segments)
        protected = [s for s in segments if matcher.is_protected(s)]
        protected_ids = {s.index for s in protected}

        scores = np.array([self.scorer.score(s, matcher) for s in segments], dtype=float)
        scores = np.clip(scores, 0.0, 1.0)
        for position, segment in enumerate(segments):
            if segment.index in protected_ids:
                scores[position] = np.inf

        total_tokens = sum(s.tokens for s in segments)
        target_removed = (1.0 - config.prune_target_ratio) * total_tokens
        min_kept = max(1, math.ceil(config.prune_min_retained_fraction * n))
        max_removed = n - min_kept

        removed_positions: List[int] = []
        removed_tokens = 0
        for position in np.argsort(scores, kind="stable"):
            if removed_tokens >= target_removed or len(removed_positions) >= max_removed:
                break
            if segments[position].index in protected_ids:
                break
            removed_positions.append(int(position))
            removed_tokens += segments[position].tokens

        removed_set = set(removed_positions)
        kept = {s.index: s for pos, s in enumerate(segments) if pos not in removed_set}
        pruned = [segments[pos] for pos in sorted(removed_set)]

        finite = scores[np.isfinite(scores)]
        result = StrategyResult(
            strategy=self.name,
            source=segments,
            kept=kept,
            pruned=pruned,
            protected=protected,
        )
        result.metrics = {
            "pruned": len(pruned),
            "protected": len(protected),
            "tokens_removed": removed_tokens,
            "target_tokens_removed": target_removed,
            "floor_reached": len(removed_positions) >= max_removed,
            "score_q1": float(np.quantile(finite, 0.25)) if finite.size else None,
            "ratio": result.ratio,
        }
        return result


class Summarizer(CompressionStrategy):
    """
    Deterministic condensation of long segments.

    Segments above summarize_min_tokens are replaced by a leading excerpt
    plus a "[condensed N tokens]" marker; code keeps its fences and first
    lines. Text already carrying the marker is left alone, so summarizing
    a summary is a no-op.
    """

    name = "summarize"

    def __init__(self, counter: Optional[SmartTokenCounter] = None):
        self.counter = counter or SmartTokenCounter()

    def _compress(
        self, segments: List[Segment], matcher: PatternMatcher, config: CompressionConfig
    ) -> StrategyResult:
        kept: Dict[int, Segment] = {}
        summarized: List[Segment] = []

        for segment in segments:
            condensed = self._condense(segment, config)
            if condensed is None:
                kept[segment.index] = segment
                continue
            tokens = self.counter.count_tokens(condensed)
            if tokens >= segment.tokens:
                kept[segment.index] = segment
                continue
            kept[segment.index] = segment.with_text(condensed, tokens)
            summarized.append(segment)

        result = StrategyResult(
            strategy=self.name, source=segments, kept=kept, summarized=summarized
        )
        result.metrics = {"summarized": len(summarized), "ratio": result.ratio}
        return result

    def _condense(self, segment: Segment, config: CompressionConfig) -> Optional[str]:
        if segment.tokens <= config.summarize_min_tokens:
            return None
        if CONDENSED_MARKER.search(segment.text):
            return None
        if segment.tag == CODE:
            return self._condense_code(segment, config.summarize_excerpt_chars)
        return self._condense_prose(segment, config.summarize_excerpt_chars)

    @staticmethod
    def _condense_prose(segment: Segment, excerpt_chars: int) -> str:
        flat = _WHITESPACE.sub(" ", segment.body).strip()
        excerpt = flat[:excerpt_chars]
        if len(flat) > excerpt_chars and " " in excerpt:
            excerpt = excerpt.rsplit(" ", 1)[0]
        excerpt = excerpt.rstrip(" .,;:!?")
        return f"{excerpt} [condensed {segment.tokens} tokens].{segment.trailing}"

    @staticmethod
    def _condense_code(segment: Segment, excerpt_chars: int) -> str:
        lines = segment.body.splitlines()
        opening = lines[0] if lines and _FENCE_LINE.match(lines[0]) else None
        closing = lines[-1] if len(lines) > 1 and _FENCE_LINE.match(lines[-1]) else None
        inner = lines[1 if opening else 0 : -1 if closing else len(lines)]

        head: List[str] = []
        used = 0
        for line in inner:
            if not line.strip():
                continue
            if head and used + len(line) > excerpt_chars:
                break
            head.append(line)
            used += len(line)

        indent = re.match(r"\s*", head[0]).group(0) if head else ""
        parts = [opening] if opening else []
        parts.extend(head)
        parts.append(f"{indent}... [condensed {segment.tokens} tokens]")
        if closing:
            parts.append(closing)
        return "\n".join(parts) + segment.trailing


class HybridStrategy(CompressionStrategy):
    """
    Deduplicator, then Pruner, then Summarizer on the survivors.

    Deduplication runs first so pruning and summarization never spend
    effort on segments already known to be discarded.
    """

    name = "hybrid"

    def __init__(
        self,
        scorer: Optional[ImportanceScorer] = None,
        counter: Optional[SmartTokenCounter] = None,
        similarity_scorer: Optional[SimilarityScorer] = None,
    ):
        self.deduplicator = Deduplicator(similarity_scorer)
        self.pruner = Pruner(scorer)
        self.summarizer = Summarizer(counter)

    def _compress(
        self, segments: List[Segment], matcher: PatternMatcher, config: CompressionConfig
    ) -> StrategyResult:
        deduped = self.deduplicator.compress(segments, matcher, config)
        pruned = self.pruner.compress(deduped.kept_segments, matcher, config)
        summarized = self.summarizer.compress(pruned.kept_segments, matcher, config)

        result = StrategyResult(
            strategy=self.name,
            source=segments,
            kept=dict(summarized.kept),
            deduplicated=deduped.deduplicated,
            pruned=pruned.pruned,
            protected=pruned.protected,
            summarized=summarized.summarized,
            merged_into=deduped.merged_into,
        )
        result.metrics = {
            "dedup": deduped.metrics,
            "prune": pruned.metrics,
            "summarize": summarized.metrics,
            "ratio": result.ratio,
        }
        return result


STRATEGIES = {
    "dedup": Deduplicator,
    "prune": Pruner,
    "summarize": Summarizer,
    "hybrid": HybridStrategy,
}


def get_compression_strategy(
    name: str,
    scorer: Optional[ImportanceScorer] = None,
    counter: Optional[SmartTokenCounter] = None,
    similarity_scorer: Optional[SimilarityScorer] = None,
) -> CompressionStrategy:
    """Strategy instance by name."""
    if name == "prune":
        return Pruner(scorer)
    if name == "summarize":
        return Summarizer(counter)
    if name == "hybrid":
        return HybridStrategy(scorer, counter, similarity_scorer)
    if name == "dedup":
        return Deduplicator(similarity_scorer)
    raise ValidationError(
        f"Unknown compression strategy: {name}", context={"allowed": sorted(STRATEGIES)}
    )
