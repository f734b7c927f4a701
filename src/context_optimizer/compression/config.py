"""
Compression configuration.

Immutable view over the ``compression`` and ``learning`` sections of
Settings, handed to every strategy call.
"""

from dataclasses import dataclass, replace
from typing import Any, Optional, Tuple

from context_optimizer.core.exceptions import ValidationError
from context_optimizer.core.secure_config import Settings

# Next-less-aggressive order tried when a result fails the quality bar.
# Summarize falls back straight to identity.
FALLBACK_CHAINS = {
    "hybrid": ("hybrid", "prune", "dedup", "identity"),
    "prune": ("prune", "dedup", "identity"),
    "summarize": ("summarize", "identity"),
    "dedup": ("dedup", "identity"),
    "identity": ("identity",),
}


@dataclass(frozen=True)
class CompressionConfig:
    """Configuration for one compression call."""

    default_strategy: str = "hybrid"
    quality_threshold: float = 0.85
    store_snapshots: bool = True
    segment_mode: str = "auto"

    # Deduplicator
    dedup_threshold: float = 0.9
    dedup_window: int = 0  # 0 = every retained segment

    # Pruner
    prune_target_ratio: float = 0.6
    prune_min_retained_fraction: float = 0.25

    # Summarizer
    summarize_min_tokens: int = 120
    summarize_excerpt_chars: int = 240

    # Quality
    similarity_weight: float = 0.7

    # Learning
    pattern_match_threshold: float = 0.9
    feedback_step: float = 0.1
    max_pattern_chars: int = 500

    cost_per_1k_tokens: float = 0.002

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "CompressionConfig":
        """Build from Settings (a fresh Settings() when none is given)."""
        settings = settings or Settings()
        defaults = cls()

        def get(key: str, fallback: Any) -> Any:
            return settings.get(key, fallback)

        return cls(
            default_strategy=get("compression.default_strategy", defaults.default_strategy),
            quality_threshold=float(
                get("compression.quality_threshold", defaults.quality_threshold)
            ),
            store_snapshots=bool(get("compression.store_snapshots", defaults.store_snapshots)),
            segment_mode=get("compression.segment_mode", defaults.segment_mode),
            dedup_threshold=float(get("compression.dedup.threshold", defaults.dedup_threshold)),
            dedup_window=int(get("compression.dedup.window", defaults.dedup_window)),
            prune_target_ratio=float(
                get("compression.prune.target_ratio", defaults.prune_target_ratio)
            ),
            prune_min_retained_fraction=float(
                get(
                    "compression.prune.min_retained_fraction",
                    defaults.prune_min_retained_fraction,
                )
            ),
            summarize_min_tokens=int(
                get("compression.summarize.min_tokens", defaults.summarize_min_tokens)
            ),
            summarize_excerpt_chars=int(
                get("compression.summarize.excerpt_chars", defaults.summarize_excerpt_chars)
            ),
            similarity_weight=float(
                get("compression.quality.similarity_weight", defaults.similarity_weight)
            ),
            pattern_match_threshold=float(
                get("learning.pattern_match_threshold", defaults.pattern_match_threshold)
            ),
            feedback_step=float(get("learning.feedback_step", defaults.feedback_step)),
            max_pattern_chars=int(get("learning.max_pattern_chars", defaults.max_pattern_chars)),
            cost_per_1k_tokens=float(
                get("pricing.cost_per_1k_tokens", defaults.cost_per_1k_tokens)
            ),
        )

    def with_overrides(self, **changes: Any) -> "CompressionConfig":
        return replace(self, **changes)

    def fallback_chain(self, strategy: Optional[str] = None) -> Tuple[str, ...]:
        """Strategies to try, in order, starting with strategy (or the default)."""
        name = strategy or self.default_strategy
        if name not in FALLBACK_CHAINS:
            raise ValidationError(
                f"Unknown compression strategy: {name}",
                context={"allowed": sorted(FALLBACK_CHAINS)},
            )
        return FALLBACK_CHAINS[name]
