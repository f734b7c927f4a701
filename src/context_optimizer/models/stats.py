"""
Token statistics and reporting models.
"""

import datetime
from typing import List
from pydantic import Field

from context_optimizer.models.base import ContextOptimizerBaseModel
from context_optimizer.models.pattern import Pattern
from context_optimizer.models.quota import QuotaStatus


class TokenStats(ContextOptimizerBaseModel):
    """
    Per-agent, per-day aggregate.

    average_ratio is cumulative compressed / cumulative original, not the
    mean of per-session ratios.
    """

    agent_id: str
    date: datetime.date
    original_tokens: int = Field(0, ge=0)
    compressed_tokens: int = Field(0, ge=0)
    tokens_saved: int = Field(0, ge=0)
    cost_saved: float = Field(0.0, ge=0.0)
    compression_count: int = Field(0, ge=0)
    average_ratio: float = Field(1.0, ge=0.0, le=1.0)


class CompressionStats(ContextOptimizerBaseModel):
    """Totals over a time window, from recorded sessions."""

    agent_id: str
    timeframe: str
    total_compressions: int = 0
    total_original_tokens: int = 0
    total_compressed_tokens: int = 0
    total_tokens_saved: int = 0
    total_cost_saved: float = 0.0
    avg_compression_ratio: float = 1.0
    avg_quality_score: float = 1.0


class PatternSummary(ContextOptimizerBaseModel):
    """A learned pattern as shown in a report."""

    pattern_type: str
    pattern_text: str
    frequency: int
    effectiveness: float = Field(..., ge=0.0, le=100.0, description="importance x 100")

    @classmethod
    def from_pattern(cls, pattern: Pattern, preview_chars: int = 80) -> "PatternSummary":
        text = pattern.pattern_text
        if len(text) > preview_chars:
            text = text[: preview_chars - 3] + "..."
        return cls(
            pattern_type=str(pattern.pattern_type),
            pattern_text=text,
            frequency=pattern.frequency,
            effectiveness=round(pattern.importance_score * 100, 1),
        )


class AgentReport(ContextOptimizerBaseModel):
    """Window stats, quota status and top patterns for one agent."""

    agent_id: str
    stats: CompressionStats
    quota: QuotaStatus
    top_patterns: List[PatternSummary] = Field(default_factory=list)
