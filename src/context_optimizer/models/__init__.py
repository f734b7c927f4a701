"""
Context optimizer models.
Exports the main models for use in other modules.
"""

# Base
from .base import ContextOptimizerBaseModel, TimestampMixin, PartialUpdate

# Sessions
from context_optimizer.models.compression import (
    StrategyType,
    CompressionSession,
    CompressionResult,
    compression_ratio,
)

# Patterns
from context_optimizer.models.pattern import (
    PatternType,
    PatternRole,
    Pattern,
    PatternUpdate,
    normalize_pattern_text,
    pattern_id_for,
)

# Quotas
from context_optimizer.models.quota import (
    UNLIMITED,
    DEFAULT_FREE_LIMIT,
    Tier,
    Quota,
    QuotaUpdate,
    QuotaStatus,
    QuotaDecision,
    TierChangeStatus,
    TierChangeRequest,
)

# Stats
from context_optimizer.models.stats import (
    TokenStats,
    CompressionStats,
    PatternSummary,
    AgentReport,
)

# Feedback
from context_optimizer.models.feedback import FeedbackType, Feedback

__all__ = [
    "ContextOptimizerBaseModel",
    "TimestampMixin",
    "PartialUpdate",
    "StrategyType",
    "CompressionSession",
    "CompressionResult",
    "compression_ratio",
    "PatternType",
    "PatternRole",
    "Pattern",
    "PatternUpdate",
    "normalize_pattern_text",
    "pattern_id_for",
    "UNLIMITED",
    "DEFAULT_FREE_LIMIT",
    "Tier",
    "Quota",
    "QuotaUpdate",
    "QuotaStatus",
    "QuotaDecision",
    "TierChangeStatus",
    "TierChangeRequest",
    "TokenStats",
    "CompressionStats",
    "PatternSummary",
    "AgentReport",
    "FeedbackType",
    "Feedback",
]
