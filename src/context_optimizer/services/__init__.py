"""
Context optimizer services.

Orchestration on top of the pure compression engine: storage, quotas,
pattern learning and the compress/feedback/report entry points.
"""

from context_optimizer.services.context_store import (
    ContextStorage,
    SQLiteContextStore,
    parse_timeframe,
)
from context_optimizer.services.quota_manager import QuotaManager
from context_optimizer.services.pattern_learner import PatternLearner, feedback_delta
from context_optimizer.services.compression_service import CompressionService, estimate_cost

__all__ = [
    "ContextStorage",
    "SQLiteContextStore",
    "parse_timeframe",
    "QuotaManager",
    "PatternLearner",
    "feedback_delta",
    "CompressionService",
    "estimate_cost",
]
