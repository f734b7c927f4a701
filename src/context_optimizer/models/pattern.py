"""
Learned pattern models.

A pattern is an agent-scoped text fragment with a frequency/importance
profile that guides future pruning and deduplication decisions.
"""

import re
from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import Field

from context_optimizer.core.id_generator import derive_id
from context_optimizer.core.utils.datetime_utils import utc_now_testable
from context_optimizer.models.base import ContextOptimizerBaseModel, PartialUpdate

_WHITESPACE = re.compile(r"\s+")


class PatternType(str, Enum):
    """Pattern kinds."""

    REDUNDANT = "redundant"  # Removed as a near-duplicate
    BOILERPLATE = "boilerplate"  # Pruned as low value
    HIGH_VALUE = "high_value"  # Protected from pruning


class PatternRole(str, Enum):
    """How a session produced a pattern."""

    REMOVED = "removed"
    PROTECTED = "protected"


def normalize_pattern_text(text: str) -> str:
    """Lower-case and collapse whitespace, the form patterns are matched on."""
    return _WHITESPACE.sub(" ", text).strip().lower()


def pattern_id_for(agent_id: Optional[str], pattern_type: str, text: str) -> str:
    """Deterministic id: the same fragment seen again upserts the same row."""
    return derive_id(agent_id or "", str(pattern_type), normalize_pattern_text(text))


class Pattern(ContextOptimizerBaseModel):
    """
    Recurring text fragment with learned significance.

    On repeat observation frequency increments by 1 while token_impact,
    importance_score and last_seen are replaced by the latest observation.
    """

    pattern_id: str = Field(..., description="derive_id(agent, type, normalized text)")
    agent_id: Optional[str] = None
    pattern_type: PatternType
    pattern_text: str = Field(..., min_length=1)
    frequency: int = Field(1, ge=1)
    token_impact: int = Field(0, ge=0, description="Tokens the fragment typically accounts for")
    importance_score: float = Field(0.5, ge=0.0, le=1.0)
    last_seen: datetime = Field(default_factory=utc_now_testable)

    @classmethod
    def observe(
        cls,
        agent_id: Optional[str],
        pattern_type: PatternType,
        text: str,
        token_impact: int,
        importance_score: float,
    ) -> "Pattern":
        """Build an observation whose id is derived from agent, type and text."""
        return cls(
            pattern_id=pattern_id_for(agent_id, PatternType(pattern_type).value, text),
            agent_id=agent_id,
            pattern_type=pattern_type,
            pattern_text=text,
            token_impact=token_impact,
            importance_score=importance_score,
        )


class PatternUpdate(PartialUpdate):
    """Partial update for an existing pattern. At least one field must be set."""

    importance_score: Optional[float] = Field(None, ge=0.0, le=1.0)
    token_impact: Optional[int] = Field(None, ge=0)
    frequency: Optional[int] = Field(None, ge=1)
    last_seen: Optional[datetime] = None
