"""
Post-hoc quality feedback on a compression session.
"""

from enum import Enum
from typing import Optional
from pydantic import Field

from context_optimizer.core.id_generator import generate_id
from context_optimizer.models.base import ContextOptimizerBaseModel, TimestampMixin


class FeedbackType(str, Enum):
    """Feedback kinds."""

    QUALITY = "quality"  # Score-driven: > 0.5 good, < 0.5 bad
    TOO_AGGRESSIVE = "too_aggressive"  # Lost information
    TOO_CONSERVATIVE = "too_conservative"  # Could have removed more


class Feedback(ContextOptimizerBaseModel, TimestampMixin):
    """Caller-supplied judgement about a past session."""

    feedback_id: str = Field(default_factory=generate_id)
    session_id: str = Field(..., min_length=1)
    feedback_type: FeedbackType
    score: float = Field(..., ge=0.0, le=1.0)
    notes: Optional[str] = Field(None, max_length=2000)
