"""
Compression session models.
"""

from enum import Enum
from typing import List, Optional
from pydantic import Field, model_validator

from context_optimizer.core.id_generator import generate_id
from context_optimizer.models.base import ContextOptimizerBaseModel, TimestampMixin


class StrategyType(str, Enum):
    """Named compression transforms, most aggressive last."""

    DEDUP = "dedup"
    PRUNE = "prune"
    SUMMARIZE = "summarize"
    HYBRID = "hybrid"
    IDENTITY = "identity"  # Unmodified fallback


def compression_ratio(original_tokens: int, compressed_tokens: int) -> float:
    """compressed/original, 1.0 when there was nothing to compress."""
    if original_tokens <= 0:
        return 1.0
    return compressed_tokens / original_tokens


class CompressionSession(ContextOptimizerBaseModel, TimestampMixin):
    """
    One compression invocation.

    Created exactly once per compress() call and never modified afterwards.
    tokens_saved is always original_tokens - compressed_tokens.
    """

    session_id: str = Field(default_factory=generate_id, description="Unique session id")
    agent_id: Optional[str] = Field(None, description="Owning agent, None for anonymous")

    original_tokens: int = Field(..., ge=0)
    compressed_tokens: int = Field(..., ge=0)
    compression_ratio: float = Field(..., gt=0.0, le=1.0)
    tokens_saved: int = Field(..., ge=0)
    cost_saved: float = Field(0.0, ge=0.0, description="Estimated USD saved")

    strategy_used: StrategyType
    quality_score: float = Field(1.0, ge=0.0, le=1.0)

    # Optional snapshots
    original_context: Optional[str] = None
    compressed_context: Optional[str] = None

    @model_validator(mode="after")
    def _check_token_accounting(self) -> "CompressionSession":
        if self.compressed_tokens > self.original_tokens:
            raise ValueError("compressed_tokens cannot exceed original_tokens")
        if self.tokens_saved != self.original_tokens - self.compressed_tokens:
            raise ValueError("tokens_saved must equal original_tokens - compressed_tokens")
        return self


class CompressionResult(ContextOptimizerBaseModel):
    """What compress() returns to the caller."""

    session_id: str
    compressed_text: str
    original_tokens: int = Field(..., ge=0)
    compressed_tokens: int = Field(..., ge=0)
    ratio: float = Field(..., gt=0.0, le=1.0)
    tokens_saved: int = Field(..., ge=0)
    cost_saved: float = Field(0.0, ge=0.0)
    strategy_used: StrategyType
    quality_score: float = Field(..., ge=0.0, le=1.0)
    strategies_tried: List[StrategyType] = Field(
        default_factory=list, description="Candidates evaluated, in order"
    )

    @property
    def fell_back(self) -> bool:
        """True when the returned strategy is not the first one tried."""
        return bool(self.strategies_tried) and self.strategy_used != self.strategies_tried[0]

    @classmethod
    def from_session(
        cls, session: CompressionSession, compressed_text: str, strategies_tried: List[str]
    ) -> "CompressionResult":
        return cls(
            session_id=session.session_id,
            compressed_text=compressed_text,
            original_tokens=session.original_tokens,
            compressed_tokens=session.compressed_tokens,
            ratio=session.compression_ratio,
            tokens_saved=session.tokens_saved,
            cost_saved=session.cost_saved,
            strategy_used=session.strategy_used,
            quality_score=session.quality_score,
            strategies_tried=strategies_tried,
        )
