"""
Quota and tier models.

Free agents get a fixed number of compressions per UTC day; pro agents
are unlimited. UNLIMITED (-1) is the stored sentinel for pro.
"""

from datetime import date, datetime
from enum import Enum
from typing import Optional
from pydantic import Field

from context_optimizer.core.id_generator import generate_id
from context_optimizer.models.base import ContextOptimizerBaseModel, TimestampMixin, PartialUpdate

UNLIMITED = -1
DEFAULT_FREE_LIMIT = 100


class Tier(str, Enum):
    """Subscription level."""

    FREE = "free"
    PRO = "pro"


class Quota(ContextOptimizerBaseModel):
    """Per-agent tier and daily allowance, as stored."""

    agent_id: str = Field(..., min_length=1)
    tier: Tier = Tier.FREE
    compression_limit: int = Field(DEFAULT_FREE_LIMIT, ge=UNLIMITED)
    compressions_today: int = Field(0, ge=0)
    last_reset_date: date
    paid_until: Optional[date] = None
    updated_at: Optional[datetime] = None

    @property
    def is_unlimited(self) -> bool:
        """Pro is never limited, whatever the stored limit says."""
        return self.tier == Tier.PRO or self.compression_limit == UNLIMITED


class QuotaUpdate(PartialUpdate):
    """Partial update for a quota row. At least one field must be set."""

    tier: Optional[Tier] = None
    compression_limit: Optional[int] = Field(None, ge=UNLIMITED)
    compressions_today: Optional[int] = Field(None, ge=0)
    paid_until: Optional[date] = None


class QuotaStatus(ContextOptimizerBaseModel):
    """
    Read-only view returned by check_quota().

    remaining and limit are -1 for unlimited agents.
    """

    agent_id: str
    available: bool
    remaining: int
    limit: int
    tier: Tier
    used_today: int = 0


class QuotaDecision(ContextOptimizerBaseModel):
    """Outcome of one atomic check-and-increment."""

    agent_id: str
    admitted: bool
    remaining: int
    limit: int
    tier: Tier
    used_today: int = 0

    @property
    def usage_fraction(self) -> float:
        """Fraction of the daily limit consumed (0.0 for unlimited)."""
        if self.limit <= 0:
            return 0.0
        return self.used_today / self.limit


class TierChangeStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class TierChangeRequest(ContextOptimizerBaseModel, TimestampMixin):
    """
    Tier change awaiting an external payment verifier.

    The engine never verifies payments itself: it emits the request and
    applies it once the verifier answers.
    """

    request_id: str = Field(default_factory=generate_id)
    agent_id: str = Field(..., min_length=1)
    tier: Tier
    paid_until: Optional[date] = None
    status: TierChangeStatus = TierChangeStatus.PENDING
