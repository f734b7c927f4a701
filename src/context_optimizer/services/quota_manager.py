"""
Quota/Tier Manager.

Per agent:
    uninitialized -> free (used < limit) -> free (used >= limit, blocked)
    -> (day rollover) -> free (used = 0)
and orthogonally free <-> pro on payment-verified tier changes. Pro
bypasses the counter entirely.

Authorization is one atomic check-and-increment at the storage boundary
(ContextStorage.atomic_consume_quota); this module never reads a quota
and then writes it in a separate step.
"""

from datetime import date
from typing import List, Optional

from context_optimizer.core.exceptions import QuotaExceededError, ValidationError
from context_optimizer.core.logging import logger, masker
from context_optimizer.core.secure_config import Settings
from context_optimizer.core.tracing import MetricsCollector
from context_optimizer.models.quota import (
    Quota,
    QuotaDecision,
    QuotaStatus,
    Tier,
    TierChangeRequest,
    TierChangeStatus,
)
from context_optimizer.services.context_store import ContextStorage


class QuotaManager:
    """
    Daily compression allowance and tier state.

    Usage:
    ```python
    manager = QuotaManager(store)
    decision = await manager.authorize(agent_id)  # raises QuotaExceededError
    ```
    """

    def __init__(self, store: ContextStorage, settings: Optional[Settings] = None):
        self.store = store
        self.settings = settings or Settings()
        self.metrics = MetricsCollector()
        self.warning_thresholds: List[float] = sorted(
            self.settings.get("quota.warning_thresholds", [0.75, 0.90]), reverse=True
        )
        logger.info("QuotaManager initialized")

    async def authorize(self, agent_id: str) -> QuotaDecision:
        """
        Consume one compression from the agent's daily allowance.

        Returns:
            The admitted decision (remaining after this request)

        Raises:
            QuotaExceededError: Free-tier limit reached; carries remaining=0,
                limit and tier
            StorageUnavailableError: Quota state unreachable
        """
        if not agent_id:
            raise ValidationError("agent_id is required for quota authorization")

        decision = await self.store.atomic_consume_quota(agent_id)

        if not decision.admitted:
            self.metrics.increment("quota.rejected")
            logger.warning(
                "Compression quota exceeded",
                agent=masker.mask_agent_id(agent_id),
                limit=decision.limit,
                tier=decision.tier,
            )
            raise QuotaExceededError(
                agent_id=agent_id,
                remaining=0,
                limit=decision.limit,
                tier=str(decision.tier),
            )

        self.metrics.increment("quota.admitted")
        self._log_usage(decision)
        return decision

    def _log_usage(self, decision: QuotaDecision) -> None:
        """Warn as a free agent approaches its daily limit."""
        usage = decision.usage_fraction
        if usage <= 0:
            return

        high, *rest = self.warning_thresholds or [1.0]
        if usage >= high:
            logger.warning(
                "Agent close to daily compression limit",
                agent=masker.mask_agent_id(decision.agent_id),
                used=decision.used_today,
                limit=decision.limit,
                remaining=decision.remaining,
            )
        elif rest and usage >= rest[-1]:
            logger.info(
                "Agent used most of its daily compressions",
                agent=masker.mask_agent_id(decision.agent_id),
                used=decision.used_today,
                limit=decision.limit,
            )

    async def check_quota(self, agent_id: str) -> QuotaStatus:
        """Pure read: available, remaining, limit, tier. Safe to poll."""
        return await self.store.check_quota(agent_id)

    async def get_quota(self, agent_id: str) -> Quota:
        """Stored quota row, created with free defaults if missing."""
        return await self.store.get_or_init_quota(agent_id)

    async def set_tier(
        self, agent_id: str, tier: Tier, paid_until: Optional[date] = None
    ) -> Quota:
        """Apply a tier directly (already verified by the caller)."""
        quota = await self.store.set_tier(agent_id, tier, paid_until)
        self.metrics.increment(f"quota.tier.{quota.tier}")
        return quota

    def request_tier_change(
        self, agent_id: str, tier: Tier, paid_until: Optional[date] = None
    ) -> TierChangeRequest:
        """
        Emit a pending tier change for the external payment verifier.

        Nothing is written until apply_tier_change() receives the verdict.
        """
        request = TierChangeRequest(agent_id=agent_id, tier=tier, paid_until=paid_until)
        logger.info(
            "Tier change requested",
            request_id=request.request_id,
            agent=masker.mask_agent_id(agent_id),
            tier=request.tier,
        )
        return request

    async def apply_tier_change(
        self, request: TierChangeRequest, approved: bool
    ) -> Optional[Quota]:
        """
        Apply the verifier's verdict.

        Returns:
            Updated quota if approved, None if rejected (no write)

        Raises:
            ValidationError: If the request was already resolved
        """
        if request.status != TierChangeStatus.PENDING:
            raise ValidationError(
                f"Tier change request {request.request_id} already {request.status}",
                context={"request_id": request.request_id, "status": request.status},
            )

        if not approved:
            request.status = TierChangeStatus.REJECTED
            self.metrics.increment("quota.tier_change.rejected")
            logger.info(
                "Tier change rejected",
                request_id=request.request_id,
                agent=masker.mask_agent_id(request.agent_id),
            )
            return None

        quota = await self.set_tier(request.agent_id, Tier(request.tier), request.paid_until)
        request.status = TierChangeStatus.APPROVED
        self.metrics.increment("quota.tier_change.approved")
        return quota
