"""
Compression Service - the engine's upward interface.

compress():
    quota authorize -> load agent patterns -> engine (segment, strategy,
    quality gate, fallback) -> record session -> token stats -> learn

Storage faults propagate untouched: nothing is compressed without durable
quota and pattern access. Work already committed (a consumed quota, an
upserted pattern) stands if a later step fails or the caller gives up.
"""

import asyncio
from typing import Optional

from context_optimizer.compression.config import CompressionConfig
from context_optimizer.compression.engine import CompressionEngine, CompressionOutcome
from context_optimizer.compression.scoring import ImportanceScorer
from context_optimizer.compression.similarity import SimilarityScorer
from context_optimizer.core.exceptions import UnknownSessionError, ValidationError
from context_optimizer.core.id_generator import generate_id
from context_optimizer.core.logging import PerformanceLogger, logger, masker
from context_optimizer.core.secure_config import Settings
from context_optimizer.core.token_counter import SmartTokenCounter
from context_optimizer.core.tracing import MetricsCollector
from context_optimizer.models.compression import CompressionResult, CompressionSession
from context_optimizer.models.feedback import Feedback, FeedbackType
from context_optimizer.models.quota import QuotaStatus
from context_optimizer.models.stats import AgentReport, PatternSummary
from context_optimizer.services.context_store import ContextStorage, SQLiteContextStore
from context_optimizer.services.pattern_learner import PatternLearner
from context_optimizer.services.quota_manager import QuotaManager

# Patterns loaded per call, by importance
MAX_PATTERNS_PER_CALL = 500


def estimate_cost(tokens_saved: int, cost_per_1k_tokens: float) -> float:
    """USD saved for tokens_saved at the configured price."""
    return tokens_saved / 1000 * cost_per_1k_tokens


class CompressionService:
    """
    Compress context for an agent and keep its accounting.

    The service holds no cross-request state: quotas, patterns and stats
    round-trip through the store, so any number of instances (or
    processes sharing the database) can serve the same agent.
    """

    def __init__(
        self,
        store: Optional[ContextStorage] = None,
        settings: Optional[Settings] = None,
        config: Optional[CompressionConfig] = None,
        scorer: Optional[ImportanceScorer] = None,
        counter: Optional[SmartTokenCounter] = None,
        similarity_scorer: Optional[SimilarityScorer] = None,
    ):
        self.settings = settings or Settings()
        self.config = config or CompressionConfig.from_settings(self.settings)
        self.store: ContextStorage = store or SQLiteContextStore(settings=self.settings)
        self.counter = counter or SmartTokenCounter()
        self.engine = CompressionEngine(self.config, self.counter, scorer, similarity_scorer)
        self.quota = QuotaManager(self.store, self.settings)
        self.learner = PatternLearner(self.store, self.config)
        self.metrics = MetricsCollector()
        self.perf_logger = PerformanceLogger()
        logger.info(
            "CompressionService initialized",
            default_strategy=self.config.default_strategy,
            quality_threshold=self.config.quality_threshold,
        )

    async def compress(
        self,
        text: str,
        agent_id: Optional[str] = None,
        strategy_hint: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> CompressionResult:
        """
        Compress text, falling back to less aggressive strategies as needed.

        Args:
            text: Raw context
            agent_id: Owning agent; None runs anonymously (no quota, no stats,
                no learning)
            strategy_hint: dedup, prune, summarize or hybrid (default from config)
            session_id: Caller-supplied unique id, generated when omitted

        Returns:
            CompressionResult; strategy_used is "identity" when every
            candidate failed the quality bar or saved nothing

        Raises:
            QuotaExceededError: Daily allowance exhausted (remaining=0, limit, tier)
            ValidationError: Unknown strategy
            SQLiteConstraintError: session_id already recorded
            StorageUnavailableError: Storage unreachable
        """
        if text is None:
            raise ValidationError("text is required")
        strategy = strategy_hint or self.config.default_strategy
        # Reject unknown strategies before consuming quota
        self.config.fallback_chain(strategy)
        session_id = session_id or generate_id()

        if agent_id:
            await self.quota.authorize(agent_id)
            patterns = await self.store.get_patterns(agent_id, limit=MAX_PATTERNS_PER_CALL)
        else:
            patterns = []

        with self.perf_logger.measure(
            "compression.engine", strategy=strategy, chars=len(text), patterns=len(patterns)
        ):
            # CPU-bound; keep the event loop free for other requests
            outcome = await asyncio.get_running_loop().run_in_executor(
                None, self.engine.run, text, patterns, strategy
            )

        session = self._build_session(session_id, agent_id, text, outcome)
        await self.store.record_session(session)

        if agent_id:
            await self.store.update_token_stats(
                agent_id, session.original_tokens, session.compressed_tokens, session.cost_saved
            )
            await self.learner.learn_from_session(agent_id, session_id, outcome)

        self.metrics.increment("compression.sessions")
        self.metrics.increment("compression.tokens_saved", session.tokens_saved)
        self.metrics.gauge("compression.last_ratio", outcome.ratio)
        if outcome.is_identity:
            self.metrics.increment("compression.identity")

        logger.info(
            "Compression completed",
            session_id=session_id,
            agent=masker.mask_agent_id(agent_id),
            requested=strategy,
            strategy=outcome.strategy_used,
            original_tokens=outcome.original_tokens,
            compressed_tokens=outcome.compressed_tokens,
            quality=round(outcome.quality_score, 4),
        )

        return CompressionResult.from_session(session, outcome.text, outcome.strategies_tried)

    def _build_session(
        self,
        session_id: str,
        agent_id: Optional[str],
        text: str,
        outcome: CompressionOutcome,
    ) -> CompressionSession:
        snapshots = self.config.store_snapshots
        return CompressionSession(
            session_id=session_id,
            agent_id=agent_id,
            original_tokens=outcome.original_tokens,
            compressed_tokens=outcome.compressed_tokens,
            compression_ratio=outcome.ratio,
            tokens_saved=outcome.tokens_saved,
            cost_saved=estimate_cost(outcome.tokens_saved, self.config.cost_per_1k_tokens),
            strategy_used=outcome.strategy_used,
            quality_score=outcome.quality_score,
            original_context=text if snapshots else None,
            compressed_context=outcome.text if snapshots else None,
        )

    async def record_feedback(
        self,
        session_id: str,
        feedback_type: FeedbackType,
        score: float,
        notes: Optional[str] = None,
    ) -> None:
        """
        Store feedback on a past session and adjust its patterns.

        Raises:
            UnknownSessionError: No session recorded under session_id
        """
        feedback = Feedback(
            session_id=session_id, feedback_type=feedback_type, score=score, notes=notes
        )
        session = await self.store.get_session(session_id)
        if session is None:
            raise UnknownSessionError(session_id)

        await self.store.record_feedback(feedback)
        await self.learner.apply_feedback(feedback)
        self.metrics.increment(f"feedback.{feedback.feedback_type}")

    async def check_quota(self, agent_id: str) -> QuotaStatus:
        """Pure read of the agent's quota. Safe to poll."""
        return await self.quota.check_quota(agent_id)

    async def get_report(
        self, agent_id: str, timeframe: str = "30 days", top_patterns: int = 5
    ) -> AgentReport:
        """Window stats, quota status and the most important learned patterns."""
        stats = await self.store.get_stats(agent_id, timeframe)
        quota = await self.store.check_quota(agent_id)
        patterns = await self.store.get_top_patterns(agent_id, top_patterns)
        return AgentReport(
            agent_id=agent_id,
            stats=stats,
            quota=quota,
            top_patterns=[PatternSummary.from_pattern(p) for p in patterns],
        )
