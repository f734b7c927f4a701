"""
Pattern Learner.

Two write paths into the pattern store:
1. learn_from_session: after an accepted compression, removed segments
   become "redundant" (deduplicated) or "boilerplate" (pruned) patterns
   and protected segments become "high_value" patterns.
2. apply_feedback: caller feedback on a past session moves the
   importance of the patterns that session produced.

Feedback is the only path that changes an existing pattern's importance
outside of re-observation.
"""

from typing import Dict, List, Optional, Tuple

from context_optimizer.compression.config import CompressionConfig
from context_optimizer.compression.engine import CompressionOutcome
from context_optimizer.compression.segmenter import Segment
from context_optimizer.core.logging import logger, masker
from context_optimizer.core.tracing import MetricsCollector
from context_optimizer.models.feedback import Feedback, FeedbackType
from context_optimizer.models.pattern import Pattern, PatternRole, PatternType, PatternUpdate
from context_optimizer.services.context_store import ContextStorage

# Importance recorded on observation
REDUNDANT_IMPORTANCE = 0.3
BOILERPLATE_IMPORTANCE = 0.2
HIGH_VALUE_IMPORTANCE = 0.9

MIN_PATTERN_CHARS = 8


def feedback_delta(feedback_type: str, score: float, step: float) -> float:
    """
    Signed importance change for protected patterns.

    quality:          (score - 0.5) * 2 * step
    too_aggressive:   -step  (removal patterns gain importance)
    too_conservative: +step  (removal patterns lose importance)
    """
    kind = FeedbackType(feedback_type)
    if kind == FeedbackType.TOO_AGGRESSIVE:
        return -step
    if kind == FeedbackType.TOO_CONSERVATIVE:
        return step
    return (score - 0.5) * 2 * step


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


class PatternLearner:
    """Updates pattern statistics from sessions and feedback."""

    def __init__(self, store: ContextStorage, config: Optional[CompressionConfig] = None):
        self.store = store
        self.config = config or CompressionConfig()
        self.metrics = MetricsCollector()

    def _observation(
        self,
        agent_id: str,
        segment: Segment,
        pattern_type: PatternType,
        importance: float,
    ) -> Optional[Pattern]:
        text = segment.body.strip()
        if len(text) < MIN_PATTERN_CHARS:
            return None
        text = text[: self.config.max_pattern_chars]
        return Pattern.observe(
            agent_id=agent_id,
            pattern_type=pattern_type,
            text=text,
            token_impact=segment.tokens,
            importance_score=importance,
        )

    def extract_patterns(
        self, agent_id: str, outcome: CompressionOutcome
    ) -> List[Tuple[Pattern, str]]:
        """Pattern observations and their session role, one per distinct pattern id."""
        result = outcome.result
        if result is None or outcome.is_identity:
            return []

        observations: Dict[Tuple[str, str], Tuple[Pattern, str]] = {}
        sources: List[Tuple[Segment, PatternType, float, PatternRole]] = []
        for segment in result.deduplicated:
            sources.append(
                (segment, PatternType.REDUNDANT, REDUNDANT_IMPORTANCE, PatternRole.REMOVED)
            )
        for segment in result.pruned:
            sources.append(
                (segment, PatternType.BOILERPLATE, BOILERPLATE_IMPORTANCE, PatternRole.REMOVED)
            )
        for segment in result.protected:
            sources.append(
                (segment, PatternType.HIGH_VALUE, HIGH_VALUE_IMPORTANCE, PatternRole.PROTECTED)
            )

        for segment, pattern_type, importance, role in sources:
            pattern = self._observation(agent_id, segment, pattern_type, importance)
            if pattern is None:
                continue
            # Repeats inside one session count once
            observations.setdefault((pattern.pattern_id, role.value), (pattern, role.value))
        return list(observations.values())

    async def learn_from_session(
        self, agent_id: Optional[str], session_id: str, outcome: CompressionOutcome
    ) -> List[Pattern]:
        """
        Upsert the session's patterns and link them to the session.

        Anonymous sessions (no agent) do not learn: patterns are per agent.
        """
        if not agent_id:
            return []

        observations = self.extract_patterns(agent_id, outcome)
        if not observations:
            return []

        stored: List[Pattern] = []
        links: List[Tuple[str, str]] = []
        for pattern, role in observations:
            stored.append(await self.store.upsert_pattern(pattern))
            links.append((pattern.pattern_id, role))

        await self.store.link_session_patterns(session_id, links)

        self.metrics.increment("learning.patterns_observed", len(stored))
        logger.info(
            "Patterns learned from session",
            session_id=session_id,
            agent=masker.mask_agent_id(agent_id),
            patterns=len(stored),
        )
        return stored

    async def apply_feedback(self, feedback: Feedback) -> List[Pattern]:
        """
        Move the importance of the session's patterns.

        Protected patterns move by +delta, removal patterns by -delta,
        clamped to [0, 1]. Patterns whose importance would not change are
        left untouched.
        """
        delta = feedback_delta(
            str(feedback.feedback_type), feedback.score, self.config.feedback_step
        )
        if delta == 0:
            return []

        updated: List[Pattern] = []
        for pattern, role in await self.store.get_session_patterns(feedback.session_id):
            signed = delta if role == PatternRole.PROTECTED.value else -delta
            new_importance = _clamp(pattern.importance_score + signed)
            if new_importance == pattern.importance_score:
                continue
            updated.append(
                await self.store.update_pattern(
                    pattern.pattern_id, PatternUpdate(importance_score=new_importance)
                )
            )

        self.metrics.increment("learning.feedback_updates", len(updated))
        logger.info(
            "Feedback applied to patterns",
            session_id=feedback.session_id,
            feedback_type=feedback.feedback_type,
            delta=round(delta, 4),
            patterns_updated=len(updated),
        )
        return updated
