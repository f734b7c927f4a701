"""Tests for PatternLearner: observation from sessions, feedback adjustments."""

import pytest

from context_optimizer.compression.config import CompressionConfig
from context_optimizer.compression.engine import CompressionEngine
from context_optimizer.models.compression import CompressionSession
from context_optimizer.models.feedback import Feedback, FeedbackType
from context_optimizer.models.pattern import Pattern, PatternType
from context_optimizer.services.pattern_learner import (
    BOILERPLATE_IMPORTANCE,
    HIGH_VALUE_IMPORTANCE,
    REDUNDANT_IMPORTANCE,
    PatternLearner,
    feedback_delta,
)

SENTENCE = "Every request must carry the tenant header so the gateway can route it correctly."


@pytest.fixture
def learner(store, config):
    return PatternLearner(store, config)


def dedup_outcome():
    return CompressionEngine().run(" ".join([SENTENCE] * 3), strategy="dedup")


def prune_outcome(paragraphs, protected_text=None):
    patterns = []
    if protected_text:
        patterns.append(
            Pattern.observe("agent-1", PatternType.HIGH_VALUE, protected_text, 10, 0.9)
        )
    engine = CompressionEngine(CompressionConfig(quality_threshold=0.0, prune_target_ratio=0.2))
    return engine.run("\n\n".join(paragraphs), patterns, strategy="prune")


async def recorded_session(store, outcome, agent_id="agent-1"):
    session = CompressionSession(
        agent_id=agent_id,
        original_tokens=outcome.original_tokens,
        compressed_tokens=outcome.compressed_tokens,
        compression_ratio=outcome.ratio,
        tokens_saved=outcome.tokens_saved,
        strategy_used=outcome.strategy_used,
        quality_score=outcome.quality_score,
    )
    await store.record_session(session)
    return session.session_id


class TestFeedbackDelta:
    """Signed importance change for protected patterns."""

    @pytest.mark.parametrize(
        "feedback_type, score, expected",
        [
            ("quality", 1.0, 0.1),
            ("quality", 0.0, -0.1),
            ("quality", 0.5, 0.0),
            ("too_aggressive", 0.9, -0.1),
            ("too_conservative", 0.1, 0.1),
        ],
    )
    def test_delta(self, feedback_type, score, expected):
        assert feedback_delta(feedback_type, score, 0.1) == pytest.approx(expected)


class TestExtraction:
    """Removed and protected segments become patterns."""

    def test_duplicates_become_one_redundant_pattern(self, learner):
        observations = learner.extract_patterns("agent-1", dedup_outcome())

        assert len(observations) == 1
        pattern, role = observations[0]
        assert pattern.pattern_type == "redundant"
        assert pattern.pattern_text == SENTENCE
        assert pattern.importance_score == REDUNDANT_IMPORTANCE
        assert role == "removed"

    def test_pruned_and_protected(self, learner, make_paragraph):
        paragraphs = [make_paragraph(seed, 1) for seed in range(8)]
        outcome = prune_outcome(paragraphs, protected_text=paragraphs[0])
        observations = learner.extract_patterns("agent-1", outcome)

        by_type = {}
        for pattern, role in observations:
            by_type.setdefault(pattern.pattern_type, []).append((pattern, role))
        assert len(by_type["boilerplate"]) == len(outcome.result.pruned)
        assert all(p.importance_score == BOILERPLATE_IMPORTANCE for p, _ in by_type["boilerplate"])
        [(protected, role)] = by_type["high_value"]
        assert protected.pattern_text == paragraphs[0]
        assert protected.importance_score == HIGH_VALUE_IMPORTANCE
        assert role == "protected"

    def test_identity_outcome_learns_nothing(self, learner):
        outcome = CompressionEngine().run("Nothing to compress here.", strategy="dedup")
        assert outcome.is_identity
        assert learner.extract_patterns("agent-1", outcome) == []

    def test_long_fragments_truncated(self, store):
        learner = PatternLearner(store, CompressionConfig(max_pattern_chars=20))
        [(pattern, _)] = learner.extract_patterns("agent-1", dedup_outcome())
        assert pattern.pattern_text == SENTENCE[:20]


class TestLearning:
    """Upserts and session links."""

    async def test_learn_from_session(self, store, learner):
        outcome = dedup_outcome()
        session_id = await recorded_session(store, outcome)

        stored = await learner.learn_from_session("agent-1", session_id, outcome)
        assert [p.frequency for p in stored] == [1]

        linked = await store.get_session_patterns(session_id)
        assert [(p.pattern_id, role) for p, role in linked] == [(stored[0].pattern_id, "removed")]

    async def test_repeat_observation_increments_frequency(self, store, learner):
        for _ in range(3):
            outcome = dedup_outcome()
            session_id = await recorded_session(store, outcome)
            stored = await learner.learn_from_session("agent-1", session_id, outcome)
        assert stored[0].frequency == 3
        assert len(await store.get_patterns("agent-1")) == 1

    async def test_anonymous_sessions_do_not_learn(self, store, learner):
        outcome = dedup_outcome()
        session_id = await recorded_session(store, outcome, agent_id=None)
        assert await learner.learn_from_session(None, session_id, outcome) == []
        assert await store.get_patterns("agent-1") == []


class TestFeedback:
    """Feedback moves pattern importance."""

    async def _learned_session(self, store, learner, make_paragraph):
        paragraphs = [make_paragraph(seed, 1) for seed in range(8)]
        outcome = prune_outcome(paragraphs, protected_text=paragraphs[0])
        session_id = await recorded_session(store, outcome)
        await learner.learn_from_session("agent-1", session_id, outcome)
        return session_id

    async def test_positive_quality(self, store, learner, make_paragraph):
        session_id = await self._learned_session(store, learner, make_paragraph)
        updated = await learner.apply_feedback(
            Feedback(session_id=session_id, feedback_type=FeedbackType.QUALITY, score=1.0)
        )

        by_type = {}
        for pattern in updated:
            by_type.setdefault(pattern.pattern_type, []).append(pattern.importance_score)
        assert by_type["high_value"] == [pytest.approx(1.0)]
        assert all(score == pytest.approx(0.1) for score in by_type["boilerplate"])

    async def test_too_aggressive_raises_removed_importance(self, store, learner):
        outcome = dedup_outcome()
        session_id = await recorded_session(store, outcome)
        [pattern] = await learner.learn_from_session("agent-1", session_id, outcome)

        [updated] = await learner.apply_feedback(
            Feedback(session_id=session_id, feedback_type="too_aggressive", score=0.2)
        )
        assert updated.pattern_id == pattern.pattern_id
        assert updated.importance_score == pytest.approx(REDUNDANT_IMPORTANCE + 0.1)

    async def test_clamped_patterns_left_alone(self, store, learner, make_paragraph):
        session_id = await self._learned_session(store, learner, make_paragraph)
        feedback = Feedback(session_id=session_id, feedback_type="quality", score=1.0)

        await learner.apply_feedback(feedback)
        await learner.apply_feedback(feedback)
        # high_value is already 1.0, boilerplate already 0.0
        assert await learner.apply_feedback(feedback) == []

    async def test_neutral_feedback_changes_nothing(self, store, learner):
        outcome = dedup_outcome()
        session_id = await recorded_session(store, outcome)
        await learner.learn_from_session("agent-1", session_id, outcome)

        neutral = Feedback(session_id=session_id, feedback_type="quality", score=0.5)
        assert await learner.apply_feedback(neutral) == []
