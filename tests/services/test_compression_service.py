"""End-to-end tests for CompressionService."""

import pytest

from context_optimizer.core.database import FetchType
from context_optimizer.core.exceptions import (
    QuotaExceededError,
    SQLiteConstraintError,
    UnknownSessionError,
    ValidationError,
)
from context_optimizer.core.secure_config import Settings
from context_optimizer.models.feedback import FeedbackType
from context_optimizer.services.compression_service import CompressionService, estimate_cost
from context_optimizer.services.context_store import SQLiteContextStore

SENTENCE = (
    "The deployment pipeline validates every artifact before release and records "
    "its checksum in the audit ledger so operators can trace each build back to "
    "the source commit without guessing."
)
REPEATED = " ".join([SENTENCE] * 3)


class TestCompress:
    """compress() from quota through learning."""

    async def test_repeated_context(self, service, store):
        result = await service.compress(REPEATED, agent_id="agent-1", strategy_hint="dedup")

        assert result.strategy_used == "dedup"
        assert result.compressed_text == SENTENCE + " "
        assert result.ratio == pytest.approx(1 / 3, abs=0.02)
        assert result.quality_score >= 0.85
        assert result.tokens_saved == result.original_tokens - result.compressed_tokens
        assert not result.fell_back

        session = await store.get_session(result.session_id)
        assert session.agent_id == "agent-1"
        assert session.original_context == REPEATED
        assert session.compressed_context == result.compressed_text

        [stats] = await store.get_token_stats("agent-1")
        assert stats.compression_count == 1
        assert stats.tokens_saved == result.tokens_saved

        [pattern] = await store.get_patterns("agent-1")
        assert pattern.pattern_type == "redundant"
        assert pattern.pattern_text == SENTENCE
        assert pattern.frequency == 1
        assert service.metrics.get_metrics()["compression.sessions"] == 1

    async def test_second_call_reinforces_pattern(self, service, store):
        await service.compress(REPEATED, agent_id="agent-1", strategy_hint="dedup")
        await service.compress(REPEATED, agent_id="agent-1", strategy_hint="dedup")

        [pattern] = await store.get_patterns("agent-1")
        assert pattern.frequency == 2
        assert (await service.check_quota("agent-1")).used_today == 2

    async def test_novel_context_falls_back(self, service, make_paragraph):
        text = "\n\n".join(make_paragraph(seed, 10) for seed in range(70))
        result = await service.compress(text, agent_id="agent-1", strategy_hint="hybrid")

        assert result.original_tokens >= 10_000
        assert result.strategies_tried[0] == "hybrid"
        assert result.strategy_used in ("prune", "identity")
        assert result.fell_back
        assert result.tokens_saved >= 0
        assert result.ratio <= 1.0
        if result.strategy_used == "identity":
            assert result.compressed_text == text

    async def test_daily_quota_enforced(self, service, store):
        for n in range(100):
            await service.compress(f"Short note number {n}.", agent_id="agent-1")

        with pytest.raises(QuotaExceededError) as exc_info:
            await service.compress("One note too many.", agent_id="agent-1")
        assert exc_info.value.limit == 100
        assert exc_info.value.remaining == 0

        stats = await store.get_stats("agent-1")
        assert stats.total_compressions == 100

    async def test_anonymous_skips_accounting(self, service, store, db):
        result = await service.compress(REPEATED, strategy_hint="dedup")

        assert result.strategy_used == "dedup"
        assert (await store.get_session(result.session_id)).agent_id is None
        quota_rows = await db.execute_async("SELECT agent_id FROM agent_quotas", fetch=FetchType.ALL)
        assert quota_rows.data == []
        stats_rows = await db.execute_async("SELECT agent_id FROM token_stats", fetch=FetchType.ALL)
        assert stats_rows.data == []

    async def test_unknown_strategy_consumes_no_quota(self, service):
        with pytest.raises(ValidationError):
            await service.compress(REPEATED, agent_id="agent-1", strategy_hint="rewrite")
        assert (await service.check_quota("agent-1")).used_today == 0

    async def test_duplicate_session_id(self, service):
        await service.compress(REPEATED, agent_id="agent-1", session_id="session-fixed")
        with pytest.raises(SQLiteConstraintError):
            await service.compress(REPEATED, agent_id="agent-1", session_id="session-fixed")
        # The quota consumed before the failed insert stands
        assert (await service.check_quota("agent-1")).used_today == 2

    async def test_snapshots_disabled(self, db, db_path):
        settings = Settings(
            overrides={"database": {"path": db_path}, "compression": {"store_snapshots": False}}
        )
        store = SQLiteContextStore(db=db, settings=settings)
        service = CompressionService(store=store, settings=settings)

        result = await service.compress(REPEATED, agent_id="agent-1")
        session = await store.get_session(result.session_id)
        assert session.original_context is None
        assert session.compressed_context is None

    async def test_cost_saved(self, service):
        result = await service.compress(REPEATED, agent_id="agent-1", strategy_hint="dedup")
        expected = estimate_cost(result.tokens_saved, service.config.cost_per_1k_tokens)
        assert result.cost_saved == pytest.approx(expected)


class TestFeedback:
    """record_feedback() stores and adjusts patterns."""

    async def test_unknown_session(self, service):
        with pytest.raises(UnknownSessionError):
            await service.record_feedback("missing", FeedbackType.QUALITY, 0.9)

    async def test_too_aggressive_raises_importance(self, service, store):
        result = await service.compress(REPEATED, agent_id="agent-1", strategy_hint="dedup")
        [before] = await store.get_patterns("agent-1")

        await service.record_feedback(
            result.session_id, FeedbackType.TOO_AGGRESSIVE, 0.2, notes="lost context"
        )
        [after] = await store.get_patterns("agent-1")
        assert after.importance_score == pytest.approx(before.importance_score + 0.1)

    async def test_invalid_score(self, service):
        result = await service.compress(REPEATED, agent_id="agent-1")
        with pytest.raises(ValueError):
            await service.record_feedback(result.session_id, FeedbackType.QUALITY, 1.5)


class TestReporting:
    """Reports and cost estimates."""

    async def test_report(self, service):
        await service.compress(REPEATED, agent_id="agent-1", strategy_hint="dedup")
        report = await service.get_report("agent-1")

        assert report.stats.total_compressions == 1
        assert report.quota.remaining == 99
        [summary] = report.top_patterns
        assert summary.pattern_type == "redundant"
        assert summary.effectiveness == 30.0
        assert summary.frequency == 1

    async def test_report_for_unknown_agent(self, service):
        report = await service.get_report("nobody")
        assert report.stats.total_compressions == 0
        assert report.quota.remaining == 100
        assert report.top_patterns == []

    def test_estimate_cost(self):
        assert estimate_cost(1000, 0.002) == pytest.approx(0.002)
        assert estimate_cost(0, 0.002) == 0.0
