"""Tests for SQLiteContextStore."""

import asyncio
from datetime import date, datetime, timedelta, timezone

import pytest

from context_optimizer.core.database import DatabaseManager, FetchType
from context_optimizer.core.exceptions import (
    InvalidUpdateError,
    NotFoundError,
    SQLiteConstraintError,
    UnknownSessionError,
    ValidationError,
)
from context_optimizer.core.utils.datetime_utils import set_mock_time
from context_optimizer.models.compression import CompressionSession
from context_optimizer.models.feedback import Feedback, FeedbackType
from context_optimizer.models.pattern import Pattern, PatternType, PatternUpdate
from context_optimizer.models.quota import QuotaUpdate, Tier
from context_optimizer.services.context_store import (
    ContextStorage,
    SQLiteContextStore,
    parse_timeframe,
)

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def make_session(agent_id="agent-1", original=100, compressed=40, **kwargs):
    return CompressionSession(
        agent_id=agent_id,
        original_tokens=original,
        compressed_tokens=compressed,
        compression_ratio=compressed / original,
        tokens_saved=original - compressed,
        strategy_used="dedup",
        quality_score=0.9,
        **kwargs,
    )


def make_pattern(text="Repeated boilerplate paragraph", agent_id="agent-1", importance=0.3,
                 pattern_type=PatternType.REDUNDANT):
    return Pattern.observe(agent_id, pattern_type, text, token_impact=12, importance_score=importance)


async def count_rows(store, table):
    result = await store.db.execute_async(f"SELECT COUNT(*) AS n FROM {table}", fetch=FetchType.ONE)
    return result.data["n"]


class TestTimeframe:
    """Window parsing for stats."""

    @pytest.mark.parametrize(
        "value, expected",
        [
            ("30 days", timedelta(days=30)),
            ("1 day", timedelta(days=1)),
            ("2 hours", timedelta(hours=2)),
            ("15 minutes", timedelta(minutes=15)),
            ("1 week", timedelta(days=7)),
            ("6 months", timedelta(days=180)),
            ("1 year", timedelta(days=365)),
        ],
    )
    def test_valid(self, value, expected):
        assert parse_timeframe(value) == expected

    @pytest.mark.parametrize("value", ["", "days", "30", "1 fortnight", "-1 days"])
    def test_invalid(self, value):
        with pytest.raises(ValidationError):
            parse_timeframe(value)


class TestSessions:
    """Immutable session records."""

    def test_implements_protocol(self, store):
        assert isinstance(store, ContextStorage)

    async def test_record_and_get(self, store):
        session = make_session(original_context="full text", compressed_context="text")
        await store.record_session(session)

        loaded = await store.get_session(session.session_id)
        assert loaded.session_id == session.session_id
        assert loaded.tokens_saved == 60
        assert loaded.strategy_used == "dedup"
        assert loaded.original_context == "full text"
        assert loaded.created_at == session.created_at

    async def test_unknown_session(self, store):
        assert await store.get_session("missing") is None

    async def test_duplicate_session_id(self, store):
        session = make_session()
        await store.record_session(session)
        with pytest.raises(SQLiteConstraintError):
            await store.record_session(session)

    async def test_anonymous_session(self, store):
        session = make_session(agent_id=None)
        await store.record_session(session)
        assert (await store.get_session(session.session_id)).agent_id is None

    async def test_recent_first(self, store):
        for offset in range(3):
            set_mock_time(NOW + timedelta(minutes=offset))
            await store.record_session(make_session(original=100 + offset))

        sessions = await store.get_sessions("agent-1", limit=2)
        assert [s.original_tokens for s in sessions] == [102, 101]


class TestStats:
    """Window aggregates over sessions."""

    async def test_empty_window(self, store):
        stats = await store.get_stats("agent-1")
        assert stats.total_compressions == 0
        assert stats.total_tokens_saved == 0
        assert stats.avg_compression_ratio == 1.0

    async def test_window_excludes_old_sessions(self, store):
        set_mock_time(NOW - timedelta(days=40))
        await store.record_session(make_session(original=200, compressed=100))
        set_mock_time(NOW)
        await store.record_session(make_session(original=100, compressed=40))
        await store.record_session(make_session(agent_id="other"))

        recent = await store.get_stats("agent-1", "30 days")
        assert recent.total_compressions == 1
        assert recent.total_tokens_saved == 60
        assert recent.avg_compression_ratio == pytest.approx(0.4)

        wide = await store.get_stats("agent-1", "60 days")
        assert wide.total_compressions == 2
        assert wide.total_original_tokens == 300
        assert wide.avg_compression_ratio == pytest.approx(0.45)

    async def test_invalid_timeframe(self, store):
        with pytest.raises(ValidationError):
            await store.get_stats("agent-1", "forever")


class TestPatterns:
    """Upsert, ranking and partial updates."""

    async def test_upsert_twice_increments_frequency(self, store):
        first = await store.upsert_pattern(make_pattern(importance=0.3))
        second = await store.upsert_pattern(make_pattern(importance=0.6))

        assert first.frequency == 1
        assert second.frequency == 2
        assert second.pattern_id == first.pattern_id
        # Last write wins for importance
        assert second.importance_score == 0.6
        assert await count_rows(store, "compression_patterns") == 1

    async def test_same_text_differs_per_agent(self, store):
        await store.upsert_pattern(make_pattern(agent_id="agent-1"))
        await store.upsert_pattern(make_pattern(agent_id="agent-2"))
        assert len(await store.get_patterns("agent-1")) == 1
        assert len(await store.get_patterns("agent-2")) == 1

    async def test_ranking_and_filters(self, store):
        await store.upsert_pattern(make_pattern("Low importance fragment", importance=0.1))
        await store.upsert_pattern(
            make_pattern("Key formula fragment", importance=0.9, pattern_type=PatternType.HIGH_VALUE)
        )
        await store.upsert_pattern(make_pattern("Medium fragment here", importance=0.5))

        ranked = await store.get_patterns("agent-1")
        assert [p.importance_score for p in ranked] == [0.9, 0.5, 0.1]

        high_value = await store.get_patterns("agent-1", pattern_type="high_value")
        assert [p.pattern_text for p in high_value] == ["Key formula fragment"]

        top = await store.get_top_patterns("agent-1", limit=2)
        assert len(top) == 2

    async def test_update_pattern(self, store):
        stored = await store.upsert_pattern(make_pattern())
        updated = await store.update_pattern(stored.pattern_id, PatternUpdate(importance_score=0.8))
        assert updated.importance_score == 0.8
        assert updated.frequency == stored.frequency

    async def test_empty_update_rejected(self, store):
        stored = await store.upsert_pattern(make_pattern())
        with pytest.raises(InvalidUpdateError):
            await store.update_pattern(stored.pattern_id, PatternUpdate())

    async def test_update_unknown_pattern(self, store):
        with pytest.raises(NotFoundError):
            await store.update_pattern("missing", PatternUpdate(frequency=3))

    async def test_session_links(self, store):
        session = make_session()
        await store.record_session(session)
        removed = await store.upsert_pattern(make_pattern())
        kept = await store.upsert_pattern(
            make_pattern("Key formula fragment", pattern_type=PatternType.HIGH_VALUE)
        )

        links = [(removed.pattern_id, "removed"), (kept.pattern_id, "protected")]
        assert await store.link_session_patterns(session.session_id, links) == 2
        assert await store.link_session_patterns(session.session_id, links) == 0

        linked = await store.get_session_patterns(session.session_id)
        assert {(p.pattern_id, role) for p, role in linked} == set(links)


class TestFeedback:
    """Feedback referencing recorded sessions only."""

    async def test_record(self, store):
        session = make_session()
        await store.record_session(session)
        feedback = Feedback(
            session_id=session.session_id, feedback_type=FeedbackType.QUALITY, score=0.8
        )
        assert await store.record_feedback(feedback) == feedback
        assert await count_rows(store, "compression_feedback") == 1

    async def test_unknown_session(self, store):
        feedback = Feedback(session_id="missing", feedback_type="too_aggressive", score=0.2)
        with pytest.raises(UnknownSessionError):
            await store.record_feedback(feedback)
        assert await count_rows(store, "compression_feedback") == 0


class TestQuotaStorage:
    """Quota rows and the atomic check-and-increment."""

    async def test_defaults(self, store):
        quota = await store.get_or_init_quota("agent-1")
        assert quota.tier == "free"
        assert quota.compression_limit == 100
        assert quota.compressions_today == 0

    async def test_consume(self, store):
        decision = await store.atomic_consume_quota("agent-1")
        assert decision.admitted
        assert decision.remaining == 99
        assert decision.used_today == 1

    async def test_check_is_pure_read(self, store):
        status = await store.check_quota("agent-1")
        assert status.available
        assert status.remaining == 100
        assert await count_rows(store, "agent_quotas") == 0

    async def test_check_reports_fresh_day_without_writing(self, store):
        set_mock_time(NOW)
        await store.atomic_consume_quota("agent-1")
        set_mock_time(NOW + timedelta(days=1))

        status = await store.check_quota("agent-1")
        assert status.remaining == 100
        set_mock_time(NOW)
        assert (await store.check_quota("agent-1")).remaining == 99

    async def test_set_tier(self, store):
        pro = await store.set_tier("agent-1", Tier.PRO, date(2026, 12, 31))
        assert pro.tier == "pro"
        assert pro.compression_limit == -1
        assert pro.paid_until == date(2026, 12, 31)

        free = await store.set_tier("agent-1", Tier.FREE)
        assert free.compression_limit == 100
        assert free.paid_until is None

    async def test_update_quota(self, store):
        await store.get_or_init_quota("agent-1")
        quota = await store.update_quota("agent-1", QuotaUpdate(compression_limit=10))
        assert quota.compression_limit == 10

    async def test_update_quota_rejects_empty(self, store):
        await store.get_or_init_quota("agent-1")
        with pytest.raises(InvalidUpdateError):
            await store.update_quota("agent-1", QuotaUpdate())

    async def test_update_quota_unknown_agent(self, store):
        with pytest.raises(NotFoundError):
            await store.update_quota("nobody", QuotaUpdate(compression_limit=10))


class TestTokenStats:
    """Daily upserted aggregates."""

    async def test_ratio_of_totals(self, store):
        await store.update_token_stats("agent-1", 100, 50, 0.1)
        stats = await store.update_token_stats("agent-1", 300, 60, 0.48)

        assert stats.compression_count == 2
        assert stats.original_tokens == 400
        assert stats.compressed_tokens == 110
        assert stats.tokens_saved == 290
        assert stats.cost_saved == pytest.approx(0.58)
        # Not the mean of 0.5 and 0.2
        assert stats.average_ratio == pytest.approx(110 / 400)

    async def test_one_row_per_day(self, store):
        set_mock_time(NOW - timedelta(days=1))
        await store.update_token_stats("agent-1", 100, 50, 0.1)
        set_mock_time(NOW)
        await store.update_token_stats("agent-1", 100, 20, 0.16)

        rows = await store.get_token_stats("agent-1", days=7)
        assert [row.date for row in rows] == [NOW.date(), NOW.date() - timedelta(days=1)]

        totals = await store.get_total_savings("agent-1")
        assert totals["total_tokens_saved"] == 130
        assert totals["total_compressions"] == 2
        assert totals["overall_ratio"] == pytest.approx(70 / 200)

    async def test_no_stats(self, store):
        totals = await store.get_total_savings("agent-1")
        assert totals["total_compressions"] == 0
        assert totals["overall_ratio"] == 1.0


class TestConcurrentWriters:
    """Two connections to one database file writing at the same time."""

    WRITERS = 20

    async def test_token_stats_lose_no_updates(self, store, db_path, settings):
        """Every concurrent session lands in the daily aggregate exactly once."""
        other_db = DatabaseManager(db_path)
        other = SQLiteContextStore(db=other_db, settings=settings)
        sessions = [(100 + 10 * n, 40 + n) for n in range(self.WRITERS)]
        try:
            await asyncio.gather(
                *(
                    (store if n % 2 else other).update_token_stats(
                        "agent-1", original, compressed, 0.01
                    )
                    for n, (original, compressed) in enumerate(sessions)
                )
            )
        finally:
            other_db.close()

        [stats] = await store.get_token_stats("agent-1")
        total_original = sum(original for original, _ in sessions)
        total_compressed = sum(compressed for _, compressed in sessions)
        assert stats.compression_count == self.WRITERS
        assert stats.original_tokens == total_original
        assert stats.compressed_tokens == total_compressed
        assert stats.tokens_saved == total_original - total_compressed
        assert stats.cost_saved == pytest.approx(0.01 * self.WRITERS)
        assert stats.average_ratio == pytest.approx(total_compressed / total_original)

    async def test_pattern_upserts_merge_into_one_row(self, store, db_path, settings):
        """Concurrent observations of one pattern count every occurrence."""
        other_db = DatabaseManager(db_path)
        other = SQLiteContextStore(db=other_db, settings=settings)
        try:
            await asyncio.gather(
                *(
                    (store if n % 2 else other).upsert_pattern(make_pattern())
                    for n in range(self.WRITERS)
                )
            )
        finally:
            other_db.close()

        [pattern] = await store.get_patterns("agent-1")
        assert pattern.frequency == self.WRITERS
        assert await count_rows(store, "compression_patterns") == 1
