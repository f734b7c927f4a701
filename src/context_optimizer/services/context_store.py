"""
Context store.

Storage interface consumed by the compression engine, and its SQLite
implementation on top of DatabaseManager.

Atomicity rules:
- Quota check-and-increment is one IMMEDIATE transaction whose increment
  is a conditional UPDATE; never a read in one call and a write in another.
- Pattern upserts increment frequency in SQL (ON CONFLICT ... frequency + 1)
  and overwrite impact/importance: last write wins.
- Token stats are an ON CONFLICT upsert that adds deltas in SQL.
"""

import re
import sqlite3
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple, runtime_checkable

from context_optimizer.core.database import DatabaseManager, FetchType, get_db_manager
from context_optimizer.core.exceptions import (
    DatabaseError,
    InvalidUpdateError,
    NotFoundError,
    UnknownSessionError,
    ValidationError,
)
from context_optimizer.core.logging import logger, masker
from context_optimizer.core.secure_config import Settings
from context_optimizer.core.utils.datetime_utils import (
    format_iso,
    utc_now_iso,
    utc_now_testable,
    utc_today,
    utc_today_iso,
)
from context_optimizer.models.compression import CompressionSession
from context_optimizer.models.feedback import Feedback
from context_optimizer.models.pattern import Pattern, PatternRole, PatternUpdate
from context_optimizer.models.quota import (
    UNLIMITED,
    Quota,
    QuotaDecision,
    QuotaStatus,
    QuotaUpdate,
    Tier,
)
from context_optimizer.models.stats import CompressionStats, TokenStats

_TIMEFRAME = re.compile(r"^\s*(\d+)\s+(minute|hour|day|week|month|year)s?\s*$", re.IGNORECASE)
_UNIT_DAYS = {"week": 7, "month": 30, "year": 365}


def parse_timeframe(timeframe: str) -> timedelta:
    """
    Parse "<n> <unit>" ("30 days", "1 hour", "6 months").

    Raises:
        ValidationError: For anything else
    """
    match = _TIMEFRAME.match(timeframe or "")
    if not match:
        raise ValidationError(
            f"Invalid timeframe '{timeframe}'. Expected '<n> <unit>', e.g. '30 days'",
            context={"timeframe": timeframe},
        )
    amount = int(match.group(1))
    unit = match.group(2).lower()
    if unit == "minute":
        return timedelta(minutes=amount)
    if unit == "hour":
        return timedelta(hours=amount)
    if unit == "day":
        return timedelta(days=amount)
    return timedelta(days=amount * _UNIT_DAYS[unit])


@runtime_checkable
class ContextStorage(Protocol):
    """
    Persistence contract of the compression engine.

    The engine holds no cross-request state: sessions, patterns, quotas
    and stats all round-trip through an implementation of this protocol.
    """

    async def record_session(self, session: CompressionSession) -> CompressionSession: ...

    async def get_session(self, session_id: str) -> Optional[CompressionSession]: ...

    async def get_sessions(self, agent_id: str, limit: int = 10) -> List[CompressionSession]: ...

    async def get_stats(self, agent_id: str, timeframe: str = "30 days") -> CompressionStats: ...

    async def upsert_pattern(self, pattern: Pattern) -> Pattern: ...

    async def get_patterns(
        self, agent_id: Optional[str], pattern_type: Optional[str] = None, limit: Optional[int] = None
    ) -> List[Pattern]: ...

    async def get_top_patterns(self, agent_id: str, limit: int = 10) -> List[Pattern]: ...

    async def update_pattern(self, pattern_id: str, update: PatternUpdate) -> Pattern: ...

    async def link_session_patterns(
        self, session_id: str, links: Sequence[Tuple[str, str]]
    ) -> int: ...

    async def get_session_patterns(self, session_id: str) -> List[Tuple[Pattern, str]]: ...

    async def record_feedback(self, feedback: Feedback) -> Feedback: ...

    async def get_or_init_quota(self, agent_id: str) -> Quota: ...

    async def atomic_consume_quota(self, agent_id: str) -> QuotaDecision: ...

    async def check_quota(self, agent_id: str) -> QuotaStatus: ...

    async def set_tier(
        self, agent_id: str, tier: Tier, paid_until: Optional[Any] = None
    ) -> Quota: ...

    async def update_quota(self, agent_id: str, update: QuotaUpdate) -> Quota: ...

    async def update_token_stats(
        self, agent_id: str, original_tokens: int, compressed_tokens: int, cost_saved: float
    ) -> TokenStats: ...

    async def get_token_stats(self, agent_id: str, days: int = 30) -> List[TokenStats]: ...

    async def get_total_savings(self, agent_id: str) -> Dict[str, Any]: ...


def _row(cursor: sqlite3.Cursor) -> Optional[Dict[str, Any]]:
    row = cursor.fetchone()
    return dict(row) if row else None


def _required_row(cursor: sqlite3.Cursor, what: str) -> Dict[str, Any]:
    row = _row(cursor)
    if row is None:
        # Written in the same transaction, so this only happens if the schema is broken
        raise DatabaseError(f"{what} row missing right after write")
    return row


def _session_from_row(row: Dict[str, Any]) -> CompressionSession:
    return CompressionSession(
        session_id=row["session_id"],
        agent_id=row["agent_id"],
        original_tokens=row["original_tokens"],
        compressed_tokens=row["compressed_tokens"],
        compression_ratio=row["compression_ratio"],
        tokens_saved=row["tokens_saved"],
        cost_saved=row["cost_saved_usd"],
        strategy_used=row["strategy_used"],
        quality_score=row["quality_score"],
        original_context=row["original_context"],
        compressed_context=row["compressed_context"],
        created_at=row["created_at"],
    )


def _pattern_from_row(row: Dict[str, Any]) -> Pattern:
    return Pattern(
        pattern_id=row["pattern_id"],
        agent_id=row["agent_id"],
        pattern_type=row["pattern_type"],
        pattern_text=row["pattern_text"],
        frequency=row["frequency"],
        token_impact=row["token_impact"],
        importance_score=row["importance_score"],
        last_seen=row["last_seen"],
    )


def _quota_from_row(row: Dict[str, Any]) -> Quota:
    return Quota(
        agent_id=row["agent_id"],
        tier=row["tier"],
        compression_limit=row["compression_limit"],
        compressions_today=row["compressions_today"],
        last_reset_date=row["last_reset_date"],
        paid_until=row["paid_until"],
        updated_at=row["updated_at"],
    )


def _stats_from_row(row: Dict[str, Any]) -> TokenStats:
    return TokenStats(
        agent_id=row["agent_id"],
        date=row["date"],
        original_tokens=row["original_tokens"],
        compressed_tokens=row["compressed_tokens"],
        tokens_saved=row["tokens_saved"],
        cost_saved=row["cost_saved_usd"],
        compression_count=row["compression_count"],
        average_ratio=row["average_ratio"],
    )


def _iso_date(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        value = value.date()
    return value.isoformat() if hasattr(value, "isoformat") else str(value)


class SQLiteContextStore:
    """
    ContextStorage over the shared SQLite DatabaseManager.

    Multi-statement units run through run_in_transaction so they see and
    write a consistent snapshot; everything else is a single statement.
    """

    def __init__(
        self, db: Optional[DatabaseManager] = None, settings: Optional[Settings] = None
    ) -> None:
        self.db = db or get_db_manager()
        self.settings = settings or Settings()
        self.free_limit: int = self.settings.get("quota.free_limit", 100)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def record_session(self, session: CompressionSession) -> CompressionSession:
        """
        Persist a session exactly once.

        Raises:
            SQLiteConstraintError: If the session id was already recorded
        """
        await self.db.execute_async(
            """
            INSERT INTO compression_sessions (
                session_id, agent_id, original_tokens, compressed_tokens,
                compression_ratio, tokens_saved, cost_saved_usd, strategy_used,
                quality_score, original_context, compressed_context, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                session.session_id,
                session.agent_id,
                session.original_tokens,
                session.compressed_tokens,
                session.compression_ratio,
                session.tokens_saved,
                session.cost_saved,
                str(session.strategy_used),
                session.quality_score,
                session.original_context,
                session.compressed_context,
                format_iso(session.created_at),
            ),
            FetchType.NONE,
        )
        logger.info(
            "Session recorded",
            session_id=session.session_id,
            agent=masker.mask_agent_id(session.agent_id),
            strategy=session.strategy_used,
            tokens_saved=session.tokens_saved,
        )
        return session

    async def get_session(self, session_id: str) -> Optional[CompressionSession]:
        result = await self.db.execute_async(
            "SELECT * FROM compression_sessions WHERE session_id = ?",
            (session_id,),
            FetchType.ONE,
        )
        if not result.data or not isinstance(result.data, dict):
            return None
        return _session_from_row(result.data)

    async def get_sessions(self, agent_id: str, limit: int = 10) -> List[CompressionSession]:
        """Most recent sessions first."""
        result = await self.db.execute_async(
            """
            SELECT * FROM compression_sessions
            WHERE agent_id = ?
            ORDER BY created_at DESC
            LIMIT ?
            """,
            (agent_id, limit),
            FetchType.ALL,
        )
        rows = result.data if isinstance(result.data, list) else []
        return [_session_from_row(row) for row in rows]

    async def get_stats(self, agent_id: str, timeframe: str = "30 days") -> CompressionStats:
        """Aggregate counts and ratios over sessions in the window."""
        cutoff = format_iso(utc_now_testable() - parse_timeframe(timeframe))
        result = await self.db.execute_async(
            """
            SELECT
                COUNT(*) AS total_compressions,
                COALESCE(SUM(original_tokens), 0) AS total_original_tokens,
                COALESCE(SUM(compressed_tokens), 0) AS total_compressed_tokens,
                COALESCE(SUM(tokens_saved), 0) AS total_tokens_saved,
                COALESCE(SUM(cost_saved_usd), 0.0) AS total_cost_saved,
                AVG(compression_ratio) AS avg_compression_ratio,
                AVG(quality_score) AS avg_quality_score
            FROM compression_sessions
            WHERE agent_id = ? AND created_at >= ?
            """,
            (agent_id, cutoff),
            FetchType.ONE,
        )
        row = result.data if isinstance(result.data, dict) else {}
        return CompressionStats(
            agent_id=agent_id,
            timeframe=timeframe,
            total_compressions=row.get("total_compressions") or 0,
            total_original_tokens=row.get("total_original_tokens") or 0,
            total_compressed_tokens=row.get("total_compressed_tokens") or 0,
            total_tokens_saved=row.get("total_tokens_saved") or 0,
            total_cost_saved=row.get("total_cost_saved") or 0.0,
            avg_compression_ratio=(
                row["avg_compression_ratio"] if row.get("avg_compression_ratio") is not None else 1.0
            ),
            avg_quality_score=(
                row["avg_quality_score"] if row.get("avg_quality_score") is not None else 1.0
            ),
        )

    # ------------------------------------------------------------------
    # Patterns
    # ------------------------------------------------------------------

    async def upsert_pattern(self, pattern: Pattern) -> Pattern:
        """
        Insert a pattern or merge a repeat observation.

        frequency + 1 on conflict; token_impact, importance_score and
        last_seen take the new observation's values.
        """

        def _upsert(conn: sqlite3.Connection) -> Dict[str, Any]:
            conn.execute(
                """
                INSERT INTO compression_patterns (
                    pattern_id, agent_id, pattern_type, pattern_text,
                    frequency, token_impact, importance_score, last_seen
                ) VALUES (?, ?, ?, ?, 1, ?, ?, ?)
                ON CONFLICT(pattern_id) DO UPDATE SET
                    frequency = frequency + 1,
                    token_impact = excluded.token_impact,
                    importance_score = excluded.importance_score,
                    last_seen = excluded.last_seen
                """,
                (
                    pattern.pattern_id,
                    pattern.agent_id,
                    str(pattern.pattern_type),
                    pattern.pattern_text,
                    pattern.token_impact,
                    pattern.importance_score,
                    format_iso(pattern.last_seen),
                ),
            )
            return _required_row(
                conn.execute(
                    "SELECT * FROM compression_patterns WHERE pattern_id = ?",
                    (pattern.pattern_id,),
                ),
                "Pattern",
            )

        row = await self.db.run_in_transaction(_upsert)
        stored = _pattern_from_row(row)
        logger.debug(
            "Pattern upserted",
            pattern_id=stored.pattern_id,
            pattern_type=stored.pattern_type,
            frequency=stored.frequency,
        )
        return stored

    async def get_pattern(self, pattern_id: str) -> Optional[Pattern]:
        result = await self.db.execute_async(
            "SELECT * FROM compression_patterns WHERE pattern_id = ?",
            (pattern_id,),
            FetchType.ONE,
        )
        if not result.data or not isinstance(result.data, dict):
            return None
        return _pattern_from_row(result.data)

    async def get_patterns(
        self,
        agent_id: Optional[str],
        pattern_type: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Pattern]:
        """Agent patterns ordered by importance desc, frequency desc."""
        query = "SELECT * FROM compression_patterns WHERE agent_id IS ?"
        params: List[Any] = [agent_id]
        if pattern_type is not None:
            query += " AND pattern_type = ?"
            params.append(str(pattern_type))
        query += " ORDER BY importance_score DESC, frequency DESC, pattern_id"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        result = await self.db.execute_async(query, tuple(params), FetchType.ALL)
        rows = result.data if isinstance(result.data, list) else []
        return [_pattern_from_row(row) for row in rows]

    async def get_top_patterns(self, agent_id: str, limit: int = 10) -> List[Pattern]:
        return await self.get_patterns(agent_id, limit=limit)

    async def update_pattern(self, pattern_id: str, update: PatternUpdate) -> Pattern:
        """
        Apply a partial update.

        Raises:
            InvalidUpdateError: No field set (nothing is written)
            NotFoundError: Unknown pattern id
        """
        fields = update.set_fields()
        if not fields:
            raise InvalidUpdateError(
                "Pattern update has no fields to change", context={"pattern_id": pattern_id}
            )

        columns = []
        params: List[Any] = []
        for name, value in fields.items():
            columns.append(f"{name} = ?")
            params.append(format_iso(value) if name == "last_seen" else value)
        params.append(pattern_id)

        def _update(conn: sqlite3.Connection) -> Optional[Dict[str, Any]]:
            cursor = conn.execute(
                f"UPDATE compression_patterns SET {', '.join(columns)} WHERE pattern_id = ?",
                tuple(params),
            )
            if cursor.rowcount == 0:
                return None
            return _row(
                conn.execute(
                    "SELECT * FROM compression_patterns WHERE pattern_id = ?", (pattern_id,)
                )
            )

        row = await self.db.run_in_transaction(_update)
        if row is None:
            raise NotFoundError(
                f"Pattern not found: {pattern_id}", context={"pattern_id": pattern_id}
            )
        logger.debug("Pattern updated", pattern_id=pattern_id, fields=list(fields))
        return _pattern_from_row(row)

    async def link_session_patterns(
        self, session_id: str, links: Sequence[Tuple[str, str]]
    ) -> int:
        """Associate (pattern_id, role) pairs with a session. Repeats are ignored."""
        if not links:
            return 0
        rows = [(session_id, pattern_id, str(PatternRole(role).value)) for pattern_id, role in links]

        def _link(conn: sqlite3.Connection) -> int:
            before = conn.total_changes
            conn.executemany(
                """
                INSERT OR IGNORE INTO session_patterns (session_id, pattern_id, role)
                VALUES (?, ?, ?)
                """,
                rows,
            )
            return conn.total_changes - before

        return await self.db.run_in_transaction(_link)

    async def get_session_patterns(self, session_id: str) -> List[Tuple[Pattern, str]]:
        result = await self.db.execute_async(
            """
            SELECT p.*, sp.role AS role
            FROM session_patterns sp
            JOIN compression_patterns p ON p.pattern_id = sp.pattern_id
            WHERE sp.session_id = ?
            ORDER BY sp.role, p.pattern_id
            """,
            (session_id,),
            FetchType.ALL,
        )
        rows = result.data if isinstance(result.data, list) else []
        return [(_pattern_from_row(row), row["role"]) for row in rows]

    # ------------------------------------------------------------------
    # Feedback
    # ------------------------------------------------------------------

    async def record_feedback(self, feedback: Feedback) -> Feedback:
        """
        Store feedback for a recorded session.

        Raises:
            UnknownSessionError: If the session was never recorded
        """

        def _record(conn: sqlite3.Connection) -> bool:
            exists = conn.execute(
                "SELECT 1 FROM compression_sessions WHERE session_id = ?",
                (feedback.session_id,),
            ).fetchone()
            if not exists:
                return False
            conn.execute(
                """
                INSERT INTO compression_feedback (
                    feedback_id, session_id, feedback_type, score, notes, created_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    feedback.feedback_id,
                    feedback.session_id,
                    str(feedback.feedback_type),
                    feedback.score,
                    feedback.notes,
                    format_iso(feedback.created_at),
                ),
            )
            return True

        if not await self.db.run_in_transaction(_record):
            raise UnknownSessionError(feedback.session_id)
        return feedback

    # ------------------------------------------------------------------
    # Quotas
    # ------------------------------------------------------------------

    def _insert_default_quota(self, conn: sqlite3.Connection, agent_id: str) -> None:
        conn.execute(
            """
            INSERT OR IGNORE INTO agent_quotas (
                agent_id, tier, compression_limit, compressions_today,
                last_reset_date, updated_at
            ) VALUES (?, 'free', ?, 0, ?, ?)
            """,
            (agent_id, self.free_limit, utc_today_iso(), utc_now_iso()),
        )

    @staticmethod
    def _reset_if_new_day(conn: sqlite3.Connection, agent_id: str, today: str) -> None:
        conn.execute(
            """
            UPDATE agent_quotas
            SET compressions_today = 0, last_reset_date = ?
            WHERE agent_id = ? AND last_reset_date != ?
            """,
            (today, agent_id, today),
        )

    async def get_or_init_quota(self, agent_id: str) -> Quota:
        """Quota row, created with free-tier defaults and reset on a new day."""

        def _get(conn: sqlite3.Connection) -> Dict[str, Any]:
            self._insert_default_quota(conn, agent_id)
            self._reset_if_new_day(conn, agent_id, utc_today_iso())
            return _required_row(
                conn.execute("SELECT * FROM agent_quotas WHERE agent_id = ?", (agent_id,)), "Quota"
            )

        return _quota_from_row(await self.db.run_in_transaction(_get))

    async def atomic_consume_quota(self, agent_id: str) -> QuotaDecision:
        """
        Check-and-increment the daily counter in one IMMEDIATE transaction.

        The increment is a conditional UPDATE (pro, unlimited, or under the
        limit); rowcount says whether this request was admitted. Two
        concurrent requests seeing "1 remaining" cannot both pass because
        SQLite serializes the write lock taken at BEGIN IMMEDIATE.
        """

        def _consume(conn: sqlite3.Connection) -> Tuple[bool, Dict[str, Any]]:
            today = utc_today_iso()
            self._insert_default_quota(conn, agent_id)
            self._reset_if_new_day(conn, agent_id, today)
            cursor = conn.execute(
                """
                UPDATE agent_quotas
                SET compressions_today = compressions_today + 1, updated_at = ?
                WHERE agent_id = ?
                  AND (tier = 'pro'
                       OR compression_limit = ?
                       OR compressions_today < compression_limit)
                """,
                (utc_now_iso(), agent_id, UNLIMITED),
            )
            admitted = cursor.rowcount == 1
            row = _required_row(
                conn.execute("SELECT * FROM agent_quotas WHERE agent_id = ?", (agent_id,)), "Quota"
            )
            return admitted, row

        admitted, row = await self.db.run_in_transaction(_consume)
        quota = _quota_from_row(row)

        if quota.is_unlimited:
            remaining = limit = UNLIMITED
        else:
            limit = quota.compression_limit
            remaining = max(0, limit - quota.compressions_today)

        return QuotaDecision(
            agent_id=agent_id,
            admitted=admitted,
            remaining=remaining,
            limit=limit,
            tier=quota.tier,
            used_today=quota.compressions_today,
        )

    async def check_quota(self, agent_id: str) -> QuotaStatus:
        """
        Pure read of the quota state.

        Never inserts or resets: an unknown agent reports free-tier defaults
        and a row from an earlier day reports a fresh day.
        """
        result = await self.db.execute_async(
            "SELECT * FROM agent_quotas WHERE agent_id = ?", (agent_id,), FetchType.ONE
        )
        if not result.data or not isinstance(result.data, dict):
            return QuotaStatus(
                agent_id=agent_id,
                available=True,
                remaining=self.free_limit,
                limit=self.free_limit,
                tier=Tier.FREE,
                used_today=0,
            )

        quota = _quota_from_row(result.data)
        used = quota.compressions_today if quota.last_reset_date == utc_today() else 0

        if quota.is_unlimited:
            return QuotaStatus(
                agent_id=agent_id,
                available=True,
                remaining=UNLIMITED,
                limit=UNLIMITED,
                tier=quota.tier,
                used_today=used,
            )

        remaining = max(0, quota.compression_limit - used)
        return QuotaStatus(
            agent_id=agent_id,
            available=remaining > 0,
            remaining=remaining,
            limit=quota.compression_limit,
            tier=quota.tier,
            used_today=used,
        )

    async def set_tier(self, agent_id: str, tier: Tier, paid_until: Optional[Any] = None) -> Quota:
        """
        Change tier. Pro stores the unlimited sentinel; free restores the
        configured free limit.
        """
        tier = Tier(tier)
        limit = UNLIMITED if tier == Tier.PRO else self.free_limit

        def _set(conn: sqlite3.Connection) -> Dict[str, Any]:
            self._insert_default_quota(conn, agent_id)
            conn.execute(
                """
                UPDATE agent_quotas
                SET tier = ?, compression_limit = ?, paid_until = ?, updated_at = ?
                WHERE agent_id = ?
                """,
                (tier.value, limit, _iso_date(paid_until), utc_now_iso(), agent_id),
            )
            return _required_row(
                conn.execute("SELECT * FROM agent_quotas WHERE agent_id = ?", (agent_id,)), "Quota"
            )

        quota = _quota_from_row(await self.db.run_in_transaction(_set))
        logger.info(
            "Tier updated",
            agent=masker.mask_agent_id(agent_id),
            tier=quota.tier,
            paid_until=_iso_date(quota.paid_until),
        )
        return quota

    async def update_quota(self, agent_id: str, update: QuotaUpdate) -> Quota:
        """
        Apply a partial update to an existing quota row.

        Raises:
            InvalidUpdateError: No field set (nothing is written)
            NotFoundError: The agent has no quota row yet
        """
        fields = update.set_fields()
        if not fields:
            raise InvalidUpdateError(
                "Quota update has no fields to change",
                context={"agent_id": masker.mask_agent_id(agent_id)},
            )

        columns = []
        params: List[Any] = []
        for name, value in fields.items():
            columns.append(f"{name} = ?")
            if name == "paid_until":
                value = _iso_date(value)
            elif name == "tier":
                value = Tier(value).value
            params.append(value)
        columns.append("updated_at = ?")
        params.extend([utc_now_iso(), agent_id])

        def _update(conn: sqlite3.Connection) -> Optional[Dict[str, Any]]:
            cursor = conn.execute(
                f"UPDATE agent_quotas SET {', '.join(columns)} WHERE agent_id = ?",
                tuple(params),
            )
            if cursor.rowcount == 0:
                return None
            return _row(conn.execute("SELECT * FROM agent_quotas WHERE agent_id = ?", (agent_id,)))

        row = await self.db.run_in_transaction(_update)
        if row is None:
            raise NotFoundError(
                "No quota recorded for agent",
                context={"agent_id": masker.mask_agent_id(agent_id)},
            )
        return _quota_from_row(row)

    # ------------------------------------------------------------------
    # Token stats
    # ------------------------------------------------------------------

    async def update_token_stats(
        self, agent_id: str, original_tokens: int, compressed_tokens: int, cost_saved: float
    ) -> TokenStats:
        """
        Add one session to today's aggregate.

        A single upsert adds the deltas in SQL, so concurrent sessions for
        the same agent and day never lose updates. average_ratio is the
        ratio of the new running totals.
        """
        today = utc_today_iso()
        tokens_saved = original_tokens - compressed_tokens
        first_ratio = compressed_tokens / original_tokens if original_tokens else 1.0

        def _upsert(conn: sqlite3.Connection) -> Dict[str, Any]:
            conn.execute(
                """
                INSERT INTO token_stats (
                    agent_id, date, original_tokens, compressed_tokens,
                    tokens_saved, cost_saved_usd, compression_count, average_ratio
                ) VALUES (?, ?, ?, ?, ?, ?, 1, ?)
                ON CONFLICT(agent_id, date) DO UPDATE SET
                    original_tokens = original_tokens + excluded.original_tokens,
                    compressed_tokens = compressed_tokens + excluded.compressed_tokens,
                    tokens_saved = tokens_saved + excluded.tokens_saved,
                    cost_saved_usd = cost_saved_usd + excluded.cost_saved_usd,
                    compression_count = compression_count + 1,
                    average_ratio = CASE
                        WHEN original_tokens + excluded.original_tokens > 0
                        THEN CAST(compressed_tokens + excluded.compressed_tokens AS REAL)
                             / (original_tokens + excluded.original_tokens)
                        ELSE 1.0
                    END
                """,
                (
                    agent_id,
                    today,
                    original_tokens,
                    compressed_tokens,
                    tokens_saved,
                    cost_saved,
                    first_ratio,
                ),
            )
            return _required_row(
                conn.execute(
                    "SELECT * FROM token_stats WHERE agent_id = ? AND date = ?", (agent_id, today)
                ),
                "Token stats",
            )

        return _stats_from_row(await self.db.run_in_transaction(_upsert))

    async def get_token_stats(self, agent_id: str, days: int = 30) -> List[TokenStats]:
        """Daily rows of the last `days` days, newest first."""
        since = (utc_today() - timedelta(days=days)).isoformat()
        result = await self.db.execute_async(
            """
            SELECT * FROM token_stats
            WHERE agent_id = ? AND date >= ?
            ORDER BY date DESC
            """,
            (agent_id, since),
            FetchType.ALL,
        )
        rows = result.data if isinstance(result.data, list) else []
        return [_stats_from_row(row) for row in rows]

    async def get_total_savings(self, agent_id: str) -> Dict[str, Any]:
        """All-time totals from the daily aggregates."""
        result = await self.db.execute_async(
            """
            SELECT
                COALESCE(SUM(tokens_saved), 0) AS total_tokens_saved,
                COALESCE(SUM(cost_saved_usd), 0.0) AS total_cost_saved,
                COALESCE(SUM(compression_count), 0) AS total_compressions,
                COALESCE(SUM(original_tokens), 0) AS total_original_tokens,
                COALESCE(SUM(compressed_tokens), 0) AS total_compressed_tokens
            FROM token_stats
            WHERE agent_id = ?
            """,
            (agent_id,),
            FetchType.ONE,
        )
        row = result.data if isinstance(result.data, dict) else {}
        original = row.get("total_original_tokens") or 0
        compressed = row.get("total_compressed_tokens") or 0
        return {
            "total_tokens_saved": row.get("total_tokens_saved") or 0,
            "total_cost_saved": row.get("total_cost_saved") or 0.0,
            "total_compressions": row.get("total_compressions") or 0,
            "overall_ratio": compressed / original if original else 1.0,
        }
