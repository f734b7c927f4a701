"""Tests for DatabaseManager and SQLite error classification."""

import sqlite3

import pytest

from context_optimizer.core.database import DatabaseManager, FetchType, _classify_sqlite_error
from context_optimizer.core.exceptions import (
    DatabaseError,
    SQLiteBusyError,
    SQLiteConstraintError,
    SQLiteCorruptError,
    StorageUnavailableError,
)


class TestSchema:
    """Schema creation on startup."""

    async def test_tables_created(self, db):
        result = await db.execute_async(
            "SELECT name FROM sqlite_master WHERE type = 'table' ORDER BY name",
            fetch=FetchType.ALL,
        )
        names = {row["name"] for row in result.data}
        assert {
            "compression_sessions",
            "compression_patterns",
            "token_stats",
            "agent_quotas",
            "session_patterns",
            "compression_feedback",
        } <= names

    def test_schema_is_idempotent(self, db_path):
        first = DatabaseManager(db_path)
        second = DatabaseManager(db_path)
        first.close()
        second.close()

    def test_unreachable_path(self, tmp_path):
        with pytest.raises(StorageUnavailableError):
            DatabaseManager(str(tmp_path / "missing" / "dir" / "db.sqlite"))


class TestTransactions:
    """run_in_transaction commits or rolls back as a unit."""

    async def test_commit(self, db):
        def _write(conn):
            conn.execute(
                "INSERT INTO token_stats (agent_id, date) VALUES (?, ?)", ("agent", "2024-01-01")
            )
            return "done"

        assert await db.run_in_transaction(_write) == "done"
        result = await db.execute_async(
            "SELECT COUNT(*) AS n FROM token_stats", fetch=FetchType.ONE
        )
        assert result.data["n"] == 1

    async def test_rollback_on_error(self, db):
        def _write_then_fail(conn):
            conn.execute(
                "INSERT INTO token_stats (agent_id, date) VALUES (?, ?)", ("agent", "2024-01-01")
            )
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await db.run_in_transaction(_write_then_fail)

        result = await db.execute_async(
            "SELECT COUNT(*) AS n FROM token_stats", fetch=FetchType.ONE
        )
        assert result.data["n"] == 0

    async def test_constraint_violation_is_classified(self, db):
        insert = "INSERT INTO token_stats (agent_id, date) VALUES (?, ?)"
        await db.execute_async(insert, ("agent", "2024-01-01"))
        with pytest.raises(SQLiteConstraintError) as exc_info:
            await db.execute_async(insert, ("agent", "2024-01-01"))
        assert not exc_info.value.is_retryable()

    async def test_connection_reopens_after_close(self, db):
        db.close()
        result = await db.execute_async("SELECT 1 AS one", fetch=FetchType.ONE)
        assert result.data == {"one": 1}


class TestErrorClassification:
    """sqlite3 errors map onto the exception hierarchy."""

    def test_busy(self):
        error = _classify_sqlite_error(sqlite3.OperationalError("database is locked"))
        assert isinstance(error, SQLiteBusyError)
        assert error.is_retryable()
        assert error.suggestions

    def test_unavailable(self):
        error = _classify_sqlite_error(
            sqlite3.OperationalError("unable to open database file")
        )
        assert isinstance(error, StorageUnavailableError)
        assert not error.is_retryable()

    def test_corrupt(self):
        error = _classify_sqlite_error(
            sqlite3.DatabaseError("database disk image is malformed")
        )
        assert isinstance(error, SQLiteCorruptError)

    def test_integrity(self):
        error = _classify_sqlite_error(sqlite3.IntegrityError("UNIQUE constraint failed"))
        assert isinstance(error, SQLiteConstraintError)

    def test_other(self):
        error = _classify_sqlite_error(sqlite3.OperationalError("no such table: nothing"))
        assert type(error) is DatabaseError
        assert error.context["original_error"] == "no such table: nothing"
