"""
SQLite persistence infrastructure for the context optimizer.

MODULE STRUCTURE:
=================
- DatabaseManager: connection, schema and transaction infrastructure

ARCHITECTURAL NOTE:
- Core provides the infrastructure other modules use
- Services (ContextStore) implement the queries on top of it
- The compression engine never talks to SQLite directly
"""

import sqlite3
import asyncio
from pathlib import Path
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional, TypeVar, Union
from dataclasses import dataclass
from enum import Enum

from context_optimizer.core.database_schemas import SCHEMA_PATH
from context_optimizer.core.exceptions import (
    DatabaseError,
    SQLiteBusyError,
    SQLiteCorruptError,
    SQLiteConstraintError,
    StorageUnavailableError,
)
from context_optimizer.core.logging import logger

T = TypeVar("T")

QUERY_TIMEOUT_SECONDS = 30.0


def _classify_sqlite_error(sqlite_error: sqlite3.Error) -> DatabaseError:
    """
    Classify SQLite specific errors and return appropriate exception.

    SQLite error types and handling:
    - SQLITE_BUSY (5): DB temporarily locked → SQLiteBusyError (RETRYABLE)
    - SQLITE_CANTOPEN (14) / IOERR (10): unreachable → StorageUnavailableError
    - SQLITE_CORRUPT (11): DB corrupt → SQLiteCorruptError (NOT RETRYABLE)
    - SQLITE_CONSTRAINT (19): Constraint violation → SQLiteConstraintError (NOT RETRYABLE)
    - Others: Generic DB error → DatabaseError (RETRYABLE by default)

    Args:
        sqlite_error: Original sqlite3 error

    Returns:
        Appropriate DatabaseError instance based on type
    """
    error_msg = str(sqlite_error)
    lowered = error_msg.lower()
    error_code = getattr(sqlite_error, 'sqlite_errorcode', None)
    # Extended result codes keep the primary code in the low byte
    primary_code = error_code & 0xFF if isinstance(error_code, int) else None
    context = {"sqlite_code": error_code, "original_error": error_msg}

    if primary_code == 5 or 'database is locked' in lowered or 'busy' in lowered:
        exc: DatabaseError = SQLiteBusyError(
            f"Database temporarily locked: {error_msg}", context=context, cause=sqlite_error
        )
        exc.add_suggestion("Retry with exponential backoff")
        exc.add_suggestion("Check for long open transactions")
        return exc

    elif primary_code in (10, 14) or 'unable to open' in lowered or 'disk i/o' in lowered:
        exc = StorageUnavailableError(
            f"Storage unavailable: {error_msg}", context=context, cause=sqlite_error
        )
        exc.add_suggestion("Check that the database directory exists and is writable")
        exc.add_suggestion("Check available disk space")
        return exc

    elif primary_code == 11 or 'corrupt' in lowered or 'malformed' in lowered:
        exc = SQLiteCorruptError(
            f"Database corruption detected: {error_msg}", context=context, cause=sqlite_error
        )
        exc.add_suggestion("Restore from most recent backup")
        exc.add_suggestion("Run 'PRAGMA integrity_check' for diagnostics")
        return exc

    elif primary_code == 19 or isinstance(sqlite_error, sqlite3.IntegrityError):
        exc = SQLiteConstraintError(
            f"Database constraint violation: {error_msg}", context=context, cause=sqlite_error
        )
        exc.add_suggestion("Verify that data meets constraints (unique session ids, ranges)")
        return exc

    else:
        exc = DatabaseError(f"SQLite error: {error_msg}", context=context, cause=sqlite_error)
        exc.add_suggestion("Verify database configuration")
        return exc


def _rollback(conn: sqlite3.Connection) -> None:
    # SQLite may already have rolled back on its own (e.g. after SQLITE_FULL)
    if conn.in_transaction:
        conn.execute("ROLLBACK")


class FetchType(Enum):
    """Fetch types for queries."""

    ONE = "one"
    ALL = "all"
    NONE = "none"


@dataclass
class QueryResult:
    """Query result."""

    data: Optional[Union[Dict[str, Any], List[Dict[str, Any]]]]
    rows_affected: int
    last_row_id: Optional[int]


class DatabaseManager:
    """
    Centralized SQLite manager.

    Features:
    1. Single WAL-mode connection, serialized through an asyncio.Lock
    2. ACID transactions for multi-statement units (quota check-and-increment)
    3. Schema applied idempotently on startup

    Concurrency across processes relies on SQLite itself: every mutation
    that must be atomic is a single statement or an IMMEDIATE transaction,
    never a read in one call followed by a write in another.
    """

    def __init__(self, db_path: Optional[str] = None):
        logger.info("DatabaseManager initializing...")
        try:
            self.db_path = db_path or self._get_default_path()
            self._connection: Optional[sqlite3.Connection] = None
            self._lock = asyncio.Lock()
            self._init_schema()
            logger.info("DatabaseManager ready", db_path=self.db_path)
        except DatabaseError as e:
            logger.error("DatabaseManager initialization failed", error=str(e))
            raise

    def _get_default_path(self) -> str:
        """Database path from settings, creating its directory."""
        from context_optimizer.core.secure_config import Settings

        path = Path(Settings().get("database.path")).expanduser()
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageUnavailableError(
                f"Cannot create data directory {path.parent}: {e}", cause=e
            )
        return str(path)

    def _get_connection(self) -> sqlite3.Connection:
        """
        Get database connection.

        check_same_thread=False is safe here because every access goes
        through execute_async/run_in_transaction, which hold self._lock
        while the executor thread uses the connection.

        isolation_level=None: single statements autocommit, multi-statement
        units open their own BEGIN IMMEDIATE.
        """
        if self._connection is None:
            try:
                self._connection = sqlite3.connect(
                    self.db_path, check_same_thread=False, timeout=5.0, isolation_level=None
                )
                self._connection.row_factory = sqlite3.Row
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA foreign_keys = ON")
            except sqlite3.Error as e:
                self._connection = None
                raise _classify_sqlite_error(e)
        return self._connection

    def _init_schema(self):
        """
        Initialize the database schema.

        Tables:
        1. compression_sessions - one immutable row per compression call
        2. compression_patterns - learned patterns per agent
        3. token_stats - daily aggregates keyed by (agent_id, date)
        4. agent_quotas - tier and daily allowance keyed by agent_id
        5. session_patterns - patterns produced by each session
        6. compression_feedback - post-hoc quality feedback
        """
        if not SCHEMA_PATH.exists():
            logger.error("schemas.sql not found", path=str(SCHEMA_PATH))
            raise DatabaseError(f"Schema file not found: {SCHEMA_PATH}")

        schema_sql = SCHEMA_PATH.read_text(encoding="utf-8")

        conn = self._get_connection()
        try:
            conn.executescript(schema_sql)
        except sqlite3.Error as e:
            raise _classify_sqlite_error(e)

    @contextmanager
    def transaction(self, isolation_level: str = "DEFERRED") -> Iterator[sqlite3.Connection]:
        """
        Context manager for synchronous transactions.

        Isolation levels:
        - DEFERRED: Default, locks on first write
        - IMMEDIATE: Write lock at BEGIN (use for read-decide-write units)
        - EXCLUSIVE: Exclusive lock
        """
        conn = self._get_connection()
        try:
            conn.execute(f"BEGIN {isolation_level}")
        except sqlite3.Error as e:
            raise _classify_sqlite_error(e)

        try:
            yield conn
            conn.execute("COMMIT")
        except sqlite3.Error as e:
            _rollback(conn)
            raise _classify_sqlite_error(e)
        except Exception:
            _rollback(conn)
            raise

    async def execute_async(
        self, query: str, params: tuple[Any, ...] = (), fetch: Optional[FetchType] = None
    ) -> QueryResult:
        """
        Asynchronous single-statement execution.

        Runs the query in the default thread pool so the event loop is not
        blocked, serialized by the manager lock.

        Args:
            query: SQL query to execute
            params: Query parameters
            fetch: Fetch type (ONE, ALL, NONE)

        Returns:
            QueryResult with obtained data

        Raises:
            DatabaseError: If execution fails (classified subclass)
        """

        def _execute() -> QueryResult:
            conn = self._get_connection()
            cursor = conn.cursor()
            try:
                cursor.execute(query, params)

                if fetch == FetchType.ONE:
                    row = cursor.fetchone()
                    return QueryResult(
                        data=dict(row) if row else None,
                        rows_affected=cursor.rowcount,
                        last_row_id=cursor.lastrowid,
                    )
                elif fetch == FetchType.ALL:
                    rows = cursor.fetchall()
                    return QueryResult(
                        data=[dict(row) for row in rows],
                        rows_affected=cursor.rowcount,
                        last_row_id=None,
                    )
                else:  # FetchType.NONE or None
                    return QueryResult(
                        data=None, rows_affected=cursor.rowcount, last_row_id=cursor.lastrowid
                    )
            except sqlite3.Error as e:
                raise _classify_sqlite_error(e)
            finally:
                cursor.close()

        return await self._run_serialized(_execute)

    async def run_in_transaction(
        self, callback: Callable[[sqlite3.Connection], T], isolation_level: str = "IMMEDIATE"
    ) -> T:
        """
        Run a multi-statement unit atomically.

        The callback receives the connection inside an open transaction and
        runs in the executor thread. It commits when the callback returns and
        rolls back if it raises.

        IMMEDIATE takes the write lock at BEGIN, so two processes running the
        same read-decide-write unit are serialized by SQLite.
        """

        def _execute() -> T:
            with self.transaction(isolation_level) as conn:
                return callback(conn)

        return await self._run_serialized(_execute)

    async def _run_serialized(self, func: Callable[[], T]) -> T:
        async with self._lock:
            loop = asyncio.get_running_loop()
            try:
                return await asyncio.wait_for(
                    loop.run_in_executor(None, func), timeout=QUERY_TIMEOUT_SECONDS
                )
            except asyncio.TimeoutError:
                logger.error("Database query timed out", timeout_s=QUERY_TIMEOUT_SECONDS)
                raise StorageUnavailableError(
                    f"Query execution timed out after {QUERY_TIMEOUT_SECONDS:.0f} seconds"
                )
            except DatabaseError as e:
                logger.error("Database query failed", error=str(e), code=e.code)
                raise

    def close(self) -> None:
        """Close the connection (a new one opens lazily on next use)."""
        if self._connection is not None:
            self._connection.close()
            self._connection = None
            logger.debug("DatabaseManager connection closed", db_path=self.db_path)


# Global singleton for the entire application
_db_manager: Optional[DatabaseManager] = None


def get_db_manager() -> DatabaseManager:
    """Get the singleton DatabaseManager instance."""
    global _db_manager
    if _db_manager is None:
        _db_manager = DatabaseManager()
    return _db_manager
