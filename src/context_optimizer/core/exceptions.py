"""
Unified exception hierarchy for the context optimizer.
SINGLE SOURCE of exceptions for the whole system.
"""

from typing import Dict, Any, Optional, List
from datetime import datetime
from context_optimizer.core.id_generator import generate_id
from context_optimizer.core.utils.datetime_utils import utc_now, format_iso


class ContextOptimizerError(Exception):
    """
    Base error of the system.

    Features:
    1. Structured serialization
    2. Rich context
    3. Resolution suggestions
    4. Unique ID for tracking
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        self.id: str = generate_id()
        self.timestamp: datetime = utc_now()
        self.message: str = message
        self.code: str = code or self.__class__.__name__
        self.context: Dict[str, Any] = context or {}
        self.cause: Optional[Exception] = cause
        self.suggestions: List[str] = []
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """
        Serialize for callers that display or forward the error.

        Returns:
            {
                "error_id": "hex32chars",
                "code": "QuotaExceededError",
                "message": "Daily compression quota exceeded",
                "timestamp": "2024-01-20T10:30:00Z",
                "context": {...}
            }
        """
        result: Dict[str, Any] = {
            "error_id": self.id,
            "code": self.code,
            "message": self.message,
            "timestamp": format_iso(self.timestamp),
            "context": self.context,
        }

        if self.cause:
            result["cause"] = {"type": type(self.cause).__name__, "message": str(self.cause)}

        if self.suggestions:
            result["suggestions"] = self.suggestions

        return result

    def add_suggestion(self, suggestion: str) -> None:
        """
        Add a resolution suggestion.

        Example:
            error = DatabaseError("Cannot open context-optimizer.db")
            error.add_suggestion("Check write permissions on the data directory")
        """
        if not suggestion or not isinstance(suggestion, str):
            return

        if suggestion not in self.suggestions:
            self.suggestions.append(suggestion)

    def is_retryable(self) -> bool:
        """Whether the caller may retry the operation."""
        return False


class DatabaseError(ContextOptimizerError):
    """SQLite related error."""

    def is_retryable(self) -> bool:
        """DB errors are sometimes retryable (locks, timeouts)."""
        return True


class SQLiteBusyError(DatabaseError):
    """SQLite BUSY - database temporarily locked.

    - RETRYABLE: caused by transient locks
    - Common under concurrent writers
    """

    def is_retryable(self) -> bool:
        return True


class SQLiteCorruptError(DatabaseError):
    """SQLite CORRUPT - corrupted database file.

    - NOT RETRYABLE: requires manual intervention
    """

    def is_retryable(self) -> bool:
        return False


class SQLiteConstraintError(DatabaseError):
    """SQLite CONSTRAINT - constraint violation (duplicate session id, bad enum...).

    - NOT RETRYABLE: the data or the query is wrong
    """

    def is_retryable(self) -> bool:
        return False


class StorageUnavailableError(DatabaseError):
    """
    Persistence layer unreachable (cannot open file, disk I/O, timeout).

    Propagated to the caller as a hard failure: no compression runs without
    durable quota and pattern access. Retrying is the caller's decision.
    """

    def is_retryable(self) -> bool:
        return False


class ConfigurationError(ContextOptimizerError):
    """System configuration error."""

    pass


class ValidationError(ContextOptimizerError):
    """Invalid input rejected before touching storage."""

    pass


class InvalidUpdateError(ValidationError):
    """A partial update carried no recognized field to change."""

    pass


class NotFoundError(ContextOptimizerError):
    """A resource was not found."""

    pass


class UnknownSessionError(NotFoundError):
    """Feedback or lookup referencing a session id never recorded."""

    def __init__(self, session_id: str, message: Optional[str] = None) -> None:
        super().__init__(
            message or f"Unknown compression session: {session_id}",
            context={"session_id": session_id},
        )
        self.session_id = session_id


class QuotaExceededError(ContextOptimizerError):
    """
    Free-tier daily compression limit reached.

    Recoverable: wait for the daily rollover or upgrade to pro.
    Carries remaining/limit/tier so callers can display the situation.
    """

    def __init__(self, agent_id: str, remaining: int, limit: int, tier: str) -> None:
        super().__init__(
            f"Daily compression quota exceeded ({limit} per day on {tier} tier)",
            context={"agent_id": agent_id, "remaining": remaining, "limit": limit, "tier": tier},
        )
        self.agent_id = agent_id
        self.remaining = remaining
        self.limit = limit
        self.tier = tier
        self.add_suggestion("Wait for the daily quota reset (00:00 UTC)")
        self.add_suggestion("Upgrade to the pro tier for unlimited compressions")


__all__ = [
    "ContextOptimizerError",
    "DatabaseError",
    "SQLiteBusyError",
    "SQLiteCorruptError",
    "SQLiteConstraintError",
    "StorageUnavailableError",
    "ConfigurationError",
    "ValidationError",
    "InvalidUpdateError",
    "NotFoundError",
    "UnknownSessionError",
    "QuotaExceededError",
]
