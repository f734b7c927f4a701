"""
Context optimizer core module.

Exports the fundamental system components.
"""

# Configuration
from context_optimizer.core.secure_config import Settings, ConfigValidator

# Database
from .database import DatabaseManager, FetchType, QueryResult, get_db_manager

# Exceptions and errors
from context_optimizer.core.exceptions import (
    ContextOptimizerError,
    DatabaseError,
    SQLiteBusyError,
    SQLiteCorruptError,
    SQLiteConstraintError,
    StorageUnavailableError,
    ConfigurationError,
    ValidationError,
    InvalidUpdateError,
    NotFoundError,
    UnknownSessionError,
    QuotaExceededError,
)

# Logging
from context_optimizer.core.logging import (
    AsyncLogger,
    SensitiveDataMasker,
    PerformanceLogger,
    logger,  # Pre-configured global logger
)

# Tokens
from context_optimizer.core.token_counter import (
    TokenEncoder,
    EstimatingEncoder,
    SmartTokenCounter,
    TokenCount,
)

# Tracing and metrics
from context_optimizer.core.tracing import tracer, metrics, LocalTracer, MetricsCollector

# ID generator
from context_optimizer.core.id_generator import IDGenerator, generate_id, derive_id, is_valid_id

__all__ = [
    "Settings",
    "ConfigValidator",
    "DatabaseManager",
    "FetchType",
    "QueryResult",
    "get_db_manager",
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
    "AsyncLogger",
    "SensitiveDataMasker",
    "PerformanceLogger",
    "logger",
    "TokenEncoder",
    "EstimatingEncoder",
    "SmartTokenCounter",
    "TokenCount",
    "tracer",
    "metrics",
    "LocalTracer",
    "MetricsCollector",
    "IDGenerator",
    "generate_id",
    "derive_id",
    "is_valid_id",
]
