"""
Context Optimizer - context compression and adaptive learning for LLM agents.

Shrinks the context handed to a language-model agent while preserving its
meaning, learns per agent which fragments are safe to drop, and keeps
per-agent savings and daily quota accounting in a local SQLite database.
"""

from context_optimizer._version import __version__, __version_info__

# Core components
from context_optimizer.core import (
    logger,
    Settings,
    get_db_manager,
    generate_id,
    ContextOptimizerError,
    ValidationError,
    ConfigurationError,
    NotFoundError,
    QuotaExceededError,
    UnknownSessionError,
    InvalidUpdateError,
    StorageUnavailableError,
)

# Compression engine
from context_optimizer.compression import (
    CompressionConfig,
    CompressionEngine,
    Segmenter,
    similarity,
)

# Main services
from context_optimizer.services import (
    CompressionService,
    QuotaManager,
    PatternLearner,
    SQLiteContextStore,
)

# Models
from context_optimizer.models import (
    StrategyType,
    CompressionResult,
    CompressionSession,
    Pattern,
    PatternType,
    Tier,
    QuotaStatus,
    FeedbackType,
    AgentReport,
)

__all__ = [
    # Version info
    "__version__",
    "__version_info__",
    # Core
    "logger",
    "Settings",
    "get_db_manager",
    "generate_id",
    # Exceptions
    "ContextOptimizerError",
    "ValidationError",
    "ConfigurationError",
    "NotFoundError",
    "QuotaExceededError",
    "UnknownSessionError",
    "InvalidUpdateError",
    "StorageUnavailableError",
    # Compression
    "CompressionConfig",
    "CompressionEngine",
    "Segmenter",
    "similarity",
    # Services
    "CompressionService",
    "QuotaManager",
    "PatternLearner",
    "SQLiteContextStore",
    # Models
    "StrategyType",
    "CompressionResult",
    "CompressionSession",
    "Pattern",
    "PatternType",
    "Tier",
    "QuotaStatus",
    "FeedbackType",
    "AgentReport",
]


# Quick access to configuration
def get_config():
    """
    Get the current configuration.

    Example:
        >>> config = get_config()
        >>> print(config.get("compression.quality_threshold"))
        0.85

    Returns:
        Settings: Configuration instance
    """
    return Settings()


# Version check
def check_version():
    """
    Report package and runtime versions.

    Returns:
        dict: context_optimizer, python, platform, numpy, pydantic, sqlite
    """
    import sys
    import platform
    import sqlite3

    import numpy
    import pydantic

    return {
        "context_optimizer": __version__,
        "python": f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}",
        "platform": platform.platform(),
        "numpy": numpy.__version__,
        "pydantic": pydantic.VERSION,
        "sqlite": sqlite3.sqlite_version,
    }
