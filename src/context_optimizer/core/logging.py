"""
Simple asynchronous logging for the context optimizer.
"""

import os
import re
import time
import yaml
from pathlib import Path
from typing import Any, Dict, List, Pattern, Optional
from contextlib import contextmanager
from loguru import logger as loguru_logger


CONFIG_FILE_NAME = ".context_optimizer"


class AsyncLogger:
    """
    Asynchronous logger with a flat format.

    Format: timestamp | level | component | message
    No emojis, no nested JSON, zero latency for the caller.
    """

    # Single sink shared by every instance
    _handler_id: Optional[int] = None

    def __init__(self, component: str, debug_mode: bool = False):
        self.component = component
        self.debug_mode = debug_mode
        self._setup_async_handler()

    def _setup_async_handler(self):
        """
        Configure the shared enqueued file sink.

        - Non-blocking (enqueue=True, a worker thread writes the file)
        - Rotation at 10 MB, zipped
        - Added once, whichever component logs first
        """
        if AsyncLogger._handler_id is None:
            config = _read_logging_config()
            AsyncLogger._handler_id = loguru_logger.add(
                os.getenv("CONTEXT_OPTIMIZER_LOG_FILE", config.get("file", "debug.log")),
                level=os.getenv("CONTEXT_OPTIMIZER_LOG_LEVEL", config.get("level", "DEBUG")),
                format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level} | {extra[component]} | {message}",
                rotation="10 MB",
                compression="zip",
                enqueue=True,
            )

    def log(self, level: str, message: str, **context):
        """Queue a message; the sink worker writes it in the background."""
        loguru_logger.bind(component=self.component).log(level, message, **context)

    def debug(self, message: str, **context):
        """Log DEBUG level."""
        self.log("DEBUG", message, **context)

    def info(self, message: str, **context):
        """Log INFO level."""
        self.log("INFO", message, **context)

    def warning(self, message: str, **context):
        """Log WARNING level."""
        self.log("WARNING", message, **context)

    def error(self, message: str, include_trace: Optional[bool] = None, **context):
        """
        Log ERROR level with optional stack trace.

        Args:
            message: Error message
            include_trace: Attach stack trace (None = follow debug_mode)
            **context: Additional context
        """
        should_include_trace = include_trace if include_trace is not None else self.debug_mode

        if should_include_trace:
            import traceback

            context["stack_trace"] = traceback.format_exc()

        self.log("ERROR", message, **context)


class SensitiveDataMasker:
    """
    Masks sensitive data before it reaches the logs.

    Agent ids are usually wallet addresses; only a short prefix is logged.
    """

    def __init__(self, patterns: Optional[List[Pattern]] = None, agent_prefix: int = 10):
        self.patterns = patterns or []
        self.agent_prefix = agent_prefix

    def mask_agent_id(self, agent_id: Optional[str]) -> str:
        """
        Shorten an agent id for logging.

        Example:
        - "0x1234567890abcdef1234" → "0x12345678..."
        - None → "anonymous"
        """
        if not agent_id:
            return "anonymous"
        if len(agent_id) <= self.agent_prefix:
            return agent_id
        return agent_id[: self.agent_prefix] + "..."

    def mask(self, text: str) -> str:
        """
        Mask sensitive data in free text.

        Example:
        - "token=abc123def456" → "token=***"
        - "a1b2c3d4e5f6..." → "a1b2c3d4..."
        """
        masked = text

        # Long hex runs (hashes, wallet bodies): keep the first 8 chars
        masked = re.sub(r'\b([a-fA-F0-9]{8})[a-fA-F0-9]{8,}\b', r'\1...', masked)

        masked = re.sub(
            r'(api_key|token|secret|password|key)=[a-zA-Z0-9]{8,}',
            r'\1=***',
            masked,
            flags=re.IGNORECASE,
        )

        for pattern in self.patterns:
            masked = pattern.sub("***", masked)

        return masked


class PerformanceLogger:
    """
    Logger specialized in timing measurements.
    """

    def __init__(self):
        self.logger = AsyncLogger("performance")

    @contextmanager
    def measure(self, operation: str, **context):
        """
        Context manager to time an operation.

        Usage:
        ```
        with perf_logger.measure("compress", strategy="hybrid"):
            result = strategy.compress(segments, patterns, config)
        ```
        """
        start = time.perf_counter()
        try:
            yield
        finally:
            duration = time.perf_counter() - start
            self.logger.info(
                "Operation completed", operation=operation, duration_ms=duration * 1000, **context
            )


def _read_logging_config() -> Dict[str, Any]:
    """Read the logging section of the local config file, if any."""
    try:
        config_path = Path(CONFIG_FILE_NAME)
        if config_path.exists():
            with open(config_path, encoding="utf-8") as f:
                config = yaml.safe_load(f) or {}
                return config.get("logging", {}) or {}
    except (OSError, yaml.YAMLError):
        # Unreadable file: Settings reports it, logging starts with defaults
        return {}
    return {}


def _get_debug_mode() -> bool:
    """debug_mode from the config file, falling back to the environment."""
    if _read_logging_config().get("debug_mode"):
        return True
    return os.getenv("CONTEXT_OPTIMIZER_DEBUG", "false").lower() == "true"


logger = AsyncLogger("context_optimizer", debug_mode=_get_debug_mode())
masker = SensitiveDataMasker()
