"""
Local observability.

Spans and counters for debugging the engine, without external telemetry.
Counters are process-local: they describe what this worker did and are
never used as cross-request state.
"""

import time
from contextlib import contextmanager
from typing import Dict, Any, Optional, Iterator

from context_optimizer.core.logging import AsyncLogger
from context_optimizer.core.id_generator import generate_id


class LocalTracer:
    """
    Simple local tracing system.

    LocalTracer vs MetricsCollector:
    - LocalTracer: individual spans with duration and attributes
      ("why was this compression slow")
    - MetricsCollector: aggregated counters
      ("how many fallbacks since startup")
    """

    def __init__(self, service_name: str = "context_optimizer") -> None:
        self.service_name = service_name
        self.logger = AsyncLogger("tracing")

    @contextmanager
    def span(self, name: str, attributes: Optional[Dict[str, Any]] = None) -> Iterator[None]:
        """
        Creates a span to measure an operation.

        Usage:
        ```
        with tracer.span("compression.strategy", {"strategy": "hybrid"}):
            result = strategy.compress(segments, patterns, config)
        ```
        """
        span_id = generate_id()
        start = time.perf_counter()

        try:
            yield
        finally:
            duration = time.perf_counter() - start
            self.logger.debug(
                "Span completed",
                span=name,
                span_id=span_id,
                duration_ms=duration * 1000,
                **(attributes or {}),
            )


class MetricsCollector:
    """
    Local metrics collector.

    Only for internal monitoring, without export.
    """

    def __init__(self) -> None:
        self.metrics: Dict[str, float] = {}

    def increment(self, name: str, value: float = 1.0) -> None:
        """Increments counter."""
        self.metrics[name] = self.metrics.get(name, 0) + value

    def gauge(self, name: str, value: float) -> None:
        """Sets current value."""
        self.metrics[name] = value

    def get_metrics(self) -> Dict[str, float]:
        """Gets all metrics."""
        return self.metrics.copy()


# Global instances
tracer = LocalTracer()
metrics = MetricsCollector()
