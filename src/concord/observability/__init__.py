"""Observability module for concord.

Provides metrics and structured logging:
- Prometheus metrics for the event bus, deduplicator, cache and moderation
- JSON structured logging with user / request-key / topic context
"""

from concord.observability.logging import (
    ConsoleFormatter,
    JsonFormatter,
    LogContext,
    configure_logging,
    current_context,
    request_key_var,
    topic_var,
    user_id_var,
)
from concord.observability.metrics import MetricsRegistry, NoOpMetric, disabled_metrics

__all__ = [
    # Logging
    "configure_logging",
    "JsonFormatter",
    "ConsoleFormatter",
    "LogContext",
    "current_context",
    "user_id_var",
    "request_key_var",
    "topic_var",
    # Metrics
    "MetricsRegistry",
    "NoOpMetric",
    "disabled_metrics",
]
