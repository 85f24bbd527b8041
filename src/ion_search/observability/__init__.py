"""Logging, tracing and metrics helpers for the engine."""

from ion_search.observability.logging import JsonFormatter, configure_logging
from ion_search.observability.metrics import (
    EPHEMERAL_KEYS,
    INDEX_UPDATES,
    LAST_RESULT_SIZE,
    SEARCH_LATENCY,
    get_metrics,
    track_latency,
)
from ion_search.observability.tracing import create_span, get_log_context, get_tracer, init_tracing


__all__ = [
    "EPHEMERAL_KEYS",
    "INDEX_UPDATES",
    "LAST_RESULT_SIZE",
    "SEARCH_LATENCY",
    "JsonFormatter",
    "configure_logging",
    "create_span",
    "get_log_context",
    "get_metrics",
    "get_tracer",
    "init_tracing",
    "track_latency",
]
