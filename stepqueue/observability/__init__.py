"""
Observability module.
Contains logging, metrics, and tracing setup.
"""

from stepqueue.observability.logging import (
    bind_context,
    clear_context,
    setup_logging,
)
from stepqueue.observability.metrics import (
    MetricsCollector,
    get_metrics,
    setup_metrics,
    start_metrics_server,
)
from stepqueue.observability.tracing import get_tracer, setup_tracing

__all__ = [
    "setup_logging",
    "bind_context",
    "clear_context",
    "setup_metrics",
    "get_metrics",
    "start_metrics_server",
    "MetricsCollector",
    "setup_tracing",
    "get_tracer",
]
