"""
Prometheus metrics collection.
"""

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    start_http_server,
)

from stepqueue.constants import (
    METRIC_BACKOFF_DELAY,
    METRIC_CLAIMS_EMPTY,
    METRIC_PROCESSING_ERRORS,
    METRIC_STEP_DURATION,
    METRIC_STEPS_CLAIMED,
    METRIC_STEPS_COMPLETED,
    METRIC_STORE_ERRORS,
)

# Global metrics instance
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Prometheus metrics collector for step workers.

    Collects metrics for:
    - Claims (successful and empty)
    - Completions by outcome
    - Step execution duration
    - Store and processing errors
    - Current backoff delay
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize the metrics collector.

        Args:
            registry: Optional custom registry. Uses default if not provided.
        """
        self._registry = registry or REGISTRY

        self.steps_claimed = Counter(
            METRIC_STEPS_CLAIMED,
            "Total number of steps claimed",
            ["worker_id"],
            registry=self._registry,
        )

        self.claims_empty = Counter(
            METRIC_CLAIMS_EMPTY,
            "Total number of claims that found no eligible step",
            ["worker_id"],
            registry=self._registry,
        )

        # outcome is "completed" or "lost"
        self.steps_completed = Counter(
            METRIC_STEPS_COMPLETED,
            "Total number of completion attempts by outcome",
            ["outcome"],
            registry=self._registry,
        )

        self.step_duration = Histogram(
            METRIC_STEP_DURATION,
            "Step processing duration in seconds",
            ["outcome"],
            buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0),
            registry=self._registry,
        )

        self.store_errors = Counter(
            METRIC_STORE_ERRORS,
            "Total number of queue store failures",
            ["operation"],
            registry=self._registry,
        )

        self.processing_errors = Counter(
            METRIC_PROCESSING_ERRORS,
            "Total number of steps abandoned after a processing error",
            registry=self._registry,
        )

        self.backoff_delay = Gauge(
            METRIC_BACKOFF_DELAY,
            "Most recent backoff delay in seconds",
            ["worker_id"],
            registry=self._registry,
        )

    def record_claim(self, worker_id: str) -> None:
        """Record a successful claim."""
        self.steps_claimed.labels(worker_id=worker_id).inc()

    def record_empty_claim(self, worker_id: str) -> None:
        """Record a claim that returned nothing."""
        self.claims_empty.labels(worker_id=worker_id).inc()

    def record_step_finished(self, outcome: str, duration_seconds: float) -> None:
        """Record the outcome of completing a processed step."""
        self.steps_completed.labels(outcome=outcome).inc()
        self.step_duration.labels(outcome=outcome).observe(duration_seconds)

    def record_store_error(self, operation: str) -> None:
        """Record a store failure."""
        self.store_errors.labels(operation=operation).inc()

    def record_processing_error(self) -> None:
        """Record a step abandoned after a processing error."""
        self.processing_errors.inc()

    def set_backoff_delay(self, worker_id: str, seconds: float) -> None:
        """Record the backoff delay about to be waited."""
        self.backoff_delay.labels(worker_id=worker_id).set(seconds)

    def get_metrics(self) -> bytes:
        """Get all metrics in Prometheus format."""
        return generate_latest(self._registry)


def setup_metrics(registry: CollectorRegistry | None = None) -> MetricsCollector:
    """
    Set up and return the metrics collector.

    Args:
        registry: Optional custom registry for the first set up.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector(registry)
    return _metrics


def get_metrics() -> MetricsCollector:
    """
    Get the metrics collector instance, creating it on first use.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    if _metrics is None:
        return setup_metrics()
    return _metrics


def start_metrics_server(port: int) -> None:
    """
    Expose metrics over HTTP for scraping.

    Args:
        port: Port to listen on.
    """
    metrics = get_metrics()
    start_http_server(port, registry=metrics._registry)
