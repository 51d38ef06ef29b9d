"""Prometheus metrics for the database orchestrator."""

from __future__ import annotations

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    Info,
    start_http_server,
    REGISTRY,
    CollectorRegistry,
)


class MetricsRegistry:
    """Registry of all orchestrator metrics."""

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        """Initialize metrics registry."""
        self._registry = registry or REGISTRY

        # Instance metrics
        self.instance_count = Gauge(
            "dbo_instances",
            "Number of instances by lifecycle status",
            ["status"],  # stopped, starting, running, stopping, error
            registry=self._registry,
        )

        # Command metrics
        self.operations_total = Counter(
            "dbo_operations_total",
            "Total orchestrator commands",
            ["operation", "status"],  # status: success, error
            registry=self._registry,
        )

        self.operation_duration_seconds = Histogram(
            "dbo_operation_duration_seconds",
            "Orchestrator command duration in seconds",
            ["operation"],
            buckets=(0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 120.0, 600.0),
            registry=self._registry,
        )

        # Process metrics
        self.start_latency_seconds = Histogram(
            "dbo_start_latency_seconds",
            "Time from spawn to readiness in seconds",
            buckets=(0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0),
            registry=self._registry,
        )

        self.process_exits_total = Counter(
            "dbo_process_exits_total",
            "Engine process exits",
            ["engine", "outcome"],  # outcome: expected, crash
            registry=self._registry,
        )

        # Install metrics
        self.install_attempts_total = Counter(
            "dbo_install_attempts_total",
            "Package install attempts",
            ["package", "status"],  # success, failed, short_circuit
            registry=self._registry,
        )

        # Port metrics
        self.port_conflicts_total = Counter(
            "dbo_port_conflicts_total",
            "Detected port conflicts",
            ["kind"],  # internal, external
            registry=self._registry,
        )

        # Event metrics
        self.events_published_total = Counter(
            "dbo_events_published_total",
            "Events published on the event bus",
            ["event"],
            registry=self._registry,
        )

        # Server info
        self.info = Info(
            "db_orchestrator",
            "Database orchestrator information",
            registry=self._registry,
        )

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry


# Global metrics registry
_metrics: MetricsRegistry | None = None


def setup_metrics(
    port: int = 8766,
    registry: CollectorRegistry | None = None,
    serve: bool = True,
) -> MetricsRegistry:
    """
    Set up Prometheus metrics.

    Args:
        port: Port for the metrics HTTP server
        registry: Optional custom registry
        serve: Whether to start the scrape endpoint

    Returns:
        The metrics registry
    """
    global _metrics
    _metrics = MetricsRegistry(registry)

    from db_orchestrator import __version__
    _metrics.info.info({
        "version": __version__,
    })

    if serve:
        start_http_server(port, registry=registry or REGISTRY)

    return _metrics


def get_metrics() -> MetricsRegistry:
    """Get the global metrics registry."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsRegistry()
    return _metrics
