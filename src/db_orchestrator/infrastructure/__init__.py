"""Infrastructure layer - cross-cutting concerns and wiring."""

from db_orchestrator.infrastructure.config import Config, get_config
from db_orchestrator.infrastructure.logging import (
    get_logger,
    operation_context,
    setup_logging,
)
from db_orchestrator.infrastructure.metrics import setup_metrics, get_metrics, MetricsRegistry
from db_orchestrator.infrastructure.tracing import (
    mark_outcome,
    setup_tracing,
    shutdown_tracing,
    get_tracer,
    trace_span,
)

__all__ = [
    "Config",
    "get_config",
    "setup_logging",
    "get_logger",
    "operation_context",
    "setup_metrics",
    "get_metrics",
    "MetricsRegistry",
    "setup_tracing",
    "get_tracer",
    "trace_span",
    "mark_outcome",
    "shutdown_tracing",
]
