"""Run the orchestrator REST API: python -m db_orchestrator"""

from __future__ import annotations

from db_orchestrator.adapters.inbound.rest_api import run_server
from db_orchestrator.infrastructure import (
    get_config,
    get_logger,
    setup_logging,
    setup_metrics,
    setup_tracing,
    shutdown_tracing,
)
from db_orchestrator.infrastructure.container import build_orchestrator, get_container


def main() -> None:
    config = get_config()
    observability = config.observability
    setup_logging(observability.log_level, observability.log_format)
    setup_tracing(observability.otel_service_name, observability.otel_endpoint)

    metrics = None
    if config.server.metrics_enabled:
        metrics = setup_metrics(config.server.metrics_port)

    orchestrator = build_orchestrator(config, metrics, container=get_container())
    get_logger(__name__).info(
        "starting orchestrator",
        app_dir=str(config.storage.app_dir),
        host=config.server.host,
        port=config.server.port,
    )
    try:
        run_server(orchestrator, host=config.server.host, port=config.server.port)
    finally:
        shutdown_tracing()


if __name__ == "__main__":
    main()
