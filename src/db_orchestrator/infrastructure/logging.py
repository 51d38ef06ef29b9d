"""Logging setup: structlog rendering for both structlog and stdlib records."""

from __future__ import annotations

import logging
import sys
from contextlib import contextmanager
from typing import Any, Iterator

import structlog
from structlog.types import Processor

NOISY_LOGGERS = ("uvicorn.access", "asyncio")


def setup_logging(
    level: str = "INFO",
    log_format: str = "console",
) -> None:
    """
    Set up structured logging with structlog.

    Standard library records from the domain and adapter modules are routed
    through the same renderer, so both appear in one format on stderr.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Log format ('json' or 'console')
    """
    log_level = getattr(logging, level.upper())

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    if log_format == "json":
        renderer: Processor = structlog.processors.JSONRenderer()
        shared_processors.append(structlog.processors.format_exc_info)
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(log_level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None, **initial_context: Any) -> structlog.BoundLogger:
    """Structlog logger for entry points, with optional bound fields."""
    log = structlog.get_logger(name)
    return log.bind(**initial_context) if initial_context else log


@contextmanager
def operation_context(operation: str, instance_id: str | None = None) -> Iterator[None]:
    """
    Tag every record emitted inside the block with the command and instance.

    The fields live in structlog context variables, so they reach both
    structlog loggers and the stdlib loggers used by the domain modules,
    and they follow the task across awaits.

    Args:
        operation: Orchestrator command name, e.g. "start"
        instance_id: Target instance, or None for commands without one
    """
    fields: dict[str, Any] = {"operation": operation}
    if instance_id is not None:
        fields["instance_id"] = instance_id
    with structlog.contextvars.bound_contextvars(**fields):
        yield
