"""Application layer for the database orchestrator.

The application layer composes domain services into the command surface
consumed by the REST API and any other presentation layer.

Exports:
    DatabaseOrchestrator:
        - DatabaseOrchestrator: Lifecycle commands for database instances
"""

from db_orchestrator.application.orchestrator import DatabaseOrchestrator

__all__ = [
    "DatabaseOrchestrator",
]
