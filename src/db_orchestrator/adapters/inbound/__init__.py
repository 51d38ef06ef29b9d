"""Inbound adapters for the database orchestrator.

Inbound adapters handle incoming requests and convert them to
orchestrator commands.

Exports:
    REST API:
        - create_app: Create a FastAPI application
        - run_server: Run the REST API server
"""

from db_orchestrator.adapters.inbound.rest_api import create_app, run_server

__all__ = [
    "create_app",
    "run_server",
]
