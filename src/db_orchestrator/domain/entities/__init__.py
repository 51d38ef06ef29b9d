"""Domain entities for the orchestrator.

Exports:
    Instance:
        - DatabaseInstance: Persisted engine deployment
        - EngineType: Supported engines
        - InstanceStatus: Lifecycle status
        - InstallRequest: Parameters for a new install

    Events:
        - StatusChanged: status-changed event
        - InstallProgress: install-progress event
"""

from db_orchestrator.domain.entities.events import Event, InstallProgress, StatusChanged
from db_orchestrator.domain.entities.instance import (
    DatabaseInstance,
    EngineType,
    InstallRequest,
    InstanceStatus,
)

__all__ = [
    # Instance
    "DatabaseInstance",
    "EngineType",
    "InstanceStatus",
    "InstallRequest",
    # Events
    "Event",
    "StatusChanged",
    "InstallProgress",
]
