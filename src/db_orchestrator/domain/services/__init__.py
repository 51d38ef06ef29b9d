"""Domain services for the orchestrator.

Exports:
    Events:
        - EventBus: In-process publish/subscribe
        - DebouncedEventCache: Duplicate status event suppression

    Ports:
        - ProbeCache: TTL cache for OS probe results
        - PortConflictResolver: Conflict-free port allocation
        - PortConflictReport: Result of a conflict check
        - AdvisoryPortChecker: Debounced checks for live editing

    Lifecycle:
        - InstallationCoordinator: Install and initialize instances
        - InstallAttemptCounter: Consecutive install failures per package
        - InstallOutcome: Completed install
        - ProcessSupervisor: Start, stop and watch engine processes
        - StatusSource: Origin of a status report
        - SupervisedProcess: Live process record
"""

from db_orchestrator.domain.services.event_bus import EventBus
from db_orchestrator.domain.services.event_dedup import DebouncedEventCache
from db_orchestrator.domain.services.installation_coordinator import (
    InstallAttemptCounter,
    InstallationCoordinator,
    InstallOutcome,
)
from db_orchestrator.domain.services.port_resolver import (
    AdvisoryPortChecker,
    PortConflictReport,
    PortConflictResolver,
)
from db_orchestrator.domain.services.probe_cache import ProbeCache
from db_orchestrator.domain.services.process_supervisor import (
    ProcessSupervisor,
    StatusSource,
    SupervisedProcess,
)

__all__ = [
    # Events
    "EventBus",
    "DebouncedEventCache",
    # Ports
    "ProbeCache",
    "PortConflictResolver",
    "PortConflictReport",
    "AdvisoryPortChecker",
    # Lifecycle
    "InstallationCoordinator",
    "InstallAttemptCounter",
    "InstallOutcome",
    "ProcessSupervisor",
    "StatusSource",
    "SupervisedProcess",
]
