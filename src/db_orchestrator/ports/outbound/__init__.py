"""Outbound ports - interfaces for external dependencies.

Outbound ports define contracts for the systems the orchestrator
depends on: durable storage, the package manager, OS processes, port
and permission probes, and credential encryption.
"""

from db_orchestrator.ports.outbound.banned_ports import BannedPortStore
from db_orchestrator.ports.outbound.credential_vault import CredentialVault
from db_orchestrator.ports.outbound.engine_adapter import EngineAdapter, EngineRegistry
from db_orchestrator.ports.outbound.instance_store import InstanceStore
from db_orchestrator.ports.outbound.package_manager import OutputCallback, PackageManager
from db_orchestrator.ports.outbound.permission_gate import PermissionGate
from db_orchestrator.ports.outbound.port_probe import PortProbe
from db_orchestrator.ports.outbound.process_inspector import ProcessInspector
from db_orchestrator.ports.outbound.process_launcher import (
    OutputListener,
    ProcessHandle,
    ProcessLauncher,
)

__all__ = [
    "BannedPortStore",
    "CredentialVault",
    "EngineAdapter",
    "EngineRegistry",
    "InstanceStore",
    "OutputCallback",
    "PackageManager",
    "PermissionGate",
    "PortProbe",
    "ProcessInspector",
    "OutputListener",
    "ProcessHandle",
    "ProcessLauncher",
]
