"""Outbound adapters - implementations of outbound ports.

These adapters implement the orchestrator's external dependencies:
JSON persistence, Homebrew, OS processes, port and permission probes,
credential encryption and the per-engine adapters.
"""

from db_orchestrator.adapters.outbound.aes_credential_vault import AesCredentialVault
from db_orchestrator.adapters.outbound.asyncio_process_launcher import (
    AsyncioProcessHandle,
    AsyncioProcessLauncher,
)
from db_orchestrator.adapters.outbound.filesystem_permission_gate import FilesystemPermissionGate
from db_orchestrator.adapters.outbound.homebrew_package_manager import HomebrewPackageManager
from db_orchestrator.adapters.outbound.json_banned_ports import JsonBannedPortStore
from db_orchestrator.adapters.outbound.json_instance_store import JsonInstanceStore
from db_orchestrator.adapters.outbound.psutil_process_inspector import PsutilProcessInspector
from db_orchestrator.adapters.outbound.socket_port_probe import SocketPortProbe

__all__ = [
    "AesCredentialVault",
    "AsyncioProcessHandle",
    "AsyncioProcessLauncher",
    "FilesystemPermissionGate",
    "HomebrewPackageManager",
    "JsonBannedPortStore",
    "JsonInstanceStore",
    "PsutilProcessInspector",
    "SocketPortProbe",
]
