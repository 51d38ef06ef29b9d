"""Inbound ports - command surface of the orchestrator.

Inbound ports define the interface the presentation layer (REST API,
desktop shell, CLI) uses to manage database instances, and the result
objects every command returns. Commands never raise for expected
failures; they return success=False with a human-readable message and
structured remediation data.
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass, field
from typing import Any, Protocol

from db_orchestrator.domain.entities import DatabaseInstance, InstallRequest


# =============================================================================
# Command Results
# =============================================================================


@dataclass
class CommandResult:
    """Outcome shared by every command."""

    success: bool
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {"success": self.success, "message": self.message}


@dataclass
class InstallResult(CommandResult):
    """Outcome of an install command."""

    path: str | None = None
    instance: DatabaseInstance | None = None
    conflict: bool = False
    duplicate: bool = False
    existing_instance: DatabaseInstance | None = None

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        if self.path is not None:
            payload["path"] = self.path
        if self.instance is not None:
            payload["instance"] = self.instance.to_record()
        if self.conflict:
            payload["conflict"] = True
        if self.duplicate:
            payload["duplicate"] = True
        if self.existing_instance is not None:
            payload["existingInstance"] = self.existing_instance.to_record()
        return payload


@dataclass
class StartResult(CommandResult):
    """Outcome of a start command."""

    conflict: bool = False
    conflicting_instance: str | None = None  # Name of the instance holding the port
    suggested_port: int | None = None

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        if self.conflict:
            payload["conflict"] = True
        if self.conflicting_instance is not None:
            payload["conflictingInstance"] = self.conflicting_instance
        if self.suggested_port is not None:
            payload["suggestedPort"] = self.suggested_port
        return payload


@dataclass
class UpdatePortResult(CommandResult):
    """Outcome of an update-port command.

    A conflict here is advisory: the port was saved anyway.
    """

    conflict: bool = False
    conflicting_instance: str | None = None
    suggested_port: int | None = None

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        if self.conflict:
            payload["conflict"] = True
            payload["conflictingInstance"] = self.conflicting_instance
            payload["suggestedPort"] = self.suggested_port
        return payload


@dataclass
class PortConflictResult:
    """Outcome of a port conflict check."""

    has_conflict: bool
    conflicting_instance: str | None = None
    suggested_port: int | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"hasConflict": self.has_conflict}
        if self.conflicting_instance is not None:
            payload["conflictingInstance"] = self.conflicting_instance
        if self.suggested_port is not None:
            payload["suggestedPort"] = self.suggested_port
        return payload


@dataclass
class AutoStartSummary:
    """Summary of an auto-start pass."""

    total: int = 0
    successful: int = 0
    failed: int = 0
    skipped: int = 0
    port_conflicts: int = 0
    errors: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "skipped": self.skipped,
            "portConflicts": self.port_conflicts,
            "errors": dict(self.errors),
        }


# =============================================================================
# Orchestrator Port
# =============================================================================


class OrchestratorPort(Protocol):
    """Protocol for database instance lifecycle commands.

    All mutating commands are serialized per instance id. Different
    instances may be operated on concurrently.

    Example:
        result = await orchestrator.install(request)
        if result.success:
            await orchestrator.start(result.instance.id)
            ...
            await orchestrator.stop(result.instance.id)
            await orchestrator.delete(result.instance.id)
    """

    @abstractmethod
    async def install(self, request: InstallRequest) -> InstallResult:
        """Install an engine and create a stopped instance.

        Args:
            request: Install parameters.

        Returns:
            Result with the data path on success, or duplicate/conflict data.
        """
        ...

    @abstractmethod
    async def start(self, instance_id: str) -> StartResult:
        """Start an instance.

        Refuses to start when another running instance holds the port.
        Starting an instance that is already starting or running joins the
        in-flight start.

        Args:
            instance_id: Instance to start.

        Returns:
            Result with conflict data if the port is taken.
        """
        ...

    @abstractmethod
    async def stop(self, instance_id: str) -> CommandResult:
        """Stop an instance.

        A stop against a starting instance fires once it becomes ready.

        Args:
            instance_id: Instance to stop.
        """
        ...

    @abstractmethod
    async def delete(self, instance_id: str) -> CommandResult:
        """Stop an instance, erase its data directory and remove the record.

        Args:
            instance_id: Instance to delete.
        """
        ...

    @abstractmethod
    async def delete_all(self) -> CommandResult:
        """Delete every instance; instances that cannot be stopped are kept."""
        ...

    @abstractmethod
    async def update_credentials(
        self, instance_id: str, password: str, username: str | None = None
    ) -> CommandResult:
        """Rotate the password of a running instance.

        Args:
            instance_id: Instance to update.
            password: New password.
            username: Must match the existing username if given.
        """
        ...

    @abstractmethod
    async def update_port(self, instance_id: str, new_port: int) -> UpdatePortResult:
        """Change the port of a stopped instance.

        Args:
            instance_id: Instance to update.
            new_port: Requested port.

        Returns:
            Result carrying an advisory conflict if the port is claimed.
        """
        ...

    @abstractmethod
    async def check_port_conflict(
        self, port: int, exclude_id: str | None = None
    ) -> PortConflictResult:
        """Check whether a port is claimed.

        Args:
            port: Port to check.
            exclude_id: Instance to ignore, typically the one being edited.
        """
        ...

    @abstractmethod
    def get_instances(self) -> list[DatabaseInstance]:
        """Return all instances."""
        ...


__all__ = [
    "CommandResult",
    "InstallResult",
    "StartResult",
    "UpdatePortResult",
    "PortConflictResult",
    "AutoStartSummary",
    "OrchestratorPort",
]
