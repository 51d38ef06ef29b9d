"""Error taxonomy for the orchestrator.

Every error raised by domain services derives from OrchestratorError so the
application layer can convert failures into command results with a single
handler. Subclasses carry the structured remediation data (conflicting
instance, suggested port) the presentation layer renders.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from db_orchestrator.domain.entities.instance import DatabaseInstance


class OrchestratorError(Exception):
    """Base class for orchestrator errors."""


class ValidationError(OrchestratorError):
    """Invalid input such as a bad port or name."""


class UnsupportedEngineError(ValidationError):
    """No local adapter exists for the requested engine."""


class PermissionDeniedError(ValidationError):
    """An operation was blocked by the permission gate."""


class InstanceNotFoundError(OrchestratorError):
    """No instance exists with the given id."""

    def __init__(self, instance_id: str) -> None:
        super().__init__(f"Instance {instance_id} not found")
        self.instance_id = instance_id


class ConflictError(OrchestratorError):
    """Port collision with another instance or an external process."""

    def __init__(
        self,
        message: str,
        conflicting_instance: DatabaseInstance | None = None,
        suggested_port: int | None = None,
    ) -> None:
        super().__init__(message)
        self.conflicting_instance = conflicting_instance
        self.suggested_port = suggested_port


class DuplicateError(ConflictError):
    """An instance with the same identity already exists."""

    def __init__(self, message: str, existing_instance: DatabaseInstance | None = None) -> None:
        super().__init__(message, conflicting_instance=existing_instance)
        self.existing_instance = existing_instance


class InstallationError(OrchestratorError):
    """Package manager failure or exhausted install attempts."""


class InitializationError(OrchestratorError):
    """Data directory initialization failed after install."""


class ProcessError(OrchestratorError):
    """Engine process failed to start or stop."""


class BinaryNotFoundError(ProcessError):
    """The engine binary or its control tool is missing."""

    def __init__(self, binary: str) -> None:
        super().__init__(f"Required binary not found: {binary}")
        self.binary = binary


class StorageError(OrchestratorError):
    """Persistence I/O failure."""


class CryptoError(OrchestratorError):
    """Credential encryption or decryption failed."""
