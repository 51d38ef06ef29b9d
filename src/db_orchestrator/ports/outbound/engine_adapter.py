"""Engine Adapter port for per-engine process behaviour.

Each supported engine implements this contract. The Process Supervisor
drives the status state machine and timeouts; adapters only know how to
initialize a data directory, launch the engine, recognise readiness and
shut it down.
"""

from __future__ import annotations

from abc import abstractmethod
from typing import Protocol

from db_orchestrator.domain.entities import DatabaseInstance, EngineType
from db_orchestrator.ports.outbound.process_launcher import ProcessHandle


class EngineAdapter(Protocol):
    """Protocol for a database engine adapter.

    Attributes:
        engine: Engine this adapter handles.
        default_username: Username used when the install request gives none.
        start_timeout: Engine-specific readiness timeout, or None for the default.
    """

    engine: EngineType
    default_username: str
    start_timeout: float | None

    @abstractmethod
    def package_name(self, version: str) -> str:
        """Resolve the installable package for a version.

        Args:
            version: Requested engine version.

        Returns:
            Package manager formula name.
        """
        ...

    @abstractmethod
    async def initialize(self, instance: DatabaseInstance, password: str) -> None:
        """Prepare the data directory for first use.

        Creates the directory with restrictive permissions and runs the
        engine's init binary if it has one. Must be safe to call on an
        already initialized directory.

        Raises:
            InitializationError: If initialization fails.
            BinaryNotFoundError: If the init binary is missing.
        """
        ...

    @abstractmethod
    async def start(self, instance: DatabaseInstance, password: str) -> ProcessHandle:
        """Launch the engine process.

        Returns as soon as the process is spawned; readiness is awaited
        separately.

        Raises:
            BinaryNotFoundError: If the engine binary is missing.
            ProcessError: If the spawn fails.
        """
        ...

    @abstractmethod
    async def wait_ready(self, instance: DatabaseInstance, handle: ProcessHandle) -> bool:
        """Wait until the engine accepts connections.

        Callers bound this with a timeout.

        Returns:
            True when ready, False if the process exited first.
        """
        ...

    @abstractmethod
    async def stop(
        self,
        instance: DatabaseInstance,
        handle: ProcessHandle,
        password: str,
        grace: float,
    ) -> None:
        """Shut the engine down, gracefully first.

        Args:
            instance: Instance being stopped.
            handle: Its running process.
            password: Decrypted credential for control tools.
            grace: Seconds to wait before SIGKILL.
        """
        ...

    @abstractmethod
    async def configure(self, instance: DatabaseInstance, password: str) -> None:
        """Post-start configuration such as creating the named database.

        Failures are reported by raising; callers treat them as non-fatal.
        """
        ...

    @abstractmethod
    async def change_password(
        self, instance: DatabaseInstance, current_password: str, new_password: str
    ) -> None:
        """Rotate the password of the instance user on a running engine.

        The username never changes.

        Raises:
            UnsupportedEngineError: If the engine has no password to rotate.
            ProcessError: If the engine rejects the change.
        """
        ...


class EngineRegistry(Protocol):
    """Protocol for looking up the adapter of an engine."""

    @abstractmethod
    def get_adapter(self, engine: EngineType) -> EngineAdapter:
        """Return the adapter for an engine.

        Raises:
            UnsupportedEngineError: If no adapter is registered.
        """
        ...
