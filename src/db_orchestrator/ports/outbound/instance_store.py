"""Instance Store port for persisted instance records.

The store holds the single ordered collection of instance records. All
mutation flows through the orchestrator, which is the only writer.

References:
    - Persisted record schema: {id, name, type, version, port, status,
      dataPath, username, encryptedPassword, autoStart, createdAt, pid?}
"""

from __future__ import annotations

from abc import abstractmethod
from typing import Protocol

from db_orchestrator.domain.entities import DatabaseInstance


class InstanceStore(Protocol):
    """Protocol for durable instance storage.

    Reads are served from memory; every mutation is written through to
    durable storage before returning.

    Thread Safety:
        Single logical writer. Concurrent raw writes are not supported.
    """

    @abstractmethod
    def list_instances(self) -> list[DatabaseInstance]:
        """Return all instances in insertion order.

        Returns:
            A copy of the instance list.
        """
        ...

    @abstractmethod
    def get(self, instance_id: str) -> DatabaseInstance | None:
        """Look up an instance by id.

        Args:
            instance_id: Instance to find.

        Returns:
            The instance, or None if absent.
        """
        ...

    @abstractmethod
    def save(self, instance: DatabaseInstance) -> None:
        """Insert or replace an instance by id.

        New instances are appended; existing ones keep their position.

        Args:
            instance: Instance to persist.

        Raises:
            StorageError: If the write fails.
        """
        ...

    @abstractmethod
    def remove(self, instance_id: str) -> bool:
        """Remove an instance by id.

        Args:
            instance_id: Instance to remove.

        Returns:
            True if an instance was removed.

        Raises:
            StorageError: If the write fails.
        """
        ...
