"""Banned Ports port for user-excluded ports."""

from __future__ import annotations

from abc import abstractmethod
from typing import Protocol


class BannedPortStore(Protocol):
    """Protocol for the persisted list of ports the user never wants allocated."""

    @abstractmethod
    def load(self) -> list[int]:
        """Return the banned ports, sorted and unique."""
        ...

    @abstractmethod
    def save(self, ports: list[int]) -> list[int]:
        """Replace the banned ports.

        Args:
            ports: Ports to ban. Duplicates and out-of-range values are dropped.

        Returns:
            The normalized list that was stored.

        Raises:
            StorageError: If the write fails.
        """
        ...
