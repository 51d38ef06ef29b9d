"""Port Probe port for detecting externally bound ports."""

from __future__ import annotations

from abc import abstractmethod
from typing import Protocol

from db_orchestrator.domain.value_objects import CheckFailed, Ok


class PortProbe(Protocol):
    """Protocol for an OS-level check of whether a port is in use.

    Implementations must bound the check with a timeout and return
    CheckFailed instead of raising when the OS cannot answer.
    """

    @abstractmethod
    async def probe(self, port: int) -> Ok[bool] | CheckFailed:
        """Probe a local TCP port.

        Args:
            port: Port to probe.

        Returns:
            Ok(True) if something is bound, Ok(False) if free, CheckFailed otherwise.
        """
        ...
