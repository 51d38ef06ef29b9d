"""Permission Gate port.

Some operations, e.g. auto-launch registration, are blocked until the OS
grants a permission. Granting is outside the orchestrator; it only asks.
"""

from __future__ import annotations

from abc import abstractmethod
from typing import Protocol

from db_orchestrator.domain.value_objects import CheckFailed, Ok


class PermissionGate(Protocol):
    """Protocol for checking OS permissions."""

    @abstractmethod
    async def check(self, permission: str) -> Ok[bool] | CheckFailed:
        """Check a named permission.

        Args:
            permission: Permission name such as "auto_launch".

        Returns:
            Ok(granted) or CheckFailed if the check could not run.
        """
        ...
