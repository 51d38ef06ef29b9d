"""Events published on the event bus."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar

from db_orchestrator.domain.entities.instance import InstanceStatus


@dataclass(frozen=True)
class StatusChanged:
    """An instance moved to a new status."""
    name: ClassVar[str] = "status-changed"

    id: str
    status: InstanceStatus
    pid: int | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"id": self.id, "status": self.status.value}
        if self.pid is not None:
            payload["pid"] = self.pid
        if self.error is not None:
            payload["error"] = self.error
        return payload


@dataclass(frozen=True)
class InstallProgress:
    """Progress of a running install."""
    name: ClassVar[str] = "install-progress"

    stage: str
    message: str
    percent: int

    def to_dict(self) -> dict[str, Any]:
        return {"stage": self.stage, "message": self.message, "percent": self.percent}


Event = StatusChanged | InstallProgress
