"""Database instance entity and install request."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any


class EngineType(Enum):
    """Supported database engine technologies."""
    POSTGRESQL = "postgresql"
    MYSQL = "mysql"
    MARIADB = "mariadb"
    MONGODB = "mongodb"
    REDIS = "redis"
    CASSANDRA = "cassandra"
    MSSQL = "mssql"
    REDSHIFT = "redshift"


class InstanceStatus(Enum):
    """Instance lifecycle status."""
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class DatabaseInstance:
    """One configured deployment of an engine.

    The id is assigned at creation and never changes. pid is only set
    while the engine process is alive.
    """
    id: str
    name: str
    type: EngineType
    version: str
    port: int
    data_path: Path
    username: str = ""
    encrypted_password: str = ""
    status: InstanceStatus = InstanceStatus.STOPPED
    auto_start: bool = False
    created_at: str = field(default_factory=_utc_now)
    pid: int | None = None
    package_name: str = ""
    database_name: str = ""

    def is_running(self) -> bool:
        """Check if the instance holds its port.

        Returns:
            True if running.
        """
        return self.status == InstanceStatus.RUNNING

    def is_active(self) -> bool:
        """Check if the instance has a live or pending process.

        Returns:
            True if starting, running or stopping.
        """
        return self.status in (
            InstanceStatus.STARTING,
            InstanceStatus.RUNNING,
            InstanceStatus.STOPPING,
        )

    def to_record(self) -> dict[str, Any]:
        """Serialize to the persisted record schema.

        Returns:
            camelCase dictionary.
        """
        record: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "type": self.type.value,
            "version": self.version,
            "port": self.port,
            "status": self.status.value,
            "dataPath": str(self.data_path),
            "username": self.username,
            "encryptedPassword": self.encrypted_password,
            "autoStart": self.auto_start,
            "createdAt": self.created_at,
            "packageName": self.package_name,
        }
        if self.pid is not None:
            record["pid"] = self.pid
        if self.database_name:
            record["databaseName"] = self.database_name
        return record

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> DatabaseInstance:
        """Build an instance from a persisted record.

        Args:
            record: camelCase dictionary.

        Returns:
            DatabaseInstance.

        Raises:
            KeyError: If a required field is missing.
            ValueError: If type or status is unknown.
        """
        return cls(
            id=record["id"],
            name=record["name"],
            type=EngineType(record["type"]),
            version=str(record["version"]),
            port=int(record["port"]),
            data_path=Path(record["dataPath"]),
            username=record.get("username", ""),
            encrypted_password=record.get("encryptedPassword", ""),
            status=InstanceStatus(record.get("status", "stopped")),
            auto_start=bool(record.get("autoStart", False)),
            created_at=record.get("createdAt") or _utc_now(),
            pid=record.get("pid"),
            package_name=record.get("packageName", ""),
            database_name=record.get("databaseName", ""),
        )


@dataclass
class InstallRequest:
    """Parameters for installing a new instance."""
    type: EngineType
    name: str
    version: str
    port: int
    data_path: Path | None = None
    username: str | None = None
    password: str | None = None
    auto_start: bool = False
    database_name: str | None = None  # Created on first start by SQL engines
