"""MongoDB engine adapter."""

from __future__ import annotations

import logging

from db_orchestrator.adapters.outbound.engines.base import BaseEngineAdapter, LaunchSpec
from db_orchestrator.domain.entities import DatabaseInstance, EngineType
from db_orchestrator.domain.value_objects import major_minor_version

logger = logging.getLogger(__name__)


class MongoDBAdapter(BaseEngineAdapter):
    """Runs mongod with logs on stdout so readiness can be detected."""

    engine = EngineType.MONGODB
    ready_markers = ("Waiting for connections",)

    def package_name(self, version: str) -> str:
        return f"mongodb/brew/mongodb-community@{major_minor_version(version)}"

    async def launch_spec(self, instance: DatabaseInstance, password: str) -> LaunchSpec:
        mongod = await self.binary(instance, "mongod")

        # A crash leaves mongod.lock behind and mongod refuses to start
        lock = instance.data_path / "mongod.lock"
        if lock.exists():
            logger.info("Removing stale lock file %s", lock)
            lock.unlink()

        return LaunchSpec(
            command=[
                str(mongod),
                "--port", str(instance.port),
                "--dbpath", str(instance.data_path),
                "--bind_ip", "127.0.0.1",
            ]
        )
