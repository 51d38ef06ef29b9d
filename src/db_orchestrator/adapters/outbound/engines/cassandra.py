"""Cassandra engine adapter."""

from __future__ import annotations

from db_orchestrator.adapters.outbound.engines.base import BaseEngineAdapter, LaunchSpec
from db_orchestrator.domain.entities import DatabaseInstance, EngineType


class CassandraAdapter(BaseEngineAdapter):
    """Runs cassandra in the foreground with a private storage directory.

    The JVM takes far longer to come up than the other engines.
    """

    engine = EngineType.CASSANDRA
    default_username = "cassandra"
    start_timeout = 60.0
    ready_markers = ("Starting listening for CQL clients", "Startup complete")

    def package_name(self, version: str) -> str:
        return "cassandra"

    async def launch_spec(self, instance: DatabaseInstance, password: str) -> LaunchSpec:
        cassandra = await self.binary(instance, "cassandra")
        jvm_opts = " ".join([
            f"-Dcassandra.native_transport_port={instance.port}",
            f"-Dcassandra.storagedir={instance.data_path}",
            f"-Dcassandra.logdir={instance.data_path / 'logs'}",
        ])
        return LaunchSpec(
            command=[str(cassandra), "-f"],
            env={"JVM_EXTRA_OPTS": jvm_opts, "CASSANDRA_LOG_DIR": str(instance.data_path / "logs")},
        )
