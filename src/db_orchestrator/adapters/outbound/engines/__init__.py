"""
Engine Adapter Registry - maps engine types to adapter instances.

Usage:
    registry = EngineAdapterRegistry(launcher, BinaryLocator(package_manager))
    adapter = registry.get_adapter(EngineType.POSTGRESQL)
"""

from __future__ import annotations

from db_orchestrator.adapters.outbound.engines.base import BaseEngineAdapter, BinaryLocator, LaunchSpec
from db_orchestrator.adapters.outbound.engines.cassandra import CassandraAdapter
from db_orchestrator.adapters.outbound.engines.mongodb import MongoDBAdapter
from db_orchestrator.adapters.outbound.engines.mysql import MariaDBAdapter, MySQLAdapter
from db_orchestrator.adapters.outbound.engines.postgresql import PostgreSQLAdapter
from db_orchestrator.adapters.outbound.engines.redis import RedisAdapter
from db_orchestrator.domain.entities import EngineType
from db_orchestrator.domain.errors import UnsupportedEngineError
from db_orchestrator.ports.outbound import EngineAdapter, ProcessLauncher

# mssql and redshift have no local server binary and are not registered
_ADAPTERS: dict[EngineType, type[BaseEngineAdapter]] = {
    EngineType.POSTGRESQL: PostgreSQLAdapter,
    EngineType.MYSQL: MySQLAdapter,
    EngineType.MARIADB: MariaDBAdapter,
    EngineType.MONGODB: MongoDBAdapter,
    EngineType.REDIS: RedisAdapter,
    EngineType.CASSANDRA: CassandraAdapter,
}


def supported_engines() -> list[EngineType]:
    """Return the engines that can run locally."""
    return list(_ADAPTERS)


class EngineAdapterRegistry:
    """Creates and caches one adapter per engine."""

    def __init__(self, launcher: ProcessLauncher, locator: BinaryLocator) -> None:
        self._launcher = launcher
        self._locator = locator
        self._adapters: dict[EngineType, EngineAdapter] = {}

    def register(self, engine: EngineType, adapter: EngineAdapter) -> None:
        """Override the adapter for an engine."""
        self._adapters[engine] = adapter

    def get_adapter(self, engine: EngineType) -> EngineAdapter:
        """Get the adapter for an engine.

        Raises:
            UnsupportedEngineError: If the engine cannot run locally.
        """
        adapter = self._adapters.get(engine)
        if adapter is not None:
            return adapter

        adapter_cls = _ADAPTERS.get(engine)
        if adapter_cls is None:
            supported = ", ".join(e.value for e in _ADAPTERS)
            raise UnsupportedEngineError(
                f"Database engine '{engine.value}' cannot run locally. Supported: {supported}"
            )
        adapter = adapter_cls(self._launcher, self._locator)
        self._adapters[engine] = adapter
        return adapter


__all__ = [
    "BaseEngineAdapter",
    "BinaryLocator",
    "LaunchSpec",
    "PostgreSQLAdapter",
    "MySQLAdapter",
    "MariaDBAdapter",
    "MongoDBAdapter",
    "RedisAdapter",
    "CassandraAdapter",
    "EngineAdapterRegistry",
    "supported_engines",
]
