"""MySQL and MariaDB engine adapters.

Both run mysqld with a per-instance socket, pid file and config file so
several instances can share one installation. MariaDB differs only in
its package name and its init tool.
"""

from __future__ import annotations

import logging
import tempfile
from pathlib import Path

from db_orchestrator.adapters.outbound.engines.base import (
    BaseEngineAdapter,
    LaunchSpec,
    database_name_for,
)
from db_orchestrator.domain.entities import DatabaseInstance, EngineType
from db_orchestrator.domain.errors import ProcessError
from db_orchestrator.domain.value_objects import major_minor_version

logger = logging.getLogger(__name__)

CONFIG_FILE = "orchestrator.cnf"

MINIMAL_CONFIG = """[mysqld]
bind-address = 127.0.0.1
skip-log-bin
mysqlx = OFF
max_connections = 50
"""


def _quote(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


def socket_path(instance: DatabaseInstance) -> Path:
    # Unix socket paths are length-limited, so they live in the temp dir
    return Path(tempfile.gettempdir()) / f"mysql-{instance.port}.sock"


class MySQLAdapter(BaseEngineAdapter):
    """Runs mysqld against a private data directory."""

    engine = EngineType.MYSQL
    default_username = "root"
    ready_markers = ("ready for connections",)
    server_binary = "mysqld"

    def package_name(self, version: str) -> str:
        return f"mysql@{major_minor_version(version)}"

    def _config_path(self, instance: DatabaseInstance) -> Path:
        return instance.data_path / CONFIG_FILE

    async def _basedir(self, instance: DatabaseInstance) -> Path:
        server = await self.binary(instance, self.server_binary)
        return server.resolve().parent.parent

    def _is_initialized(self, data_path: Path) -> bool:
        return (data_path / "mysql").is_dir()

    async def _run_initializer(self, instance: DatabaseInstance) -> None:
        server = await self.binary(instance, self.server_binary)
        await self.run_init([
            str(server),
            "--no-defaults",
            "--initialize-insecure",
            f"--datadir={instance.data_path}",
            f"--basedir={await self._basedir(instance)}",
        ])

    async def initialize(self, instance: DatabaseInstance, password: str) -> None:
        await super().initialize(instance, password)
        if self._is_initialized(instance.data_path):
            logger.info("%s data directory %s already initialized", self.engine.value, instance.data_path)
        else:
            await self._run_initializer(instance)
        # Written after init, the initializer requires an empty data dir
        self._config_path(instance).write_text(MINIMAL_CONFIG, encoding="utf-8")

    async def launch_spec(self, instance: DatabaseInstance, password: str) -> LaunchSpec:
        server = await self.binary(instance, self.server_binary)
        command = [str(server)]
        config = self._config_path(instance)
        if config.exists():
            command.append(f"--defaults-file={config}")
        command += [
            f"--port={instance.port}",
            f"--datadir={instance.data_path}",
            f"--basedir={await self._basedir(instance)}",
            f"--tmpdir={tempfile.gettempdir()}",
            f"--pid-file={instance.data_path / 'mysqld.pid'}",
            f"--socket={socket_path(instance)}",
            "--bind-address=127.0.0.1",
        ]
        return LaunchSpec(command=command)

    async def _client(self, instance: DatabaseInstance, sql: str, password: str) -> tuple[int, str]:
        client = await self.binary(instance, "mysql")
        command = [
            str(client),
            "--protocol=TCP",
            "-h", "127.0.0.1",
            "-P", str(instance.port),
            "-u", instance.username or self.default_username,
        ]
        env = {"MYSQL_PWD": password} if password else {}
        return await self._launcher.run(command + ["-e", sql], env=env, timeout=10.0)

    async def configure(self, instance: DatabaseInstance, password: str) -> None:
        """Create the named database and set the root password on first start."""
        name = database_name_for(instance)
        create = f"CREATE DATABASE IF NOT EXISTS `{name}`"

        code, output = await self._client(instance, create, password)
        if code == 0:
            return

        # Freshly initialized servers have an empty root password
        code, output = await self._client(instance, create, "")
        if code != 0:
            raise ProcessError(f"Could not configure {instance.id}: {output.strip()}")
        if password:
            code, output = await self._client(instance, self._alter_password(instance, password), "")
            if code != 0:
                raise ProcessError(f"Could not set password on {instance.id}: {output.strip()}")

    async def change_password(
        self, instance: DatabaseInstance, current_password: str, new_password: str
    ) -> None:
        code, output = await self._client(
            instance, self._alter_password(instance, new_password), current_password
        )
        if code != 0:
            raise ProcessError(f"Could not change password on {instance.id}: {output.strip()}")
        logger.info("Password rotated on %s", instance.id)

    def _alter_password(self, instance: DatabaseInstance, password: str) -> str:
        user = _quote(instance.username or self.default_username)
        return f"ALTER USER '{user}'@'localhost' IDENTIFIED BY '{_quote(password)}'"


class MariaDBAdapter(MySQLAdapter):
    """MariaDB uses mysqld with its own install tool."""

    engine = EngineType.MARIADB

    def package_name(self, version: str) -> str:
        return f"mariadb@{major_minor_version(version)}"

    async def _run_initializer(self, instance: DatabaseInstance) -> None:
        installer = await self.binary(instance, "mariadb-install-db")
        await self.run_init([
            str(installer),
            "--no-defaults",
            f"--datadir={instance.data_path}",
            f"--basedir={await self._basedir(instance)}",
            "--auth-root-authentication-method=normal",
        ])
