"""PostgreSQL engine adapter."""

from __future__ import annotations

import asyncio
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
from db_orchestrator.domain.value_objects import major_version

logger = logging.getLogger(__name__)

CONFIGURE_MAX_ATTEMPTS = 5
CONFIGURE_MAX_BACKOFF = 5.0

MINIMAL_CONFIG = """
# Added by db-orchestrator
listen_addresses = 'localhost'
max_connections = 50
max_wal_size = 1GB
min_wal_size = 80MB
"""


class PostgreSQLAdapter(BaseEngineAdapter):
    """Runs postgres in the foreground against a private data directory."""

    engine = EngineType.POSTGRESQL
    default_username = "postgres"
    ready_markers = ("ready to accept connections",)

    def package_name(self, version: str) -> str:
        return f"postgresql@{major_version(version)}"

    async def initialize(self, instance: DatabaseInstance, password: str) -> None:
        await super().initialize(instance, password)
        data_path = instance.data_path
        if (data_path / "PG_VERSION").exists():
            logger.info("PostgreSQL data directory %s already initialized", data_path)
            return

        initdb = await self.binary(instance, "initdb")
        command = [str(initdb), "-D", str(data_path), "-U", instance.username or self.default_username]

        with tempfile.TemporaryDirectory() as tmp:
            if password:
                pwfile = Path(tmp) / "pwfile"
                pwfile.write_text(password, encoding="utf-8")
                command += [f"--pwfile={pwfile}", "--auth-host=scram-sha-256", "--auth-local=trust"]
            else:
                command += ["--auth=trust"]
            await self.run_init(command, env={"LC_ALL": "C"})

        with (data_path / "postgresql.conf").open("a", encoding="utf-8") as f:
            f.write(MINIMAL_CONFIG)

    async def launch_spec(self, instance: DatabaseInstance, password: str) -> LaunchSpec:
        postgres = await self.binary(instance, "postgres")
        return LaunchSpec(
            command=[
                str(postgres),
                "-D", str(instance.data_path),
                "-p", str(instance.port),
                "-h", "localhost",
                "-k", tempfile.gettempdir(),
                "-c", "log_min_messages=warning",
            ],
            env={"LC_ALL": "C"},
        )

    async def configure(self, instance: DatabaseInstance, password: str) -> None:
        """Create the instance database if it does not exist."""
        createdb = await self.binary(instance, "createdb")
        name = database_name_for(instance)
        command = [
            str(createdb),
            "-h", "localhost",
            "-p", str(instance.port),
            "-U", instance.username or self.default_username,
            name,
        ]
        env = {"PGPASSWORD": password} if password else {}

        for attempt in range(CONFIGURE_MAX_ATTEMPTS):
            code, output = await self._launcher.run(command, env=env, timeout=10.0)
            if code == 0 or "already exists" in output:
                logger.info("Database %s ready on %s", name, instance.id)
                return
            backoff = min(0.5 * 2 ** attempt, CONFIGURE_MAX_BACKOFF)
            logger.debug("createdb attempt %d for %s failed: %s", attempt + 1, instance.id, output.strip())
            await asyncio.sleep(backoff)

        raise ProcessError(f"Could not create database {name} after {CONFIGURE_MAX_ATTEMPTS} attempts")

    async def change_password(
        self, instance: DatabaseInstance, current_password: str, new_password: str
    ) -> None:
        psql = await self.binary(instance, "psql")
        user = instance.username or self.default_username
        statement = 'ALTER USER "{}" WITH PASSWORD \'{}\''.format(
            user.replace('"', '""'), new_password.replace("'", "''")
        )
        command = [
            str(psql),
            "-h", "localhost",
            "-p", str(instance.port),
            "-U", user,
            "-d", "postgres",
            "-v", "ON_ERROR_STOP=1",
            "-c", statement,
        ]
        env = {"PGPASSWORD": current_password} if current_password else {}
        code, output = await self._launcher.run(command, env=env, timeout=10.0)
        if code != 0:
            raise ProcessError(f"Could not change the password of {user} on {instance.id}: {output.strip()}")
        logger.info("Password of %s rotated on %s", user, instance.id)
