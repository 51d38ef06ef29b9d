"""Redis engine adapter.

Redis is configured entirely from the command line; config files break
on data paths containing spaces. Shutdown goes through redis-cli so the
dataset is saved before exit.
"""

from __future__ import annotations

import logging
import tempfile
from pathlib import Path

from db_orchestrator.adapters.outbound.engines.base import BaseEngineAdapter, LaunchSpec
from db_orchestrator.domain.entities import DatabaseInstance, EngineType
from db_orchestrator.domain.errors import ProcessError
from db_orchestrator.domain.value_objects import major_minor_version
from db_orchestrator.ports.outbound import ProcessHandle

logger = logging.getLogger(__name__)


class RedisAdapter(BaseEngineAdapter):
    """Runs redis-server bound to localhost."""

    engine = EngineType.REDIS
    default_username = "default"
    ready_markers = ("Ready to accept connections",)

    def package_name(self, version: str) -> str:
        version = version.strip()
        if not version or version == "latest":
            return "redis"
        return f"redis@{major_minor_version(version)}"

    async def launch_spec(self, instance: DatabaseInstance, password: str) -> LaunchSpec:
        server = await self.binary(instance, "redis-server")
        command = [
            str(server),
            "--port", str(instance.port),
            "--bind", "127.0.0.1",
            "--dir", str(instance.data_path),
            "--dbfilename", f"dump-{instance.id}.rdb",
            "--save", "900 1",
            "--save", "300 10",
            "--save", "60 10000",
            "--maxmemory", "512mb",
            "--maxmemory-policy", "allkeys-lru",
            "--appendonly", "no",
        ]
        if password:
            command += ["--requirepass", password]
        # Run outside the data dir so a stray redis.conf there is never picked up
        return LaunchSpec(command=command, cwd=Path(tempfile.gettempdir()))

    async def stop(
        self,
        instance: DatabaseInstance,
        handle: ProcessHandle,
        password: str,
        grace: float,
    ) -> None:
        try:
            cli = await self.binary(instance, "redis-cli")
            command = [str(cli), "-p", str(instance.port)]
            if password:
                command += ["-a", password, "--no-auth-warning"]
            code, output = await self._launcher.run(command + ["SHUTDOWN", "SAVE"], timeout=grace)
            if code != 0 and handle.returncode is None:
                logger.warning("redis-cli shutdown of %s failed: %s", instance.id, output.strip())
        except ProcessError as e:
            logger.warning("Graceful shutdown of %s unavailable: %s", instance.id, e)
        await self.signal_stop(handle, grace)

    async def change_password(
        self, instance: DatabaseInstance, current_password: str, new_password: str
    ) -> None:
        # Applies to the running server; the next start passes the stored password
        cli = await self.binary(instance, "redis-cli")
        command = [str(cli), "-p", str(instance.port)]
        if current_password:
            command += ["-a", current_password, "--no-auth-warning"]
        code, output = await self._launcher.run(
            command + ["CONFIG", "SET", "requirepass", new_password], timeout=10.0
        )
        if code != 0 or output.strip() != "OK":
            raise ProcessError(f"Could not change password on {instance.id}: {output.strip()}")
