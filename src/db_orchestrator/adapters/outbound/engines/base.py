"""
Base Engine Adapter - shared behaviour for all engine adapters.

Every adapter subclasses BaseEngineAdapter and supplies the package name,
the launch command and the readiness markers of its engine. The base
class implements data directory preparation, spawning, readiness
detection and signal-based shutdown, which most engines share.

Readiness is whichever comes first: a marker line in the engine's
output, or the port accepting TCP connections.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import ClassVar

from db_orchestrator.domain.entities import DatabaseInstance, EngineType
from db_orchestrator.domain.errors import (
    BinaryNotFoundError,
    InitializationError,
    ProcessError,
    UnsupportedEngineError,
)
from db_orchestrator.domain.value_objects import slugify
from db_orchestrator.ports.outbound import PackageManager, ProcessHandle, ProcessLauncher

logger = logging.getLogger(__name__)

DATA_DIR_MODE = 0o700
READY_POLL_INTERVAL = 0.2
INIT_TIMEOUT_SECONDS = 120.0


# =============================================================================
# Data Classes
# =============================================================================


@dataclass
class LaunchSpec:
    """How to launch an engine process."""
    command: list[str]
    env: dict[str, str] = field(default_factory=dict)
    cwd: Path | None = None


def database_name_for(instance: DatabaseInstance) -> str:
    """Database created on first start: the requested one, else the instance name."""
    return instance.database_name or slugify(instance.name).replace("-", "_")


# =============================================================================
# Binary lookup
# =============================================================================


class BinaryLocator:
    """Finds engine binaries.

    Looks in the package's install prefix first, then on PATH.
    """

    def __init__(self, package_manager: PackageManager | None = None) -> None:
        self._package_manager = package_manager
        self._prefixes: dict[str, Path] = {}

    async def find(self, binary: str, package: str) -> Path:
        """Locate a binary shipped by a package.

        Raises:
            BinaryNotFoundError: If the binary cannot be found.
        """
        prefix = await self._prefix(package)
        if prefix is not None:
            for sub in ("bin", "sbin"):
                candidate = prefix / sub / binary
                if candidate.exists():
                    return candidate

        found = shutil.which(binary)
        if found:
            return Path(found)
        raise BinaryNotFoundError(binary)

    async def _prefix(self, package: str) -> Path | None:
        if self._package_manager is None or not package:
            return None
        if package in self._prefixes:
            return self._prefixes[package]
        # Misses are retried; the package may be installed later
        prefix = await self._package_manager.prefix(package)
        if prefix is not None:
            self._prefixes[package] = prefix
        return prefix


# =============================================================================
# Base Adapter
# =============================================================================


class BaseEngineAdapter(ABC):
    """Abstract base for engine adapters."""

    engine: ClassVar[EngineType]
    default_username: str = ""
    start_timeout: float | None = None
    ready_markers: ClassVar[tuple[str, ...]] = ()

    def __init__(
        self,
        launcher: ProcessLauncher,
        locator: BinaryLocator,
        host: str = "127.0.0.1",
    ) -> None:
        self._launcher = launcher
        self._locator = locator
        self._host = host

    # ── Abstract ────────────────────────────────────────────────

    @abstractmethod
    def package_name(self, version: str) -> str:
        """Resolve the package manager formula for a version."""

    @abstractmethod
    async def launch_spec(self, instance: DatabaseInstance, password: str) -> LaunchSpec:
        """Build the command that runs the engine in the foreground."""

    # ── Helpers ─────────────────────────────────────────────────

    def _package(self, instance: DatabaseInstance) -> str:
        return instance.package_name or self.package_name(instance.version)

    async def binary(self, instance: DatabaseInstance, name: str) -> Path:
        return await self._locator.find(name, self._package(instance))

    @staticmethod
    def prepare_data_dir(path: Path) -> None:
        """Create a data directory readable only by the owner."""
        try:
            path.mkdir(parents=True, exist_ok=True)
            os.chmod(path, DATA_DIR_MODE)
        except OSError as e:
            raise InitializationError(f"Cannot create data directory {path}: {e}") from e

    async def run_init(
        self,
        command: list[str],
        env: dict[str, str] | None = None,
        cwd: Path | None = None,
    ) -> str:
        """Run an init binary, raising InitializationError on failure."""
        try:
            code, output = await self._launcher.run(
                command, env=env, cwd=cwd, timeout=INIT_TIMEOUT_SECONDS
            )
        except BinaryNotFoundError:
            raise
        except ProcessError as e:
            raise InitializationError(str(e)) from e
        if code != 0:
            tail = "\n".join(output.strip().splitlines()[-5:])
            raise InitializationError(f"{Path(command[0]).name} exited with code {code}: {tail}")
        return output

    # ── Contract ────────────────────────────────────────────────

    async def initialize(self, instance: DatabaseInstance, password: str) -> None:
        self.prepare_data_dir(instance.data_path)

    async def start(self, instance: DatabaseInstance, password: str) -> ProcessHandle:
        spec = await self.launch_spec(instance, password)
        return await self._launcher.spawn(spec.command, env=spec.env, cwd=spec.cwd)

    async def wait_ready(self, instance: DatabaseInstance, handle: ProcessHandle) -> bool:
        marker_seen = asyncio.Event()

        def on_line(line: str) -> None:
            if any(marker in line for marker in self.ready_markers):
                marker_seen.set()

        if self.ready_markers:
            handle.add_output_listener(on_line)
            for line in handle.recent_output():
                on_line(line)

        waiters = {
            asyncio.ensure_future(marker_seen.wait()),
            asyncio.ensure_future(self._poll_port(instance.port)),
            asyncio.ensure_future(handle.wait()),
        }
        try:
            await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                waiter.cancel()
        return handle.returncode is None

    async def _poll_port(self, port: int) -> None:
        while True:
            try:
                _, writer = await asyncio.wait_for(
                    asyncio.open_connection(self._host, port), timeout=READY_POLL_INTERVAL * 2
                )
            except (OSError, asyncio.TimeoutError):
                await asyncio.sleep(READY_POLL_INTERVAL)
                continue
            writer.close()
            with contextlib.suppress(OSError):
                await writer.wait_closed()
            return

    async def stop(
        self,
        instance: DatabaseInstance,
        handle: ProcessHandle,
        password: str,
        grace: float,
    ) -> None:
        await self.signal_stop(handle, grace)

    @staticmethod
    async def signal_stop(handle: ProcessHandle, grace: float) -> None:
        """SIGTERM, then SIGKILL if the process outlives the grace period."""
        if handle.returncode is not None:
            return
        handle.terminate()
        try:
            await asyncio.wait_for(handle.wait(), timeout=grace)
        except asyncio.TimeoutError:
            logger.warning("pid %d ignored SIGTERM for %.1fs, sending SIGKILL", handle.pid, grace)
            handle.kill()

    async def configure(self, instance: DatabaseInstance, password: str) -> None:
        return None

    async def change_password(
        self, instance: DatabaseInstance, current_password: str, new_password: str
    ) -> None:
        raise UnsupportedEngineError(
            f"Credential updates are not supported for {self.engine.value}"
        )
