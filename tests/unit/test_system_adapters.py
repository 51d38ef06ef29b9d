"""Unit tests for the OS-facing outbound adapters."""

from __future__ import annotations

import asyncio
import os
import socket
import subprocess
import sys
import time
from pathlib import Path

import psutil
import pytest

from conftest import FakeLauncher, FakeProcessHandle
from db_orchestrator.adapters.outbound import (
    FilesystemPermissionGate,
    HomebrewPackageManager,
    PsutilProcessInspector,
    SocketPortProbe,
)
from db_orchestrator.adapters.outbound import socket_port_probe
from db_orchestrator.domain.errors import InstallationError
from db_orchestrator.domain.value_objects import CheckFailed, Ok


class ExitingLauncher(FakeLauncher):
    """Spawned processes print scripted lines and exit at once."""

    def __init__(self, exit_code: int = 0, lines: tuple[str, ...] = ()) -> None:
        super().__init__()
        self.exit_code = exit_code
        self.lines = lines

    async def spawn(self, command, env=None, cwd=None) -> FakeProcessHandle:  # type: ignore[override]
        handle = await super().spawn(command, env=env, cwd=cwd)
        asyncio.get_running_loop().call_soon(self._finish, handle)
        return handle

    def _finish(self, handle: FakeProcessHandle) -> None:
        for line in self.lines:
            handle.emit(line)
        handle.exit(self.exit_code)


@pytest.fixture
def brew(temp_dir: Path) -> Path:
    path = temp_dir / "bin" / "brew"
    path.parent.mkdir()
    path.write_text("#!/bin/sh\n", encoding="utf-8")
    return path


@pytest.mark.unit
class TestHomebrewPackageManager:
    """Tests for the Homebrew package manager."""

    async def test_availability_follows_brew_path(self, temp_dir: Path, brew: Path) -> None:
        launcher = FakeLauncher()
        assert await HomebrewPackageManager(launcher, brew_path=brew).is_available() is True
        missing = HomebrewPackageManager(launcher, brew_path=temp_dir / "nope")
        assert await missing.is_available() is False

    async def test_is_installed_uses_exit_code(self, brew: Path) -> None:
        launcher = FakeLauncher()
        launcher.responses = [(0, "postgresql@16"), (1, "Error: No such keg")]
        manager = HomebrewPackageManager(launcher, brew_path=brew)

        assert await manager.is_installed("postgresql@16") is True
        assert await manager.is_installed("mysql@8.0") is False

        command, env = launcher.runs[0]
        assert command == [str(brew), "list", "--formula", "postgresql@16"]
        assert env["HOMEBREW_NO_AUTO_UPDATE"] == "1"

    async def test_install_streams_output(self, brew: Path) -> None:
        launcher = ExitingLauncher(lines=("==> Downloading", "==> Pouring postgresql@16"))
        manager = HomebrewPackageManager(launcher, brew_path=brew)
        received: list[str] = []

        await manager.install("postgresql@16", on_output=received.append)

        assert launcher.spawned == [[str(brew), "install", "--formula", "postgresql@16"]]
        assert received == ["==> Downloading", "==> Pouring postgresql@16"]

    async def test_install_taps_third_party_formula(self, brew: Path) -> None:
        launcher = ExitingLauncher()
        manager = HomebrewPackageManager(launcher, brew_path=brew)

        await manager.install("mongodb/brew/mongodb-community@7.0")

        assert launcher.spawned[0] == [str(brew), "tap", "mongodb/brew"]
        assert launcher.spawned[1][-1] == "mongodb/brew/mongodb-community@7.0"

    async def test_install_failure_raises(self, brew: Path) -> None:
        launcher = ExitingLauncher(exit_code=1, lines=("Error: formula not found",))
        manager = HomebrewPackageManager(launcher, brew_path=brew)

        with pytest.raises(InstallationError, match="exit code 1"):
            await manager.install("postgresql@99")

    async def test_install_without_brew_raises(self, temp_dir: Path) -> None:
        manager = HomebrewPackageManager(FakeLauncher(), brew_path=temp_dir / "nope")
        with pytest.raises(InstallationError, match="not installed"):
            await manager.install("redis")

    async def test_prefix_parses_last_line(self, brew: Path) -> None:
        launcher = FakeLauncher()
        launcher.responses = [(0, "Warning: something\n/opt/homebrew/opt/postgresql@16\n")]
        manager = HomebrewPackageManager(launcher, brew_path=brew)

        assert await manager.prefix("postgresql@16") == Path("/opt/homebrew/opt/postgresql@16")

    async def test_prefix_unknown_formula(self, brew: Path) -> None:
        launcher = FakeLauncher()
        launcher.responses = [(1, "Error: No available formula")]
        manager = HomebrewPackageManager(launcher, brew_path=brew)

        assert await manager.prefix("nothing") is None


@pytest.mark.unit
class TestSocketPortProbe:
    """Tests for the socket port probe."""

    async def test_bound_port_detected(self) -> None:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.bind(("127.0.0.1", 0))
            sock.listen(1)
            port = sock.getsockname()[1]

            result = await SocketPortProbe(use_psutil=False).probe(port)

        assert result == Ok(True)

    async def test_free_port_reported_free(self) -> None:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.bind(("127.0.0.1", 0))
            port = sock.getsockname()[1]

        result = await SocketPortProbe(use_psutil=False).probe(port)

        assert result == Ok(False)

    async def test_wildcard_listener_detected(self) -> None:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.bind(("0.0.0.0", 0))
            sock.listen(1)
            port = sock.getsockname()[1]

            result = await SocketPortProbe(use_psutil=False).probe(port)

        assert result == Ok(True)

    async def test_listener_found_by_connecting(self, monkeypatch: pytest.MonkeyPatch) -> None:
        # Platforms where SO_REUSEADDR lets the bind succeed next to a listener
        monkeypatch.setattr(socket_port_probe, "_bind_in_use", lambda host, port: False)
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.bind(("127.0.0.1", 0))
            sock.listen(1)
            port = sock.getsockname()[1]

            result = await SocketPortProbe(use_psutil=False).probe(port)

        assert result == Ok(True)

    async def test_unprivileged_listing_checks_each_process(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        def denied(kind: str = "inet") -> list:
            raise psutil.AccessDenied()

        monkeypatch.setattr(socket_port_probe.psutil, "net_connections", denied)
        monkeypatch.setattr(socket_port_probe, "_accepts_connections", lambda host, port: False)
        monkeypatch.setattr(socket_port_probe, "_bind_in_use", lambda host, port: False)
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.bind(("127.0.0.1", 0))
            sock.listen(1)
            port = sock.getsockname()[1]

            result = await SocketPortProbe().probe(port)

        assert result == Ok(True)


@pytest.mark.unit
class TestFilesystemPermissionGate:
    """Tests for the permission gate."""

    async def test_writable_directory_granted(self, temp_dir: Path) -> None:
        gate = FilesystemPermissionGate({"auto_launch": temp_dir / "LaunchAgents" / "nested"})
        assert await gate.check("auto_launch") == Ok(True)

    async def test_unknown_permission_fails_check(self, temp_dir: Path) -> None:
        gate = FilesystemPermissionGate({"auto_launch": temp_dir})
        result = await gate.check("camera")
        assert isinstance(result, CheckFailed)

    @pytest.mark.skipif(
        sys.platform == "win32" or os.geteuid() == 0, reason="root can write anywhere"
    )
    async def test_read_only_directory_denied(self, temp_dir: Path) -> None:
        locked = temp_dir / "locked"
        locked.mkdir(mode=0o500)
        try:
            gate = FilesystemPermissionGate({"auto_launch": locked / "autostart"})
            assert await gate.check("auto_launch") == Ok(False)
        finally:
            locked.chmod(0o700)


@pytest.mark.unit
class TestPsutilProcessInspector:
    """Tests for the process inspector."""

    def test_current_process_alive(self) -> None:
        assert PsutilProcessInspector().is_alive(os.getpid()) is True

    def test_terminate_child(self) -> None:
        child = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(30)"])
        inspector = PsutilProcessInspector()
        try:
            assert inspector.terminate(child.pid, grace=2.0) is True
            child.wait(timeout=5)
            assert inspector.is_alive(child.pid) is False
        finally:
            if child.poll() is None:
                child.kill()

    def test_engine_identified_by_data_path(self, temp_dir: Path) -> None:
        data_path = temp_dir / "databases" / "app"
        engine = subprocess.Popen(
            [sys.executable, "-c", "import time; time.sleep(30)", str(data_path)]
        )
        bystander = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(30)"])
        inspector = PsutilProcessInspector()
        try:
            assert inspector.is_engine_process(engine.pid, data_path) is True
            assert inspector.is_engine_process(bystander.pid, data_path) is False
            assert inspector.is_engine_process(engine.pid, temp_dir / "other") is False
        finally:
            for child in (engine, bystander):
                child.kill()
                child.wait(timeout=5)

    def test_process_older_than_instance_is_not_an_engine(self, temp_dir: Path) -> None:
        engine = subprocess.Popen(
            [sys.executable, "-c", "import time; time.sleep(30)", str(temp_dir)]
        )
        try:
            assert (
                PsutilProcessInspector().is_engine_process(
                    engine.pid, temp_dir, not_before=time.time() + 3600
                )
                is False
            )
        finally:
            engine.kill()
            engine.wait(timeout=5)
