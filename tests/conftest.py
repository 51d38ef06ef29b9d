"""Pytest configuration and fixtures for db_orchestrator tests."""

from __future__ import annotations

import asyncio
import tempfile
from pathlib import Path
from typing import Any, Generator

import pytest
from prometheus_client import CollectorRegistry

from db_orchestrator.adapters.outbound import JsonBannedPortStore, JsonInstanceStore
from db_orchestrator.application import DatabaseOrchestrator
from db_orchestrator.domain.entities import DatabaseInstance, EngineType, InstanceStatus
from db_orchestrator.domain.errors import (
    BinaryNotFoundError,
    InitializationError,
    InstallationError,
    ProcessError,
    UnsupportedEngineError,
)
from db_orchestrator.domain.value_objects import CheckFailed, Ok
from db_orchestrator.infrastructure.config import (
    Config,
    PortConfig,
    ProcessConfig,
    StorageConfig,
    VaultConfig,
)
from db_orchestrator.infrastructure.container import (
    Container,
    build_orchestrator,
    reset_container,
)
from db_orchestrator.infrastructure.metrics import MetricsRegistry
from db_orchestrator.ports.outbound import (
    EngineRegistry,
    PackageManager,
    PermissionGate,
    PortProbe,
    ProcessInspector,
    ProcessLauncher,
)

LOCAL_ENGINES = (
    EngineType.POSTGRESQL,
    EngineType.MYSQL,
    EngineType.MARIADB,
    EngineType.MONGODB,
    EngineType.REDIS,
    EngineType.CASSANDRA,
)


# =============================================================================
# Fakes
# =============================================================================


class FakeProcessHandle:
    """In-memory engine process."""

    def __init__(self, pid: int, ignores_sigterm: bool = False) -> None:
        self.pid = pid
        self.returncode: int | None = None
        self.ignores_sigterm = ignores_sigterm
        self.signals: list[str] = []
        self._listeners: list[Any] = []
        self._output: list[str] = []
        self._exited = asyncio.Event()

    def add_output_listener(self, listener: Any) -> None:
        self._listeners.append(listener)

    def recent_output(self) -> list[str]:
        return list(self._output)

    def emit(self, line: str) -> None:
        self._output.append(line)
        for listener in list(self._listeners):
            listener(line)

    def exit(self, code: int) -> None:
        if self.returncode is None:
            self.returncode = code
            self._exited.set()

    async def wait(self) -> int:
        await self._exited.wait()
        assert self.returncode is not None
        return self.returncode

    def terminate(self) -> None:
        self.signals.append("TERM")
        if not self.ignores_sigterm:
            self.exit(0)

    def kill(self) -> None:
        self.signals.append("KILL")
        self.exit(-9)


class FakeLauncher:
    """Records commands instead of running them."""

    def __init__(self) -> None:
        self.spawned: list[list[str]] = []
        self.runs: list[tuple[list[str], dict[str, str]]] = []
        self.responses: list[tuple[int, str]] = []
        self.handles: list[FakeProcessHandle] = []
        self.missing: set[str] = set()

    async def spawn(
        self,
        command: list[str],
        env: dict[str, str] | None = None,
        cwd: Path | None = None,
    ) -> FakeProcessHandle:
        if Path(command[0]).name in self.missing:
            raise BinaryNotFoundError(command[0])
        self.spawned.append(list(command))
        handle = FakeProcessHandle(pid=5000 + len(self.spawned))
        self.handles.append(handle)
        return handle

    async def run(
        self,
        command: list[str],
        env: dict[str, str] | None = None,
        cwd: Path | None = None,
        timeout: float | None = None,
    ) -> tuple[int, str]:
        self.runs.append((list(command), dict(env or {})))
        if self.responses:
            return self.responses.pop(0)
        return 0, ""


class FakePackageManager:
    """Package manager with scripted availability and failures."""

    def __init__(self, available: bool = True) -> None:
        self.available = available
        self.installed: set[str] = set()
        self.failing: set[str] = set()
        self.install_calls: list[str] = []
        self.self_installs = 0

    async def is_available(self) -> bool:
        return self.available

    async def install_self(self, on_output: Any = None) -> None:
        self.self_installs += 1
        if on_output:
            on_output("==> Installing package manager")
        self.available = True

    async def is_installed(self, package: str) -> bool:
        return package in self.installed

    async def install(self, package: str, on_output: Any = None) -> None:
        self.install_calls.append(package)
        if package in self.failing:
            raise InstallationError(f"brew install {package} exited with code 1")
        if on_output:
            on_output(f"==> Pouring {package}")
        self.installed.add(package)

    async def prefix(self, package: str) -> Path | None:
        return None


class FakeEngineAdapter:
    """Engine adapter backed by FakeProcessHandle."""

    default_username = "admin"

    def __init__(self, engine: EngineType) -> None:
        self.engine = engine
        self.start_timeout: float | None = None
        self.spawn_count = 0
        self.stop_count = 0
        self.configure_count = 0
        self.ready_delay = 0.0
        self.never_ready = False
        self.crash_on_start = False
        self.missing_binary = False
        self.fail_initialize = False
        self.fail_password_change = False
        self.password_changes: list[tuple[str, str]] = []
        self.configured_passwords: list[str] = []
        self.handles: list[FakeProcessHandle] = []

    def package_name(self, version: str) -> str:
        return f"{self.engine.value}@{version}"

    async def initialize(self, instance: DatabaseInstance, password: str) -> None:
        instance.data_path.mkdir(parents=True, exist_ok=True)
        if self.fail_initialize:
            raise InitializationError("initdb exited with code 1")

    async def start(self, instance: DatabaseInstance, password: str) -> FakeProcessHandle:
        if self.missing_binary:
            raise BinaryNotFoundError("postgres")
        self.spawn_count += 1
        handle = FakeProcessHandle(pid=4000 + self.spawn_count)
        self.handles.append(handle)
        return handle

    async def wait_ready(self, instance: DatabaseInstance, handle: FakeProcessHandle) -> bool:
        if self.crash_on_start:
            handle.emit("FATAL: could not bind")
            handle.exit(1)
            return False
        if self.never_ready:
            await asyncio.Event().wait()
        await asyncio.sleep(self.ready_delay)
        handle.emit("ready to accept connections")
        return handle.returncode is None

    async def stop(
        self,
        instance: DatabaseInstance,
        handle: FakeProcessHandle,
        password: str,
        grace: float,
    ) -> None:
        self.stop_count += 1
        handle.terminate()

    async def configure(self, instance: DatabaseInstance, password: str) -> None:
        self.configure_count += 1
        self.configured_passwords.append(password)

    async def change_password(
        self, instance: DatabaseInstance, current_password: str, new_password: str
    ) -> None:
        if self.fail_password_change:
            raise ProcessError("ALTER USER failed")
        self.password_changes.append((current_password, new_password))


class FakeEngineRegistry:
    """One FakeEngineAdapter per locally runnable engine."""

    def __init__(self) -> None:
        self.adapters = {engine: FakeEngineAdapter(engine) for engine in LOCAL_ENGINES}

    def get_adapter(self, engine: EngineType) -> FakeEngineAdapter:
        adapter = self.adapters.get(engine)
        if adapter is None:
            raise UnsupportedEngineError(f"Database engine '{engine.value}' cannot run locally")
        return adapter

    @property
    def total_spawns(self) -> int:
        return sum(a.spawn_count for a in self.adapters.values())


class FakePortProbe:
    """Port probe with a scripted set of externally bound ports."""

    def __init__(self) -> None:
        self.bound: set[int] = set()
        self.failing = False
        self.calls: list[int] = []

    async def probe(self, port: int) -> Ok[bool] | CheckFailed:
        self.calls.append(port)
        if self.failing:
            return CheckFailed("probe unavailable")
        return Ok(port in self.bound)


class FakePermissionGate:
    def __init__(self, granted: bool = True) -> None:
        self.result: Ok[bool] | CheckFailed = Ok(granted)
        self.calls = 0

    async def check(self, permission: str) -> Ok[bool] | CheckFailed:
        self.calls += 1
        return self.result


class FakeProcessInspector:
    def __init__(self) -> None:
        self.alive: set[int] = set()
        self.engines: dict[int, Path] = {}
        self.terminated: list[int] = []

    def is_alive(self, pid: int) -> bool:
        return pid in self.alive

    def is_engine_process(
        self, pid: int, data_path: Path, not_before: float | None = None
    ) -> bool:
        return pid in self.alive and self.engines.get(pid) == data_path

    def terminate(self, pid: int, grace: float = 0.5) -> bool:
        self.terminated.append(pid)
        self.alive.discard(pid)
        return True


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def test_config(temp_dir: Path) -> Config:
    """Provide a test configuration with temporary directories and short timeouts."""
    return Config(
        storage=StorageConfig(app_dir=temp_dir / "app"),
        ports=PortConfig(advisory_debounce_seconds=0.01, probe_timeout_seconds=0.5),
        process=ProcessConfig(
            start_timeout_seconds=1.0,
            stop_timeout_seconds=1.0,
            kill_grace_seconds=0.2,
            shutdown_budget_seconds=1.0,
        ),
        vault=VaultConfig(secret="test-secret"),
    )


@pytest.fixture
def container() -> Generator[Container, None, None]:
    """Provide a fresh DI container for each test."""
    reset_container()
    c = Container()
    yield c
    c.clear()


@pytest.fixture
def metrics_registry() -> MetricsRegistry:
    """Provide a fresh metrics registry for each test."""
    # Use a separate registry to avoid conflicts between tests
    registry = CollectorRegistry(auto_describe=True)
    return MetricsRegistry(registry=registry)


@pytest.fixture
def store(temp_dir: Path) -> JsonInstanceStore:
    return JsonInstanceStore(temp_dir / "app" / "databases.json")


@pytest.fixture
def banned_ports(temp_dir: Path) -> JsonBannedPortStore:
    return JsonBannedPortStore(temp_dir / "app" / "banned-ports.json")


@pytest.fixture
def package_manager() -> FakePackageManager:
    return FakePackageManager()


@pytest.fixture
def engines() -> FakeEngineRegistry:
    return FakeEngineRegistry()


@pytest.fixture
def port_probe() -> FakePortProbe:
    return FakePortProbe()


@pytest.fixture
def permission_gate() -> FakePermissionGate:
    return FakePermissionGate()


@pytest.fixture
def inspector() -> FakeProcessInspector:
    return FakeProcessInspector()


@pytest.fixture
def launcher() -> FakeLauncher:
    return FakeLauncher()


@pytest.fixture
def orchestrator(
    container: Container,
    test_config: Config,
    metrics_registry: MetricsRegistry,
    package_manager: FakePackageManager,
    engines: FakeEngineRegistry,
    port_probe: FakePortProbe,
    permission_gate: FakePermissionGate,
    inspector: FakeProcessInspector,
    launcher: FakeLauncher,
) -> DatabaseOrchestrator:
    """Provide an orchestrator wired with fakes for every OS collaborator."""
    container.register_singleton(PackageManager, package_manager)
    container.register_singleton(EngineRegistry, engines)
    container.register_singleton(PortProbe, port_probe)
    container.register_singleton(PermissionGate, permission_gate)
    container.register_singleton(ProcessInspector, inspector)
    container.register_singleton(ProcessLauncher, launcher)
    return build_orchestrator(test_config, metrics_registry, container=container)


def make_instance(
    data_dir: Path,
    name: str = "app",
    port: int = 5432,
    engine: EngineType = EngineType.POSTGRESQL,
    status: InstanceStatus = InstanceStatus.STOPPED,
    **fields: Any,
) -> DatabaseInstance:
    """Build an instance record for tests."""
    return DatabaseInstance(
        id=fields.pop("id", f"{engine.value}-{name}"),
        name=name,
        type=engine,
        version=fields.pop("version", "16"),
        port=port,
        data_path=data_dir / "databases" / name,
        status=status,
        **fields,
    )


# Markers for test categories
def pytest_configure(config: pytest.Config) -> None:
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests (fast, isolated)")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "slow: Slow tests")
