"""Unit tests for engine adapters and the adapter registry."""

from __future__ import annotations

from pathlib import Path

import pytest

from conftest import FakeLauncher, FakePackageManager, FakeProcessHandle, make_instance
from db_orchestrator.adapters.outbound.engines import (
    BaseEngineAdapter,
    BinaryLocator,
    CassandraAdapter,
    EngineAdapterRegistry,
    MariaDBAdapter,
    MongoDBAdapter,
    MySQLAdapter,
    PostgreSQLAdapter,
    RedisAdapter,
    supported_engines,
)
from db_orchestrator.domain.entities import EngineType
from db_orchestrator.domain.errors import (
    BinaryNotFoundError,
    InitializationError,
    ProcessError,
    UnsupportedEngineError,
)

BINARIES = (
    "initdb", "postgres", "createdb", "psql",
    "mysqld", "mysql", "mariadb-install-db",
    "mongod", "redis-server", "redis-cli", "cassandra",
)


class PrefixPackageManager(FakePackageManager):
    """Every package installs into one prefix holding fake binaries."""

    def __init__(self, prefix: Path) -> None:
        super().__init__()
        self.root: Path | None = prefix
        self.prefix_calls: list[str] = []

    async def prefix(self, package: str) -> Path | None:
        self.prefix_calls.append(package)
        return self.root


@pytest.fixture
def brew_prefix(temp_dir: Path) -> Path:
    root = temp_dir / "prefix"
    (root / "bin").mkdir(parents=True)
    for name in BINARIES:
        (root / "bin" / name).write_text("#!/bin/sh\n", encoding="utf-8")
    return root


@pytest.fixture
def locator(brew_prefix: Path) -> BinaryLocator:
    return BinaryLocator(PrefixPackageManager(brew_prefix))


@pytest.mark.unit
class TestPackageNames:
    """Tests for formula names per engine."""

    def test_versioned_formulae(self, launcher: FakeLauncher, locator: BinaryLocator) -> None:
        assert PostgreSQLAdapter(launcher, locator).package_name("16.2") == "postgresql@16"
        assert MySQLAdapter(launcher, locator).package_name("8.0.36") == "mysql@8.0"
        assert MariaDBAdapter(launcher, locator).package_name("11.4") == "mariadb@11.4"
        assert MongoDBAdapter(launcher, locator).package_name("7.0") == (
            "mongodb/brew/mongodb-community@7.0"
        )

    def test_redis_latest_is_unversioned(self, launcher: FakeLauncher, locator: BinaryLocator) -> None:
        adapter = RedisAdapter(launcher, locator)
        assert adapter.package_name("latest") == "redis"
        assert adapter.package_name("") == "redis"
        assert adapter.package_name("7.2.4") == "redis@7.2"

    def test_cassandra_single_formula(self, launcher: FakeLauncher, locator: BinaryLocator) -> None:
        assert CassandraAdapter(launcher, locator).package_name("4.1") == "cassandra"

    def test_cassandra_has_longer_start_timeout(
        self, launcher: FakeLauncher, locator: BinaryLocator
    ) -> None:
        assert CassandraAdapter(launcher, locator).start_timeout == 60.0
        assert PostgreSQLAdapter(launcher, locator).start_timeout is None


@pytest.mark.unit
class TestEngineAdapterRegistry:
    """Tests for adapter lookup."""

    def test_supported_engines_exclude_remote_only(self) -> None:
        engines = supported_engines()
        assert EngineType.POSTGRESQL in engines
        assert EngineType.MSSQL not in engines
        assert EngineType.REDSHIFT not in engines

    def test_adapter_cached_per_engine(self, launcher: FakeLauncher, locator: BinaryLocator) -> None:
        registry = EngineAdapterRegistry(launcher, locator)
        first = registry.get_adapter(EngineType.REDIS)
        assert isinstance(first, RedisAdapter)
        assert registry.get_adapter(EngineType.REDIS) is first

    def test_unsupported_engine_raises(self, launcher: FakeLauncher, locator: BinaryLocator) -> None:
        registry = EngineAdapterRegistry(launcher, locator)
        with pytest.raises(UnsupportedEngineError, match="mssql"):
            registry.get_adapter(EngineType.MSSQL)

    def test_register_override(self, launcher: FakeLauncher, locator: BinaryLocator) -> None:
        registry = EngineAdapterRegistry(launcher, locator)
        custom = MongoDBAdapter(launcher, locator)
        registry.register(EngineType.MONGODB, custom)
        assert registry.get_adapter(EngineType.MONGODB) is custom

    def test_every_supported_engine_resolves(
        self, launcher: FakeLauncher, locator: BinaryLocator
    ) -> None:
        registry = EngineAdapterRegistry(launcher, locator)
        for engine in supported_engines():
            assert registry.get_adapter(engine).engine is engine


@pytest.mark.unit
class TestBinaryLocator:
    """Tests for binary lookup."""

    async def test_finds_binary_in_prefix(self, brew_prefix: Path) -> None:
        manager = PrefixPackageManager(brew_prefix)
        locator = BinaryLocator(manager)

        path = await locator.find("postgres", "postgresql@16")
        assert path == brew_prefix / "bin" / "postgres"

        await locator.find("initdb", "postgresql@16")
        assert manager.prefix_calls == ["postgresql@16"]

    async def test_missing_binary_raises(self, brew_prefix: Path) -> None:
        locator = BinaryLocator(PrefixPackageManager(brew_prefix))
        with pytest.raises(BinaryNotFoundError):
            await locator.find("db-orchestrator-no-such-binary", "postgresql@16")

    async def test_unresolved_prefix_is_retried(self, brew_prefix: Path) -> None:
        binary = "db-orchestrator-keg-only"
        (brew_prefix / "bin" / binary).write_text("#!/bin/sh\n", encoding="utf-8")
        manager = PrefixPackageManager(brew_prefix)
        manager.root = None
        locator = BinaryLocator(manager)

        with pytest.raises(BinaryNotFoundError):
            await locator.find(binary, "postgresql@16")

        manager.root = brew_prefix
        assert await locator.find(binary, "postgresql@16") == brew_prefix / "bin" / binary
        assert manager.prefix_calls == ["postgresql@16", "postgresql@16"]


@pytest.mark.unit
class TestPostgreSQLAdapter:
    """Tests for the PostgreSQL adapter."""

    async def test_initialize_runs_initdb(
        self, temp_dir: Path, launcher: FakeLauncher, locator: BinaryLocator, brew_prefix: Path
    ) -> None:
        adapter = PostgreSQLAdapter(launcher, locator)
        instance = make_instance(temp_dir)

        await adapter.initialize(instance, "s3cret")

        assert instance.data_path.is_dir()
        command, env = launcher.runs[0]
        assert command[0] == str(brew_prefix / "bin" / "initdb")
        assert command[1:5] == ["-D", str(instance.data_path), "-U", "postgres"]
        assert "--auth-host=scram-sha-256" in command
        assert env == {"LC_ALL": "C"}
        assert "listen_addresses = 'localhost'" in (
            instance.data_path / "postgresql.conf"
        ).read_text(encoding="utf-8")

    async def test_initialize_without_password_trusts(
        self, temp_dir: Path, launcher: FakeLauncher, locator: BinaryLocator
    ) -> None:
        adapter = PostgreSQLAdapter(launcher, locator)
        await adapter.initialize(make_instance(temp_dir), "")

        command, _ = launcher.runs[0]
        assert "--auth=trust" in command

    async def test_initialize_skips_existing_cluster(
        self, temp_dir: Path, launcher: FakeLauncher, locator: BinaryLocator
    ) -> None:
        instance = make_instance(temp_dir)
        instance.data_path.mkdir(parents=True)
        (instance.data_path / "PG_VERSION").write_text("16\n", encoding="utf-8")

        await PostgreSQLAdapter(launcher, locator).initialize(instance, "pw")
        assert launcher.runs == []

    async def test_initdb_failure_raises(
        self, temp_dir: Path, launcher: FakeLauncher, locator: BinaryLocator
    ) -> None:
        launcher.responses.append((1, "initdb: error: directory exists but is not empty"))

        with pytest.raises(InitializationError, match="initdb exited with code 1"):
            await PostgreSQLAdapter(launcher, locator).initialize(make_instance(temp_dir), "pw")

    async def test_start_spawns_postgres(
        self, temp_dir: Path, launcher: FakeLauncher, locator: BinaryLocator
    ) -> None:
        instance = make_instance(temp_dir, port=5433)

        handle = await PostgreSQLAdapter(launcher, locator).start(instance, "pw")

        assert handle.pid == 5001
        command = launcher.spawned[0]
        assert Path(command[0]).name == "postgres"
        assert command[command.index("-p") + 1] == "5433"
        assert command[command.index("-D") + 1] == str(instance.data_path)

    async def test_configure_tolerates_existing_database(
        self, temp_dir: Path, launcher: FakeLauncher, locator: BinaryLocator
    ) -> None:
        launcher.responses.append((1, 'createdb: error: database "my_app" already exists'))
        instance = make_instance(temp_dir, name="my-app")

        await PostgreSQLAdapter(launcher, locator).configure(instance, "pw")

        command, env = launcher.runs[0]
        assert command[-1] == "my_app"
        assert env == {"PGPASSWORD": "pw"}

    async def test_configure_creates_requested_database(
        self, temp_dir: Path, launcher: FakeLauncher, locator: BinaryLocator
    ) -> None:
        instance = make_instance(temp_dir, name="my-app", database_name="orders")

        await PostgreSQLAdapter(launcher, locator).configure(instance, "pw")

        command, _ = launcher.runs[0]
        assert command[-1] == "orders"

    async def test_change_password_alters_user(
        self, temp_dir: Path, launcher: FakeLauncher, locator: BinaryLocator
    ) -> None:
        instance = make_instance(temp_dir, port=5433)

        await PostgreSQLAdapter(launcher, locator).change_password(instance, "old", "n'ew")

        command, env = launcher.runs[0]
        assert Path(command[0]).name == "psql"
        assert command[command.index("-p") + 1] == "5433"
        assert command[-1] == "ALTER USER \"postgres\" WITH PASSWORD 'n''ew'"
        assert env == {"PGPASSWORD": "old"}

    async def test_rejected_password_change_raises(
        self, temp_dir: Path, launcher: FakeLauncher, locator: BinaryLocator
    ) -> None:
        launcher.responses.append((2, "psql: error: password authentication failed"))

        with pytest.raises(ProcessError, match="password authentication failed"):
            await PostgreSQLAdapter(launcher, locator).change_password(
                make_instance(temp_dir), "wrong", "new"
            )


@pytest.mark.unit
class TestMySQLAdapter:
    """Tests for the MySQL and MariaDB adapters."""

    async def test_initialize_writes_config_after_init(
        self, temp_dir: Path, launcher: FakeLauncher, locator: BinaryLocator
    ) -> None:
        instance = make_instance(temp_dir, engine=EngineType.MYSQL, port=3306, version="8.0")

        await MySQLAdapter(launcher, locator).initialize(instance, "")

        command, _ = launcher.runs[0]
        assert "--initialize-insecure" in command
        assert (instance.data_path / "orchestrator.cnf").exists()

    async def test_mariadb_uses_install_db(
        self, temp_dir: Path, launcher: FakeLauncher, locator: BinaryLocator
    ) -> None:
        instance = make_instance(temp_dir, engine=EngineType.MARIADB, port=3307, version="11.4")

        await MariaDBAdapter(launcher, locator).initialize(instance, "")

        command, _ = launcher.runs[0]
        assert Path(command[0]).name == "mariadb-install-db"

    async def test_launch_uses_defaults_file_when_present(
        self, temp_dir: Path, launcher: FakeLauncher, locator: BinaryLocator
    ) -> None:
        instance = make_instance(temp_dir, engine=EngineType.MYSQL, port=3306, version="8.0")
        adapter = MySQLAdapter(launcher, locator)
        await adapter.initialize(instance, "")

        spec = await adapter.launch_spec(instance, "")

        assert spec.command[1] == f"--defaults-file={instance.data_path / 'orchestrator.cnf'}"
        assert "--port=3306" in spec.command

    async def test_configure_creates_requested_database(
        self, temp_dir: Path, launcher: FakeLauncher, locator: BinaryLocator
    ) -> None:
        instance = make_instance(
            temp_dir, engine=EngineType.MYSQL, port=3306, version="8.0", database_name="orders"
        )

        await MySQLAdapter(launcher, locator).configure(instance, "pw")

        command, _ = launcher.runs[0]
        assert command[-1] == "CREATE DATABASE IF NOT EXISTS `orders`"

    async def test_change_password_authenticates_with_current(
        self, temp_dir: Path, launcher: FakeLauncher, locator: BinaryLocator
    ) -> None:
        instance = make_instance(temp_dir, engine=EngineType.MYSQL, port=3306, version="8.0")

        await MySQLAdapter(launcher, locator).change_password(instance, "old", "it's")

        command, env = launcher.runs[0]
        assert command[-1] == "ALTER USER 'root'@'localhost' IDENTIFIED BY 'it\\'s'"
        assert env == {"MYSQL_PWD": "old"}


@pytest.mark.unit
class TestMongoAndRedisAdapters:
    """Tests for MongoDB and Redis launch handling."""

    async def test_mongod_stale_lock_removed(
        self, temp_dir: Path, launcher: FakeLauncher, locator: BinaryLocator
    ) -> None:
        instance = make_instance(temp_dir, engine=EngineType.MONGODB, port=27017, version="7.0")
        instance.data_path.mkdir(parents=True)
        (instance.data_path / "mongod.lock").write_text("1234", encoding="utf-8")

        spec = await MongoDBAdapter(launcher, locator).launch_spec(instance, "")

        assert not (instance.data_path / "mongod.lock").exists()
        assert spec.command[spec.command.index("--dbpath") + 1] == str(instance.data_path)

    async def test_redis_password_on_command_line(
        self, temp_dir: Path, launcher: FakeLauncher, locator: BinaryLocator
    ) -> None:
        instance = make_instance(temp_dir, engine=EngineType.REDIS, port=6379, version="7.2")

        spec = await RedisAdapter(launcher, locator).launch_spec(instance, "pw")

        assert spec.command[-2:] == ["--requirepass", "pw"]
        assert spec.cwd is not None and spec.cwd != instance.data_path

    async def test_redis_stop_saves_then_signals(
        self, temp_dir: Path, launcher: FakeLauncher, locator: BinaryLocator
    ) -> None:
        instance = make_instance(temp_dir, engine=EngineType.REDIS, port=6379, version="7.2")
        handle = FakeProcessHandle(pid=77)

        await RedisAdapter(launcher, locator).stop(instance, handle, "pw", grace=0.1)

        command, _ = launcher.runs[0]
        assert command[-2:] == ["SHUTDOWN", "SAVE"]
        assert "--no-auth-warning" in command
        assert handle.signals == ["TERM"]

    async def test_redis_password_set_on_running_server(
        self, temp_dir: Path, launcher: FakeLauncher, locator: BinaryLocator
    ) -> None:
        instance = make_instance(temp_dir, engine=EngineType.REDIS, port=6379, version="7.2")
        launcher.responses.append((0, "OK\n"))

        await RedisAdapter(launcher, locator).change_password(instance, "old", "new")

        command, _ = launcher.runs[0]
        assert command[-4:] == ["CONFIG", "SET", "requirepass", "new"]
        assert command[command.index("-a") + 1] == "old"

    async def test_redis_error_reply_raises(
        self, temp_dir: Path, launcher: FakeLauncher, locator: BinaryLocator
    ) -> None:
        instance = make_instance(temp_dir, engine=EngineType.REDIS, port=6379, version="7.2")
        launcher.responses.append((0, "(error) NOAUTH Authentication required."))

        with pytest.raises(ProcessError, match="NOAUTH"):
            await RedisAdapter(launcher, locator).change_password(instance, "", "new")

    async def test_mongodb_password_change_unsupported(
        self, temp_dir: Path, launcher: FakeLauncher, locator: BinaryLocator
    ) -> None:
        instance = make_instance(temp_dir, engine=EngineType.MONGODB, port=27017, version="7.0")

        with pytest.raises(UnsupportedEngineError):
            await MongoDBAdapter(launcher, locator).change_password(instance, "", "new")


@pytest.mark.unit
class TestSignalStop:
    """Tests for SIGTERM then SIGKILL shutdown."""

    async def test_terminate_is_enough(self) -> None:
        handle = FakeProcessHandle(pid=1)
        await BaseEngineAdapter.signal_stop(handle, grace=0.1)
        assert handle.signals == ["TERM"]
        assert handle.returncode == 0

    async def test_kill_after_grace(self) -> None:
        handle = FakeProcessHandle(pid=1, ignores_sigterm=True)
        await BaseEngineAdapter.signal_stop(handle, grace=0.05)
        assert handle.signals == ["TERM", "KILL"]
        assert handle.returncode == -9

    async def test_exited_process_untouched(self) -> None:
        handle = FakeProcessHandle(pid=1)
        handle.exit(0)
        await BaseEngineAdapter.signal_stop(handle, grace=0.1)
        assert handle.signals == []

    async def test_wait_ready_on_marker(
        self, temp_dir: Path, launcher: FakeLauncher, locator: BinaryLocator
    ) -> None:
        # Port 1 is never bound by the test, the marker decides readiness
        instance = make_instance(temp_dir, port=1)
        handle = FakeProcessHandle(pid=1)
        handle.emit("LOG:  database system is ready to accept connections")

        assert await PostgreSQLAdapter(launcher, locator).wait_ready(instance, handle) is True

    async def test_wait_ready_false_on_exit(
        self, temp_dir: Path, launcher: FakeLauncher, locator: BinaryLocator
    ) -> None:
        instance = make_instance(temp_dir, port=1)
        handle = FakeProcessHandle(pid=1)
        handle.exit(1)

        assert await PostgreSQLAdapter(launcher, locator).wait_ready(instance, handle) is False
