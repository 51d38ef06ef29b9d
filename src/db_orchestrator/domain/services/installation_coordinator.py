"""Installation coordination.

Turns an install request into a persisted, stopped instance:

1. Validate name, port and engine, reject duplicates.
2. Make sure the package manager exists, installing it if needed.
3. Resolve the package for (engine, version) and install it unless it is
   already present. Repeated failures of the same package are capped.
4. Initialize the data directory through the engine adapter.
5. Persist the instance with an encrypted password.

Every stage is reported on the event bus as install-progress. An install
is not cancellable once started.
"""

from __future__ import annotations

import logging
import re
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from db_orchestrator.domain.entities import (
    DatabaseInstance,
    InstallProgress,
    InstallRequest,
    InstanceStatus,
)
from db_orchestrator.domain.errors import (
    DuplicateError,
    InitializationError,
    InstallationError,
    OrchestratorError,
    ValidationError,
)
from db_orchestrator.domain.services.event_bus import EventBus
from db_orchestrator.domain.services.port_resolver import PortConflictResolver
from db_orchestrator.domain.value_objects import create_instance_id
from db_orchestrator.ports.outbound import (
    CredentialVault,
    EngineAdapter,
    EngineRegistry,
    InstanceStore,
    PackageManager,
)

if TYPE_CHECKING:
    from db_orchestrator.infrastructure.metrics import MetricsRegistry

logger = logging.getLogger(__name__)

DATABASE_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}$")


class InstallAttemptCounter:
    """Consecutive install failures per package.

    Transient by design: a restart of the orchestrator resets it.
    """

    def __init__(self, max_attempts: int = 3) -> None:
        self._max_attempts = max_attempts
        self._failures: dict[str, int] = {}

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    def failures(self, package: str) -> int:
        return self._failures.get(package, 0)

    def is_exhausted(self, package: str) -> bool:
        return self.failures(package) >= self._max_attempts

    def record_failure(self, package: str) -> int:
        """Count a failed attempt.

        Returns:
            The new failure count, capped at max_attempts.
        """
        count = min(self.failures(package) + 1, self._max_attempts)
        self._failures[package] = count
        return count

    def clear(self, package: str) -> None:
        self._failures.pop(package, None)


@dataclass
class InstallOutcome:
    """A completed install.

    warning is set when the instance was persisted despite a failed data
    directory initialization.
    """

    instance: DatabaseInstance
    warning: str | None = None


class InstallationCoordinator:
    """Coordinates package installation and instance creation."""

    def __init__(
        self,
        store: InstanceStore,
        vault: CredentialVault,
        package_manager: PackageManager,
        engines: EngineRegistry,
        resolver: PortConflictResolver,
        bus: EventBus,
        databases_dir: Path,
        attempts: InstallAttemptCounter | None = None,
        max_name_length: int = 15,
        persist_on_init_failure: bool = True,
        metrics: MetricsRegistry | None = None,
    ) -> None:
        """Initialize the coordinator.

        Args:
            store: Instance store receiving new records.
            vault: Encrypts the instance password.
            package_manager: Installs engine binaries.
            engines: Engine adapter lookup.
            resolver: Validates requested ports.
            bus: Receives install-progress events.
            databases_dir: Parent of default data directories.
            attempts: Failure counter, owned by the caller.
            max_name_length: Longest allowed instance name.
            persist_on_init_failure: Keep the record when initialization fails.
            metrics: Optional metrics registry.
        """
        self._store = store
        self._vault = vault
        self._package_manager = package_manager
        self._engines = engines
        self._resolver = resolver
        self._bus = bus
        self._databases_dir = Path(databases_dir)
        self._attempts = attempts if attempts is not None else InstallAttemptCounter()
        self._max_name_length = max_name_length
        self._persist_on_init_failure = persist_on_init_failure
        self._metrics = metrics

    @property
    def attempts(self) -> InstallAttemptCounter:
        return self._attempts

    def validate_name(self, name: str, exclude_id: str | None = None) -> str:
        """Validate an instance name.

        Args:
            name: Proposed name.
            exclude_id: Instance allowed to already own the name.

        Returns:
            The stripped name.

        Raises:
            ValidationError: If empty or too long.
            DuplicateError: If another instance already uses it.
        """
        name = name.strip()
        if not name:
            raise ValidationError("Name must not be empty")
        if len(name) > self._max_name_length:
            raise ValidationError(
                f"Name must be at most {self._max_name_length} characters"
            )
        for instance in self._store.list_instances():
            if instance.id != exclude_id and instance.name.lower() == name.lower():
                raise DuplicateError(
                    f"An instance named '{instance.name}' already exists",
                    existing_instance=instance,
                )
        return name

    def find_duplicate(self, request: InstallRequest, data_path: Path) -> DatabaseInstance | None:
        """Find an instance with the same (type, version, data path)."""
        target = data_path.expanduser().resolve()
        for instance in self._store.list_instances():
            if (
                instance.type == request.type
                and instance.version == request.version
                and instance.data_path.expanduser().resolve() == target
            ):
                return instance
        return None

    def validate_data_path(self, data_path: Path) -> None:
        """Reject a data directory that another instance already owns.

        Raises:
            ValidationError: If any instance, of any engine, uses the path.
        """
        target = data_path.expanduser().resolve()
        for instance in self._store.list_instances():
            if instance.data_path.expanduser().resolve() == target:
                raise ValidationError(
                    f"Data directory {data_path} is already used by '{instance.name}'"
                )

    @staticmethod
    def validate_database_name(database_name: str | None) -> str:
        """Validate the optional database created on first start.

        Returns:
            The stripped name, or "" to fall back to one derived from the
            instance name.

        Raises:
            ValidationError: If the name is not a plain SQL identifier.
        """
        database_name = (database_name or "").strip()
        if database_name and not DATABASE_NAME_PATTERN.match(database_name):
            raise ValidationError(
                "Database name must start with a letter or underscore and contain "
                "only letters, digits and underscores (at most 63 characters)"
            )
        return database_name

    async def install(self, request: InstallRequest) -> InstallOutcome:
        """Install an engine and persist a stopped instance.

        Args:
            request: Install parameters.

        Returns:
            The persisted instance and an optional initialization warning.

        Raises:
            ValidationError: If name, port or engine are invalid.
            DuplicateError: If the instance already exists.
            InstallationError: If the package manager or package install fails.
            InitializationError: If initialization fails and records are not
                kept on initialization failure.
        """
        try:
            return await self._install(request)
        except OrchestratorError as e:
            self._progress("failed", str(e), 100)
            raise

    async def _install(self, request: InstallRequest) -> InstallOutcome:
        self._progress("validating", f"Validating {request.name}", 0)
        instance_id = create_instance_id(request.type.value)
        data_path = (
            Path(request.data_path) if request.data_path else self._databases_dir / instance_id
        )
        existing = self.find_duplicate(request, data_path)
        if existing is not None:
            raise DuplicateError(
                f"{request.type.value} {request.version} is already installed at {data_path} "
                f"as '{existing.name}'",
                existing_instance=existing,
            )

        name = self.validate_name(request.name)
        self.validate_data_path(data_path)
        database_name = self.validate_database_name(request.database_name)
        self._resolver.validate_port(request.port)
        adapter = self._engines.get_adapter(request.type)

        await self._ensure_package_manager()

        package = adapter.package_name(request.version)
        self._progress("resolving", f"Resolved package {package}", 25)

        if await self._package_manager.is_installed(package):
            logger.info("Package %s already installed, skipping install", package)
            self._attempts.clear(package)
            self._progress("installing", f"{package} is already installed", 70)
        else:
            await self._install_package(package)

        password = request.password or ""
        instance = DatabaseInstance(
            id=instance_id,
            name=name,
            type=request.type,
            version=request.version,
            port=request.port,
            data_path=data_path,
            username=request.username or adapter.default_username,
            encrypted_password=self._vault.encrypt(password),
            status=InstanceStatus.STOPPED,
            auto_start=request.auto_start,
            package_name=package,
            database_name=database_name,
        )

        self._progress("initializing", f"Initializing data directory {data_path}", 75)
        warning = await self._initialize(adapter, instance, password)

        self._progress("persisting", f"Saving {name}", 90)
        self._store.save(instance)

        self._progress("complete", f"{name} installed", 100)
        logger.info("Installed %s (%s %s) at %s", instance.id, instance.type.value, instance.version, data_path)
        return InstallOutcome(instance=instance, warning=warning)

    async def _ensure_package_manager(self) -> None:
        self._progress("package-manager", "Checking package manager", 10)
        if await self._package_manager.is_available():
            return

        logger.info("Package manager missing, installing it")
        self._progress("package-manager", "Installing package manager, this can take several minutes", 10)
        await self._package_manager.install_self(
            on_output=lambda line: self._progress("package-manager", line, 15)
        )
        if not await self._package_manager.is_available():
            raise InstallationError("Package manager is still unavailable after installation")

    async def _install_package(self, package: str) -> None:
        if self._attempts.is_exhausted(package):
            if self._metrics:
                self._metrics.install_attempts_total.labels(package=package, status="short_circuit").inc()
            raise InstallationError(
                f"Installation of {package} failed {self._attempts.failures(package)} times in a row; "
                "not retrying. Check the package manager and try again after restarting."
            )

        self._progress("installing", f"Installing {package}", 40)
        try:
            await self._package_manager.install(
                package, on_output=lambda line: self._progress("installing", line, 50)
            )
        except InstallationError:
            failures = self._attempts.record_failure(package)
            logger.warning("Install of %s failed (%d/%d)", package, failures, self._attempts.max_attempts)
            if self._metrics:
                self._metrics.install_attempts_total.labels(package=package, status="failed").inc()
            raise

        self._attempts.clear(package)
        if self._metrics:
            self._metrics.install_attempts_total.labels(package=package, status="success").inc()

    async def _initialize(
        self, adapter: EngineAdapter, instance: DatabaseInstance, password: str
    ) -> str | None:
        created = not instance.data_path.exists()
        try:
            await adapter.initialize(instance, password)
        except InitializationError as e:
            logger.error("Initialization of %s failed: %s", instance.id, e)
            if not self._persist_on_init_failure:
                if created:
                    shutil.rmtree(instance.data_path, ignore_errors=True)
                raise
            return f"Data directory initialization failed: {e}"
        return None

    def _progress(self, stage: str, message: str, percent: int) -> None:
        self._bus.publish(InstallProgress(stage=stage, message=message, percent=percent))
