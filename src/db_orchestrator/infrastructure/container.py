"""Dependency injection container and orchestrator wiring."""

from __future__ import annotations

from typing import Any, Callable, TypeVar

from db_orchestrator.adapters.outbound import (
    AesCredentialVault,
    AsyncioProcessLauncher,
    FilesystemPermissionGate,
    HomebrewPackageManager,
    JsonBannedPortStore,
    JsonInstanceStore,
    PsutilProcessInspector,
    SocketPortProbe,
)
from db_orchestrator.adapters.outbound.engines import BinaryLocator, EngineAdapterRegistry
from db_orchestrator.application import DatabaseOrchestrator
from db_orchestrator.domain.services import (
    AdvisoryPortChecker,
    DebouncedEventCache,
    EventBus,
    InstallAttemptCounter,
    InstallationCoordinator,
    PortConflictResolver,
    ProbeCache,
    ProcessSupervisor,
)
from db_orchestrator.infrastructure.config import Config
from db_orchestrator.infrastructure.metrics import MetricsRegistry
from db_orchestrator.ports.outbound import (
    BannedPortStore,
    CredentialVault,
    EngineRegistry,
    InstanceStore,
    PackageManager,
    PermissionGate,
    PortProbe,
    ProcessInspector,
    ProcessLauncher,
)

T = TypeVar("T")


class Container:
    """
    Simple dependency injection container.

    Supports singleton and factory registrations with lazy initialization.
    Factories receive the container so they can resolve their own
    dependencies.
    """

    def __init__(self) -> None:
        """Initialize the container."""
        self._factories: dict[type, Callable[[Container], Any]] = {}
        self._instances: dict[type, Any] = {}

    def register_singleton(self, interface: type[T], instance: T) -> None:
        """
        Register a ready-made instance.

        Args:
            interface: The interface/type to register
            instance: The singleton instance
        """
        self._instances[interface] = instance

    def register_factory(
        self,
        interface: type[T],
        factory: Callable[[Container], T],
    ) -> None:
        """
        Register a factory function for lazy instantiation.

        The first resolve caches the result, so every factory yields a
        singleton within one container.

        Args:
            interface: The interface/type to register
            factory: Factory function that takes the container and returns an instance
        """
        self._factories[interface] = factory

    def resolve(self, interface: type[T]) -> T:
        """
        Resolve a dependency.

        Args:
            interface: The interface/type to resolve

        Returns:
            The resolved instance

        Raises:
            KeyError: If no registration exists for the interface
        """
        if interface in self._instances:
            return self._instances[interface]

        if interface in self._factories:
            instance = self._factories[interface](self)
            self._instances[interface] = instance
            return instance

        raise KeyError(f"No registration found for {interface}")

    def has(self, interface: type) -> bool:
        """Check if an interface is registered."""
        return interface in self._instances or interface in self._factories

    def clear(self) -> None:
        """Clear all registrations and instances."""
        self._factories.clear()
        self._instances.clear()


def configure_container(
    container: Container,
    config: Config,
    metrics: MetricsRegistry | None = None,
) -> Container:
    """
    Register the production adapters and domain services.

    Interfaces that already have a registration are left alone, so tests
    register fakes first and let the rest be wired normally.

    Args:
        container: Container to populate
        config: Orchestrator configuration
        metrics: Optional metrics registry shared by all services

    Returns:
        The populated container
    """

    def factory(interface: type[T], build: Callable[[Container], T]) -> None:
        if not container.has(interface):
            container.register_factory(interface, build)

    storage = config.storage
    ports = config.ports
    process = config.process
    install = config.install

    if not container.has(Config):
        container.register_singleton(Config, config)

    # Outbound adapters
    factory(InstanceStore, lambda c: JsonInstanceStore(storage.state_path))
    factory(BannedPortStore, lambda c: JsonBannedPortStore(storage.banned_ports_path))
    factory(CredentialVault, lambda c: AesCredentialVault(config.vault_secret))
    factory(ProcessLauncher, lambda c: AsyncioProcessLauncher())
    factory(
        PackageManager,
        lambda c: HomebrewPackageManager(c.resolve(ProcessLauncher), brew_path=install.brew_path),
    )
    factory(PortProbe, lambda c: SocketPortProbe())
    factory(PermissionGate, lambda c: FilesystemPermissionGate())
    factory(ProcessInspector, lambda c: PsutilProcessInspector())
    factory(
        EngineRegistry,
        lambda c: EngineAdapterRegistry(
            c.resolve(ProcessLauncher), BinaryLocator(c.resolve(PackageManager))
        ),
    )

    # Domain services
    factory(EventBus, lambda c: EventBus(metrics=metrics))
    factory(
        PortConflictResolver,
        lambda c: PortConflictResolver(
            store=c.resolve(InstanceStore),
            probe=c.resolve(PortProbe),
            banned_ports=c.resolve(BannedPortStore),
            search_window=ports.search_window,
            allow_privileged=ports.allow_privileged,
            probe_timeout=ports.probe_timeout_seconds,
            cache=ProbeCache(ttl=ports.probe_cache_ttl_seconds),
            metrics=metrics,
        ),
    )
    factory(
        AdvisoryPortChecker,
        lambda c: AdvisoryPortChecker(
            c.resolve(PortConflictResolver), delay=ports.advisory_debounce_seconds
        ),
    )
    factory(
        InstallationCoordinator,
        lambda c: InstallationCoordinator(
            store=c.resolve(InstanceStore),
            vault=c.resolve(CredentialVault),
            package_manager=c.resolve(PackageManager),
            engines=c.resolve(EngineRegistry),
            resolver=c.resolve(PortConflictResolver),
            bus=c.resolve(EventBus),
            databases_dir=storage.databases_dir,
            attempts=InstallAttemptCounter(install.max_attempts),
            max_name_length=install.max_name_length,
            persist_on_init_failure=install.persist_on_init_failure,
            metrics=metrics,
        ),
    )
    factory(
        ProcessSupervisor,
        lambda c: ProcessSupervisor(
            store=c.resolve(InstanceStore),
            engines=c.resolve(EngineRegistry),
            vault=c.resolve(CredentialVault),
            bus=c.resolve(EventBus),
            start_timeout=process.start_timeout_seconds,
            stop_timeout=process.stop_timeout_seconds,
            kill_grace=process.kill_grace_seconds,
            startup_grace=process.startup_grace_seconds,
            dedup=DebouncedEventCache(window=process.event_dedup_window_seconds),
            metrics=metrics,
        ),
    )

    # Application
    factory(
        DatabaseOrchestrator,
        lambda c: DatabaseOrchestrator(
            store=c.resolve(InstanceStore),
            banned_ports=c.resolve(BannedPortStore),
            resolver=c.resolve(PortConflictResolver),
            coordinator=c.resolve(InstallationCoordinator),
            supervisor=c.resolve(ProcessSupervisor),
            bus=c.resolve(EventBus),
            advisory=c.resolve(AdvisoryPortChecker),
            permission_gate=c.resolve(PermissionGate),
            inspector=c.resolve(ProcessInspector),
            permission_cache=ProbeCache(ttl=ports.probe_cache_ttl_seconds),
            permission_timeout=ports.probe_timeout_seconds,
            shutdown_budget=process.shutdown_budget_seconds,
            orphan_kill_grace=process.orphan_kill_grace_seconds,
            metrics=metrics,
        ),
    )
    return container


def build_orchestrator(
    config: Config,
    metrics: MetricsRegistry | None = None,
    container: Container | None = None,
) -> DatabaseOrchestrator:
    """Wire a DatabaseOrchestrator from configuration."""
    container = configure_container(container or Container(), config, metrics)
    return container.resolve(DatabaseOrchestrator)


# Global container instance
_container: Container | None = None


def get_container() -> Container:
    """Get the global container instance."""
    global _container
    if _container is None:
        _container = Container()
    return _container


def reset_container() -> None:
    """Reset the global container (useful for testing)."""
    global _container
    if _container is not None:
        _container.clear()
    _container = None
