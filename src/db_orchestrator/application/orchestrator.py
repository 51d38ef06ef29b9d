"""Database Orchestrator - command surface for database instances.

This module provides the DatabaseOrchestrator class that composes the
installation coordinator, port resolver and process supervisor behind
one command API. Commands are serialized per instance id and return
result objects instead of raising for expected failures.

Usage:
    from db_orchestrator.infrastructure.container import build_orchestrator

    orchestrator = build_orchestrator(config)
    await orchestrator.reconcile()

    result = await orchestrator.install(
        InstallRequest(type=EngineType.POSTGRESQL, name="app", version="16", port=5432)
    )
    await orchestrator.start(result.instance.id)
    await orchestrator.stop(result.instance.id)

    await orchestrator.shutdown()
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import time
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Awaitable, Callable, TypeVar

from db_orchestrator.domain.entities import DatabaseInstance, InstallRequest, InstanceStatus
from db_orchestrator.domain.errors import (
    BinaryNotFoundError,
    ConflictError,
    DuplicateError,
    InstanceNotFoundError,
    OrchestratorError,
    PermissionDeniedError,
    StorageError,
    ValidationError,
)
from db_orchestrator.domain.services import (
    AdvisoryPortChecker,
    EventBus,
    InstallationCoordinator,
    PortConflictReport,
    PortConflictResolver,
    ProbeCache,
    ProcessSupervisor,
)
from db_orchestrator.domain.services.port_resolver import MAX_PORT
from db_orchestrator.domain.value_objects import CheckFailed
from db_orchestrator.infrastructure.logging import operation_context
from db_orchestrator.infrastructure.tracing import mark_outcome, trace_span
from db_orchestrator.ports.inbound import (
    AutoStartSummary,
    CommandResult,
    InstallResult,
    PortConflictResult,
    StartResult,
    UpdatePortResult,
)
from db_orchestrator.ports.outbound import (
    BannedPortStore,
    InstanceStore,
    PermissionGate,
    ProcessInspector,
)

if TYPE_CHECKING:
    from db_orchestrator.infrastructure.metrics import MetricsRegistry

logger = logging.getLogger(__name__)

AUTO_LAUNCH_PERMISSION = "auto_launch"

R = TypeVar("R", bound=CommandResult)


class DatabaseOrchestrator:
    """Lifecycle commands for local database instances.

    The orchestrator is the single logical writer of the instance store.
    Mutating commands for one instance id run one at a time; commands for
    different ids run concurrently. A start that arrives while another
    start or stop of the same id is in flight waits for it, so a second
    start observes the running instance instead of spawning again.

    Thread Safety:
        Not thread-safe. All commands must run on one event loop.
    """

    def __init__(
        self,
        store: InstanceStore,
        banned_ports: BannedPortStore,
        resolver: PortConflictResolver,
        coordinator: InstallationCoordinator,
        supervisor: ProcessSupervisor,
        bus: EventBus,
        advisory: AdvisoryPortChecker | None = None,
        permission_gate: PermissionGate | None = None,
        inspector: ProcessInspector | None = None,
        permission_cache: ProbeCache[str, bool] | None = None,
        permission_timeout: float = 1.0,
        shutdown_budget: float = 15.0,
        orphan_kill_grace: float = 0.5,
        metrics: MetricsRegistry | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            store: Persisted instance records.
            banned_ports: User-excluded ports.
            resolver: Port conflict resolver.
            coordinator: Installs and initializes new instances.
            supervisor: Owns engine processes and the status state machine.
            bus: Event bus observers subscribe to.
            advisory: Debounced checker for live port editing.
            permission_gate: OS permission checks, all granted if None.
            inspector: Finds and kills orphaned engine processes.
            permission_cache: TTL cache for permission probes.
            permission_timeout: Seconds before a permission probe fails.
            shutdown_budget: Seconds allowed for stopping everything on exit.
            orphan_kill_grace: Seconds between SIGTERM and SIGKILL for orphans.
            metrics: Optional metrics registry.
        """
        self._store = store
        self._banned_ports = banned_ports
        self._resolver = resolver
        self._coordinator = coordinator
        self._supervisor = supervisor
        self._bus = bus
        self._advisory = advisory if advisory is not None else AdvisoryPortChecker(resolver)
        self._permission_gate = permission_gate
        self._inspector = inspector
        self._permission_cache: ProbeCache[str, bool] = (
            permission_cache if permission_cache is not None else ProbeCache(ttl=5.0)
        )
        self._permission_timeout = permission_timeout
        self._shutdown_budget = shutdown_budget
        self._orphan_kill_grace = orphan_kill_grace
        self._metrics = metrics

        self._locks: dict[str, asyncio.Lock] = {}
        self._install_lock = asyncio.Lock()

    @property
    def events(self) -> EventBus:
        """Event bus carrying status-changed and install-progress events."""
        return self._bus

    @property
    def supervisor(self) -> ProcessSupervisor:
        return self._supervisor

    # =========================================================================
    # Queries
    # =========================================================================

    def get_instances(self) -> list[DatabaseInstance]:
        """Return all instances in persisted order."""
        return self._store.list_instances()

    def get_instance(self, instance_id: str) -> DatabaseInstance:
        """Return one instance.

        Raises:
            InstanceNotFoundError: If the id is unknown.
        """
        instance = self._store.get(instance_id)
        if instance is None:
            raise InstanceNotFoundError(instance_id)
        return instance

    async def check_port_conflict(
        self, port: int, exclude_id: str | None = None
    ) -> PortConflictResult:
        """Check whether a port is claimed by an instance or another process."""
        with trace_span("orchestrator.check_port_conflict", {"port": port}):
            report = await self._resolver.check_conflict(port, exclude_id)
        return _conflict_result(report)

    async def advise_port(
        self, key: str, port: int, exclude_id: str | None = None
    ) -> PortConflictResult | None:
        """Debounced conflict check for a port being edited.

        Returns:
            The result, or None when a newer check for the same key
            superseded this one.
        """
        report = await self._advisory.check(key, port, exclude_id)
        return _conflict_result(report) if report is not None else None

    def check_status(self, instance_id: str) -> InstanceStatus:
        """Reconcile and return the live status of an instance.

        Raises:
            InstanceNotFoundError: If the id is unknown.
        """
        status = self._supervisor.check_status(instance_id)
        if status is None:
            raise InstanceNotFoundError(instance_id)
        return status

    def get_banned_ports(self) -> list[int]:
        return self._banned_ports.load()

    def set_banned_ports(self, ports: list[int]) -> list[int]:
        """Replace the banned ports.

        Returns:
            The normalized list that was stored.

        Raises:
            StorageError: If the list cannot be written.
        """
        stored = self._banned_ports.save(ports)
        self._resolver.invalidate()
        logger.info("Banned ports updated: %s", stored)
        return stored

    # =========================================================================
    # Commands
    # =========================================================================

    async def install(self, request: InstallRequest) -> InstallResult:
        """Install an engine and create a stopped instance."""

        async def action() -> InstallResult:
            async with self._install_lock:
                outcome = await self._coordinator.install(request)
            instance = outcome.instance
            message = f"{instance.name} installed"
            if outcome.warning:
                message = f"{message} with a warning: {outcome.warning}"
            return InstallResult(
                success=True,
                message=message,
                path=str(instance.data_path),
                instance=instance,
            )

        def on_error(error: OrchestratorError) -> InstallResult:
            if isinstance(error, DuplicateError):
                return InstallResult(
                    success=False,
                    message=str(error),
                    conflict=True,
                    duplicate=True,
                    existing_instance=error.existing_instance,
                )
            return InstallResult(success=False, message=str(error))

        return await self._run("install", None, action, on_error)

    async def start(self, instance_id: str) -> StartResult:
        """Start an instance unless another instance or process holds its port."""

        async def action() -> StartResult:
            instance = self.get_instance(instance_id)
            if instance.status == InstanceStatus.RUNNING and self._supervisor.is_supervised(instance_id):
                return StartResult(success=True, message=f"{instance.name} is already running")

            await self._ensure_port_available(instance)
            try:
                started = await self._supervisor.start(instance)
            except BinaryNotFoundError as e:
                return StartResult(
                    success=False,
                    message=f"{instance.name} cannot start, the engine is not installed ({e})",
                )
            if not started:
                reason = self._supervisor.last_error(instance_id) or "unknown error"
                return StartResult(success=False, message=f"{instance.name} failed to start: {reason}")
            return StartResult(success=True, message=f"{instance.name} started on port {instance.port}")

        def on_error(error: OrchestratorError) -> StartResult:
            if isinstance(error, ConflictError):
                holder = error.conflicting_instance
                return StartResult(
                    success=False,
                    message=str(error),
                    conflict=True,
                    conflicting_instance=holder.name if holder is not None else "an external process",
                    suggested_port=error.suggested_port,
                )
            return StartResult(success=False, message=str(error))

        return await self._run("start", instance_id, action, on_error)

    async def stop(self, instance_id: str) -> CommandResult:
        """Stop an instance, waiting for an in-flight start first."""

        async def action() -> CommandResult:
            instance = self.get_instance(instance_id)
            if await self._supervisor.stop(instance):
                return CommandResult(success=True, message=f"{instance.name} stopped")
            reason = self._supervisor.last_error(instance_id) or "process did not exit"
            return CommandResult(success=False, message=f"{instance.name} did not stop: {reason}")

        return await self._run("stop", instance_id, action, _command_failure)

    async def delete(self, instance_id: str) -> CommandResult:
        """Stop an instance, erase its data directory and remove its record."""

        async def action() -> CommandResult:
            instance = self.get_instance(instance_id)
            if not await self._supervisor.stop(instance):
                return CommandResult(
                    success=False,
                    message=f"{instance.name} could not be stopped, nothing was deleted",
                )
            await asyncio.to_thread(_remove_data_dir, instance.data_path)
            self._store.remove(instance_id)
            self._locks.pop(instance_id, None)
            logger.info("Deleted %s and %s", instance_id, instance.data_path)
            return CommandResult(success=True, message=f"{instance.name} deleted")

        return await self._run("delete", instance_id, action, _command_failure)

    async def update_port(self, instance_id: str, new_port: int) -> UpdatePortResult:
        """Change the port of a stopped instance.

        Conflicts are advisory: the port is saved and the conflict reported.
        """

        async def action() -> UpdatePortResult:
            instance = self.get_instance(instance_id)
            self._resolver.validate_port(new_port)
            if instance.is_active():
                raise ValidationError(f"Stop {instance.name} before changing its port")

            report = await self._resolver.check_conflict(new_port, exclude_id=instance_id)
            instance.port = new_port
            self._store.save(instance)
            self._resolver.invalidate(new_port)

            if report.has_conflict:
                return UpdatePortResult(
                    success=True,
                    message=f"Port {new_port} saved, but it is in use by {report.conflicting_name}",
                    conflict=True,
                    conflicting_instance=report.conflicting_name,
                    suggested_port=report.suggested_port,
                )
            return UpdatePortResult(success=True, message=f"{instance.name} now uses port {new_port}")

        def on_error(error: OrchestratorError) -> UpdatePortResult:
            return UpdatePortResult(success=False, message=str(error))

        return await self._run("update_port", instance_id, action, on_error)

    async def rename(self, instance_id: str, name: str) -> CommandResult:
        """Rename an instance. Names follow the install rules."""

        async def action() -> CommandResult:
            instance = self.get_instance(instance_id)
            instance.name = self._coordinator.validate_name(name, exclude_id=instance_id)
            self._store.save(instance)
            return CommandResult(success=True, message=f"Renamed to {instance.name}")

        return await self._run("rename", instance_id, action, _command_failure)

    async def set_auto_start(self, instance_id: str, enabled: bool) -> CommandResult:
        """Toggle auto-start. Enabling requires the auto-launch permission."""

        async def action() -> CommandResult:
            instance = self.get_instance(instance_id)
            if enabled and not await self._has_permission(AUTO_LAUNCH_PERMISSION):
                raise PermissionDeniedError(
                    "Auto-launch permission is not granted; allow it in system settings first"
                )
            instance.auto_start = enabled
            self._store.save(instance)
            state = "enabled" if enabled else "disabled"
            return CommandResult(success=True, message=f"Auto-start {state} for {instance.name}")

        return await self._run("set_auto_start", instance_id, action, _command_failure)

    async def update_credentials(
        self, instance_id: str, password: str, username: str | None = None
    ) -> CommandResult:
        """Rotate the password of a running instance.

        The username is fixed at install time; asking for a different one
        fails without touching the engine.
        """

        async def action() -> CommandResult:
            instance = self.get_instance(instance_id)
            if username is not None and username != instance.username:
                raise ValidationError(
                    f"The username of {instance.name} cannot be changed from '{instance.username}'"
                )
            await self._supervisor.update_password(instance, password)
            return CommandResult(success=True, message=f"Credentials of {instance.name} updated")

        return await self._run("update_credentials", instance_id, action, _command_failure)

    async def delete_all(self) -> CommandResult:
        """Stop and delete every instance along with its data directory.

        Instances that cannot be stopped are kept and named in the result.
        """

        async def delete_one(instance_id: str) -> CommandResult | None:
            try:
                return await self.delete(instance_id)
            except InstanceNotFoundError:
                return None

        instance_ids = [instance.id for instance in self._store.list_instances()]
        results = await asyncio.gather(*(delete_one(i) for i in instance_ids))
        deleted = sum(1 for result in results if result is not None and result.success)
        failures = [result.message for result in results if result is not None and not result.success]

        logger.info("Deleted %d of %d instances", deleted, len(instance_ids))
        if failures:
            return CommandResult(
                success=False,
                message=f"Deleted {deleted} of {len(instance_ids)} instances: " + "; ".join(failures),
            )
        return CommandResult(success=True, message=f"Deleted {deleted} instances")

    # =========================================================================
    # Application lifecycle
    # =========================================================================

    async def reconcile(self) -> int:
        """Reset persisted statuses after an orchestrator restart.

        Every instance not owned by this process is marked stopped. Engine
        processes left behind by a previous run are terminated when their
        command line names the instance data directory. A stored pid now
        held by some other process is only cleared.

        Returns:
            Number of orphaned processes terminated.
        """
        orphans = 0
        for instance in self._store.list_instances():
            if self._supervisor.is_supervised(instance.id):
                continue
            if instance.pid is not None and self._inspector is not None:
                if self._inspector.is_engine_process(
                    instance.pid, instance.data_path, _created_epoch(instance)
                ):
                    logger.warning("Terminating orphaned %s process %d", instance.id, instance.pid)
                    await asyncio.to_thread(
                        self._inspector.terminate, instance.pid, self._orphan_kill_grace
                    )
                    orphans += 1
                elif self._inspector.is_alive(instance.pid):
                    logger.info(
                        "pid %d of %s now belongs to another process, clearing it",
                        instance.pid,
                        instance.id,
                    )
            if instance.status != InstanceStatus.STOPPED or instance.pid is not None:
                self._mark_stopped(instance)
        logger.info("Reconciled %d instances, %d orphans terminated", len(self._store), orphans)
        return orphans

    async def auto_start(self) -> AutoStartSummary:
        """Start every stopped instance flagged for auto-start.

        Instances in one batch that share a port are moved to the next free
        port, in persisted order, before anything starts.
        """
        summary = AutoStartSummary()
        candidates = [i for i in self._store.list_instances() if i.auto_start]
        summary.total = len(candidates)

        to_start: list[DatabaseInstance] = []
        claimed: set[int] = set()
        for instance in candidates:
            if instance.status != InstanceStatus.STOPPED:
                summary.skipped += 1
                continue
            port = await self._batch_port(instance, claimed)
            if port is None:
                summary.failed += 1
                summary.errors[instance.id] = f"No free port near {instance.port}"
                continue
            if port != instance.port:
                summary.port_conflicts += 1
                result = await self.update_port(instance.id, port)
                if not result.success:
                    summary.failed += 1
                    summary.errors[instance.id] = result.message
                    continue
                logger.info("Auto-start moved %s from %d to %d", instance.id, instance.port, port)
            claimed.add(port)
            to_start.append(instance)

        results = await asyncio.gather(*(self.start(i.id) for i in to_start))
        for instance, result in zip(to_start, results):
            if result.success:
                summary.successful += 1
            else:
                summary.failed += 1
                summary.errors[instance.id] = result.message

        logger.info(
            "Auto-start: %d/%d started, %d failed, %d skipped",
            summary.successful, summary.total, summary.failed, summary.skipped,
        )
        return summary

    async def shutdown(self, budget: float | None = None) -> int:
        """Stop every running instance within the shutdown budget.

        Processes still alive when the budget runs out are killed and their
        records marked stopped.

        Returns:
            Number of instances stopped gracefully.
        """
        budget = self._shutdown_budget if budget is None else budget
        ids = self._supervisor.supervised_ids()
        if not ids:
            return 0

        logger.info("Stopping %d instances (budget %.1fs)", len(ids), budget)
        tasks = {asyncio.ensure_future(self.stop(i)): i for i in ids}
        done, pending = await asyncio.wait(tasks, timeout=budget)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            killed = self._supervisor.kill_all()
            logger.warning("Shutdown budget exhausted, killed %d processes", killed)
            for task in pending:
                instance = self._store.get(tasks[task])
                if instance is not None:
                    self._mark_stopped(instance)

        await self._supervisor.drain_background()
        return sum(
            1 for task in done
            if not task.cancelled() and task.exception() is None and task.result().success
        )

    # =========================================================================
    # Internals
    # =========================================================================

    async def _run(
        self,
        operation: str,
        instance_id: str | None,
        action: Callable[[], Awaitable[R]],
        on_error: Callable[[OrchestratorError], R],
    ) -> R:
        started = time.perf_counter()
        attributes = {"operation": operation, "instance.id": instance_id}
        with operation_context(operation, instance_id), trace_span(
            f"orchestrator.{operation}", attributes
        ) as span:
            try:
                if instance_id is None:
                    result = await action()
                else:
                    async with self._lock(instance_id):
                        result = await action()
            except InstanceNotFoundError:
                self._observe(operation, False, started)
                raise
            except OrchestratorError as e:
                logger.warning("%s of %s failed: %s", operation, instance_id or "new instance", e)
                result = on_error(e)
            mark_outcome(span, result.success, result.message)

        self._observe(operation, result.success, started)
        return result

    def _lock(self, instance_id: str) -> asyncio.Lock:
        return self._locks.setdefault(instance_id, asyncio.Lock())

    def _observe(self, operation: str, success: bool, started: float) -> None:
        if self._metrics is None:
            return
        status = "success" if success else "error"
        self._metrics.operations_total.labels(operation=operation, status=status).inc()
        self._metrics.operation_duration_seconds.labels(operation=operation).observe(
            time.perf_counter() - started
        )

    async def _ensure_port_available(self, instance: DatabaseInstance) -> None:
        """Refuse a start whose port is held.

        Internal claims are read from the store, external ones re-probed
        without the cache. The internal check repeats after the probe so a
        concurrent start of another instance is not missed.

        Raises:
            ConflictError: If the port is taken.
        """
        port = instance.port
        holder = self._resolver.find_internal_conflict(port, exclude_id=instance.id)
        external = False
        if holder is None:
            external = await self._resolver.is_externally_bound(port, use_cache=False)
            if not external:
                # No await between this check and the supervisor claiming the port
                holder = self._resolver.find_internal_conflict(port, exclude_id=instance.id)
                if holder is None:
                    return

        if self._metrics:
            kind = "external" if external else "internal"
            self._metrics.port_conflicts_total.labels(kind=kind).inc()
        suggested = await self._resolver.resolve(port, exclude_id=instance.id)
        raise ConflictError(
            f"Port {port} is in use by {holder.name if holder else 'an external process'}",
            conflicting_instance=holder,
            suggested_port=suggested if suggested != port else None,
        )

    async def _batch_port(self, instance: DatabaseInstance, claimed: set[int]) -> int | None:
        port = await self._resolver.resolve(instance.port, exclude_id=instance.id)
        if port not in claimed:
            return port
        upper = min(port + self._resolver.search_window, MAX_PORT)
        for candidate in range(port + 1, upper + 1):
            if candidate in claimed:
                continue
            if await self._resolver.is_port_free(candidate, exclude_id=instance.id):
                return candidate
        return None

    async def _has_permission(self, permission: str) -> bool:
        if self._permission_gate is None:
            return True
        cached = self._permission_cache.get_fresh(permission)
        if cached is not None:
            return cached
        try:
            result = await asyncio.wait_for(
                self._permission_gate.check(permission), timeout=self._permission_timeout
            )
        except asyncio.TimeoutError:
            result = CheckFailed(f"{permission} check timed out")
        if isinstance(result, CheckFailed):
            logger.debug("Permission probe for %s failed: %s", permission, result.reason)
        return self._permission_cache.record(permission, result, default=False)

    def _mark_stopped(self, instance: DatabaseInstance) -> None:
        instance.status = InstanceStatus.STOPPED
        instance.pid = None
        try:
            self._store.save(instance)
        except StorageError as e:
            logger.error("Failed to persist stopped status of %s: %s", instance.id, e)


def _command_failure(error: OrchestratorError) -> CommandResult:
    return CommandResult(success=False, message=str(error))


def _conflict_result(report: PortConflictReport) -> PortConflictResult:
    return PortConflictResult(
        has_conflict=report.has_conflict,
        conflicting_instance=report.conflicting_name,
        suggested_port=report.suggested_port,
    )


def _created_epoch(instance: DatabaseInstance) -> float | None:
    try:
        return datetime.fromisoformat(instance.created_at).timestamp()
    except ValueError:
        return None


def _remove_data_dir(path: Path) -> None:
    if not path.exists():
        return
    try:
        shutil.rmtree(path)
    except OSError as e:
        raise StorageError(f"Cannot remove data directory {path}: {e}") from e
