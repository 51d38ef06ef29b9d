"""Process supervision for engine instances.

The supervisor owns the status state machine:

    stopped --start--> starting --(ready | timeout)--> running | stopped
    running --stop--> stopping --(exit)--> stopped
    running --(unexpected exit)--> stopped | error

Engine-specific work (command lines, readiness markers, graceful
shutdown) is delegated to engine adapters. The supervisor adds the
timeouts, the single-spawn guarantee for concurrent starts, queued stops
for starting instances, and the guards that keep the persisted status
from flapping when reports arrive out of order.

Status reports are weighted by source. Only the authoritative exit of
the process may move an instance from running to stopped; a probe saying
a starting instance is stopped is ignored during the startup grace
period because early probes race the engine's real readiness.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable

from db_orchestrator.domain.entities import DatabaseInstance, InstanceStatus, StatusChanged
from db_orchestrator.domain.errors import (
    BinaryNotFoundError,
    CryptoError,
    OrchestratorError,
    ProcessError,
    StorageError,
    ValidationError,
)
from db_orchestrator.domain.services.event_bus import EventBus
from db_orchestrator.domain.services.event_dedup import DebouncedEventCache
from db_orchestrator.ports.outbound import (
    CredentialVault,
    EngineRegistry,
    InstanceStore,
    ProcessHandle,
)

if TYPE_CHECKING:
    from db_orchestrator.infrastructure.metrics import MetricsRegistry

logger = logging.getLogger(__name__)


class StatusSource(Enum):
    """Where a status report came from."""
    PROCESS_EXIT = "process_exit"  # Authoritative
    PROBE = "probe"
    COMMAND = "command"


@dataclass
class SupervisedProcess:
    """A live engine process owned by the supervisor."""
    instance_id: str
    handle: ProcessHandle
    started_at: float
    ready: bool = False
    stopping: bool = False
    exit_task: asyncio.Task[None] | None = field(default=None, repr=False)


class ProcessSupervisor:
    """Starts, stops and watches engine processes."""

    def __init__(
        self,
        store: InstanceStore,
        engines: EngineRegistry,
        vault: CredentialVault,
        bus: EventBus,
        start_timeout: float = 10.0,
        stop_timeout: float = 10.0,
        kill_grace: float = 2.0,
        startup_grace: float = 30.0,
        dedup: DebouncedEventCache | None = None,
        clock: Callable[[], float] = time.monotonic,
        metrics: MetricsRegistry | None = None,
    ) -> None:
        """Initialize the supervisor.

        Args:
            store: Instance store, updated on every transition.
            engines: Engine adapter lookup.
            vault: Decrypts instance passwords for engines that need them.
            bus: Receives status-changed events.
            start_timeout: Default seconds to wait for readiness.
            stop_timeout: Seconds allowed for a graceful stop.
            kill_grace: Seconds between SIGTERM and SIGKILL.
            startup_grace: Seconds during which stopped probes are ignored
                for a starting instance.
            dedup: Duplicate event suppression, 500 ms window if None.
            clock: Monotonic time source.
            metrics: Optional metrics registry.
        """
        self._store = store
        self._engines = engines
        self._vault = vault
        self._bus = bus
        self._start_timeout = start_timeout
        self._stop_timeout = stop_timeout
        self._kill_grace = kill_grace
        self._startup_grace = startup_grace
        self._dedup = dedup if dedup is not None else DebouncedEventCache(window=0.5, clock=clock)
        self._clock = clock
        self._metrics = metrics

        self._processes: dict[str, SupervisedProcess] = {}
        self._starts: dict[str, asyncio.Task[bool]] = {}
        self._stop_locks: dict[str, asyncio.Lock] = {}
        self._start_requested_at: dict[str, float] = {}
        self._last_errors: dict[str, str] = {}
        self._background: set[asyncio.Task[Any]] = set()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def is_supervised(self, instance_id: str) -> bool:
        record = self._processes.get(instance_id)
        return record is not None and record.handle.returncode is None

    def is_starting(self, instance_id: str) -> bool:
        task = self._starts.get(instance_id)
        return task is not None and not task.done()

    def supervised_ids(self) -> list[str]:
        return [i for i in self._processes if self.is_supervised(i)]

    def last_error(self, instance_id: str) -> str | None:
        return self._last_errors.get(instance_id)

    def recent_output(self, instance_id: str) -> list[str]:
        record = self._processes.get(instance_id)
        return record.handle.recent_output() if record else []

    # ------------------------------------------------------------------
    # Start
    # ------------------------------------------------------------------

    async def start(self, instance: DatabaseInstance) -> bool:
        """Start an instance and wait for readiness.

        Concurrent calls for the same id share one start attempt. Calling
        start on an instance that is already running returns True.

        Args:
            instance: Instance to start.

        Returns:
            True if the instance is running, False on timeout or early exit.

        Raises:
            BinaryNotFoundError: If the engine binary is missing.
        """
        existing = self._starts.get(instance.id)
        if existing is not None:
            logger.debug("Joining in-flight start of %s", instance.id)
            return await asyncio.shield(existing)

        record = self._processes.get(instance.id)
        if record is not None and record.handle.returncode is None and not record.stopping:
            return True

        self._engines.get_adapter(instance.type)

        # Claim the starting status before yielding so port checks that run
        # concurrently see this instance as holding its port.
        self._last_errors.pop(instance.id, None)
        self._dedup.clear(instance.id)
        self._start_requested_at[instance.id] = self._clock()
        self._transition(instance.id, InstanceStatus.STARTING)

        task = asyncio.get_running_loop().create_task(self._run_start(instance))
        self._starts[instance.id] = task
        task.add_done_callback(lambda t, key=instance.id: self._forget_start(key, t))
        return await asyncio.shield(task)

    def _forget_start(self, instance_id: str, task: asyncio.Task[bool]) -> None:
        if self._starts.get(instance_id) is task:
            del self._starts[instance_id]
        if not task.cancelled() and task.exception() is not None:
            # Retrieved here so joiners that never awaited do not leak warnings
            logger.debug("Start of %s failed: %s", instance_id, task.exception())

    async def _run_start(self, instance: DatabaseInstance) -> bool:
        adapter = self._engines.get_adapter(instance.type)
        password = self._decrypt(instance)
        started = self._clock()

        try:
            handle = await asyncio.wait_for(
                adapter.start(instance, password), timeout=self._start_timeout
            )
        except BinaryNotFoundError as e:
            self._fail_start(instance.id, InstanceStatus.ERROR, str(e))
            raise
        except asyncio.TimeoutError:
            self._fail_start(instance.id, InstanceStatus.STOPPED, "Timed out spawning process")
            return False
        except ProcessError as e:
            self._fail_start(instance.id, InstanceStatus.STOPPED, str(e))
            return False

        record = SupervisedProcess(instance_id=instance.id, handle=handle, started_at=started)
        self._processes[instance.id] = record
        record.exit_task = asyncio.get_running_loop().create_task(self._watch_exit(record))
        handle.add_output_listener(
            lambda line, key=instance.id: logger.debug("[%s] %s", key, line)
        )
        self._transition(instance.id, InstanceStatus.STARTING, pid=handle.pid, emit=False)
        logger.info("Spawned %s (pid %d)", instance.id, handle.pid)

        timeout = adapter.start_timeout or self._start_timeout
        reason: str | None = None
        try:
            ready = await asyncio.wait_for(adapter.wait_ready(instance, handle), timeout=timeout)
        except asyncio.TimeoutError:
            ready = False
            reason = f"Did not become ready within {timeout:g}s"

        if not ready:
            if reason is None:
                tail = " | ".join(handle.recent_output()[-3:])
                reason = f"Process exited with code {handle.returncode}" + (f": {tail}" if tail else "")
            await self._abort(record)
            self._fail_start(instance.id, InstanceStatus.STOPPED, reason)
            return False

        record.ready = True
        self._transition(instance.id, InstanceStatus.RUNNING, pid=handle.pid)
        if self._metrics:
            self._metrics.start_latency_seconds.observe(self._clock() - started)
        logger.info("Instance %s is ready on port %d", instance.id, instance.port)

        self._spawn_background(self._configure(instance, password))
        return True

    async def _abort(self, record: SupervisedProcess) -> None:
        record.stopping = True
        record.handle.kill()
        try:
            await asyncio.wait_for(record.handle.wait(), timeout=self._kill_grace)
        except asyncio.TimeoutError:
            logger.error("Process %d for %s did not die after SIGKILL", record.handle.pid, record.instance_id)
        self._processes.pop(record.instance_id, None)

    def _fail_start(self, instance_id: str, status: InstanceStatus, reason: str) -> None:
        logger.warning("Start of %s failed: %s", instance_id, reason)
        self._last_errors[instance_id] = reason
        self._start_requested_at.pop(instance_id, None)
        self._transition(instance_id, status, error=reason)

    async def _configure(self, instance: DatabaseInstance, password: str) -> None:
        adapter = self._engines.get_adapter(instance.type)
        try:
            await adapter.configure(instance, password)
        except OrchestratorError as e:
            logger.warning("Post-start configuration of %s failed: %s", instance.id, e)

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    async def update_password(self, instance: DatabaseInstance, password: str) -> None:
        """Rotate the password of a running instance.

        The new password is stored only after the engine accepted it.
        Post-start configuration then runs again with the new password.

        Raises:
            ValidationError: If the instance is not running under supervision.
            UnsupportedEngineError: If the engine has no password to rotate.
            ProcessError: If the engine rejects the change.
        """
        record = self._processes.get(instance.id)
        if record is None or record.handle.returncode is not None or not record.ready:
            raise ValidationError(f"{instance.name} must be running to update its credentials")

        adapter = self._engines.get_adapter(instance.type)
        await adapter.change_password(instance, self._decrypt(instance), password)
        current = self._store.get(instance.id) or instance
        current.encrypted_password = self._vault.encrypt(password)
        self._store.save(current)
        logger.info("Credentials of %s updated", instance.id)
        await self._configure(instance, password)

    # ------------------------------------------------------------------
    # Stop
    # ------------------------------------------------------------------

    async def stop(self, instance: DatabaseInstance) -> bool:
        """Stop an instance.

        A stop against a starting instance waits for the start to finish and
        then stops it.

        Args:
            instance: Instance to stop.

        Returns:
            True if the instance is stopped afterwards.
        """
        pending = self._starts.get(instance.id)
        if pending is not None and not pending.done():
            logger.info("Stop of %s queued until start completes", instance.id)
            await asyncio.wait([pending])

        lock = self._stop_locks.setdefault(instance.id, asyncio.Lock())
        async with lock:
            record = self._processes.get(instance.id)
            if record is None or record.handle.returncode is not None:
                self._processes.pop(instance.id, None)
                current = self._store.get(instance.id)
                if current is not None and current.status != InstanceStatus.STOPPED:
                    self._transition(instance.id, InstanceStatus.STOPPED)
                return True

            record.stopping = True
            self._transition(instance.id, InstanceStatus.STOPPING, pid=record.handle.pid)

            adapter = self._engines.get_adapter(instance.type)
            password = self._decrypt(instance)
            try:
                await asyncio.wait_for(
                    adapter.stop(instance, record.handle, password, self._kill_grace),
                    timeout=self._stop_timeout,
                )
            except (asyncio.TimeoutError, ProcessError) as e:
                logger.warning("Graceful stop of %s failed (%s), killing", instance.id, str(e) or "timeout")
                record.handle.kill()

            try:
                await asyncio.wait_for(record.handle.wait(), timeout=self._kill_grace)
            except asyncio.TimeoutError:
                reason = f"Process {record.handle.pid} did not exit"
                self._last_errors[instance.id] = reason
                self._transition(instance.id, InstanceStatus.ERROR, error=reason)
                return False

            self._processes.pop(instance.id, None)
            self._start_requested_at.pop(instance.id, None)
            self._transition(instance.id, InstanceStatus.STOPPED)
            logger.info("Stopped %s", instance.id)
            return True

    def kill_all(self) -> int:
        """Send SIGKILL to every supervised process.

        Returns:
            Number of processes signalled.
        """
        count = 0
        for record in list(self._processes.values()):
            if record.handle.returncode is None:
                record.stopping = True
                record.handle.kill()
                count += 1
        return count

    # ------------------------------------------------------------------
    # Exit watching and status reports
    # ------------------------------------------------------------------

    async def _watch_exit(self, record: SupervisedProcess) -> None:
        code = await record.handle.wait()
        if self._processes.get(record.instance_id) is record and not record.stopping:
            self._processes.pop(record.instance_id, None)

        if self._metrics:
            instance = self._store.get(record.instance_id)
            engine = instance.type.value if instance else "unknown"
            outcome = "expected" if record.stopping or not record.ready else "crash"
            self._metrics.process_exits_total.labels(engine=engine, outcome=outcome).inc()

        if record.stopping or not record.ready:
            # Stop or failed start paths report the outcome themselves
            return

        status = InstanceStatus.STOPPED if code == 0 else InstanceStatus.ERROR
        message = f"Process exited unexpectedly with code {code}"
        logger.warning("Instance %s: %s", record.instance_id, message)
        self._last_errors[record.instance_id] = message
        self.apply_status_report(
            record.instance_id,
            status,
            StatusSource.PROCESS_EXIT,
            error=message if code != 0 else None,
        )

    def apply_status_report(
        self,
        instance_id: str,
        status: InstanceStatus,
        source: StatusSource,
        pid: int | None = None,
        error: str | None = None,
    ) -> bool:
        """Apply an externally observed status.

        Args:
            instance_id: Instance the report is about.
            status: Observed status.
            source: Origin of the report.
            pid: Observed pid, if any.
            error: Error detail for error reports.

        Returns:
            True if the status changed and an event was emitted.
        """
        instance = self._store.get(instance_id)
        if instance is None or instance.status == status:
            return False

        terminal = status in (InstanceStatus.STOPPED, InstanceStatus.ERROR)
        if instance.status == InstanceStatus.STARTING and terminal and source != StatusSource.PROCESS_EXIT:
            requested = self._start_requested_at.get(instance_id)
            if requested is not None and self._clock() - requested < self._startup_grace:
                logger.debug("Ignoring %s report for starting %s within grace", status.value, instance_id)
                return False

        if (
            instance.status == InstanceStatus.RUNNING
            and status == InstanceStatus.STOPPED
            and source != StatusSource.PROCESS_EXIT
        ):
            logger.debug("Ignoring non-authoritative stopped report for running %s", instance_id)
            return False

        if not self._dedup.should_emit(instance_id, status):
            logger.debug("Suppressed duplicate %s event for %s", status.value, instance_id)
            return False

        self._transition(instance_id, status, pid=pid, error=error)
        return True

    def check_status(self, instance_id: str) -> InstanceStatus | None:
        """Reconcile the persisted status with the process table.

        Returns:
            The status after reconciliation, or None if the instance is unknown.
        """
        instance = self._store.get(instance_id)
        if instance is None:
            return None

        record = self._processes.get(instance_id)
        if record is not None and record.handle.returncode is None:
            observed = InstanceStatus.RUNNING if record.ready else InstanceStatus.STARTING
            if instance.status not in (observed, InstanceStatus.STOPPING):
                self.apply_status_report(instance_id, observed, StatusSource.PROBE, pid=record.handle.pid)
        elif instance.is_active():
            self.apply_status_report(instance_id, InstanceStatus.STOPPED, StatusSource.PROBE)

        current = self._store.get(instance_id)
        return current.status if current else None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _transition(
        self,
        instance_id: str,
        status: InstanceStatus,
        pid: int | None = None,
        error: str | None = None,
        emit: bool = True,
    ) -> None:
        instance = self._store.get(instance_id)
        if instance is not None:
            instance.status = status
            if status in (InstanceStatus.STOPPED, InstanceStatus.ERROR):
                instance.pid = None
            elif pid is not None:
                instance.pid = pid
            try:
                self._store.save(instance)
            except StorageError as e:
                logger.error("Failed to persist status of %s: %s", instance_id, e)
            pid = instance.pid

        if emit:
            self._bus.publish(StatusChanged(id=instance_id, status=status, pid=pid, error=error))
        if self._metrics:
            self._refresh_instance_gauge()

    def _refresh_instance_gauge(self) -> None:
        counts = {status: 0 for status in InstanceStatus}
        for instance in self._store.list_instances():
            counts[instance.status] += 1
        for status, count in counts.items():
            self._metrics.instance_count.labels(status=status.value).set(count)

    def _decrypt(self, instance: DatabaseInstance) -> str:
        if not instance.encrypted_password:
            return ""
        try:
            return self._vault.decrypt(instance.encrypted_password)
        except CryptoError as e:
            logger.warning("Could not decrypt password for %s: %s", instance.id, e)
            return ""

    def _spawn_background(self, coro: Any) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def drain_background(self) -> None:
        """Wait for post-start configuration tasks to finish."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
