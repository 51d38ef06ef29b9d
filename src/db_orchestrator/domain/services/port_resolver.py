"""Port conflict resolution.

The resolver answers two questions: is a port claimed, and which nearby
port is free. Internal conflicts come from the instance store and are
always read synchronously. External conflicts come from an OS probe and
may be served from a short-TTL cache, except where a caller is about to
make a blocking decision such as starting an instance.

The scan is bounded: starting at the requested port it walks forward one
port at a time for at most search_window ports, never past 65535. If
nothing is free the original port is returned unchanged.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from db_orchestrator.domain.entities import DatabaseInstance
from db_orchestrator.domain.errors import ValidationError
from db_orchestrator.domain.services.probe_cache import ProbeCache
from db_orchestrator.domain.value_objects import CheckFailed
from db_orchestrator.ports.outbound import BannedPortStore, InstanceStore, PortProbe

if TYPE_CHECKING:
    from db_orchestrator.infrastructure.metrics import MetricsRegistry

logger = logging.getLogger(__name__)

MIN_PORT = 1
MAX_PORT = 65535
PRIVILEGED_PORT_LIMIT = 1024


@dataclass
class PortConflictReport:
    """Result of checking one port."""

    port: int
    has_conflict: bool
    conflicting_instance: DatabaseInstance | None = None
    external: bool = False
    suggested_port: int | None = None

    @property
    def conflicting_name(self) -> str | None:
        if self.conflicting_instance is not None:
            return self.conflicting_instance.name
        if self.external:
            return "an external process"
        return None


class PortConflictResolver:
    """Finds conflict-free ports for instances."""

    def __init__(
        self,
        store: InstanceStore,
        probe: PortProbe,
        banned_ports: BannedPortStore,
        search_window: int = 100,
        allow_privileged: bool = False,
        probe_timeout: float = 1.0,
        cache: ProbeCache[int, bool] | None = None,
        metrics: MetricsRegistry | None = None,
    ) -> None:
        """Initialize the resolver.

        Args:
            store: Source of internal port claims.
            probe: OS probe for external claims.
            banned_ports: User-excluded ports.
            search_window: Number of ports scanned by resolve().
            allow_privileged: Whether ports below 1024 may be allocated.
            probe_timeout: Seconds before a probe counts as failed.
            cache: Probe cache, a 5 second TTL cache if None.
            metrics: Optional metrics registry.
        """
        self._store = store
        self._probe = probe
        self._banned_ports = banned_ports
        self._search_window = search_window
        self._allow_privileged = allow_privileged
        self._probe_timeout = probe_timeout
        self._cache: ProbeCache[int, bool] = cache if cache is not None else ProbeCache(ttl=5.0)
        self._metrics = metrics

    @property
    def search_window(self) -> int:
        return self._search_window

    def is_banned(self, port: int) -> bool:
        return port in set(self._banned_ports.load())

    def is_privileged(self, port: int) -> bool:
        return port < PRIVILEGED_PORT_LIMIT and not self._allow_privileged

    def validate_port(self, port: int) -> None:
        """Reject ports that may never be allocated.

        Args:
            port: Requested port.

        Raises:
            ValidationError: If the port is out of range, privileged or banned.
        """
        if not MIN_PORT <= port <= MAX_PORT:
            raise ValidationError(f"Port {port} is out of range ({MIN_PORT}-{MAX_PORT})")
        if self.is_privileged(port):
            raise ValidationError(
                f"Port {port} is privileged (below {PRIVILEGED_PORT_LIMIT}) and requires elevated permissions"
            )
        if self.is_banned(port):
            raise ValidationError(f"Port {port} is banned")

    def find_internal_conflict(
        self, port: int, exclude_id: str | None = None
    ) -> DatabaseInstance | None:
        """Find a tracked instance holding a port.

        Reads the store directly and never consults the cache. Starting and
        stopping instances count as holding their port.

        Args:
            port: Port to check.
            exclude_id: Instance to ignore.

        Returns:
            The conflicting instance, or None.
        """
        for instance in self._store.list_instances():
            if instance.id == exclude_id:
                continue
            if instance.port == port and instance.is_active():
                return instance
        return None

    async def is_externally_bound(self, port: int, use_cache: bool = True) -> bool:
        """Check whether an untracked process holds a port.

        A failed probe keeps the last known answer; with no prior answer
        the port is assumed free.

        Args:
            port: Port to probe.
            use_cache: Serve a fresh cached answer if one exists.
        """
        if use_cache:
            cached = self._cache.get_fresh(port)
            if cached is not None:
                return cached

        try:
            result = await asyncio.wait_for(self._probe.probe(port), timeout=self._probe_timeout)
        except asyncio.TimeoutError:
            result = CheckFailed(f"probe of port {port} timed out")

        if isinstance(result, CheckFailed):
            logger.debug("Port probe failed for %d: %s", port, result.reason)
        return self._cache.record(port, result, default=False)

    async def is_port_free(
        self, port: int, exclude_id: str | None = None, use_cache: bool = True
    ) -> bool:
        """Check whether a port may be allocated right now."""
        if not MIN_PORT <= port <= MAX_PORT:
            return False
        if self.is_privileged(port) or self.is_banned(port):
            return False
        if self.find_internal_conflict(port, exclude_id) is not None:
            return False
        return not await self.is_externally_bound(port, use_cache=use_cache)

    async def resolve(self, port: int, exclude_id: str | None = None) -> int:
        """Find the first free port at or above the requested one.

        Never raises.

        Args:
            port: Requested port.
            exclude_id: Instance whose own claim is ignored.

        Returns:
            The first free port within the search window, or the requested
            port if none is free.
        """
        if not MIN_PORT <= port <= MAX_PORT:
            return port

        upper = min(port + self._search_window - 1, MAX_PORT)
        banned = set(self._banned_ports.load())
        for candidate in range(port, upper + 1):
            if candidate in banned or self.is_privileged(candidate):
                continue
            if self.find_internal_conflict(candidate, exclude_id) is not None:
                continue
            if await self.is_externally_bound(candidate):
                continue
            return candidate

        logger.warning("No free port found in %d-%d, keeping %d", port, upper, port)
        return port

    async def check_conflict(
        self,
        port: int,
        exclude_id: str | None = None,
        use_cache: bool = True,
    ) -> PortConflictReport:
        """Report whether a port is claimed and suggest an alternative.

        Args:
            port: Port to check.
            exclude_id: Instance to ignore, typically the one being edited.
            use_cache: Allow cached external probe results.

        Returns:
            Conflict report with a suggested port when one exists.
        """
        internal = self.find_internal_conflict(port, exclude_id)
        external = False
        if internal is None:
            external = await self.is_externally_bound(port, use_cache=use_cache)
            if not external:
                return PortConflictReport(port=port, has_conflict=False)

        if self._metrics:
            kind = "internal" if internal is not None else "external"
            self._metrics.port_conflicts_total.labels(kind=kind).inc()

        suggested = await self.resolve(port, exclude_id)
        return PortConflictReport(
            port=port,
            has_conflict=True,
            conflicting_instance=internal,
            external=external,
            suggested_port=suggested if suggested != port else None,
        )

    def invalidate(self, port: int | None = None) -> None:
        """Drop cached probe results."""
        self._cache.invalidate(port)


class AdvisoryPortChecker:
    """Debounced conflict checks for live port editing.

    Each key (typically the instance being edited) keeps a generation
    counter. A check waits for the debounce delay and only runs if no
    newer check for the same key arrived meanwhile.
    """

    def __init__(self, resolver: PortConflictResolver, delay: float = 0.5) -> None:
        self._resolver = resolver
        self._delay = delay
        self._generations: dict[str, int] = {}

    async def check(
        self, key: str, port: int, exclude_id: str | None = None
    ) -> PortConflictReport | None:
        """Check a port after the debounce delay.

        Args:
            key: Debounce key.
            port: Port being typed.
            exclude_id: Instance to ignore.

        Returns:
            The report, or None if a newer check superseded this one.
        """
        generation = self._generations.get(key, 0) + 1
        self._generations[key] = generation
        await asyncio.sleep(self._delay)
        if self._generations.get(key) != generation:
            return None
        try:
            return await self._resolver.check_conflict(port, exclude_id)
        finally:
            if self._generations.get(key) == generation:
                del self._generations[key]
