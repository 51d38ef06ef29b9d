"""Debounced event cache.

Near-simultaneous signals for the same outcome (an error handler and an
exit handler both reporting a crash) must produce one event. The cache
remembers when each (instance id, status) pair was last emitted and
rejects repeats inside the window.
"""

from __future__ import annotations

import time
from typing import Callable

from db_orchestrator.domain.entities import InstanceStatus


class DebouncedEventCache:
    """Timestamp-keyed cache with a fixed TTL."""

    def __init__(self, window: float = 0.5, clock: Callable[[], float] = time.monotonic) -> None:
        """Initialize the cache.

        Args:
            window: Seconds during which a repeat is suppressed.
            clock: Monotonic time source.
        """
        self._window = window
        self._clock = clock
        self._emitted: dict[tuple[str, InstanceStatus], float] = {}

    def should_emit(self, instance_id: str, status: InstanceStatus) -> bool:
        """Record an emission attempt.

        Args:
            instance_id: Instance the event is about.
            status: Target status.

        Returns:
            True if the event should be emitted, False if it repeats one
            emitted within the window.
        """
        now = self._clock()
        self._prune(now)
        key = (instance_id, status)
        last = self._emitted.get(key)
        if last is not None and now - last < self._window:
            return False
        self._emitted[key] = now
        return True

    def clear(self, instance_id: str) -> None:
        """Forget all entries for an instance."""
        for key in [k for k in self._emitted if k[0] == instance_id]:
            del self._emitted[key]

    def _prune(self, now: float) -> None:
        expired = [k for k, ts in self._emitted.items() if now - ts >= self._window]
        for key in expired:
            del self._emitted[key]

    def __len__(self) -> int:
        return len(self._emitted)
