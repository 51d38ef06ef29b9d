"""Short-TTL cache for OS probe results.

Rapid UI-driven polling must not saturate the OS with port and
permission probes. Successful observations are cached for a TTL. A
failed probe keeps the last known value and does not refresh the entry,
so the next call probes again.
"""

from __future__ import annotations

import time
from typing import Callable, Generic, Hashable, TypeVar

from db_orchestrator.domain.value_objects import CheckFailed, Ok, fold_probe

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class ProbeCache(Generic[K, V]):
    """Cache of last known probe values keyed by probe target."""

    def __init__(self, ttl: float = 5.0, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl = ttl
        self._clock = clock
        self._entries: dict[K, tuple[V, float]] = {}

    def get_fresh(self, key: K) -> V | None:
        """Return the cached value if it is younger than the TTL."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, observed_at = entry
        if self._clock() - observed_at >= self._ttl:
            return None
        return value

    def last_known(self, key: K, default: V) -> V:
        """Return the last observed value regardless of age."""
        entry = self._entries.get(key)
        return entry[0] if entry is not None else default

    def record(self, key: K, result: Ok[V] | CheckFailed, default: V) -> V:
        """Fold a probe result into the cache.

        Args:
            key: Probe target.
            result: Probe outcome.
            default: Value assumed when nothing was ever observed.

        Returns:
            The value callers should act on.
        """
        value = fold_probe(self.last_known(key, default), result)
        if isinstance(result, Ok):
            self._entries[key] = (value, self._clock())
        return value

    def invalidate(self, key: K | None = None) -> None:
        """Drop one entry, or all entries when key is None."""
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)
