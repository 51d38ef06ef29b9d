"""JSON file implementation of the BannedPortStore port."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from db_orchestrator.domain.errors import StorageError

logger = logging.getLogger(__name__)


def normalize_ports(ports: list[int]) -> list[int]:
    """Sort, deduplicate and drop out-of-range ports."""
    return sorted({int(p) for p in ports if 1 <= int(p) <= 65535})


class JsonBannedPortStore:
    """Banned ports stored as a sorted JSON list of integers."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._ports: list[int] | None = None

    def load(self) -> list[int]:
        if self._ports is None:
            self._ports = self._read()
        return list(self._ports)

    def _read(self) -> list[int]:
        if not self._path.exists():
            return []
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
            return normalize_ports(list(raw))
        except (OSError, ValueError, TypeError) as e:
            logger.error("Banned ports file %s is unreadable, ignoring it: %s", self._path, e)
            return []

    def save(self, ports: list[int]) -> list[int]:
        normalized = normalize_ports(ports)
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(json.dumps(normalized), encoding="utf-8")
        except OSError as e:
            raise StorageError(f"Failed to write {self._path}: {e}") from e
        self._ports = normalized
        return list(normalized)
