"""JSON file implementation of the InstanceStore port.

All instance records live in one JSON document holding an ordered list.
The list is loaded once and kept in memory; every mutation rewrites the
whole document atomically (temp file + rename) before returning.

File Format:
    [
      {"id": "postgresql-1a2b3c4d5e6f", "name": "main", "type": "postgresql",
       "version": "16", "port": 5432, "status": "stopped", ...},
      ...
    ]

Recovery:
    A missing file is an empty store. An unparseable file is logged and
    replaced by an empty store; its records are lost. Individual records
    that fail to parse are skipped.

Thread Safety:
    Mutations are serialized with a lock. The orchestrator is the single
    logical writer.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any

from db_orchestrator.domain.entities import DatabaseInstance
from db_orchestrator.domain.errors import StorageError

logger = logging.getLogger(__name__)


class JsonInstanceStore:
    """File-backed implementation of the InstanceStore protocol.

    Attributes:
        path: Location of the JSON document.
    """

    def __init__(self, path: str | Path) -> None:
        """Initialize the store and load existing records.

        Args:
            path: JSON document path. Parent directories are created on write.
        """
        self._path = Path(path)
        self._lock = threading.Lock()
        self._instances: list[DatabaseInstance] = self._load()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> list[DatabaseInstance]:
        if not self._path.exists():
            return []

        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.error("Instance store %s is unreadable, starting empty: %s", self._path, e)
            return []

        if not isinstance(raw, list):
            logger.error("Instance store %s does not hold a list, starting empty", self._path)
            return []

        instances: list[DatabaseInstance] = []
        for record in raw:
            try:
                instances.append(DatabaseInstance.from_record(record))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping malformed instance record %r: %s", record, e)
        return instances

    def _write(self, instances: list[DatabaseInstance]) -> None:
        payload: list[dict[str, Any]] = [i.to_record() for i in instances]
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self._path.name}.", dir=str(self._path.parent)
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(payload, f, indent=2)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_name, self._path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise StorageError(f"Failed to write {self._path}: {e}") from e

    def list_instances(self) -> list[DatabaseInstance]:
        with self._lock:
            return [copy.deepcopy(i) for i in self._instances]

    def get(self, instance_id: str) -> DatabaseInstance | None:
        with self._lock:
            for instance in self._instances:
                if instance.id == instance_id:
                    return copy.deepcopy(instance)
        return None

    def save(self, instance: DatabaseInstance) -> None:
        with self._lock:
            updated = list(self._instances)
            for index, existing in enumerate(updated):
                if existing.id == instance.id:
                    updated[index] = copy.deepcopy(instance)
                    break
            else:
                updated.append(copy.deepcopy(instance))
            self._write(updated)
            self._instances = updated

    def remove(self, instance_id: str) -> bool:
        with self._lock:
            updated = [i for i in self._instances if i.id != instance_id]
            if len(updated) == len(self._instances):
                return False
            self._write(updated)
            self._instances = updated
            return True

    def __len__(self) -> int:
        return len(self._instances)
