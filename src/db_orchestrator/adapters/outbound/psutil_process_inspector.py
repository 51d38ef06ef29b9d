"""psutil implementation of the ProcessInspector port."""

from __future__ import annotations

import logging
from pathlib import Path

import psutil

logger = logging.getLogger(__name__)


class PsutilProcessInspector:
    """Inspects and terminates processes by pid."""

    def is_alive(self, pid: int) -> bool:
        try:
            process = psutil.Process(pid)
            return process.is_running() and process.status() != psutil.STATUS_ZOMBIE
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            return False

    def is_engine_process(
        self, pid: int, data_path: Path, not_before: float | None = None
    ) -> bool:
        try:
            process = psutil.Process(pid)
            if process.status() == psutil.STATUS_ZOMBIE:
                return False
            if not_before is not None and process.create_time() < not_before:
                logger.debug("pid %d predates its instance, not an engine", pid)
                return False
            command_line = " ".join(process.cmdline())
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            return False
        paths = {str(data_path), str(data_path.expanduser().resolve())}
        return any(path in command_line for path in paths)

    def terminate(self, pid: int, grace: float = 0.5) -> bool:
        try:
            process = psutil.Process(pid)
            process.terminate()
            try:
                process.wait(timeout=grace)
            except psutil.TimeoutExpired:
                logger.warning("Process %d ignored SIGTERM, killing", pid)
                process.kill()
                process.wait(timeout=grace)
        except psutil.NoSuchProcess:
            return True
        except (psutil.AccessDenied, psutil.TimeoutExpired) as e:
            logger.error("Could not terminate process %d: %s", pid, e)
            return False
        return True
