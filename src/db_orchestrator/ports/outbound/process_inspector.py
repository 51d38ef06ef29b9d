"""Process Inspector port for processes the orchestrator did not spawn."""

from __future__ import annotations

from abc import abstractmethod
from pathlib import Path
from typing import Protocol


class ProcessInspector(Protocol):
    """Protocol for inspecting and terminating processes by pid.

    Used at startup to clean up engine processes orphaned by a crash.
    """

    @abstractmethod
    def is_alive(self, pid: int) -> bool:
        """Check whether a pid refers to a live process."""
        ...

    @abstractmethod
    def is_engine_process(
        self, pid: int, data_path: Path, not_before: float | None = None
    ) -> bool:
        """Check whether a live pid is an engine serving data_path.

        Pids are reused by the OS, so a stored pid alone does not identify
        an engine left behind by a previous run.

        Args:
            pid: Stored engine pid.
            data_path: Data directory the engine was launched against.
            not_before: Epoch seconds; processes created earlier do not match.

        Returns:
            True only if the process is alive and its command line names
            data_path.
        """
        ...

    @abstractmethod
    def terminate(self, pid: int, grace: float = 0.5) -> bool:
        """Terminate a process, escalating to SIGKILL after grace seconds.

        Args:
            pid: Process to terminate.
            grace: Seconds to wait after SIGTERM.

        Returns:
            True if the process is gone afterwards.
        """
        ...
