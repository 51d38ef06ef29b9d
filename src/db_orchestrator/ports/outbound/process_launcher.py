"""Process Launcher port for spawning engine processes.

Engine processes are independent OS processes. Supervision means sending
signals and observing output and exit, never sharing memory.
"""

from __future__ import annotations

from abc import abstractmethod
from pathlib import Path
from typing import Callable, Protocol

OutputListener = Callable[[str], None]


class ProcessHandle(Protocol):
    """A spawned OS process."""

    @property
    @abstractmethod
    def pid(self) -> int:
        """OS process id."""
        ...

    @property
    @abstractmethod
    def returncode(self) -> int | None:
        """Exit code, or None while the process is alive."""
        ...

    @abstractmethod
    def add_output_listener(self, listener: OutputListener) -> None:
        """Register a callback receiving each combined stdout/stderr line."""
        ...

    @abstractmethod
    def recent_output(self) -> list[str]:
        """Return the most recent output lines."""
        ...

    @abstractmethod
    async def wait(self) -> int:
        """Wait for the process to exit.

        Returns:
            Exit code.
        """
        ...

    @abstractmethod
    def terminate(self) -> None:
        """Send SIGTERM. No-op if already exited."""
        ...

    @abstractmethod
    def kill(self) -> None:
        """Send SIGKILL. No-op if already exited."""
        ...


class ProcessLauncher(Protocol):
    """Protocol for spawning and running OS processes."""

    @abstractmethod
    async def spawn(
        self,
        command: list[str],
        env: dict[str, str] | None = None,
        cwd: Path | None = None,
    ) -> ProcessHandle:
        """Spawn a long-running process.

        Args:
            command: Executable and arguments.
            env: Extra environment variables merged over the current ones.
            cwd: Working directory.

        Returns:
            Handle to the running process.

        Raises:
            BinaryNotFoundError: If the executable does not exist.
            ProcessError: If the spawn fails for another reason.
        """
        ...

    @abstractmethod
    async def run(
        self,
        command: list[str],
        env: dict[str, str] | None = None,
        cwd: Path | None = None,
        timeout: float | None = None,
    ) -> tuple[int, str]:
        """Run a command to completion.

        Args:
            command: Executable and arguments.
            env: Extra environment variables.
            cwd: Working directory.
            timeout: Seconds before the command is killed.

        Returns:
            Tuple of (exit code, combined output).

        Raises:
            BinaryNotFoundError: If the executable does not exist.
            ProcessError: On timeout.
        """
        ...
