"""Package Manager port for fetching engine binaries.

The package manager is the external OS-level tool that installs engine
binaries. Installing it or a package is long-running (minutes) and is the
only external call that is not timeout-bounded; progress is reported
through the output callback instead.
"""

from __future__ import annotations

from abc import abstractmethod
from pathlib import Path
from typing import Callable, Protocol

OutputCallback = Callable[[str], None]


class PackageManager(Protocol):
    """Protocol for an OS package manager such as Homebrew."""

    @abstractmethod
    async def is_available(self) -> bool:
        """Check whether the package manager itself is installed."""
        ...

    @abstractmethod
    async def install_self(self, on_output: OutputCallback | None = None) -> None:
        """Install the package manager.

        Args:
            on_output: Receives installer output lines.

        Raises:
            InstallationError: If installation fails.
        """
        ...

    @abstractmethod
    async def is_installed(self, package: str) -> bool:
        """Check whether a package is present locally.

        Args:
            package: Package name.
        """
        ...

    @abstractmethod
    async def install(self, package: str, on_output: OutputCallback | None = None) -> None:
        """Install a package.

        Args:
            package: Package name.
            on_output: Receives installer output lines.

        Raises:
            InstallationError: If installation fails.
        """
        ...

    @abstractmethod
    async def prefix(self, package: str) -> Path | None:
        """Return the install prefix of a package, or None if unknown."""
        ...
