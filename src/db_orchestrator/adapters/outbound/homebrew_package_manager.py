"""Homebrew implementation of the PackageManager port.

Formulae are installed with `brew install --formula`. Taps are added
on demand for formulae named "<user>/<tap>/<formula>" (MongoDB ships
from mongodb/brew). Auto-update is disabled so installs do not trigger
a full `brew update`.

Installs are long-running and not timeout-bounded; output lines are
streamed to the caller for progress reporting.
"""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path

from db_orchestrator.domain.errors import BinaryNotFoundError, InstallationError, ProcessError
from db_orchestrator.ports.outbound import OutputCallback, ProcessLauncher

logger = logging.getLogger(__name__)

BREW_CANDIDATES = (
    Path("/opt/homebrew/bin/brew"),
    Path("/usr/local/bin/brew"),
    Path("/home/linuxbrew/.linuxbrew/bin/brew"),
)

INSTALL_SCRIPT_URL = "https://raw.githubusercontent.com/Homebrew/install/HEAD/install.sh"

QUERY_TIMEOUT_SECONDS = 60.0


class HomebrewPackageManager:
    """Installs engine binaries with Homebrew."""

    def __init__(self, launcher: ProcessLauncher, brew_path: Path | None = None) -> None:
        """Initialize the package manager.

        Args:
            launcher: Runs brew commands.
            brew_path: Explicit brew executable, searched for if None.
        """
        self._launcher = launcher
        self._brew_path = brew_path

    def locate(self) -> Path | None:
        """Find the brew executable."""
        if self._brew_path is not None:
            return self._brew_path if self._brew_path.exists() else None
        for candidate in BREW_CANDIDATES:
            if candidate.exists():
                return candidate
        found = shutil.which("brew")
        return Path(found) if found else None

    def _env(self, brew: Path) -> dict[str, str]:
        bin_dir = str(brew.parent)
        return {
            "HOMEBREW_NO_AUTO_UPDATE": "1",
            "HOMEBREW_NO_INSTALL_CLEANUP": "1",
            "PATH": f"{bin_dir}{os.pathsep}{os.environ.get('PATH', '')}",
        }

    def _require_brew(self) -> Path:
        brew = self.locate()
        if brew is None:
            raise InstallationError("Homebrew is not installed")
        return brew

    async def is_available(self) -> bool:
        return self.locate() is not None

    async def install_self(self, on_output: OutputCallback | None = None) -> None:
        command = [
            "/bin/bash",
            "-c",
            f'NONINTERACTIVE=1 /bin/bash -c "$(curl -fsSL {INSTALL_SCRIPT_URL})"',
        ]
        await self._stream(command, {"NONINTERACTIVE": "1"}, on_output, "Homebrew installation")

    async def is_installed(self, package: str) -> bool:
        brew = self.locate()
        if brew is None:
            return False
        try:
            code, _ = await self._launcher.run(
                [str(brew), "list", "--formula", package],
                env=self._env(brew),
                timeout=QUERY_TIMEOUT_SECONDS,
            )
        except ProcessError as e:
            logger.warning("brew list %s failed: %s", package, e)
            return False
        return code == 0

    async def install(self, package: str, on_output: OutputCallback | None = None) -> None:
        brew = self._require_brew()
        tap = _tap_for(package)
        if tap is not None:
            await self._stream([str(brew), "tap", tap], self._env(brew), on_output, f"brew tap {tap}")
        await self._stream(
            [str(brew), "install", "--formula", package],
            self._env(brew),
            on_output,
            f"brew install {package}",
        )

    async def prefix(self, package: str) -> Path | None:
        brew = self.locate()
        if brew is None:
            return None
        try:
            code, output = await self._launcher.run(
                [str(brew), "--prefix", package],
                env=self._env(brew),
                timeout=QUERY_TIMEOUT_SECONDS,
            )
        except ProcessError as e:
            logger.warning("brew --prefix %s failed: %s", package, e)
            return None
        path = output.strip().splitlines()[-1] if output.strip() else ""
        return Path(path) if code == 0 and path else None

    async def _stream(
        self,
        command: list[str],
        env: dict[str, str],
        on_output: OutputCallback | None,
        description: str,
    ) -> None:
        try:
            handle = await self._launcher.spawn(command, env=env)
        except (BinaryNotFoundError, ProcessError) as e:
            raise InstallationError(f"{description} could not start: {e}") from e

        if on_output is not None:
            handle.add_output_listener(on_output)
        code = await handle.wait()
        if code != 0:
            tail = "\n".join(handle.recent_output()[-5:])
            raise InstallationError(f"{description} failed with exit code {code}: {tail}")
        logger.info("%s completed", description)


def _tap_for(package: str) -> str | None:
    parts = package.split("/")
    if len(parts) == 3:
        return f"{parts[0]}/{parts[1]}"
    return None
