"""Filesystem implementation of the PermissionGate port.

Permissions map to directories the orchestrator must be able to write.
auto_launch needs the per-user autostart directory (LaunchAgents on
macOS, ~/.config/autostart elsewhere).
"""

from __future__ import annotations

import asyncio
import os
import sys
from pathlib import Path

from db_orchestrator.domain.value_objects import CheckFailed, Ok


def default_permission_paths() -> dict[str, Path]:
    home = Path.home()
    if sys.platform == "darwin":
        autostart = home / "Library" / "LaunchAgents"
    else:
        autostart = home / ".config" / "autostart"
    return {"auto_launch": autostart}


class FilesystemPermissionGate:
    """Grants a permission when its directory is writable."""

    def __init__(self, paths: dict[str, Path] | None = None) -> None:
        self._paths = paths if paths is not None else default_permission_paths()

    def _check_sync(self, permission: str) -> Ok[bool] | CheckFailed:
        path = self._paths.get(permission)
        if path is None:
            return CheckFailed(f"unknown permission {permission}")
        # Nearest existing ancestor decides whether the directory can be created
        probe = path
        while not probe.exists():
            if probe.parent == probe:
                return CheckFailed(f"no existing ancestor for {path}")
            probe = probe.parent
        return Ok(os.access(probe, os.W_OK))

    async def check(self, permission: str) -> Ok[bool] | CheckFailed:
        return await asyncio.to_thread(self._check_sync, permission)
