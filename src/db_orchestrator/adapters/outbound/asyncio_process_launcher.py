"""asyncio implementation of the ProcessLauncher port.

Engine processes are spawned with stderr folded into stdout. A reader
task splits the stream into lines, keeps the most recent ones in a ring
buffer and fans them out to listeners (readiness detection, debug
logging).
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
from collections import deque
from pathlib import Path

from db_orchestrator.domain.errors import BinaryNotFoundError, ProcessError
from db_orchestrator.ports.outbound import OutputListener

logger = logging.getLogger(__name__)

OUTPUT_BUFFER_LINES = 200


def _merged_env(env: dict[str, str] | None) -> dict[str, str]:
    merged = dict(os.environ)
    if env:
        merged.update(env)
    return merged


class AsyncioProcessHandle:
    """Handle to a process spawned with asyncio.create_subprocess_exec."""

    def __init__(self, process: asyncio.subprocess.Process, command: list[str]) -> None:
        self._process = process
        self._command = command
        self._output: deque[str] = deque(maxlen=OUTPUT_BUFFER_LINES)
        self._listeners: list[OutputListener] = []
        self._reader = asyncio.get_running_loop().create_task(self._read_output())

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> int | None:
        return self._process.returncode

    @property
    def command(self) -> list[str]:
        return list(self._command)

    def add_output_listener(self, listener: OutputListener) -> None:
        self._listeners.append(listener)

    def recent_output(self) -> list[str]:
        return list(self._output)

    async def _read_output(self) -> None:
        stream = self._process.stdout
        if stream is None:
            return
        while True:
            raw = await stream.readline()
            if not raw:
                break
            line = raw.decode("utf-8", errors="replace").rstrip()
            if not line:
                continue
            self._output.append(line)
            for listener in list(self._listeners):
                try:
                    listener(line)
                except Exception:
                    logger.exception("Output listener failed for pid %d", self.pid)

    async def wait(self) -> int:
        return await self._process.wait()

    def terminate(self) -> None:
        with contextlib.suppress(ProcessLookupError):
            self._process.terminate()

    def kill(self) -> None:
        with contextlib.suppress(ProcessLookupError):
            self._process.kill()


class AsyncioProcessLauncher:
    """Spawns engine processes on the running event loop."""

    async def spawn(
        self,
        command: list[str],
        env: dict[str, str] | None = None,
        cwd: Path | None = None,
    ) -> AsyncioProcessHandle:
        logger.info("Spawning %s", " ".join(command))
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                env=_merged_env(env),
                cwd=str(cwd) if cwd else None,
                start_new_session=True,
            )
        except FileNotFoundError as e:
            raise BinaryNotFoundError(command[0]) from e
        except OSError as e:
            raise ProcessError(f"Failed to spawn {command[0]}: {e}") from e
        return AsyncioProcessHandle(process, command)

    async def run(
        self,
        command: list[str],
        env: dict[str, str] | None = None,
        cwd: Path | None = None,
        timeout: float | None = None,
    ) -> tuple[int, str]:
        logger.debug("Running %s", " ".join(command))
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                env=_merged_env(env),
                cwd=str(cwd) if cwd else None,
            )
        except FileNotFoundError as e:
            raise BinaryNotFoundError(command[0]) from e
        except OSError as e:
            raise ProcessError(f"Failed to run {command[0]}: {e}") from e

        try:
            stdout, _ = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError as e:
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            await process.wait()
            raise ProcessError(f"{command[0]} timed out after {timeout}s") from e

        output = stdout.decode("utf-8", errors="replace") if stdout else ""
        return process.returncode if process.returncode is not None else -1, output
