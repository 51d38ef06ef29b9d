"""Socket and psutil implementation of the PortProbe port.

A port counts as bound when any of these holds:

- a TCP connect to 127.0.0.1:<port> succeeds, which also catches
  listeners on the wildcard address;
- binding 127.0.0.1:<port> fails with EADDRINUSE;
- psutil lists a listening socket on it.

When the system-wide socket table needs privileges, psutil falls back to
the sockets of each process it may inspect. The checks run in a worker
thread so a slow OS cannot stall the event loop.
"""

from __future__ import annotations

import asyncio
import errno
import logging
import socket

import psutil

from db_orchestrator.domain.value_objects import CheckFailed, Ok

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT = 0.2


def _accepts_connections(host: str, port: int) -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.settimeout(CONNECT_TIMEOUT)
        return sock.connect_ex((host, port)) == 0


def _bind_in_use(host: str, port: int) -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        # Lets ports in TIME_WAIT count as free after an instance stops
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((host, port))
        except OSError as e:
            if e.errno == errno.EADDRINUSE:
                return True
            raise
    return False


def _listen_ports(connections: list) -> set[int]:
    return {c.laddr.port for c in connections if c.status == psutil.CONN_LISTEN and c.laddr}


def _listening_ports() -> set[int]:
    try:
        return _listen_ports(psutil.net_connections(kind="tcp"))
    except psutil.AccessDenied:
        logger.debug("System socket table needs privileges, listing per process")

    ports: set[int] = set()
    for process in psutil.process_iter():
        try:
            ports |= _listen_ports(process.net_connections(kind="tcp"))
        except (psutil.AccessDenied, psutil.NoSuchProcess):
            continue
    return ports


class SocketPortProbe:
    """Probes local TCP ports."""

    def __init__(self, host: str = "127.0.0.1", use_psutil: bool = True) -> None:
        self._host = host
        self._use_psutil = use_psutil

    def _probe_sync(self, port: int) -> Ok[bool] | CheckFailed:
        try:
            if _accepts_connections(self._host, port) or _bind_in_use(self._host, port):
                return Ok(True)
        except OSError as e:
            return CheckFailed(f"bind test failed: {e}")

        if self._use_psutil:
            try:
                return Ok(port in _listening_ports())
            except psutil.Error as e:
                logger.debug("psutil cannot list sockets: %s", e)
        return Ok(False)

    async def probe(self, port: int) -> Ok[bool] | CheckFailed:
        return await asyncio.to_thread(self._probe_sync, port)
