"""
Listener for the sidecar.

The requested port is a preference: when another process already holds it,
the sidecar binds an ephemeral port instead and reports the port it actually
got through the status route.
"""

import asyncio
import errno
import socket
import sys
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import uvicorn
from fastapi import FastAPI

from shared.logging import get_logger

logger = get_logger("sidecar.listener")

BACKLOG = 128
STARTUP_POLL_SECONDS = 0.01

# WSAEACCES is what Windows reports for ports reserved by Hyper-V and friends.
ADDRESS_CONFLICT_ERRNOS = frozenset({errno.EADDRINUSE, errno.EACCES, 10048, 10013})


@dataclass(frozen=True)
class ServerBinding:
    host: str
    requested_port: int
    port: int

    @property
    def recovered(self) -> bool:
        return self.requested_port != 0 and self.port != self.requested_port

    def to_dict(self) -> Dict[str, Any]:
        return {"host": self.host, "port": self.port, "requestedPort": self.requested_port}


def _is_address_conflict(error: OSError) -> bool:
    return error.errno in ADDRESS_CONFLICT_ERRNOS or getattr(error, "winerror", None) in ADDRESS_CONFLICT_ERRNOS


def _bind(host: str, port: int) -> socket.socket:
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    try:
        # On Windows SO_REUSEADDR lets a second process take a port in use.
        if sys.platform != "win32":
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
        sock.listen(BACKLOG)
    except OSError:
        sock.close()
        raise
    sock.setblocking(False)
    return sock


def bind_socket(host: str, port: int) -> Tuple[socket.socket, ServerBinding]:
    """Bind ``host:port``, falling back to an OS-assigned port on conflict."""
    try:
        sock = _bind(host, port)
    except OSError as e:
        if port == 0 or not _is_address_conflict(e):
            raise
        logger.warning(
            "Requested port unavailable, binding an ephemeral port",
            host=host,
            requested_port=port,
            error=str(e),
        )
        sock = _bind(host, 0)

    binding = ServerBinding(host=host, requested_port=port, port=sock.getsockname()[1])
    logger.info(
        "Listener bound",
        host=binding.host,
        port=binding.port,
        requested_port=binding.requested_port,
        recovered=binding.recovered,
    )
    return sock, binding


class SidecarServer:
    """Runs a FastAPI app under uvicorn on a socket from :func:`bind_socket`.

    ``on_bound`` is called with the :class:`ServerBinding` before the first
    request can arrive, so the app can report its real port.
    """

    def __init__(self, app: FastAPI, host: str, port: int, on_bound=None, log_level: str = "info"):
        self.app = app
        self.host = host
        self.port = port
        self.on_bound = on_bound
        self.log_level = log_level
        self.binding: Optional[ServerBinding] = None
        self.server: Optional[uvicorn.Server] = None
        self._socket: Optional[socket.socket] = None
        self._task: Optional[asyncio.Task] = None

    async def start(self) -> ServerBinding:
        if self._task is not None:
            raise RuntimeError("server already started")

        self._socket, self.binding = bind_socket(self.host, self.port)
        if self.on_bound:
            self.on_bound(self.binding)

        config = uvicorn.Config(
            self.app,
            log_config=None,
            log_level=self.log_level,
            access_log=False,
            lifespan="on",
        )
        self.server = uvicorn.Server(config)
        self._task = asyncio.create_task(self.server.serve(sockets=[self._socket]))

        while not self.server.started:
            if self._task.done():
                self._task.result()
                raise RuntimeError("server exited during startup")
            await asyncio.sleep(STARTUP_POLL_SECONDS)
        return self.binding

    async def wait(self) -> None:
        if self._task is not None:
            await self._task

    async def close(self) -> None:
        if self.server is not None:
            self.server.should_exit = True
        try:
            await self.wait()
        finally:
            if self._socket is not None:
                self._socket.close()
            self._task = None

    async def serve(self) -> None:
        await self.start()
        try:
            await self.wait()
        finally:
            await self.close()

    def run(self) -> None:
        """Serve until interrupted."""
        asyncio.run(self.serve())
