"""Helpers for running extra uvicorn servers inside the main event loop."""

import asyncio
import contextlib
import logging
import socket

import uvicorn

logger = logging.getLogger(__name__)


class _QuietServer(uvicorn.Server):
    """A uvicorn server that leaves process signals to the main server."""

    def install_signal_handlers(self) -> None:  # uvicorn < 0.29
        pass

    @contextlib.contextmanager
    def capture_signals(self):  # uvicorn >= 0.29
        yield


def bind_socket(host: str, port: int) -> socket.socket:
    """Bind a listening TCP socket, raising OSError when the port is taken."""
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
    except OSError:
        sock.close()
        raise
    sock.set_inheritable(True)
    return sock


class BackgroundServer:
    """Serve an ASGI app on its own port as a task of the running loop."""

    def __init__(self, app, host: str, port: int) -> None:
        self.app = app
        self.host = host
        self.port = port
        self._server: _QuietServer | None = None
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None

    async def start(self) -> None:
        if self._task:
            return
        # uvicorn exits the process on bind errors, so bind here instead
        sock = bind_socket(self.host, self.port)
        config = uvicorn.Config(
            self.app,
            host=self.host,
            port=self.port,
            log_level="warning",
            lifespan="off",
        )
        self._server = _QuietServer(config)
        self._task = asyncio.create_task(self._server.serve(sockets=[sock]))

        while not self._server.started:
            if self._task.done():
                error = None if self._task.cancelled() else self._task.exception()
                self._server = None
                self._task = None
                sock.close()
                raise RuntimeError(
                    f"Server on {self.host}:{self.port} exited during startup"
                ) from error
            await asyncio.sleep(0.05)
        logger.debug(f"Serving on {self.host}:{self.port}")

    async def stop(self) -> None:
        if not self._task or not self._server:
            return
        self._server.should_exit = True
        try:
            await self._task
        finally:
            self._task = None
            self._server = None
