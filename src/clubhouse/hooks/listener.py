"""Embedded uvicorn server receiving hook callbacks on an ephemeral loopback port."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import socket
from collections.abc import Iterator

import uvicorn

from clubhouse.config import ClubhouseConfig
from clubhouse.hooks.routes import EventSink, NonceLookup, create_hook_app

logger = logging.getLogger(__name__)

READY_POLL_INTERVAL = 0.01


class HookListenerError(Exception):
    """Raised when the hook listener cannot be started."""


class _EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves process signal handling to the host."""

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield


class HookListener:
    def __init__(
        self,
        config: ClubhouseConfig,
        nonce_lookup: NonceLookup,
        event_sink: EventSink,
    ) -> None:
        self._config = config
        self._app = create_hook_app(
            nonce_lookup, event_sink, max_body_bytes=config.max_hook_body_bytes
        )
        self._server: _EmbeddedServer | None = None
        self._serve_task: asyncio.Task | None = None
        self._start_task: asyncio.Task | None = None
        self._port: int | None = None

    @property
    def port(self) -> int:
        if self._port is None:
            raise HookListenerError("Hook listener is not running")
        return self._port

    @property
    def url(self) -> str:
        return f"http://{self._config.hook_host}:{self.port}/hook"

    @property
    def running(self) -> bool:
        return self._port is not None

    async def wait_ready(self) -> int:
        """Start the server on first call; every caller awaits the same start."""
        if self._start_task is None:
            self._start_task = asyncio.ensure_future(self._start())
        try:
            return await asyncio.shield(self._start_task)
        except HookListenerError:
            self._start_task = None
            raise

    async def _start(self) -> int:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self._config.hook_host, 0))
        except OSError as e:
            sock.close()
            raise HookListenerError(f"Cannot bind hook listener: {e}") from e
        port = sock.getsockname()[1]

        config = uvicorn.Config(
            self._app,
            log_level="warning",
            access_log=False,
            lifespan="off",
        )
        server = _EmbeddedServer(config)
        serve_task = asyncio.ensure_future(server.serve(sockets=[sock]))

        while not server.started:
            if serve_task.done():
                sock.close()
                error = serve_task.exception() if not serve_task.cancelled() else None
                raise HookListenerError(f"Hook listener exited during startup: {error}")
            await asyncio.sleep(READY_POLL_INTERVAL)

        self._server = server
        self._serve_task = serve_task
        self._port = port
        logger.info(f"Hook listener ready on {self._config.hook_host}:{port}")
        return port

    async def stop(self) -> None:
        if self._start_task is not None and not self._start_task.done():
            with contextlib.suppress(HookListenerError):
                await self._start_task
        server, serve_task = self._server, self._serve_task
        self._server = None
        self._serve_task = None
        self._start_task = None
        self._port = None
        if server is None or serve_task is None:
            return
        server.should_exit = True
        await serve_task
        logger.info("Hook listener stopped")
