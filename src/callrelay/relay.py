"""Socket.IO connection to the remote call relay.

The relay serves the ``/baileys`` namespace at ``/<token>/websocket`` over the
websocket transport.  Commands arrive as events whose handler return value is
sent back as the acknowledgement.  Events emitted while the namespace is not
connected are kept and sent, in order, once it is.
"""

from __future__ import annotations

import asyncio
import collections
import contextlib
import logging
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import Any

import socketio
from socketio import exceptions as sio_exceptions

from callrelay.config import RelayOptions
from callrelay.events import EventEmitter

logger = logging.getLogger(__name__)

NAMESPACE = "/baileys"

CommandHandler = Callable[..., Awaitable[Any]]


class ConnectionStatus(StrEnum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


def relay_path(token: str) -> str:
    return f"/{token}/websocket"


class RelayConnection:
    """Relay client with reconnection and ack-returning commands."""

    def __init__(
        self,
        server_url: str,
        token: str,
        *,
        options: RelayOptions | None = None,
        log: logging.Logger | None = None,
    ) -> None:
        self._options = options or RelayOptions()
        self.server_url = server_url.rstrip("/")
        self.socketio_path = relay_path(token)
        self._log = log or logger
        self.status = ConnectionStatus.DISCONNECTED
        self._lifecycle = EventEmitter(log=self._log)
        self._outbox: collections.deque[tuple[str, tuple[Any, ...]]] = (
            collections.deque()
        )
        self._connect_task: asyncio.Task[None] | None = None
        self._tasks: set[asyncio.Task[None]] = set()

        opts = self._options
        self._sio = socketio.AsyncClient(
            reconnection=opts.reconnection,
            reconnection_attempts=opts.reconnection_attempts,
            reconnection_delay=opts.reconnection_delay,
            reconnection_delay_max=opts.reconnection_delay_max,
        )
        self._sio.on("connect", self._on_connect, namespace=NAMESPACE)
        self._sio.on("disconnect", self._on_disconnect, namespace=NAMESPACE)
        self._sio.on("connect_error", self._on_connect_error, namespace=NAMESPACE)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def on(self, event: str, handler: CommandHandler) -> None:
        """Serve relay events named ``event``; the result is the ack payload."""

        async def _command(*args: Any) -> Any:
            try:
                return await handler(*args)
            except Exception as exc:
                self._log.exception("Relay command %r failed", event)
                return {"success": False, "error": str(exc)}

        self._sio.on(event, _command, namespace=NAMESPACE)

    def on_connect(self, handler: Callable[[], Any]) -> None:
        self._lifecycle.on("connect", handler)

    def on_disconnect(self, handler: Callable[[str], Any]) -> None:
        self._lifecycle.on("disconnect", handler)

    def on_error(self, handler: Callable[[Any], Any]) -> None:
        self._lifecycle.on("connect_error", handler)

    def on_status(self, handler: Callable[[ConnectionStatus], Any]) -> None:
        self._lifecycle.on("status", handler)

    # ------------------------------------------------------------------
    # Outgoing
    # ------------------------------------------------------------------

    @property
    def connected(self) -> bool:
        return NAMESPACE in self._sio.namespaces

    def emit(self, event: str, *args: Any) -> None:
        """Send ``event`` now if connected, otherwise once connected."""
        if not self.connected:
            self._outbox.append((event, args))
            return
        self._spawn(self._send(event, args))

    async def _send(self, event: str, args: tuple[Any, ...]) -> None:
        data: Any = args[0] if len(args) == 1 else (args or None)
        try:
            await self._sio.emit(event, data, namespace=NAMESPACE)
        except sio_exceptions.SocketIOError as exc:
            self._log.warning("Relay emit %r failed: %s", event, exc)

    def _flush(self) -> None:
        while self._outbox:
            event, args = self._outbox.popleft()
            self._spawn(self._send(event, args))

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self._connect_task is not None and not self._connect_task.done():
            return
        if self._sio.connected:
            return
        self._connect_task = asyncio.get_running_loop().create_task(self._connect())

    async def _connect(self) -> None:
        self._set_status(ConnectionStatus.CONNECTING)
        self._log.info("Connecting to relay %s%s", self.server_url, self.socketio_path)
        try:
            await self._sio.connect(
                self.server_url,
                namespaces=[NAMESPACE],
                socketio_path=self.socketio_path,
                transports=["websocket"],
                wait_timeout=self._options.timeout,
                retry=self._options.reconnection,
            )
        except sio_exceptions.ConnectionError as exc:
            self._log.warning("Giving up on relay: %s", exc)
            self._set_status(ConnectionStatus.ERROR)

    async def close(self) -> None:
        await self._sio.shutdown()
        if self._connect_task is not None:
            self._connect_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._connect_task
            self._connect_task = None
        for task in self._tasks:
            task.cancel()
        self._tasks.clear()
        self._outbox.clear()
        self._set_status(ConnectionStatus.DISCONNECTED)

    def _set_status(self, status: ConnectionStatus) -> None:
        if status == self.status:
            return
        self.status = status
        self._lifecycle.emit("status", status)

    async def _on_connect(self) -> None:
        self._log.info("Connected to relay")
        self._set_status(ConnectionStatus.CONNECTED)
        self._lifecycle.emit("connect")
        self._flush()

    async def _on_disconnect(self, reason: Any = None) -> None:
        self._log.info("Disconnected from relay: %s", reason)
        self._set_status(ConnectionStatus.DISCONNECTED)
        self._lifecycle.emit("disconnect", str(reason) if reason else "")

    async def _on_connect_error(self, data: Any = None) -> None:
        self._log.warning("Relay connection error: %s", data)
        self._set_status(ConnectionStatus.ERROR)
        self._lifecycle.emit("connect_error", data)
