"""Listener that runtime children connect back to, over TCP or a unix socket."""

from __future__ import annotations

import asyncio
import contextlib
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple, Union

import websockets

from october.errors import BindFailedError, ExecutorConnectionError


@dataclass(frozen=True)
class TcpEndpoint:
    """TCP/WebSocket endpoint; children are started with ``ws://host:port``."""

    host: str
    port: int


@dataclass(frozen=True)
class UnixEndpoint:
    """Unix-socket endpoint; children are started with ``unix:<path>``."""

    path: Path

    def __post_init__(self) -> None:
        object.__setattr__(self, "path", Path(self.path))


RuntimeEndpoint = Union[TcpEndpoint, UnixEndpoint]

_CLOSED = object()


class RuntimeListenerServer:
    """Accepts WebSocket connections from runtime children, one at a time."""

    def __init__(self, endpoint: RuntimeEndpoint) -> None:
        self.endpoint = endpoint
        self._server = None
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    async def _handle(self, connection) -> None:
        if self._closed:
            return
        await self._queue.put(connection)
        await connection.wait_closed()

    @classmethod
    async def bind(cls, endpoint: RuntimeEndpoint) -> "RuntimeListenerServer":
        """Start listening on ``endpoint``; raise :class:`BindFailedError` on failure."""
        listener = cls(endpoint)
        try:
            if isinstance(endpoint, TcpEndpoint):
                listener._server = await websockets.serve(
                    listener._handle, endpoint.host, endpoint.port
                )
            elif isinstance(endpoint, UnixEndpoint):
                parent = endpoint.path.parent
                os.makedirs(parent, exist_ok=True)
                os.chmod(parent, 0o700)
                # A stale socket from an unclean exit would make bind fail.
                with contextlib.suppress(FileNotFoundError):
                    endpoint.path.unlink()
                listener._server = await websockets.unix_serve(
                    listener._handle, str(endpoint.path)
                )
            else:
                raise TypeError(f"not a runtime endpoint: {endpoint!r}")
        except OSError as exc:
            raise BindFailedError(str(exc)) from exc
        return listener

    def tcp_addr(self) -> Optional[Tuple[str, int]]:
        """The bound ``(host, port)`` when listening on TCP, else ``None``."""
        if not isinstance(self.endpoint, TcpEndpoint) or self._server is None:
            return None
        sockets = list(self._server.sockets or ())
        if not sockets:
            return None
        host, port = sockets[0].getsockname()[:2]
        return host, port

    async def accept(self):
        """The next connected runtime's WebSocket connection."""
        if self._closed and self._queue.empty():
            raise ExecutorConnectionError("listener closed")
        item = await self._queue.get()
        if item is _CLOSED:
            self._queue.put_nowait(_CLOSED)
            raise ExecutorConnectionError("listener closed")
        return item

    async def close(self) -> None:
        """Stop listening and unlink the unix socket, if any."""
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
        if isinstance(self.endpoint, UnixEndpoint):
            with contextlib.suppress(FileNotFoundError):
                self.endpoint.path.unlink()

    async def __aenter__(self) -> "RuntimeListenerServer":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()