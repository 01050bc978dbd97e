"""Direct tool-call transport over one accepted runtime WebSocket link."""

from __future__ import annotations

import asyncio
from typing import Dict

from websockets.exceptions import ConnectionClosed

from october.errors import (
    TransportDisconnectedError,
    TransportSendFailedError,
    TransportSerializationError,
)
from october.provider import RuntimeTransport
from october.wire import (
    CancelCallRequest,
    ToolCall,
    ToolCallRequest,
    ToolCallResponse,
    ToolResult,
    decode_runtime_outbound,
    encode_runtime_inbound,
)


class SocketRuntimeTransport(RuntimeTransport):
    """Correlates tool calls with their responses by ``call_id``.

    A background reader resolves waiting calls; when the link drops, every
    outstanding call fails with :class:`TransportDisconnectedError`. Must be
    created inside a running event loop.
    """

    def __init__(self, connection) -> None:
        self._connection = connection
        self._pending: Dict[str, asyncio.Future] = {}
        self._closed = asyncio.Event()
        self._reader = asyncio.get_running_loop().create_task(self._read())

    async def _read(self) -> None:
        try:
            async for message in self._connection:
                if not isinstance(message, str):
                    break
                try:
                    decoded = decode_runtime_outbound(message)
                except ValueError:
                    continue
                if isinstance(decoded, ToolCallResponse):
                    waiter = self._pending.pop(decoded.call_id, None)
                    if waiter is not None and not waiter.done():
                        waiter.set_result(decoded.result)
        except ConnectionClosed:
            pass
        finally:
            pending, self._pending = self._pending, {}
            for waiter in pending.values():
                if not waiter.done():
                    waiter.set_exception(TransportDisconnectedError())
            self._closed.set()

    async def _send(self, text: str) -> None:
        try:
            await self._connection.send(text)
        except Exception as exc:
            raise TransportSendFailedError(str(exc)) from exc

    async def invoke(self, call_id: str, call: ToolCall) -> ToolResult:
        try:
            text = encode_runtime_inbound(ToolCallRequest(call_id=call_id, call=call))
        except (TypeError, ValueError) as exc:
            raise TransportSerializationError(str(exc)) from exc
        if self._closed.is_set():
            raise TransportDisconnectedError()
        waiter = asyncio.get_running_loop().create_future()
        self._pending[call_id] = waiter
        try:
            await self._send(text)
            return await waiter
        finally:
            if self._pending.get(call_id) is waiter:
                del self._pending[call_id]

    async def cancel(self, call_id: str) -> None:
        try:
            text = encode_runtime_inbound(CancelCallRequest(call_id=call_id))
        except (TypeError, ValueError) as exc:
            raise TransportSerializationError(str(exc)) from exc
        await self._send(text)

    async def wait_closed(self) -> None:
        """Wait until the runtime link has dropped."""
        await self._closed.wait()