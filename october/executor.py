"""Executor: connects to a control server and manages runtimes on its behalf."""

from __future__ import annotations

import asyncio
import contextlib
import uuid
from typing import Optional, Set

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from october.connected_registry import ConnectedRuntimeRegistry
from october.errors import (
    ExecutorConnectionError,
    ExecutorError,
    ExecutorSendFailedError,
    ExecutorSerializationError,
    RuntimeLifecycleError,
    RuntimeNotFoundError,
    RuntimeProviderError,
    TransportError,
)
from october.inmem_transport import create_core
from october.provider import HealthStatus, RuntimeProvider
from october.registry import RuntimeRegistry
from october.runtime_listener import RuntimeListenerServer
from october.socket_transport import SocketRuntimeTransport
from october.wire import (
    CancelToolCallCmd,
    CommandFailedEvent,
    CreateRuntimeCmd,
    DestroyRuntimeCmd,
    ExecutorInboundMessage,
    ExecutorOutboundMessage,
    QueryRuntimesCmd,
    RegisteredEvent,
    RestartRuntimeCmd,
    RuntimeReady,
    RuntimesListedEvent,
    RuntimeState,
    RuntimeStateChangedEvent,
    ToolCallCmd,
    ToolError,
    ToolResultEvent,
    decode_runtime_outbound,
)

_HANDSHAKE_TIMEOUT = 10.0


def _spawn(tasks: Set[asyncio.Task], coro) -> asyncio.Task:
    task = asyncio.get_running_loop().create_task(coro)
    tasks.add(task)
    task.add_done_callback(tasks.discard)
    return task


async def _send_outbound(connection, message: ExecutorOutboundMessage) -> None:
    try:
        text = message.to_json()
    except (TypeError, ValueError) as exc:
        raise ExecutorSerializationError(str(exc)) from exc
    try:
        await connection.send(text)
    except (WebSocketException, OSError) as exc:
        raise ExecutorSendFailedError(str(exc)) from exc


async def _handshake(connection) -> Optional[str]:
    """Wait for the runtime's Ready message; ``None`` if the link ends first."""
    while True:
        try:
            message = await connection.recv()
        except ConnectionClosed:
            return None
        if not isinstance(message, str):
            return None
        try:
            decoded = decode_runtime_outbound(message)
        except ValueError:
            continue
        if isinstance(decoded, RuntimeReady):
            return decoded.runtime_id


async def handle_runtime_connection(connection, registry: ConnectedRuntimeRegistry) -> None:
    """Handshake on an accepted runtime link, register its transport until it drops."""
    try:
        runtime_id = await asyncio.wait_for(_handshake(connection), _HANDSHAKE_TIMEOUT)
    except asyncio.TimeoutError:
        return
    if runtime_id is None:
        return
    transport = SocketRuntimeTransport(connection)
    await registry.register_transport(runtime_id, transport)
    await transport.wait_closed()
    await registry.remove(runtime_id)


async def _serve(
    listener: RuntimeListenerServer,
    registry: ConnectedRuntimeRegistry,
    stop_event: asyncio.Event,
) -> None:
    handlers: Set[asyncio.Task] = set()
    stop_wait = asyncio.ensure_future(stop_event.wait())
    try:
        while True:
            accept = asyncio.ensure_future(listener.accept())
            done, _ = await asyncio.wait(
                {accept, stop_wait}, return_when=asyncio.FIRST_COMPLETED
            )
            if accept not in done:
                accept.cancel()
                break
            try:
                connection = accept.result()
            except ExecutorError:
                break
            _spawn(handlers, handle_runtime_connection(connection, registry))
    finally:
        stop_wait.cancel()
        await listener.close()


def serve_runtime_connections(
    listener: RuntimeListenerServer,
    registry: ConnectedRuntimeRegistry,
    stop_event: asyncio.Event,
) -> asyncio.Task:
    """Accept runtime links and register each one until ``stop_event`` is set.

    Returns the serving task; the listener is closed when it ends.
    """
    return asyncio.get_running_loop().create_task(_serve(listener, registry, stop_event))


class _Session:
    """One connection to the control server and the runtimes managed over it."""

    def __init__(
        self,
        connection,
        provider: RuntimeProvider,
        max_restarts: int,
        connected: Optional[ConnectedRuntimeRegistry],
    ) -> None:
        self.connection = connection
        self.provider = provider
        self.max_restarts = max_restarts
        self.connected = connected
        self.registry = RuntimeRegistry()
        self._tasks: Set[asyncio.Task] = set()

    async def send(self, request_id: str, event) -> None:
        await _send_outbound(
            self.connection, ExecutorOutboundMessage(request_id=request_id, event=event)
        )

    async def emit_state(self, request_id: str, runtime_id: str, state: RuntimeState) -> None:
        with contextlib.suppress(ExecutorError):
            await self.send(
                request_id, RuntimeStateChangedEvent(runtime_id=runtime_id, state=state)
            )

    async def dispatch(self, message: ExecutorInboundMessage) -> None:
        request_id = message.request_id
        command = message.command
        try:
            if isinstance(command, CreateRuntimeCmd):
                await self._create(command, request_id)
            elif isinstance(command, DestroyRuntimeCmd):
                await self._destroy(command, request_id)
            elif isinstance(command, RestartRuntimeCmd):
                await self._restart(command, request_id)
            elif isinstance(command, QueryRuntimesCmd):
                runtimes = await self.registry.list()
                with contextlib.suppress(ExecutorError):
                    await self.send(request_id, RuntimesListedEvent(runtimes=runtimes))
            elif isinstance(command, ToolCallCmd):
                await self._tool_call(command)
            elif isinstance(command, CancelToolCallCmd):
                await self._cancel_tool_call(command)
        except RuntimeLifecycleError as exc:
            with contextlib.suppress(ExecutorError):
                await self.send(request_id, CommandFailedEvent(message=str(exc)))

    async def _create(self, command: CreateRuntimeCmd, request_id: str) -> None:
        runtime_id = command.runtime_id
        await self.emit_state(request_id, runtime_id, RuntimeState.CREATING)
        try:
            await create_core(self.registry, self.provider, runtime_id, command.config)
        except RuntimeLifecycleError:
            await self.emit_state(request_id, runtime_id, RuntimeState.FAILED)
            raise
        await self.emit_state(request_id, runtime_id, RuntimeState.RUNNING)

    async def _destroy(self, command: DestroyRuntimeCmd, request_id: str) -> None:
        runtime_id = command.runtime_id
        handle = await self.registry.begin_stop(runtime_id)
        await self.emit_state(request_id, runtime_id, RuntimeState.STOPPING)
        if handle is not None:
            with contextlib.suppress(RuntimeLifecycleError):
                await handle.stop()
        await self.registry.complete_stop(runtime_id)
        await self.emit_state(request_id, runtime_id, RuntimeState.STOPPED)

    async def _restart(self, command: RestartRuntimeCmd, request_id: str) -> None:
        runtime_id = command.runtime_id
        config = await self.registry.get_config(runtime_id)
        if config is None:
            raise RuntimeNotFoundError(runtime_id)
        old = await self.registry.begin_restart(runtime_id)
        await self.emit_state(request_id, runtime_id, RuntimeState.CREATING)
        if old is not None:
            with contextlib.suppress(RuntimeLifecycleError):
                await old.stop()
        try:
            handle = await self.provider.create(runtime_id, config)
        except RuntimeLifecycleError:
            with contextlib.suppress(RuntimeLifecycleError):
                await self.registry.mark_failed(runtime_id)
            await self.emit_state(request_id, runtime_id, RuntimeState.FAILED)
            raise
        await self.registry.complete_create(runtime_id, handle)
        await self.emit_state(request_id, runtime_id, RuntimeState.RUNNING)

    async def _tool_call(self, command: ToolCallCmd) -> None:
        if self.connected is None:
            raise RuntimeProviderError("no runtime listener configured")
        transport = await self.connected.runtime_transport(command.runtime_id)
        if transport is None:
            raise RuntimeProviderError(f"runtime '{command.runtime_id}' not connected")
        _spawn(self._tasks, self._relay(transport, command))

    async def _relay(self, transport, command: ToolCallCmd) -> None:
        call_id = command.call.call_id
        try:
            result = await transport.invoke(call_id, command.call.call)
        except TransportError as exc:
            result = ToolError(reason=str(exc))
        with contextlib.suppress(ExecutorError):
            await self.send(
                call_id,
                ToolResultEvent(runtime_id=command.runtime_id, call_id=call_id, result=result),
            )

    async def _cancel_tool_call(self, command: CancelToolCallCmd) -> None:
        if self.connected is None:
            return
        transport = await self.connected.runtime_transport(command.runtime_id)
        if transport is not None:
            with contextlib.suppress(TransportError):
                await transport.cancel(command.call_id)

    async def health_loop(self, interval: float, stop_event: asyncio.Event) -> None:
        while True:
            try:
                await asyncio.wait_for(stop_event.wait(), interval)
                return
            except asyncio.TimeoutError:
                await self.health_check()

    async def health_check(self) -> None:
        """Fail unhealthy runtimes and restart them while restarts remain."""
        for runtime_id, handle in await self.registry.running_handles():
            try:
                status = await handle.health_check()
            except RuntimeLifecycleError:
                status = None
            if status == HealthStatus.healthy():
                continue
            with contextlib.suppress(RuntimeLifecycleError):
                await self.registry.mark_failed(runtime_id)
            unsolicited = str(uuid.uuid4())
            await self.emit_state(unsolicited, runtime_id, RuntimeState.FAILED)

            count = await self.registry.get_restart_count(runtime_id)
            if count is None or count >= self.max_restarts:
                continue
            config = await self.registry.get_config(runtime_id)
            if config is None:
                continue
            try:
                old = await self.registry.begin_restart(runtime_id)
            except RuntimeLifecycleError:
                continue
            await self.emit_state(unsolicited, runtime_id, RuntimeState.CREATING)
            if old is not None:
                with contextlib.suppress(RuntimeLifecycleError):
                    await old.stop()
            try:
                new_handle = await self.provider.create(runtime_id, config)
            except RuntimeLifecycleError:
                with contextlib.suppress(RuntimeLifecycleError):
                    await self.registry.mark_failed(runtime_id)
                await self.emit_state(unsolicited, runtime_id, RuntimeState.FAILED)
                continue
            with contextlib.suppress(RuntimeLifecycleError):
                await self.registry.complete_create(runtime_id, new_handle)
            await self.emit_state(unsolicited, runtime_id, RuntimeState.RUNNING)


class Executor:
    """Registers with a control server over WebSocket and serves its commands.

    ``health_check_interval`` is in seconds. With a ``runtime_listener`` the
    executor also accepts runtime links and relays tool calls to them.
    """

    def __init__(
        self,
        executor_id: str,
        server_url: str,
        provider: RuntimeProvider,
        *,
        health_check_interval: float = 30.0,
        max_restarts: int = 3,
        runtime_listener: Optional[RuntimeListenerServer] = None,
        connected_registry: Optional[ConnectedRuntimeRegistry] = None,
    ) -> None:
        if runtime_listener is not None and connected_registry is None:
            connected_registry = ConnectedRuntimeRegistry()
        self.executor_id = executor_id
        self.server_url = server_url
        self.provider = provider
        self.health_check_interval = health_check_interval
        self.max_restarts = max_restarts
        self._runtime_listener = runtime_listener
        self.connected_registry = connected_registry

    async def run(self, stop_event: asyncio.Event) -> None:
        """Serve until ``stop_event`` is set or the server connection ends."""
        try:
            connection = await websockets.connect(self.server_url)
        except (OSError, WebSocketException, asyncio.TimeoutError) as exc:
            raise ExecutorConnectionError(str(exc)) from exc

        health_task: Optional[asyncio.Task] = None
        stop_wait = asyncio.ensure_future(stop_event.wait())
        try:
            session = _Session(
                connection, self.provider, self.max_restarts, self.connected_registry
            )
            await session.send(
                str(uuid.uuid4()), RegisteredEvent(executor_id=self.executor_id)
            )

            listener, self._runtime_listener = self._runtime_listener, None
            if listener is not None and self.connected_registry is not None:
                serve_runtime_connections(listener, self.connected_registry, stop_event)

            health_task = asyncio.ensure_future(
                session.health_loop(self.health_check_interval, stop_event)
            )

            while True:
                receive = asyncio.ensure_future(connection.recv())
                done, _ = await asyncio.wait(
                    {receive, stop_wait}, return_when=asyncio.FIRST_COMPLETED
                )
                if receive not in done:
                    receive.cancel()
                    break
                try:
                    message = receive.result()
                except ConnectionClosed:
                    break
                if not isinstance(message, str):
                    continue
                try:
                    inbound = ExecutorInboundMessage.from_json(message)
                except ValueError:
                    continue
                await session.dispatch(inbound)
        finally:
            stop_wait.cancel()
            if health_task is not None:
                health_task.cancel()
            await connection.close()