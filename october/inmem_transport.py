"""In-process executor transport: lifecycle driven directly, no network hop."""

from __future__ import annotations

import contextlib
from typing import AsyncIterator

from october.connected_registry import ConnectedRuntimeRegistry
from october.errors import CommandFailedError, RuntimeLifecycleError
from october.executor_client import ExecutorTransport
from october.provider import RuntimeProvider, RuntimeTransport
from october.registry import RuntimeRegistry
from october.wire import (
    CommandFailedEvent,
    CreateRuntimeCmd,
    DestroyRuntimeCmd,
    RuntimeConfig,
    RuntimeState,
    RuntimeStateChangedEvent,
)

_UNSUPPORTED = "command not supported by in-process executor"


async def create_core(
    registry: RuntimeRegistry,
    provider: RuntimeProvider,
    runtime_id: str,
    config: RuntimeConfig,
) -> None:
    """Create a runtime through ``provider`` and record it Running, or mark it Failed."""
    await registry.begin_create(runtime_id, config)
    try:
        handle = await provider.create(runtime_id, config)
    except Exception:
        with contextlib.suppress(RuntimeLifecycleError):
            await registry.mark_failed(runtime_id)
        raise
    await registry.complete_create(runtime_id, handle)


async def _once(event) -> AsyncIterator:
    yield event


class InMemExecutorTransport(ExecutorTransport):
    """Executor transport that owns a runtime registry and calls the provider itself.

    Tool transports come from the shared connected-runtime registry.
    """

    def __init__(self, provider: RuntimeProvider, connected: ConnectedRuntimeRegistry) -> None:
        self._registry = RuntimeRegistry()
        self._provider = provider
        self._connected = connected

    async def _create(self, command: CreateRuntimeCmd):
        try:
            await create_core(self._registry, self._provider, command.runtime_id, command.config)
        except RuntimeLifecycleError as exc:
            return CommandFailedEvent(message=str(exc))
        return RuntimeStateChangedEvent(runtime_id=command.runtime_id, state=RuntimeState.RUNNING)

    async def _destroy(self, command: DestroyRuntimeCmd):
        try:
            handle = await self._registry.begin_stop(command.runtime_id)
        except RuntimeLifecycleError as exc:
            return CommandFailedEvent(message=str(exc))
        if handle is not None:
            with contextlib.suppress(RuntimeLifecycleError):
                await handle.stop()
        with contextlib.suppress(RuntimeLifecycleError):
            await self._registry.complete_stop(command.runtime_id)
        return RuntimeStateChangedEvent(runtime_id=command.runtime_id, state=RuntimeState.STOPPED)

    async def send(self, request_id: str, command) -> AsyncIterator:
        if isinstance(command, CreateRuntimeCmd):
            event = await self._create(command)
        elif isinstance(command, DestroyRuntimeCmd):
            event = await self._destroy(command)
        else:
            event = CommandFailedEvent(message=_UNSUPPORTED)
        return _once(event)

    async def runtime_transport(self, runtime_id: str) -> RuntimeTransport:
        transport = await self._connected.runtime_transport(runtime_id)
        if transport is None:
            raise CommandFailedError(f"runtime '{runtime_id}' not connected")
        return transport