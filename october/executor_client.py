"""Lifecycle client to an executor and the transport interface behind it."""

from __future__ import annotations

import abc
import uuid
from typing import AsyncIterator

from october.errors import ClientDisconnectedError, CommandFailedError
from october.provider import RuntimeTransport
from october.wire import (
    CommandFailedEvent,
    CreateRuntimeCmd,
    DestroyRuntimeCmd,
    RuntimeConfig,
    RuntimeState,
    RuntimeStateChangedEvent,
)


class ExecutorTransport(abc.ABC):
    """How an :class:`ExecutorClient` reaches an executor.

    The caller cannot tell whether the executor runs in-process or remotely.
    """

    @abc.abstractmethod
    async def send(self, request_id: str, command) -> AsyncIterator:
        """Send a lifecycle command; return an async iterator of its events.

        The iterator ends when the executor disconnects.
        """

    @abc.abstractmethod
    async def runtime_transport(self, runtime_id: str) -> RuntimeTransport:
        """The tool-call transport for ``runtime_id``."""


class ExecutorClient:
    """Drives runtime lifecycle (create, destroy) through an executor transport.

    Tool calls go through the transport returned by :meth:`runtime_transport`.
    """

    def __init__(self, transport: ExecutorTransport) -> None:
        self._transport = transport

    async def _await_state(self, command, target: RuntimeState) -> None:
        events = await self._transport.send(str(uuid.uuid4()), command)
        async for event in events:
            if isinstance(event, RuntimeStateChangedEvent) and event.state is target:
                return
            if isinstance(event, CommandFailedEvent):
                raise CommandFailedError(event.message)
        raise ClientDisconnectedError()

    async def create_runtime(self, runtime_id: str, config: RuntimeConfig) -> None:
        """Create a runtime and wait until it is Running."""
        await self._await_state(
            CreateRuntimeCmd(runtime_id=runtime_id, config=config), RuntimeState.RUNNING
        )

    async def destroy_runtime(self, runtime_id: str) -> None:
        """Destroy a runtime and wait until it is Stopped."""
        await self._await_state(DestroyRuntimeCmd(runtime_id=runtime_id), RuntimeState.STOPPED)

    async def runtime_transport(self, runtime_id: str) -> RuntimeTransport:
        """The tool-call transport for ``runtime_id``."""
        return await self._transport.runtime_transport(runtime_id)