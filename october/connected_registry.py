"""Tool-call transports of the runtimes that are currently connected."""

from __future__ import annotations

import asyncio
from typing import Dict, Optional

from october.provider import RuntimeTransport


class ConnectedRuntimeRegistry:
    """Maps runtime ids to their live transports and signals when one connects."""

    def __init__(self) -> None:
        self._transports: Dict[str, RuntimeTransport] = {}
        self._pending: Dict[str, asyncio.Future] = {}

    async def register_transport(self, runtime_id: str, transport: RuntimeTransport) -> None:
        """Store the transport, then resolve any waiter for this runtime."""
        self._transports[runtime_id] = transport
        waiter = self._pending.pop(runtime_id, None)
        if waiter is not None and not waiter.done():
            waiter.set_result(None)

    async def notify_when_ready(self, runtime_id: str) -> asyncio.Future:
        """A future resolved when ``runtime_id`` registers; call before spawning it.

        A later call for the same id cancels the earlier future.
        """
        future = asyncio.get_running_loop().create_future()
        previous = self._pending.get(runtime_id)
        if previous is not None and not previous.done():
            previous.cancel()
        self._pending[runtime_id] = future
        return future

    async def runtime_transport(self, runtime_id: str) -> Optional[RuntimeTransport]:
        return self._transports.get(runtime_id)

    async def remove(self, runtime_id: str) -> None:
        """Forget a runtime's transport; removing an unknown id is harmless."""
        self._transports.pop(runtime_id, None)