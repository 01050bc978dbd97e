"""State machine of the runtimes an executor manages."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from october.errors import (
    InvalidTransitionError,
    RuntimeAlreadyExistsError,
    RuntimeNotFoundError,
)
from october.provider import RuntimeHandle
from october.wire import RuntimeConfig, RuntimeInfo, RuntimeState

_RESTARTABLE = (RuntimeState.RUNNING, RuntimeState.FAILED)


@dataclass
class _Entry:
    runtime_id: str
    state: RuntimeState
    config: RuntimeConfig
    restart_count: int = 0
    handle: Optional[RuntimeHandle] = None


class RuntimeRegistry:
    """Tracks each runtime's state, config, restart count and live handle."""

    def __init__(self) -> None:
        self._entries: Dict[str, _Entry] = {}

    def _entry(self, runtime_id: str) -> _Entry:
        try:
            return self._entries[runtime_id]
        except KeyError:
            raise RuntimeNotFoundError(runtime_id) from None

    async def begin_create(self, runtime_id: str, config: RuntimeConfig) -> None:
        """Insert a Creating entry; fails if the id already exists."""
        if runtime_id in self._entries:
            raise RuntimeAlreadyExistsError(runtime_id)
        self._entries[runtime_id] = _Entry(runtime_id, RuntimeState.CREATING, config)

    async def complete_create(self, runtime_id: str, handle: RuntimeHandle) -> None:
        """Mark the runtime Running and attach its handle."""
        entry = self._entry(runtime_id)
        entry.state = RuntimeState.RUNNING
        entry.handle = handle

    async def mark_failed(self, runtime_id: str) -> None:
        """Mark the runtime Failed from any state and drop its handle."""
        entry = self._entry(runtime_id)
        entry.state = RuntimeState.FAILED
        entry.handle = None

    def _take_handle(self, runtime_id: str, action: str, target: RuntimeState) -> Optional[RuntimeHandle]:
        entry = self._entry(runtime_id)
        if entry.state not in _RESTARTABLE:
            raise InvalidTransitionError(entry.state.value, action)
        entry.state = target
        handle, entry.handle = entry.handle, None
        return handle

    async def begin_stop(self, runtime_id: str) -> Optional[RuntimeHandle]:
        """Running or Failed to Stopping; returns the handle for cleanup."""
        return self._take_handle(runtime_id, "stop", RuntimeState.STOPPING)

    async def complete_stop(self, runtime_id: str) -> None:
        """Remove the entry once it has stopped."""
        if self._entries.pop(runtime_id, None) is None:
            raise RuntimeNotFoundError(runtime_id)

    async def begin_restart(self, runtime_id: str) -> Optional[RuntimeHandle]:
        """Running or Failed back to Creating; counts the restart, returns the old handle."""
        handle = self._take_handle(runtime_id, "restart", RuntimeState.CREATING)
        self._entries[runtime_id].restart_count += 1
        return handle

    async def list(self) -> List[RuntimeInfo]:
        """Snapshot every runtime."""
        return [
            RuntimeInfo(runtime_id=e.runtime_id, state=e.state, restart_count=e.restart_count)
            for e in self._entries.values()
        ]

    async def running_handles(self) -> List[Tuple[str, RuntimeHandle]]:
        """Ids and handles of all Running runtimes."""
        return [
            (e.runtime_id, e.handle)
            for e in self._entries.values()
            if e.state is RuntimeState.RUNNING and e.handle is not None
        ]

    async def get_config(self, runtime_id: str) -> Optional[RuntimeConfig]:
        entry = self._entries.get(runtime_id)
        return None if entry is None else entry.config

    async def get_restart_count(self, runtime_id: str) -> Optional[int]:
        entry = self._entries.get(runtime_id)
        return None if entry is None else entry.restart_count