"""Abstract interfaces for runtime providers, their handles and tool transports."""

from __future__ import annotations

import abc
from dataclasses import dataclass
from typing import Optional

from october.wire import RuntimeConfig, ToolCall, ToolResult


@dataclass(frozen=True)
class HealthStatus:
    """Result of a health check: healthy when ``reason`` is ``None``."""

    reason: Optional[str] = None

    @classmethod
    def healthy(cls) -> "HealthStatus":
        return cls(reason=None)

    @classmethod
    def unhealthy(cls, reason: str) -> "HealthStatus":
        return cls(reason=reason)


class RuntimeHandle(abc.ABC):
    """A live runtime created by a provider."""

    @abc.abstractmethod
    async def stop(self) -> None:
        """Tear the runtime down."""

    @abc.abstractmethod
    async def health_check(self) -> HealthStatus:
        """Report whether the runtime is still usable."""


class RuntimeProvider(abc.ABC):
    """Creates runtimes for an executor."""

    @abc.abstractmethod
    async def create(self, runtime_id: str, config: RuntimeConfig) -> RuntimeHandle:
        """Start runtime ``runtime_id``; raise a lifecycle error on failure."""


class RuntimeTransport(abc.ABC):
    """Carries tool calls to one runtime."""

    @abc.abstractmethod
    async def invoke(self, call_id: str, call: ToolCall) -> ToolResult:
        """Run ``call`` and return its result; raise a transport error on failure."""

    @abc.abstractmethod
    async def cancel(self, call_id: str) -> None:
        """Ask the runtime to abandon call ``call_id``."""