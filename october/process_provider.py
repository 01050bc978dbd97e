"""Runtime provider that starts each runtime as a child process."""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from october.connected_registry import ConnectedRuntimeRegistry
from october.env_scrub import scrubbed_env
from october.errors import RuntimeProviderError
from october.provider import HealthStatus, RuntimeHandle, RuntimeProvider
from october.runtime_listener import RuntimeEndpoint, TcpEndpoint, UnixEndpoint
from october.wire import RuntimeConfig


@dataclass(frozen=True)
class SandboxPolicy:
    """Sandbox settings for a spawned runtime; its presence turns the sandbox on.

    ``capabilities_file`` is handed to the runtime as ``--sandbox-caps`` and fully
    defines what the runtime may access.
    """

    capabilities_file: Path

    def __post_init__(self) -> None:
        object.__setattr__(self, "capabilities_file", Path(self.capabilities_file))


async def _kill(process: asyncio.subprocess.Process) -> None:
    if process.returncode is None:
        with contextlib.suppress(ProcessLookupError):
            process.kill()
    await process.wait()


class ProcessRuntimeHandle(RuntimeHandle):
    """A runtime child process, healthy while its link is registered."""

    def __init__(
        self,
        process: Optional[asyncio.subprocess.Process],
        runtime_id: str,
        connected_registry: ConnectedRuntimeRegistry,
    ) -> None:
        self._process = process
        self.runtime_id = runtime_id
        self._connected = connected_registry

    async def stop(self) -> None:
        """Kill the child (once) and forget its transport."""
        process, self._process = self._process, None
        if process is not None:
            await _kill(process)
        await self._connected.remove(self.runtime_id)

    async def health_check(self) -> HealthStatus:
        if await self._connected.runtime_transport(self.runtime_id) is not None:
            return HealthStatus.healthy()
        return HealthStatus.unhealthy("runtime disconnected")


class ProcessRuntimeProvider(RuntimeProvider):
    """Spawns the runtime binary and waits for it to connect back.

    ``connect_timeout`` is in seconds. With a ``sandbox`` policy the child gets
    ``--sandbox-caps`` and an environment reduced to the allowlist.
    """

    def __init__(
        self,
        binary_path,
        endpoint: RuntimeEndpoint,
        connected_registry: ConnectedRuntimeRegistry,
        *,
        connect_timeout: float = 30.0,
        sandbox: Optional[SandboxPolicy] = None,
    ) -> None:
        self.binary_path = Path(binary_path)
        self.endpoint = endpoint
        self.connected_registry = connected_registry
        self.connect_timeout = connect_timeout
        self.sandbox = sandbox

    def endpoint_arg(self) -> str:
        """The ``--endpoint`` value a child uses to reach the listener."""
        if isinstance(self.endpoint, TcpEndpoint):
            host = self.endpoint.host
            if ":" in host:
                host = f"[{host}]"
            return f"ws://{host}:{self.endpoint.port}"
        if isinstance(self.endpoint, UnixEndpoint):
            return f"unix:{self.endpoint.path}"
        raise TypeError(f"not a runtime endpoint: {self.endpoint!r}")

    async def create(self, runtime_id: str, config: RuntimeConfig) -> RuntimeHandle:
        # Watch for the connection before spawning so the ready signal is never lost.
        ready = await self.connected_registry.notify_when_ready(runtime_id)

        args = [
            str(self.binary_path),
            "--endpoint",
            self.endpoint_arg(),
            "--runtime-id",
            runtime_id,
            "--working-dir",
            config.working_dir,
        ]
        env = None
        if self.sandbox is not None:
            args += ["--sandbox-caps", str(self.sandbox.capabilities_file)]
            env = dict(scrubbed_env())

        try:
            process = await asyncio.create_subprocess_exec(*args, env=env)
        except OSError as exc:
            raise RuntimeProviderError(str(exc)) from exc

        try:
            done, _ = await asyncio.wait({ready}, timeout=self.connect_timeout)
            if not done:
                raise RuntimeProviderError("runtime connection timed out")
            if ready.cancelled():
                raise RuntimeProviderError("connection channel dropped")
        except BaseException:
            await _kill(process)
            raise

        return ProcessRuntimeHandle(process, runtime_id, self.connected_registry)