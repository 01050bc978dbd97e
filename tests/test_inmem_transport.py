import pytest

from october.connected_registry import ConnectedRuntimeRegistry
from october.errors import CommandFailedError, RuntimeAlreadyExistsError, RuntimeProviderError
from october.executor_client import ExecutorClient
from october.inmem_transport import InMemExecutorTransport, create_core
from october.provider import HealthStatus, RuntimeHandle, RuntimeProvider, RuntimeTransport
from october.registry import RuntimeRegistry
from october.wire import (
    CommandFailedEvent,
    QueryRuntimesCmd,
    RestartRuntimeCmd,
    RuntimeConfig,
    RuntimeState,
    ToolOutput,
)

CONFIG = RuntimeConfig(working_dir="/tmp")


class FakeHandle(RuntimeHandle):
    def __init__(self):
        self.stopped = False

    async def stop(self):
        self.stopped = True

    async def health_check(self):
        return HealthStatus.healthy()


class FakeProvider(RuntimeProvider):
    def __init__(self):
        self.handles = {}

    async def create(self, runtime_id, config):
        handle = FakeHandle()
        self.handles[runtime_id] = handle
        return handle


class FailingProvider(RuntimeProvider):
    async def create(self, runtime_id, config):
        raise RuntimeProviderError("spawn refused")


class FakeTool(RuntimeTransport):
    async def invoke(self, call_id, call):
        return ToolOutput(stdout="", stderr="", exit_code=0)

    async def cancel(self, call_id):
        return None


def make_client(provider=None):
    provider = provider or FakeProvider()
    connected = ConnectedRuntimeRegistry()
    transport = InMemExecutorTransport(provider, connected)
    return ExecutorClient(transport), transport, connected, provider


@pytest.mark.asyncio
async def test_create_then_destroy_stops_handle():
    client, _, _, provider = make_client()
    await client.create_runtime("rt-1", CONFIG)
    assert provider.handles["rt-1"].stopped is False
    await client.destroy_runtime("rt-1")
    assert provider.handles["rt-1"].stopped is True


@pytest.mark.asyncio
async def test_duplicate_create_fails():
    client, _, _, _ = make_client()
    await client.create_runtime("rt-1", CONFIG)
    with pytest.raises(CommandFailedError) as info:
        await client.create_runtime("rt-1", CONFIG)
    assert info.value.detail == "runtime already exists: rt-1"


@pytest.mark.asyncio
async def test_provider_failure_is_reported():
    client, _, _, _ = make_client(FailingProvider())
    with pytest.raises(CommandFailedError) as info:
        await client.create_runtime("rt-1", CONFIG)
    assert info.value.detail == "provider error: spawn refused"


@pytest.mark.asyncio
async def test_destroy_unknown_runtime_fails():
    client, _, _, _ = make_client()
    with pytest.raises(CommandFailedError) as info:
        await client.destroy_runtime("ghost")
    assert info.value.detail == "runtime not found: ghost"


@pytest.mark.asyncio
async def test_destroyed_runtime_can_be_created_again():
    client, _, _, provider = make_client()
    await client.create_runtime("rt-1", CONFIG)
    first = provider.handles["rt-1"]
    await client.destroy_runtime("rt-1")
    await client.create_runtime("rt-1", CONFIG)
    assert provider.handles["rt-1"] is not first
    assert provider.handles["rt-1"].stopped is False


@pytest.mark.asyncio
@pytest.mark.parametrize("command", [QueryRuntimesCmd(), RestartRuntimeCmd(runtime_id="rt-1")])
async def test_unsupported_commands_yield_command_failed(command):
    _, transport, _, _ = make_client()
    events = [e async for e in await transport.send("req", command)]
    assert events == [CommandFailedEvent(message="command not supported by in-process executor")]


@pytest.mark.asyncio
async def test_runtime_transport_not_connected():
    client, _, _, _ = make_client()
    with pytest.raises(CommandFailedError) as info:
        await client.runtime_transport("rt-9")
    assert info.value.detail == "runtime 'rt-9' not connected"


@pytest.mark.asyncio
async def test_runtime_transport_returns_registered():
    client, _, connected, _ = make_client()
    tool = FakeTool()
    await connected.register_transport("rt-1", tool)
    assert await client.runtime_transport("rt-1") is tool


@pytest.mark.asyncio
async def test_create_core_marks_failed_on_provider_error():
    registry = RuntimeRegistry()
    with pytest.raises(RuntimeProviderError):
        await create_core(registry, FailingProvider(), "rt-1", CONFIG)
    infos = await registry.list()
    assert [(i.runtime_id, i.state) for i in infos] == [("rt-1", RuntimeState.FAILED)]


@pytest.mark.asyncio
async def test_create_core_records_running():
    registry = RuntimeRegistry()
    await create_core(registry, FakeProvider(), "rt-1", CONFIG)
    handles = await registry.running_handles()
    assert [rid for rid, _ in handles] == ["rt-1"]
    with pytest.raises(RuntimeAlreadyExistsError):
        await create_core(registry, FakeProvider(), "rt-1", CONFIG)