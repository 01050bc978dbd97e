import pytest

from october.errors import InvalidTransitionError, RuntimeAlreadyExistsError, RuntimeNotFoundError
from october.provider import HealthStatus, RuntimeHandle
from october.registry import RuntimeRegistry
from october.wire import RuntimeConfig, RuntimeState


class NullHandle(RuntimeHandle):
    async def stop(self):
        return None

    async def health_check(self):
        return HealthStatus.healthy()


def cfg():
    return RuntimeConfig(working_dir="/tmp")


async def running(registry, runtime_id="rt-1"):
    await registry.begin_create(runtime_id, cfg())
    handle = NullHandle()
    await registry.complete_create(runtime_id, handle)
    return handle


@pytest.mark.asyncio
async def test_begin_create_inserts_creating_entry():
    r = RuntimeRegistry()
    await r.begin_create("rt-1", cfg())
    entries = await r.list()
    assert len(entries) == 1
    assert entries[0].runtime_id == "rt-1"
    assert entries[0].state is RuntimeState.CREATING


@pytest.mark.asyncio
async def test_begin_create_fails_on_duplicate():
    r = RuntimeRegistry()
    await r.begin_create("rt-1", cfg())
    with pytest.raises(RuntimeAlreadyExistsError):
        await r.begin_create("rt-1", cfg())


@pytest.mark.asyncio
async def test_complete_create_transitions_to_running():
    r = RuntimeRegistry()
    await running(r)
    assert (await r.list())[0].state is RuntimeState.RUNNING


@pytest.mark.asyncio
async def test_begin_stop_transitions_to_stopping():
    r = RuntimeRegistry()
    handle = await running(r)
    assert await r.begin_stop("rt-1") is handle
    assert (await r.list())[0].state is RuntimeState.STOPPING


@pytest.mark.asyncio
async def test_begin_stop_from_creating_fails():
    r = RuntimeRegistry()
    await r.begin_create("rt-1", cfg())
    with pytest.raises(InvalidTransitionError) as info:
        await r.begin_stop("rt-1")
    assert info.value.from_state == "Creating"
    assert info.value.action == "stop"


@pytest.mark.asyncio
async def test_complete_stop_removes_entry():
    r = RuntimeRegistry()
    await running(r)
    await r.begin_stop("rt-1")
    await r.complete_stop("rt-1")
    assert await r.list() == []


@pytest.mark.asyncio
async def test_begin_restart_increments_restart_count():
    r = RuntimeRegistry()
    await running(r)
    await r.begin_restart("rt-1")
    assert await r.get_restart_count("rt-1") == 1
    assert (await r.list())[0].state is RuntimeState.CREATING


@pytest.mark.asyncio
async def test_mark_failed_clears_handle():
    r = RuntimeRegistry()
    await running(r)
    await r.mark_failed("rt-1")
    assert (await r.list())[0].state is RuntimeState.FAILED
    assert await r.running_handles() == []


@pytest.mark.asyncio
async def test_running_handles_returns_only_running():
    r = RuntimeRegistry()
    await running(r, "rt-1")
    await r.begin_create("rt-2", cfg())
    handles = await r.running_handles()
    assert len(handles) == 1
    assert handles[0][0] == "rt-1"


@pytest.mark.asyncio
async def test_unknown_runtime_raises_not_found():
    r = RuntimeRegistry()
    with pytest.raises(RuntimeNotFoundError):
        await r.mark_failed("ghost")
    with pytest.raises(RuntimeNotFoundError):
        await r.complete_stop("ghost")
    assert await r.get_config("ghost") is None
    assert await r.get_restart_count("ghost") is None


@pytest.mark.asyncio
async def test_get_config_returns_stored_config():
    r = RuntimeRegistry()
    await r.begin_create("rt-1", cfg())
    assert await r.get_config("rt-1") == cfg()