import asyncio
import json
import os
import stat
import sys

import pytest

from october.connected_registry import ConnectedRuntimeRegistry
from october.errors import RuntimeProviderError
from october.process_provider import ProcessRuntimeProvider, SandboxPolicy
from october.provider import HealthStatus, RuntimeTransport
from october.runtime_listener import TcpEndpoint, UnixEndpoint
from october.wire import RuntimeConfig, ToolOutput


class _NullTransport(RuntimeTransport):
    async def invoke(self, call_id, call):
        return ToolOutput(stdout="", stderr="", exit_code=0)

    async def cancel(self, call_id):
        return None


def _fake_runtime(tmp_path):
    """A runtime binary that records its arguments and environment, then idles."""
    report = tmp_path / "report.json"
    script = tmp_path / "fake_runtime.py"
    script.write_text(
        "import json, os, sys, time\n"
        f"report = {str(report)!r}\n"
        "with open(report + '.tmp', 'w') as fh:\n"
        "    json.dump({'argv': sys.argv[1:], 'env': dict(os.environ)}, fh)\n"
        "os.replace(report + '.tmp', report)\n"
        "time.sleep(30)\n"
    )
    binary = tmp_path / "fake-runtime"
    binary.write_text(f'#!/bin/sh\nexec "{sys.executable}" "{script}" "$@"\n')
    binary.chmod(binary.stat().st_mode | stat.S_IXUSR)
    return binary, report


async def _wait_for(path):
    for _ in range(400):
        if path.exists():
            return json.loads(path.read_text())
        await asyncio.sleep(0.025)
    raise AssertionError(f"{path} never appeared")


async def _create_connected(provider, registry, report, runtime_id, config):
    task = asyncio.ensure_future(provider.create(runtime_id, config))
    data = await _wait_for(report)
    await registry.register_transport(runtime_id, _NullTransport())
    handle = await asyncio.wait_for(task, 10)
    return handle, data


def test_endpoint_arg_for_tcp_and_unix(tmp_path):
    registry = ConnectedRuntimeRegistry()
    tcp = ProcessRuntimeProvider("bin", TcpEndpoint("127.0.0.1", 9000), registry)
    assert tcp.endpoint_arg() == "ws://127.0.0.1:9000"
    sock = tmp_path / "rt.sock"
    unix = ProcessRuntimeProvider("bin", UnixEndpoint(sock), registry)
    assert unix.endpoint_arg() == f"unix:{sock}"


@pytest.mark.asyncio
async def test_create_passes_arguments_and_reports_health(tmp_path):
    binary, report = _fake_runtime(tmp_path)
    sock = tmp_path / "rt.sock"
    registry = ConnectedRuntimeRegistry()
    provider = ProcessRuntimeProvider(
        binary, UnixEndpoint(sock), registry, connect_timeout=10
    )
    handle, data = await _create_connected(
        provider, registry, report, "rt-1", RuntimeConfig(working_dir="/work")
    )
    try:
        assert data["argv"] == [
            "--endpoint",
            f"unix:{sock}",
            "--runtime-id",
            "rt-1",
            "--working-dir",
            "/work",
        ]
        assert await handle.health_check() == HealthStatus.healthy()
    finally:
        await handle.stop()
    assert await registry.runtime_transport("rt-1") is None
    assert await handle.health_check() == HealthStatus.unhealthy("runtime disconnected")


@pytest.mark.asyncio
async def test_stop_twice_is_harmless(tmp_path):
    binary, report = _fake_runtime(tmp_path)
    registry = ConnectedRuntimeRegistry()
    provider = ProcessRuntimeProvider(
        binary, TcpEndpoint("127.0.0.1", 1), registry, connect_timeout=10
    )
    handle, _ = await _create_connected(
        provider, registry, report, "rt-2", RuntimeConfig(working_dir=str(tmp_path))
    )
    await handle.stop()
    await handle.stop()
    assert (await handle.health_check()).reason == "runtime disconnected"


@pytest.mark.asyncio
async def test_sandbox_adds_caps_and_scrubs_secrets(tmp_path, monkeypatch):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "secret")
    binary, report = _fake_runtime(tmp_path)
    caps = tmp_path / "caps.json"
    registry = ConnectedRuntimeRegistry()
    provider = ProcessRuntimeProvider(
        binary,
        TcpEndpoint("127.0.0.1", 1),
        registry,
        connect_timeout=10,
        sandbox=SandboxPolicy(capabilities_file=caps),
    )
    handle, data = await _create_connected(
        provider, registry, report, "rt-3", RuntimeConfig(working_dir=str(tmp_path))
    )
    await handle.stop()
    assert data["argv"][-2:] == ["--sandbox-caps", str(caps)]
    assert "ANTHROPIC_API_KEY" not in data["env"]
    assert data["env"].get("PATH") == os.environ.get("PATH")


@pytest.mark.asyncio
async def test_without_sandbox_environment_is_inherited(tmp_path, monkeypatch):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "secret")
    binary, report = _fake_runtime(tmp_path)
    registry = ConnectedRuntimeRegistry()
    provider = ProcessRuntimeProvider(
        binary, TcpEndpoint("127.0.0.1", 1), registry, connect_timeout=10
    )
    handle, data = await _create_connected(
        provider, registry, report, "rt-4", RuntimeConfig(working_dir=str(tmp_path))
    )
    await handle.stop()
    assert "--sandbox-caps" not in data["argv"]
    assert data["env"]["ANTHROPIC_API_KEY"] == "secret"


@pytest.mark.asyncio
async def test_create_times_out_when_runtime_never_connects(tmp_path):
    binary, _ = _fake_runtime(tmp_path)
    registry = ConnectedRuntimeRegistry()
    provider = ProcessRuntimeProvider(
        binary, TcpEndpoint("127.0.0.1", 1), registry, connect_timeout=0.3
    )
    with pytest.raises(RuntimeProviderError, match="runtime connection timed out"):
        await provider.create("rt-5", RuntimeConfig(working_dir=str(tmp_path)))


@pytest.mark.asyncio
async def test_missing_binary_is_a_provider_error(tmp_path):
    registry = ConnectedRuntimeRegistry()
    provider = ProcessRuntimeProvider(
        tmp_path / "does-not-exist", TcpEndpoint("127.0.0.1", 1), registry
    )
    with pytest.raises(RuntimeProviderError) as info:
        await provider.create("rt-6", RuntimeConfig(working_dir=str(tmp_path)))
    assert str(info.value).startswith("provider error: ")