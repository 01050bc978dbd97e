import asyncio
import os
import shutil
import stat
import tempfile
from pathlib import Path

import pytest
import websockets

from october.errors import BindFailedError, ExecutorConnectionError
from october.runtime_listener import RuntimeListenerServer, TcpEndpoint, UnixEndpoint


@pytest.fixture
def sock_dir():
    path = tempfile.mkdtemp(prefix="oct")
    yield Path(path)
    shutil.rmtree(path, ignore_errors=True)


@pytest.mark.asyncio
async def test_tcp_accepts_a_runtime_connection():
    listener = await RuntimeListenerServer.bind(TcpEndpoint("127.0.0.1", 0))
    async with listener:
        host, port = listener.tcp_addr()
        assert host == "127.0.0.1"
        assert port > 0
        client = await websockets.connect(f"ws://{host}:{port}")
        try:
            conn = await asyncio.wait_for(listener.accept(), 5)
            await client.send("hello")
            assert await asyncio.wait_for(conn.recv(), 5) == "hello"
        finally:
            await client.close()


@pytest.mark.asyncio
async def test_unix_bind_creates_private_dir_and_accepts(sock_dir):
    path = sock_dir / "nested" / "rt.sock"
    listener = await RuntimeListenerServer.bind(UnixEndpoint(path))
    async with listener:
        assert listener.tcp_addr() is None
        assert listener.endpoint == UnixEndpoint(path)
        assert stat.S_IMODE(os.stat(path.parent).st_mode) == 0o700
        client = await websockets.unix_connect(str(path), uri="ws://localhost/")
        try:
            conn = await asyncio.wait_for(listener.accept(), 5)
            await conn.send("ready")
            assert await asyncio.wait_for(client.recv(), 5) == "ready"
        finally:
            await client.close()


@pytest.mark.asyncio
async def test_unix_bind_replaces_stale_socket_and_close_unlinks(sock_dir):
    path = sock_dir / "rt.sock"
    path.write_text("stale")
    listener = await RuntimeListenerServer.bind(UnixEndpoint(path))
    assert stat.S_ISSOCK(os.stat(path).st_mode)
    await listener.close()
    assert not path.exists()


@pytest.mark.asyncio
async def test_accept_after_close_raises(sock_dir):
    listener = await RuntimeListenerServer.bind(UnixEndpoint(sock_dir / "rt.sock"))
    await listener.close()
    with pytest.raises(ExecutorConnectionError):
        await listener.accept()
    with pytest.raises(ExecutorConnectionError):
        await listener.accept()


@pytest.mark.asyncio
async def test_pending_accept_fails_when_closed(sock_dir):
    listener = await RuntimeListenerServer.bind(UnixEndpoint(sock_dir / "rt.sock"))
    waiting = asyncio.ensure_future(listener.accept())
    await asyncio.sleep(0)
    await listener.close()
    with pytest.raises(ExecutorConnectionError) as info:
        await asyncio.wait_for(waiting, 5)
    assert str(info.value).startswith("connection failed: ")
    assert waiting.done()


@pytest.mark.asyncio
async def test_unix_bind_under_a_file_fails(sock_dir):
    blocker = sock_dir / "file"
    blocker.write_text("x")
    with pytest.raises(BindFailedError):
        await RuntimeListenerServer.bind(UnixEndpoint(blocker / "rt.sock"))