"""Length-prefixed JSON frames for the daemon control socket.

Each frame is a 4-byte big-endian length followed by that many bytes of JSON.
"""

from __future__ import annotations

import asyncio
import json
import struct
from typing import Any

_HEADER = struct.Struct(">I")
_MAX_LEN = 0xFFFFFFFF


async def write_frame(writer, value: Any) -> None:
    """Write one frame holding ``value`` as compact JSON, then drain the writer."""
    body = json.dumps(value, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    if len(body) > _MAX_LEN:
        raise ValueError(f"frame of {len(body)} bytes exceeds the 4-byte length prefix")
    writer.write(_HEADER.pack(len(body)) + body)
    await writer.drain()


async def read_frame(reader: asyncio.StreamReader) -> Any:
    """Read one frame; ``None`` when the stream ends before a full length header.

    A body cut short raises :class:`asyncio.IncompleteReadError`; a body that is
    not JSON raises :class:`ValueError`.
    """
    try:
        header = await reader.readexactly(_HEADER.size)
    except asyncio.IncompleteReadError:
        return None
    (length,) = _HEADER.unpack(header)
    body = await reader.readexactly(length)
    return json.loads(body.decode("utf-8"))