"""Unix-socket client for the daemon: one request per connection."""

from __future__ import annotations

import asyncio
import contextlib
import sys
from pathlib import Path
from typing import Any, List, Optional, TextIO, Tuple

from october.errors import CliExecutorError
from october.framing import read_frame, write_frame
from october.wire import (
    JobStatus,
    JobSummary,
    StatusInfo,
    SubmitRequest,
    decode_daemon_response,
    encode_daemon_request,
)

_NO_DAEMON = "no daemon running; start it with `october daemon start`"

_LABELS = {
    "Submitted": "submitted",
    "JobList": "job-list",
    "Ack": "ack",
    "Status": "status",
    "LogFrame": "log-frame",
    "End": "end",
}


def socket_path(root) -> Path:
    """The daemon's control socket under the state root."""
    return Path(root) / "daemon.sock"


@contextlib.asynccontextmanager
async def _connection(root):
    try:
        reader, writer = await asyncio.open_unix_connection(str(socket_path(root)))
    except OSError:
        raise CliExecutorError(_NO_DAEMON) from None
    try:
        yield reader, writer
    finally:
        writer.close()
        with contextlib.suppress(OSError):
            await writer.wait_closed()


async def _send(writer, frame: dict) -> None:
    try:
        await write_frame(writer, frame)
    except (OSError, ValueError, TypeError) as exc:
        raise CliExecutorError(str(exc)) from exc


async def _receive(reader) -> Optional[Tuple[str, Any]]:
    try:
        data = await read_frame(reader)
    except (OSError, EOFError, ValueError) as exc:
        raise CliExecutorError(str(exc)) from exc
    if data is None:
        return None
    try:
        return decode_daemon_response(data)
    except ValueError as exc:
        raise CliExecutorError(str(exc)) from exc


def _unexpected(kind: str, value: Any) -> CliExecutorError:
    if kind == "Error":
        return CliExecutorError(value)
    return CliExecutorError(f"unexpected daemon response: {_LABELS.get(kind, kind)}")


async def _request(root, kind: str, payload: Any = None) -> Tuple[str, Any]:
    async with _connection(root) as (reader, writer):
        await _send(writer, encode_daemon_request(kind, payload))
        response = await _receive(reader)
    if response is None:
        raise CliExecutorError("daemon closed connection")
    return response


async def _expect(root, expected: str, kind: str, payload: Any = None) -> Any:
    got, value = await _request(root, kind, payload)
    if got != expected:
        raise _unexpected(got, value)
    return value


async def submit(root, request: SubmitRequest) -> str:
    """Submit a job; returns its id."""
    return await _expect(root, "Submitted", "Submit", request)


async def list_jobs(root) -> List[JobSummary]:
    return await _expect(root, "JobList", "List")


async def status(root) -> StatusInfo:
    return await _expect(root, "Status", "Status")


async def stop(root, job_id: str) -> None:
    await _expect(root, "Ack", "Stop", {"job_id": job_id})


async def resume(root, job_id: str, message: str) -> None:
    await _expect(root, "Ack", "Resume", {"job_id": job_id, "message": message})


async def remove(root, job_id: str) -> None:
    await _expect(root, "Ack", "Remove", {"job_id": job_id})


async def shutdown(root, drain: bool) -> None:
    """Stop the daemon; with ``drain`` it waits for running jobs first."""
    await _expect(root, "Ack", "Shutdown", {"drain": drain})


async def logs(root, job_id: str, follow: bool, out: Optional[TextIO] = None) -> None:
    """Copy a job's log frames to ``out`` (default stdout) until the daemon ends them."""
    out = sys.stdout if out is None else out
    async with _connection(root) as (reader, writer):
        await _send(writer, encode_daemon_request("Logs", {"job_id": job_id, "follow": follow}))
        while True:
            response = await _receive(reader)
            if response is None:
                return
            kind, value = response
            if kind == "LogFrame":
                out.write(value)
                out.flush()
            elif kind == "End":
                return
            elif kind == "Error":
                raise CliExecutorError(value)
            else:
                raise CliExecutorError("unexpected frame in log stream")


async def run_attached(root, request: SubmitRequest, out: Optional[TextIO] = None) -> int:
    """Submit a job and follow its output; returns 1 if it failed, else 0."""
    out = sys.stdout if out is None else out
    job_id = await submit(root, request)
    out.write(f"job {job_id}\n")
    out.flush()
    await logs(root, job_id, True, out)
    final = next((j.status for j in await list_jobs(root) if j.job_id == job_id), None)
    return 1 if final is JobStatus.FAILED else 0