"""Wire messages exchanged between client, executor, runtime and daemon.

Every tagged union is encoded as ``{"type": <variant>, "value": <payload>}``,
plain enums as their variant name, and optional fields as ``null`` when absent.
"""

from __future__ import annotations

import enum
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

from october.models import CapabilitySpec


def _dumps(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def _obj(data: Any, what: str) -> dict:
    if not isinstance(data, dict):
        raise ValueError(f"{what} must be a JSON object")
    return data


def _get(data: dict, key: str) -> Any:
    try:
        return data[key]
    except KeyError:
        raise ValueError(f"missing field `{key}`") from None


def _str(data: dict, key: str) -> str:
    value = _get(data, key)
    if not isinstance(value, str):
        raise ValueError(f"field `{key}` must be a string")
    return value


def _int(data: dict, key: str) -> int:
    value = _get(data, key)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"field `{key}` must be an integer")
    return value


def _bool(data: dict, key: str, default: bool) -> bool:
    value = data.get(key, default)
    if not isinstance(value, bool):
        raise ValueError(f"field `{key}` must be a boolean")
    return value


def _opt_str(data: dict, key: str) -> Optional[str]:
    value = data.get(key)
    if value is not None and not isinstance(value, str):
        raise ValueError(f"field `{key}` must be a string or null")
    return value


def _opt_int(data: dict, key: str) -> Optional[int]:
    value = data.get(key)
    if value is not None and (isinstance(value, bool) or not isinstance(value, int)):
        raise ValueError(f"field `{key}` must be an integer or null")
    return value


def _enum(cls, value: Any):
    try:
        return cls(value)
    except ValueError:
        raise ValueError(f"unknown {cls.__name__} {value!r}") from None


def _tagged(tag: str, value: Any) -> dict:
    return {"type": tag, "value": value}


def _untag(data: Any, what: str) -> Tuple[str, Any]:
    data = _obj(data, what)
    return _str(data, "type"), _get(data, "value")


# --- runtimes -------------------------------------------------------------------


class RuntimeState(enum.Enum):
    """Lifecycle state of a runtime managed by an executor."""

    CREATING = "Creating"
    RUNNING = "Running"
    STOPPING = "Stopping"
    STOPPED = "Stopped"
    FAILED = "Failed"


@dataclass(frozen=True)
class RuntimeConfig:
    working_dir: str


@dataclass(frozen=True)
class RuntimeInfo:
    runtime_id: str
    state: RuntimeState
    restart_count: int = 0


def _config_to(config: RuntimeConfig) -> dict:
    return {"working_dir": config.working_dir}


def _config_from(data: Any) -> RuntimeConfig:
    return RuntimeConfig(working_dir=_str(_obj(data, "runtime config"), "working_dir"))


def _info_to(info: RuntimeInfo) -> dict:
    return {
        "runtime_id": info.runtime_id,
        "state": info.state.value,
        "restart_count": info.restart_count,
    }


def _info_from(data: Any) -> RuntimeInfo:
    data = _obj(data, "runtime info")
    return RuntimeInfo(
        runtime_id=_str(data, "runtime_id"),
        state=_enum(RuntimeState, _get(data, "state")),
        restart_count=_int(data, "restart_count"),
    )


# --- tool calls -------------------------------------------------------------------


@dataclass(frozen=True)
class ToolCall:
    """A tool invocation: the tool variant (e.g. ``"Bash"``) and its input object."""

    tool: str
    input: dict = field(default_factory=dict)


@dataclass(frozen=True)
class ToolOutput:
    stdout: str
    stderr: str
    exit_code: int


@dataclass(frozen=True)
class ToolError:
    reason: str


ToolResult = Union[ToolOutput, ToolError]


@dataclass(frozen=True)
class ToolCallRequest:
    call_id: str
    call: ToolCall


@dataclass(frozen=True)
class ToolCallResponse:
    call_id: str
    result: ToolResult


@dataclass(frozen=True)
class CancelCallRequest:
    call_id: str


@dataclass(frozen=True)
class RuntimeReady:
    runtime_id: str


def _call_to(call: ToolCall) -> dict:
    return _tagged(call.tool, dict(call.input))


def _call_from(data: Any) -> ToolCall:
    tag, value = _untag(data, "tool call")
    return ToolCall(tool=tag, input=dict(_obj(value, "tool input")))


def _result_to(result: ToolResult) -> dict:
    if isinstance(result, ToolOutput):
        return _tagged(
            "Ok",
            {"stdout": result.stdout, "stderr": result.stderr, "exit_code": result.exit_code},
        )
    if isinstance(result, ToolError):
        return _tagged("Err", {"reason": result.reason})
    raise TypeError(f"not a tool result: {result!r}")


def _result_from(data: Any) -> ToolResult:
    tag, value = _untag(data, "tool result")
    value = _obj(value, "tool result value")
    if tag == "Ok":
        return ToolOutput(
            stdout=_str(value, "stdout"),
            stderr=_str(value, "stderr"),
            exit_code=_int(value, "exit_code"),
        )
    if tag == "Err":
        return ToolError(reason=_str(value, "reason"))
    raise ValueError(f"unknown tool result variant {tag!r}")


def _request_to(request: ToolCallRequest) -> dict:
    return {"call_id": request.call_id, "call": _call_to(request.call)}


def _request_from(data: Any) -> ToolCallRequest:
    data = _obj(data, "tool call request")
    return ToolCallRequest(call_id=_str(data, "call_id"), call=_call_from(_get(data, "call")))


RuntimeInboundMessage = Union[ToolCallRequest, CancelCallRequest]
RuntimeOutboundMessage = Union[RuntimeReady, ToolCallResponse]


def encode_runtime_inbound(message: RuntimeInboundMessage) -> str:
    """Encode a message sent to a runtime as JSON text."""
    if isinstance(message, ToolCallRequest):
        body = _tagged("ToolCall", _request_to(message))
    elif isinstance(message, CancelCallRequest):
        body = _tagged("CancelCall", {"call_id": message.call_id})
    else:
        raise TypeError(f"not a runtime inbound message: {message!r}")
    return _dumps(body)


def decode_runtime_inbound(text) -> RuntimeInboundMessage:
    """Decode JSON text sent to a runtime."""
    tag, value = _untag(json.loads(text), "runtime inbound message")
    if tag == "ToolCall":
        return _request_from(value)
    if tag == "CancelCall":
        return CancelCallRequest(call_id=_str(_obj(value, "cancel request"), "call_id"))
    raise ValueError(f"unknown runtime inbound variant {tag!r}")


def encode_runtime_outbound(message: RuntimeOutboundMessage) -> str:
    """Encode a message a runtime sends back, as JSON text."""
    if isinstance(message, RuntimeReady):
        body = _tagged("Ready", {"runtime_id": message.runtime_id})
    elif isinstance(message, ToolCallResponse):
        body = _tagged(
            "ToolCallResponse",
            {"call_id": message.call_id, "result": _result_to(message.result)},
        )
    else:
        raise TypeError(f"not a runtime outbound message: {message!r}")
    return _dumps(body)


def decode_runtime_outbound(text) -> RuntimeOutboundMessage:
    """Decode JSON text sent by a runtime."""
    tag, value = _untag(json.loads(text), "runtime outbound message")
    value = _obj(value, "runtime outbound value")
    if tag == "Ready":
        return RuntimeReady(runtime_id=_str(value, "runtime_id"))
    if tag == "ToolCallResponse":
        return ToolCallResponse(
            call_id=_str(value, "call_id"), result=_result_from(_get(value, "result"))
        )
    raise ValueError(f"unknown runtime outbound variant {tag!r}")


# --- executor commands and events --------------------------------------------------


@dataclass(frozen=True)
class CreateRuntimeCmd:
    runtime_id: str
    config: RuntimeConfig


@dataclass(frozen=True)
class DestroyRuntimeCmd:
    runtime_id: str


@dataclass(frozen=True)
class RestartRuntimeCmd:
    runtime_id: str


@dataclass(frozen=True)
class QueryRuntimesCmd:
    pass


@dataclass(frozen=True)
class ToolCallCmd:
    runtime_id: str
    call: ToolCallRequest


@dataclass(frozen=True)
class CancelToolCallCmd:
    runtime_id: str
    call_id: str


ExecutorCommand = Union[
    CreateRuntimeCmd,
    DestroyRuntimeCmd,
    RestartRuntimeCmd,
    QueryRuntimesCmd,
    ToolCallCmd,
    CancelToolCallCmd,
]


@dataclass(frozen=True)
class RegisteredEvent:
    executor_id: str


@dataclass(frozen=True)
class RuntimeStateChangedEvent:
    runtime_id: str
    state: RuntimeState


@dataclass(frozen=True)
class RuntimesListedEvent:
    runtimes: tuple = field(default_factory=tuple)

    def __post_init__(self) -> None:
        object.__setattr__(self, "runtimes", tuple(self.runtimes))


@dataclass(frozen=True)
class CommandFailedEvent:
    message: str


@dataclass(frozen=True)
class ToolResultEvent:
    runtime_id: str
    call_id: str
    result: ToolResult


ExecutorEvent = Union[
    RegisteredEvent,
    RuntimeStateChangedEvent,
    RuntimesListedEvent,
    CommandFailedEvent,
    ToolResultEvent,
]


def _command_to(cmd: ExecutorCommand) -> dict:
    if isinstance(cmd, CreateRuntimeCmd):
        return _tagged(
            "CreateRuntime", {"runtime_id": cmd.runtime_id, "config": _config_to(cmd.config)}
        )
    if isinstance(cmd, DestroyRuntimeCmd):
        return _tagged("DestroyRuntime", {"runtime_id": cmd.runtime_id})
    if isinstance(cmd, RestartRuntimeCmd):
        return _tagged("RestartRuntime", {"runtime_id": cmd.runtime_id})
    if isinstance(cmd, QueryRuntimesCmd):
        return _tagged("QueryRuntimes", {})
    if isinstance(cmd, ToolCallCmd):
        return _tagged("ToolCall", {"runtime_id": cmd.runtime_id, "call": _request_to(cmd.call)})
    if isinstance(cmd, CancelToolCallCmd):
        return _tagged("CancelToolCall", {"runtime_id": cmd.runtime_id, "call_id": cmd.call_id})
    raise TypeError(f"not an executor command: {cmd!r}")


def _command_from(data: Any) -> ExecutorCommand:
    tag, value = _untag(data, "executor command")
    value = _obj(value, "executor command value")
    if tag == "CreateRuntime":
        return CreateRuntimeCmd(
            runtime_id=_str(value, "runtime_id"), config=_config_from(_get(value, "config"))
        )
    if tag == "DestroyRuntime":
        return DestroyRuntimeCmd(runtime_id=_str(value, "runtime_id"))
    if tag == "RestartRuntime":
        return RestartRuntimeCmd(runtime_id=_str(value, "runtime_id"))
    if tag == "QueryRuntimes":
        return QueryRuntimesCmd()
    if tag == "ToolCall":
        return ToolCallCmd(
            runtime_id=_str(value, "runtime_id"), call=_request_from(_get(value, "call"))
        )
    if tag == "CancelToolCall":
        return CancelToolCallCmd(
            runtime_id=_str(value, "runtime_id"), call_id=_str(value, "call_id")
        )
    raise ValueError(f"unknown executor command {tag!r}")


def _event_to(event: ExecutorEvent) -> dict:
    if isinstance(event, RegisteredEvent):
        return _tagged("Registered", {"executor_id": event.executor_id})
    if isinstance(event, RuntimeStateChangedEvent):
        return _tagged(
            "RuntimeStateChanged",
            {"runtime_id": event.runtime_id, "state": event.state.value},
        )
    if isinstance(event, RuntimesListedEvent):
        return _tagged("RuntimesListed", {"runtimes": [_info_to(r) for r in event.runtimes]})
    if isinstance(event, CommandFailedEvent):
        return _tagged("CommandFailed", {"message": event.message})
    if isinstance(event, ToolResultEvent):
        return _tagged(
            "ToolResult",
            {
                "runtime_id": event.runtime_id,
                "call_id": event.call_id,
                "result": _result_to(event.result),
            },
        )
    raise TypeError(f"not an executor event: {event!r}")


def _event_from(data: Any) -> ExecutorEvent:
    tag, value = _untag(data, "executor event")
    value = _obj(value, "executor event value")
    if tag == "Registered":
        return RegisteredEvent(executor_id=_str(value, "executor_id"))
    if tag == "RuntimeStateChanged":
        return RuntimeStateChangedEvent(
            runtime_id=_str(value, "runtime_id"),
            state=_enum(RuntimeState, _get(value, "state")),
        )
    if tag == "RuntimesListed":
        runtimes = _get(value, "runtimes")
        if not isinstance(runtimes, list):
            raise ValueError("field `runtimes` must be a list")
        return RuntimesListedEvent(runtimes=tuple(_info_from(r) for r in runtimes))
    if tag == "CommandFailed":
        return CommandFailedEvent(message=_str(value, "message"))
    if tag == "ToolResult":
        return ToolResultEvent(
            runtime_id=_str(value, "runtime_id"),
            call_id=_str(value, "call_id"),
            result=_result_from(_get(value, "result")),
        )
    raise ValueError(f"unknown executor event {tag!r}")


@dataclass(frozen=True)
class ExecutorInboundMessage:
    """A command addressed to an executor, correlated by ``request_id``."""

    request_id: str
    command: Any

    def to_json(self) -> str:
        return _dumps({"request_id": self.request_id, "command": _command_to(self.command)})

    @classmethod
    def from_json(cls, text) -> "ExecutorInboundMessage":
        data = _obj(json.loads(text), "executor inbound message")
        return cls(
            request_id=_str(data, "request_id"), command=_command_from(_get(data, "command"))
        )


@dataclass(frozen=True)
class ExecutorOutboundMessage:
    """An event from an executor, correlated by ``request_id``."""

    request_id: str
    event: Any

    def to_json(self) -> str:
        return _dumps({"request_id": self.request_id, "event": _event_to(self.event)})

    @classmethod
    def from_json(cls, text) -> "ExecutorOutboundMessage":
        data = _obj(json.loads(text), "executor outbound message")
        return cls(request_id=_str(data, "request_id"), event=_event_from(_get(data, "event")))


# --- workflows ----------------------------------------------------------------------


@dataclass
class WorkflowTransition:
    to: str
    condition: Optional[str] = None


@dataclass
class WorkflowAgentDef:
    name: str
    model: str
    system_prompt: Optional[str] = None
    output_schema: Any = None
    allow_ask_user: bool = False
    transitions: Optional[List[WorkflowTransition]] = None
    max_iterations: Optional[int] = None
    max_retries: Optional[int] = None
    allowed_tools: Optional[List[str]] = None


def _agent_to(agent: WorkflowAgentDef) -> dict:
    return {
        "name": agent.name,
        "system_prompt": agent.system_prompt,
        "model": agent.model,
        "output_schema": agent.output_schema,
        "allow_ask_user": agent.allow_ask_user,
        "transitions": None
        if agent.transitions is None
        else [{"to": t.to, "condition": t.condition} for t in agent.transitions],
        "max_iterations": agent.max_iterations,
        "max_retries": agent.max_retries,
        "allowed_tools": None if agent.allowed_tools is None else list(agent.allowed_tools),
    }


def _agent_from(data: Any) -> WorkflowAgentDef:
    data = _obj(data, "workflow agent")
    transitions = data.get("transitions")
    if transitions is not None:
        if not isinstance(transitions, list):
            raise ValueError("field `transitions` must be a list or null")
        transitions = [
            WorkflowTransition(
                to=_str(_obj(t, "transition"), "to"), condition=_opt_str(t, "condition")
            )
            for t in transitions
        ]
    tools = data.get("allowed_tools")
    if tools is not None:
        if not isinstance(tools, list) or not all(isinstance(t, str) for t in tools):
            raise ValueError("field `allowed_tools` must be a list of strings or null")
        tools = list(tools)
    return WorkflowAgentDef(
        name=_str(data, "name"),
        model=_str(data, "model"),
        system_prompt=_opt_str(data, "system_prompt"),
        output_schema=data.get("output_schema"),
        allow_ask_user=_bool(data, "allow_ask_user", False),
        transitions=transitions,
        max_iterations=_opt_int(data, "max_iterations"),
        max_retries=_opt_int(data, "max_retries"),
        allowed_tools=tools,
    )


@dataclass
class WorkflowDefinition:
    """A multi-agent workflow: the agents and which one starts."""

    start: str
    agents: List[WorkflowAgentDef] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Any) -> "WorkflowDefinition":
        data = _obj(data, "workflow")
        agents = _get(data, "agents")
        if not isinstance(agents, list):
            raise ValueError("field `agents` must be a list")
        return cls(start=_str(data, "start"), agents=[_agent_from(a) for a in agents])

    def to_dict(self) -> dict:
        return {"start": self.start, "agents": [_agent_to(a) for a in self.agents]}


# --- daemon protocol ------------------------------------------------------------------


class JobStatus(enum.Enum):
    RUNNING = "Running"
    SUSPENDED = "Suspended"
    AWAITING_USER_INPUT = "AwaitingUserInput"
    FINISHED = "Finished"
    FAILED = "Failed"


@dataclass
class JobSummary:
    job_id: str
    workflow_name: str
    status: JobStatus
    workdir: str

    @classmethod
    def from_dict(cls, data: Any) -> "JobSummary":
        data = _obj(data, "job summary")
        return cls(
            job_id=_str(data, "job_id"),
            workflow_name=_str(data, "workflow_name"),
            status=_enum(JobStatus, _get(data, "status")),
            workdir=_str(data, "workdir"),
        )


@dataclass
class StatusInfo:
    pid: int
    uptime_secs: int
    running: int
    suspended: int
    finished: int
    failed: int

    @classmethod
    def from_dict(cls, data: Any) -> "StatusInfo":
        data = _obj(data, "status info")
        return cls(
            pid=_int(data, "pid"),
            uptime_secs=_int(data, "uptime_secs"),
            running=_int(data, "running"),
            suspended=_int(data, "suspended"),
            finished=_int(data, "finished"),
            failed=_int(data, "failed"),
        )


@dataclass
class SubmitRequest:
    """A job submission; ``capabilities`` of ``None`` means the daemon's default."""

    workflow: WorkflowDefinition
    workdir: str
    input: str
    workflow_name: str
    capabilities: Optional[CapabilitySpec] = None

    def to_dict(self) -> dict:
        return {
            "workflow": self.workflow.to_dict(),
            "workdir": self.workdir,
            "input": self.input,
            "capabilities": None if self.capabilities is None else self.capabilities.to_dict(),
            "workflow_name": self.workflow_name,
        }


_REQUEST_KINDS = frozenset(
    {"Submit", "List", "Status", "Stop", "Resume", "Remove", "Logs", "Shutdown"}
)


def encode_daemon_request(kind: str, payload: Any = None) -> dict:
    """Build a daemon request frame for ``kind`` with the given payload."""
    if kind not in _REQUEST_KINDS:
        raise ValueError(f"unknown daemon request {kind!r}")
    if payload is None:
        value: Dict[str, Any] = {}
    elif isinstance(payload, SubmitRequest):
        value = payload.to_dict()
    elif isinstance(payload, dict):
        value = dict(payload)
    else:
        raise TypeError(f"unsupported daemon request payload: {payload!r}")
    return _tagged(kind, value)


def decode_daemon_response(data: Any) -> Tuple[str, Any]:
    """Decode a daemon response frame into ``(kind, value)``.

    ``Submitted`` yields the job id, ``JobList`` a list of :class:`JobSummary`,
    ``Status`` a :class:`StatusInfo`, ``LogFrame`` its text, ``Error`` its
    message, and ``Ack``/``End`` ``None``.
    """
    kind, value = _untag(data, "daemon response")
    value = _obj(value, "daemon response value")
    if kind == "Submitted":
        return kind, _str(value, "job_id")
    if kind == "JobList":
        jobs = _get(value, "jobs")
        if not isinstance(jobs, list):
            raise ValueError("field `jobs` must be a list")
        return kind, [JobSummary.from_dict(j) for j in jobs]
    if kind == "Status":
        return kind, StatusInfo.from_dict(value)
    if kind == "LogFrame":
        return kind, _str(value, "text")
    if kind == "Error":
        return kind, _str(value, "message")
    if kind in ("Ack", "End"):
        return kind, None
    raise ValueError(f"unknown daemon response {kind!r}")