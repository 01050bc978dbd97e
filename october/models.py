"""Shared data types: sandbox capability specs and agent conversation messages."""

from __future__ import annotations

import enum
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Union

from october.errors import CliConfigError


class Access(enum.Enum):
    """Access level a grant gives to a path."""

    READ = "Read"
    READ_WRITE = "ReadWrite"


class NetworkPolicy(enum.Enum):
    """Whether the sandboxed runtime may use the network."""

    ALLOW = "Allow"
    BLOCK = "Block"


@dataclass(frozen=True)
class DirGrant:
    path: str
    access: Access


@dataclass(frozen=True)
class FileGrant:
    path: str
    access: Access


@dataclass(frozen=True)
class WorkingDirGrant:
    access: Access


Grant = Union[DirGrant, FileGrant, WorkingDirGrant]


def _require(mapping: dict, key: str) -> Any:
    try:
        return mapping[key]
    except KeyError:
        raise ValueError(f"missing field `{key}`") from None


def _path(mapping: dict) -> str:
    value = _require(mapping, "path")
    if not isinstance(value, str):
        raise ValueError("field `path` must be a string")
    return value


def _access(mapping: dict) -> Access:
    return Access(_require(mapping, "access"))


def grant_from_dict(data: Any) -> Grant:
    """Build a grant from its tagged JSON form: ``{"type": ..., "value": {...}}``."""
    if not isinstance(data, dict):
        raise ValueError("grant must be an object")
    kind = _require(data, "type")
    value = _require(data, "value")
    if not isinstance(value, dict):
        raise ValueError("grant value must be an object")
    if kind == "Dir":
        return DirGrant(path=_path(value), access=_access(value))
    if kind == "File":
        return FileGrant(path=_path(value), access=_access(value))
    if kind == "WorkingDir":
        return WorkingDirGrant(access=_access(value))
    raise ValueError(f"unknown grant type {kind!r}")


def grant_to_dict(grant: Grant) -> dict:
    """Render a grant in its tagged JSON form."""
    if isinstance(grant, DirGrant):
        return {"type": "Dir", "value": {"path": grant.path, "access": grant.access.value}}
    if isinstance(grant, FileGrant):
        return {"type": "File", "value": {"path": grant.path, "access": grant.access.value}}
    if isinstance(grant, WorkingDirGrant):
        return {"type": "WorkingDir", "value": {"access": grant.access.value}}
    raise TypeError(f"not a grant: {grant!r}")


@dataclass(frozen=True)
class CapabilitySpec:
    """Everything a sandboxed runtime is allowed: network policy plus path grants."""

    network: NetworkPolicy
    grants: tuple = field(default_factory=tuple)

    def __post_init__(self) -> None:
        object.__setattr__(self, "grants", tuple(self.grants))

    @classmethod
    def from_dict(cls, data: Any) -> "CapabilitySpec":
        if not isinstance(data, dict):
            raise ValueError("capability spec must be an object")
        network = NetworkPolicy(_require(data, "network"))
        grants = _require(data, "grants")
        if not isinstance(grants, list):
            raise ValueError("field `grants` must be a list")
        return cls(network=network, grants=tuple(grant_from_dict(g) for g in grants))

    def to_dict(self) -> dict:
        return {
            "network": self.network.value,
            "grants": [grant_to_dict(g) for g in self.grants],
        }

    @classmethod
    def load(cls, path) -> "CapabilitySpec":
        """Read and parse a capability file."""
        path = Path(path)
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise CliConfigError(f"read capability file {path}: {exc}") from exc
        try:
            return cls.from_dict(json.loads(text))
        except ValueError as exc:
            raise CliConfigError(f"parse capability file {path}: {exc}") from exc


class Role(enum.Enum):
    USER = "User"
    TOOL = "Tool"


@dataclass(frozen=True)
class TextPart:
    text: str


@dataclass(frozen=True)
class ToolResultPart:
    tool_call_id: str
    output: str
    is_error: bool


ContentPart = Union[TextPart, ToolResultPart]


@dataclass(frozen=True)
class Message:
    """One conversation message made of content parts."""

    id: str
    role: Role
    parts: tuple = field(default_factory=tuple)

    def __post_init__(self) -> None:
        object.__setattr__(self, "parts", tuple(self.parts))

    @classmethod
    def user(cls, message_id: str, text: str) -> "Message":
        return cls(id=message_id, role=Role.USER, parts=(TextPart(text=text),))

    @classmethod
    def tool_result(cls, tool_call_id: str, output: str, is_error: bool) -> "Message":
        return cls(
            id=f"result:{tool_call_id}",
            role=Role.TOOL,
            parts=(ToolResultPart(tool_call_id=tool_call_id, output=output, is_error=is_error),),
        )


@dataclass(frozen=True)
class UserMessageInput:
    """Agent input: a message typed by the user."""

    id: str
    text: str

    def message_id(self) -> str:
        return self.id

    def to_message(self) -> Message:
        return Message.user(self.id, self.text)


@dataclass(frozen=True)
class ToolResultInput:
    """Agent input: the result of a tool call."""

    tool_call_id: str
    output: str
    is_error: bool

    def message_id(self) -> str:
        return f"result:{self.tool_call_id}"

    def to_message(self) -> Message:
        return Message.tool_result(self.tool_call_id, self.output, self.is_error)


AgentInput = Union[UserMessageInput, ToolResultInput]