"""Error types raised across the CLI, executor, lifecycle client and transports."""

from __future__ import annotations


class _DetailError(Exception):
    """An error carrying one detail string rendered through a message template."""

    template = "{}"

    def __init__(self, detail: str = "") -> None:
        self.detail = detail
        super().__init__(self.template.format(detail))


# --- command-line front end -------------------------------------------------


class CliError(_DetailError):
    """Base class for errors reported by the command-line front end."""


class CliIoError(CliError):
    template = "io error: {}"


class CliConfigError(CliError):
    template = "config error: {}"


class CliValidationError(CliError):
    template = "validation failed:\n{}"


class CliProviderError(CliError):
    template = "provider error: {}"


class CliExecutorError(CliError):
    template = "executor error: {}"


# --- runtime lifecycle --------------------------------------------------------


class RuntimeLifecycleError(_DetailError):
    """Base class for runtime lifecycle failures inside an executor."""


class RuntimeAlreadyExistsError(RuntimeLifecycleError):
    template = "runtime already exists: {}"


class RuntimeNotFoundError(RuntimeLifecycleError):
    template = "runtime not found: {}"


class InvalidTransitionError(RuntimeLifecycleError):
    """A lifecycle action was attempted from a state that does not allow it."""

    def __init__(self, from_state: str, action: str) -> None:
        self.from_state = from_state
        self.action = action
        Exception.__init__(
            self, f"invalid state transition from {from_state}: cannot {action}"
        )
        self.detail = str(self)


class RuntimeProviderError(RuntimeLifecycleError):
    template = "provider error: {}"


# --- executor process ---------------------------------------------------------


class ExecutorError(_DetailError):
    """Base class for executor connection and process failures."""


class ExecutorConnectionError(ExecutorError):
    template = "connection failed: {}"


class ExecutorSendFailedError(ExecutorError):
    template = "send failed: {}"


class ExecutorSerializationError(ExecutorError):
    template = "serialization error: {}"


class BindFailedError(ExecutorError):
    template = "bind failed: {}"


class SpawnFailedError(ExecutorError):
    template = "spawn failed: {}"


# --- lifecycle client -----------------------------------------------------------


class ClientError(_DetailError):
    """Base class for errors from the executor lifecycle client."""


class ClientSendFailedError(ClientError):
    template = "send failed: {}"


class ClientSerializationError(ClientError):
    template = "serialization error: {}"


class CommandFailedError(ClientError):
    template = "command failed: {}"


class ClientDisconnectedError(ClientError):
    template = "disconnected"


# --- tool-call transports -------------------------------------------------------


class TransportError(_DetailError):
    """Base class for tool-call transport failures."""


class TransportSendFailedError(TransportError):
    template = "send failed: {}"


class TransportSerializationError(TransportError):
    template = "serialization error: {}"


class TransportDisconnectedError(TransportError):
    template = "disconnected"