# october

Asyncio building blocks for running agent tools in sandboxed runtime
processes. An executor supervises the runtimes, and a local daemon drives the
jobs.

## What is in the package

- `october.models`: capability specs (`CapabilitySpec`, `DirGrant`,
  `FileGrant`, `WorkingDirGrant`, `Access`, `NetworkPolicy`) and agent
  conversation messages (`Message`, `UserMessageInput`, `ToolResultInput`).
- `october.capabilities`: `expand_home` and `resolve_user_paths`. These expand
  `~` and `$HOME` in the paths of a spec's grants.
- `october.env_scrub`: `SANDBOX_ENV_ALLOWLIST` and `scrubbed_env`. They give
  the short list of environment variables that a sandboxed child may inherit.
- `october.wire`: the JSON messages that pass between client, executor, runtime
  and daemon. This covers runtime states and configs, tool calls and results,
  executor commands and events, workflow definitions, job summaries and daemon
  requests and responses.
- `october.provider`: the abstract `RuntimeProvider`, `RuntimeHandle` and
  `RuntimeTransport`, plus `HealthStatus`.
- `october.registry`: `RuntimeRegistry`, the lifecycle state machine
  (Creating → Running → Stopping, with Failed and restarts).
- `october.connected_registry`: `ConnectedRuntimeRegistry`. It maps connected
  runtime ids to their tool-call transports and signals when a runtime connects.
- `october.runtime_listener`: `RuntimeListenerServer`, `TcpEndpoint` and
  `UnixEndpoint`. Runtime children connect back to this WebSocket listener.
- `october.socket_transport`: `SocketRuntimeTransport`. It matches each tool
  call to its reply by call id. When the link drops, every pending call fails
  with `TransportDisconnectedError`.
- `october.process_provider`: `ProcessRuntimeProvider` and `SandboxPolicy`.
  The provider spawns the runtime binary and waits for it to connect back.
- `october.executor`: `Executor`, `serve_runtime_connections` and
  `handle_runtime_connection`.
- `october.executor_client` and `october.inmem_transport`: `ExecutorClient`,
  the abstract `ExecutorTransport`, and `InMemExecutorTransport`, which drives
  lifecycle in-process.
- `october.framing` and `october.daemon_client`: the daemon's control-socket
  protocol and a client for it. The protocol uses JSON frames, each preceded by
  a 4-byte big-endian length.
- `october.errors`: every error the package raises.

## Capability specs

```python
from october.models import CapabilitySpec
from october.capabilities import resolve_user_paths

spec = CapabilitySpec.load("caps.json")
spec = resolve_user_paths(spec, "/home/alice")
print(spec.network, spec.grants)
```

A capability file looks like this:

```json
{
  "network": "Block",
  "grants": [
    { "type": "Dir", "value": { "path": "~/.cargo", "access": "Read" } },
    { "type": "File", "value": { "path": "/dev/null", "access": "ReadWrite" } },
    { "type": "WorkingDir", "value": { "access": "ReadWrite" } }
  ]
}
```

`CapabilitySpec.load` raises `CliConfigError` when the file cannot be read or
parsed.

`expand_home` rewrites a leading `~/`, a bare `~`, and any embedded `$HOME` or
`${HOME}`. It leaves a path such as `~backup/data` unchanged. When the home
directory is `None`, every path is returned as it is.

`resolve_user_paths` reads `$HOME` from the environment when you do not pass a
home directory. Working-directory grants hold no path and pass through
unchanged.

## Runtime lifecycle

```python
from october.registry import RuntimeRegistry
from october.wire import RuntimeConfig

registry = RuntimeRegistry()
await registry.begin_create("rt-1", RuntimeConfig(working_dir="/tmp"))
```

An invalid step raises `RuntimeAlreadyExistsError`, `RuntimeNotFoundError` or
`InvalidTransitionError`. All three are subclasses of `RuntimeLifecycleError`.

Each runtime can be a child process:

```python
from october.connected_registry import ConnectedRuntimeRegistry
from october.process_provider import ProcessRuntimeProvider, SandboxPolicy
from october.runtime_listener import RuntimeListenerServer, UnixEndpoint

connected = ConnectedRuntimeRegistry()
listener = await RuntimeListenerServer.bind(UnixEndpoint("/tmp/october/rt.sock"))
provider = ProcessRuntimeProvider(
    "/usr/local/bin/october-runtime",
    listener.endpoint,
    connected,
    sandbox=SandboxPolicy("caps.json"),
)
```

The child is started with these arguments: `--endpoint`, `--runtime-id`,
`--working-dir` and, when a sandbox policy is set, `--sandbox-caps`. With a
sandbox policy, its environment is also reduced to the allowlist.

## Executor

`Executor(executor_id, server_url, provider, ...)` connects to a control server
over WebSocket and registers itself. `run(stop_event)` then carries out create,
destroy, restart and query commands until the event is set or the connection
ends. Every `health_check_interval` seconds it checks the running runtimes and
restarts unhealthy ones, up to `max_restarts` times. When you give it a
`runtime_listener`, it also accepts runtime links and relays tool calls to them.

## Talking to the daemon

```python
from october import daemon_client

jobs = await daemon_client.list_jobs(state_dir)
for job in jobs:
    print(job.job_id, job.status)
```

The client also provides `submit`, `status`, `stop`, `resume`, `remove`,
`shutdown`, `logs` and `run_attached`. If no daemon is listening on
`<state_dir>/daemon.sock`, they raise `CliExecutorError`.

## What the package does not do

- It provides no `october` command and no daemon server. It only speaks the
  daemon's protocol as a client.
- It holds no server-side executor transport, so tool calls cannot be relayed
  to an executor over the server's WebSocket connection. Lifecycle from a
  client works only in-process, through `InMemExecutorTransport`.
- It has no runtime binary, no workflow engine and no LLM providers. The
  runtime program that `ProcessRuntimeProvider` starts must be supplied
  separately.
- It ships no built-in default capability spec. You must supply a spec file.

## Tests

The test suite uses pytest and pytest-asyncio, which the `test` extra installs:

```
pip install -e ".[test]"
pytest
```