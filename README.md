# featuremanifest

Features are living documentation of what a system does. They describe
capabilities users have, persist as the code evolves, and are implemented
through short-lived sessions broken into agent-sized tasks.

This package gives AI coding agents and orchestrators access to a Manifest
feature server over HTTP:

- `featuremanifest.client.ManifestClient` is an HTTP client for the
  Manifest API (projects, directories, features, sessions, tasks, history).
- `featuremanifest.tools.ManifestTools` exposes that client as named tools
  (`get_task_context`, `start_task`, `complete_task`, `create_session`,
  `create_task`, `breakdown_feature`, `list_session_tasks`,
  `complete_session`, `list_features`, `search_features`, `get_feature`,
  `get_feature_history`, `get_project_context`, `get_active_feature`,
  `update_feature_state`, `create_project`, `add_project_directory`,
  `create_feature`, `plan_features`).
- `featuremanifest.protocol.McpServer` answers Model Context Protocol
  JSON-RPC messages (`initialize`, `ping`, `tools/list`, `tools/call`)
  read line by line from stdin, writing replies to stdout.
- `featuremanifest.types` holds the request and response dataclasses,
  `parse_request`, `input_schema` (JSON Schema for a request type) and
  `to_json`.
- `featuremanifest.security` holds `SecurityConfig`, an in-memory
  sliding-window `RateLimiter`, and the helpers `authorize`, `rate_limit`
  and `extract_client_ip`, which raise `RequestRejected` with status 401
  or 429.

## Installation

```
pip install featuremanifest
```

## Running the MCP server

```
mfst mcp
```

The server reads newline-delimited JSON-RPC messages on stdin until end of
input and writes one reply per line on stdout; log output goes to stderr so
the protocol channel stays clean. Register this command with your assistant
as a stdio MCP server. It needs a reachable Manifest API (see
`MANIFEST_URL` below).

For all commands and options:

```
mfst --help
```

## What this package does not do

It contains no Manifest API server and no storage. `mfst serve` (and `mfst`
with no command) reports on stderr that no storage backend is available and
exits with status 1. `mfst status` and `mfst stop` only print a message.
Point the client and the MCP server at a Manifest API running elsewhere.

## Configuration

| Variable                | Read by                         | Meaning                                        | Default                         |
|-------------------------|---------------------------------|------------------------------------------------|---------------------------------|
| `MANIFEST_URL`          | `ManifestClient.from_env`       | Base URL of the Manifest API                   | `http://localhost:17010/api/v1` |
| `MANIFEST_API_KEY`      | `ManifestClient.from_env`, `SecurityConfig.from_env` | Key sent as `Authorization: Bearer <key>` | unset (no authentication) |
| `MANIFEST_CORS_ORIGINS` | `SecurityConfig.from_env`       | Comma-separated allowed origins                | unset                           |
| `MANIFEST_RATE_LIMIT`   | `SecurityConfig.from_env`       | Requests per minute per client IP, only when a key is set | `100`                |
| `MANIFEST_LOG`          | `mfst`                          | Log level name                                 | `DEBUG`                         |

## Using the client from Python

```python
from featuremanifest.client import ManifestClient, NotFoundError

with ManifestClient("http://localhost:17010/api/v1", api_key="placeholder") as client:
    try:
        context = client.get_project_context("/home/user/projects/myapp")
        print(context.project.name, context.directory.path)
    except NotFoundError:
        print("This directory is not registered with any project")

    for summary in client.search_features("login", None, 5):
        print(summary["title"])
```

Most methods return the decoded JSON from the API. Errors are raised as
subclasses of `ClientError`: `NotFoundError` (404), `BadRequestError` (400),
`UnauthorizedError` (401), `ServerError` (any other failure status) and
`TransportError` for connection problems or undecodable responses.

## Calling tools directly

```python
from featuremanifest.tools import ManifestTools

tools = ManifestTools.from_env()
for tool in tools.list_tools():
    print(tool["name"])

print(tools.call("list_features", {"state": "specified", "limit": 10}))
```

`call` returns the tool's text result, usually pretty-printed JSON. Unknown
tools, arguments of the wrong shape, a malformed UUID, an unknown agent
type or feature state raise `ToolError` with JSON-RPC code -32602; failures
reported by the API raise `ToolError` with -32602 (not found, bad request)
or -32603 (everything else).

## Workflow in brief

1. Create a project and associate your working directory with it.
2. Define features by capability ("Password Login", "JSON Output"), not by
   phase or task.
3. Start a session on a leaf feature and break it down into tasks.
4. Agents fetch their task context, start the task, do the work and
   complete it.
5. Completing the session records a history entry and, by default, marks
   the feature as implemented.

## Development

```
pip install -e ".[test]"
pytest
```