"""JSON-RPC tool server speaking the Model Context Protocol over stdio."""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Callable, Mapping
from typing import Any, TextIO

from featuremanifest.tools import ManifestTools, ToolError

logger = logging.getLogger(__name__)

SERVER_NAME = "manifest"
SERVER_VERSION = "0.1.17"

SUPPORTED_PROTOCOL_VERSIONS = ("2025-06-18", "2025-03-26", "2024-11-05")
LATEST_PROTOCOL_VERSION = SUPPORTED_PROTOCOL_VERSIONS[0]

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

_INSTRUCTION_SECTIONS = (
    (
        "OVERVIEW",
        [
            "Manifest tracks features together with the sessions and tasks that implement them.",
            "A feature is long-lived documentation of something the system can do; it is not a ticket to close.",
            "Write features so that a reader can understand them long after the work is finished.",
        ],
    ),
    (
        "WHAT COUNTS AS A FEATURE",
        [
            "Describe what a user of the system can do; the user may be an end user, a library caller, a CLI user or an API client.",
            "Check each candidate with the sentence 'As a [user], I can [feature]...'. If it reads awkwardly, it is probably setup work or a quality attribute, not a feature.",
            "Observable qualities such as audit logging or readable error messages may be features; internal targets such as latency budgets belong in a feature's details.",
        ],
    ),
    (
        "NAMING AND HIERARCHY",
        [
            "Titles are short nouns or verb phrases of two to five words, named after the capability.",
            "Parent features group a domain; child features hold the concrete capabilities.",
            "Sessions may only be started on leaf features. A flat list is fine for small projects.",
            "Order work with the priority field (lower comes first), never with the title.",
        ],
    ),
    (
        "FEATURE FIELDS AND STATES",
        [
            "title: the capability name. details: stories, notes, constraints and acceptance criteria.",
            "States run proposed, specified, implemented, deprecated.",
            "create_session moves a proposed feature to specified; complete_session with mark_implemented=true moves it to implemented.",
            "deprecated is only ever set by hand through update_feature_state.",
            "Tasks describe how a feature is being built and are removed when their session completes.",
        ],
    ),
    (
        "GETTING STARTED ON A PROJECT",
        [
            "create_project with a name, description and coding instructions.",
            "add_project_directory to link the codebase directory to the project.",
            "create_feature (or plan_features) to record the capabilities.",
        ],
    ),
    (
        "FINDING WORK",
        [
            "get_project_context returns the project and instructions for a directory.",
            "list_features and search_features browse features; get_feature returns one in full.",
        ],
    ),
    (
        "WORKING ON AN ASSIGNED TASK",
        [
            "get_task_context with the task_id, then start_task.",
            "Implement exactly the task scope, build it and run its tests.",
            "complete_task only once the work is verified.",
        ],
    ),
    (
        "ORCHESTRATING A FEATURE",
        [
            "Find specified features with list_features, read them with get_feature.",
            "create_session on a leaf feature, then create_task (or breakdown_feature) for agent-sized pieces of one to three story points.",
            "Hand each task_id to an agent, follow progress with list_session_tasks, and finish with complete_session.",
        ],
    ),
    (
        "DEFAULT CODING GUIDANCE",
        [
            "Task scope overrides project instructions, which override this guidance.",
            "Build only what is asked; prefer plain, explicit code with shallow nesting and short functions.",
            "Validate input, think about security, and never commit credentials.",
            "Prefer the standard library; add dependencies only when they clearly pay off.",
            "Write tests that state intended behaviour; follow the patterns already in the codebase.",
            "Ask when requirements are unclear and commit in small, verified steps.",
        ],
    ),
)


def _render_instructions() -> str:
    blocks = []
    for heading, points in _INSTRUCTION_SECTIONS:
        lines = [f"{heading}:"]
        lines.extend(f"- {point}" for point in points)
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)


INSTRUCTIONS = _render_instructions()


def _error(msg_id: Any, code: int, message: str) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "id": msg_id, "error": {"code": code, "message": message}}


class McpServer:
    """Dispatches protocol messages to the Manifest tools."""

    def __init__(self, tools: ManifestTools) -> None:
        self.tools = tools
        self._methods: dict[str, Callable[[Mapping[str, Any]], Any]] = {
            "initialize": self._initialize,
            "ping": lambda params: {},
            "tools/list": self._list_tools,
            "tools/call": self._call_tool,
        }

    def server_info(self) -> dict[str, Any]:
        """The initialize result: protocol version, capabilities, identity, instructions."""
        return {
            "protocolVersion": LATEST_PROTOCOL_VERSION,
            "capabilities": {"tools": {}},
            "serverInfo": {"name": SERVER_NAME, "version": SERVER_VERSION},
            "instructions": INSTRUCTIONS,
        }

    def _initialize(self, params: Mapping[str, Any]) -> dict[str, Any]:
        info = self.server_info()
        requested = params.get("protocolVersion")
        if requested in SUPPORTED_PROTOCOL_VERSIONS:
            info["protocolVersion"] = requested
        return info

    def _list_tools(self, params: Mapping[str, Any]) -> dict[str, Any]:
        return {"tools": self.tools.list_tools()}

    def _call_tool(self, params: Mapping[str, Any]) -> dict[str, Any]:
        name = params.get("name")
        if not isinstance(name, str):
            raise ToolError.invalid_params("tool name must be a string")
        arguments = params.get("arguments")
        if arguments is not None and not isinstance(arguments, Mapping):
            raise ToolError.invalid_params("tool arguments must be an object")
        text = self.tools.call(name, arguments)
        return {"content": [{"type": "text", "text": text}], "isError": False}

    def handle_message(self, message: str | bytes | Mapping[str, Any]) -> dict[str, Any] | None:
        """Handle one message, raw or decoded; return the reply, or None if none is due."""
        if isinstance(message, (str, bytes, bytearray)):
            try:
                message = json.loads(message)
            except (ValueError, UnicodeDecodeError) as exc:
                return _error(None, PARSE_ERROR, f"Parse error: {exc}")

        if not isinstance(message, Mapping):
            return _error(None, INVALID_REQUEST, "Invalid request")
        if "method" not in message and ("result" in message or "error" in message):
            return None
        if message.get("jsonrpc") != "2.0" or not isinstance(message.get("method"), str):
            return _error(message.get("id"), INVALID_REQUEST, "Invalid request")

        method = message["method"]
        if "id" not in message:
            logger.debug("Notification received: %s", method)
            return None

        msg_id = message["id"]
        handler = self._methods.get(method)
        if handler is None:
            return _error(msg_id, METHOD_NOT_FOUND, f"Method not found: {method}")

        params = message.get("params")
        if params is None:
            params = {}
        if not isinstance(params, Mapping):
            return _error(msg_id, INVALID_PARAMS, "params must be an object")

        try:
            result = handler(params)
        except ToolError as exc:
            return _error(msg_id, exc.code, exc.message)
        except Exception as exc:  # a bug in a handler must not end the session
            logger.exception("Unhandled error in %s", method)
            return _error(msg_id, INTERNAL_ERROR, str(exc))
        return {"jsonrpc": "2.0", "id": msg_id, "result": result}

    def serve(self, stdin: TextIO, stdout: TextIO) -> None:
        """Read newline-delimited messages until end of input, answering each."""
        for line in stdin:
            line = line.strip()
            if not line:
                continue
            response = self.handle_message(line)
            if response is not None:
                stdout.write(json.dumps(response, ensure_ascii=False) + "\n")
                stdout.flush()


def run_stdio_server() -> None:
    """Serve the tools on standard input and output, configured from the environment."""
    logger.info("Starting MCP server via stdio")
    server = McpServer(ManifestTools.from_env())
    try:
        server.serve(sys.stdin, sys.stdout)
    finally:
        server.tools.client.close()
    logger.info("MCP server stopped: end of input")