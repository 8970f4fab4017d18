"""Tool handlers that agents call to work with features, sessions and tasks."""

from __future__ import annotations

import json
import uuid
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from featuremanifest.client import (
    BadRequestError,
    ClientError,
    ManifestClient,
    NotFoundError,
    ServerError,
    TransportError,
    UnauthorizedError,
    feature_to_info,
)
from featuremanifest.types import (
    AddProjectDirectoryRequest,
    AgentType,
    BreakdownFeatureRequest,
    BreakdownFeatureResponse,
    CommitInfo,
    CompleteSessionRequest,
    CompleteSessionResponse,
    CompleteTaskRequest,
    CreateFeatureRequest,
    CreateProjectRequest,
    CreateSessionRequest,
    CreateTaskRequest,
    DirectoryInfo,
    FeatureHistoryResponse,
    FeatureListSummaryResponse,
    FeatureState,
    FeatureSummaryInfo,
    GetActiveFeatureRequest,
    GetFeatureHistoryRequest,
    GetFeatureRequest,
    GetProjectContextRequest,
    GetTaskContextRequest,
    HistoryEntryInfo,
    ListFeaturesRequest,
    ListSessionTasksRequest,
    PlanFeaturesRequest,
    ProjectInfo,
    RequestParseError,
    SearchFeaturesRequest,
    SessionInfo,
    StartTaskRequest,
    TaskContextResponse,
    TaskInfo,
    TaskListResponse,
    TaskStatus,
    UpdateFeatureStateRequest,
    input_schema,
    parse_request,
    to_json,
)

_NO_ACTIVE_FEATURE = (
    '{"active_feature": null, "message": "No feature is currently selected '
    'in the Manifest app for this project"}'
)


class ToolError(Exception):
    """A tool call failed; ``code`` is the JSON-RPC error code to report."""

    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603

    def __init__(self, code: int, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message

    @classmethod
    def invalid_params(cls, message: str) -> ToolError:
        return cls(cls.INVALID_PARAMS, message)

    @classmethod
    def internal(cls, message: str) -> ToolError:
        return cls(cls.INTERNAL_ERROR, message)


@dataclass(frozen=True)
class _ToolSpec:
    name: str
    request_type: type
    description: str
    handler: Callable[[ManifestTools, Any], str]


_REGISTRY: dict[str, _ToolSpec] = {}


def _tool(request_type: type, description: str) -> Callable[[Callable], Callable]:
    def register(func: Callable) -> Callable:
        _REGISTRY[func.__name__] = _ToolSpec(func.__name__, request_type, description, func)
        return func

    return register


@contextmanager
def _remote() -> Iterator[None]:
    try:
        yield
    except (NotFoundError, BadRequestError) as exc:
        raise ToolError.invalid_params(exc.body) from exc
    except UnauthorizedError as exc:
        raise ToolError.internal("Unauthorized: check MANIFEST_API_KEY") from exc
    except TransportError as exc:
        raise ToolError.internal(exc.reason) from exc
    except ServerError as exc:
        raise ToolError.internal(exc.detail) from exc
    except ClientError as exc:
        raise ToolError.internal(str(exc)) from exc
    except (RequestParseError, KeyError) as exc:
        raise ToolError.internal(f"error decoding response body: {exc}") from exc


def _parse_uuid(text: str) -> uuid.UUID:
    try:
        return uuid.UUID(text)
    except ValueError as exc:
        raise ToolError.invalid_params(f"Invalid UUID: {exc}") from None


def _parse_agent_type(text: str) -> AgentType:
    try:
        return AgentType(text)
    except ValueError:
        raise ToolError.invalid_params(
            f"Invalid agent_type '{text}'. Must be: claude, gemini, or codex"
        ) from None


def _parse_state(text: str) -> FeatureState:
    try:
        return FeatureState(text)
    except ValueError:
        raise ToolError.invalid_params(
            f"Invalid state '{text}'. Must be: proposed, specified, implemented, or deprecated"
        ) from None


def _rfc3339(text: Any) -> str:
    try:
        parsed = datetime.fromisoformat(str(text).replace("Z", "+00:00"))
    except ValueError:
        return str(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    if parsed.microsecond and parsed.microsecond % 1000 == 0:
        return parsed.isoformat(timespec="milliseconds")
    return parsed.isoformat()


def _optional_id(value: Any) -> str | None:
    return None if value is None else str(value)


def _task_info(task: Mapping[str, Any]) -> TaskInfo:
    return TaskInfo(
        id=str(task["id"]),
        title=task["title"],
        scope=task["scope"],
        status=str(task["status"]),
        agent_type=str(task["agent_type"]),
    )


def _session_info(session: Mapping[str, Any]) -> SessionInfo:
    return SessionInfo(
        id=str(session["id"]),
        feature_id=str(session["feature_id"]),
        goal=session["goal"],
        status=str(session["status"]),
    )


def _summary_info(feature: Mapping[str, Any]) -> FeatureSummaryInfo:
    return FeatureSummaryInfo(
        id=str(feature["id"]),
        title=feature["title"],
        state=str(feature["state"]),
        priority=int(feature.get("priority", 0)),
        parent_id=_optional_id(feature.get("parent_id")),
    )


def _history_entry(entry: Mapping[str, Any]) -> HistoryEntryInfo:
    details = entry["details"]
    return HistoryEntryInfo(
        id=str(entry["id"]),
        session_id=_optional_id(entry.get("session_id")),
        summary=details["summary"],
        commits=[
            CommitInfo(sha=c["sha"], message=c["message"], author=c.get("author"))
            for c in details.get("commits", [])
        ],
        created_at=_rfc3339(entry["created_at"]),
    )


class ManifestTools:
    """The agent-facing tools, each backed by calls to the Manifest API."""

    def __init__(self, client: ManifestClient) -> None:
        self.client = client

    @classmethod
    def from_env(cls) -> ManifestTools:
        """Tools backed by a client configured from the environment."""
        return cls(ManifestClient.from_env())

    def list_tools(self) -> list[dict[str, Any]]:
        """Describe every tool: name, description and argument schema."""
        return [
            {
                "name": spec.name,
                "description": spec.description,
                "inputSchema": input_schema(spec.request_type),
            }
            for spec in _REGISTRY.values()
        ]

    def call(self, name: str, arguments: Mapping[str, Any] | None = None) -> str:
        """Run the tool ``name`` with decoded JSON arguments; return its text."""
        spec = _REGISTRY.get(name)
        if spec is None:
            raise ToolError.invalid_params(f"tool not found: {name}")
        try:
            request = parse_request(spec.request_type, arguments)
        except RequestParseError as exc:
            raise ToolError.invalid_params(str(exc)) from exc
        return spec.handler(self, request)

    # ------------------------------------------------------------------
    # Agent tools
    # ------------------------------------------------------------------

    @_tool(
        GetTaskContextRequest,
        "Retrieve your assigned task with full feature context. Call this FIRST when "
        "starting work. Returns: task details (id, title, scope, status), feature "
        "specification (title, details), and session goal. Use this information to "
        "understand what to implement before writing any code.",
    )
    def get_task_context(self, request: GetTaskContextRequest) -> str:
        task_id = _parse_uuid(request.task_id)
        with _remote():
            task = self.client.get_task(task_id)
            session = self.client.get_session(task["session_id"])
            feature = self.client.get_feature(session["feature_id"])
            context = TaskContextResponse(
                task=_task_info(task),
                feature=feature_to_info(feature),
                session_goal=session["goal"],
            )
        return to_json(context)

    def _set_task_status(self, task_id: str, status: TaskStatus) -> None:
        parsed = _parse_uuid(task_id)
        with _remote():
            self.client.update_task(
                parsed, {"status": status, "worktree_path": None, "branch": None}
            )

    @_tool(
        StartTaskRequest,
        "Signal that you are beginning work on a task. Call this AFTER get_task_context "
        "and BEFORE making any code changes. Sets task status to 'running' so the "
        "orchestrator knows work is in progress. Side effect: updates task.status to "
        "'running'.",
    )
    def start_task(self, request: StartTaskRequest) -> str:
        self._set_task_status(request.task_id, TaskStatus.RUNNING)
        return "Task started - status set to 'running'"

    @_tool(
        CompleteTaskRequest,
        "Signal that your task is finished. Call this ONLY when all work is done and "
        "verified. Before calling: ensure code compiles, tests pass, and implementation "
        "matches the task scope. After calling: your work is recorded and you should "
        "stop making changes. Side effect: updates task.status to 'completed'.",
    )
    def complete_task(self, request: CompleteTaskRequest) -> str:
        self._set_task_status(request.task_id, TaskStatus.COMPLETED)
        return "Task completed successfully"

    # ------------------------------------------------------------------
    # Orchestrator tools
    # ------------------------------------------------------------------

    @_tool(
        CreateSessionRequest,
        "Start a new implementation session on a feature. Only one active session per "
        "feature is allowed. Use this to begin work on a feature, then create tasks "
        "within the session for agents to execute. The goal should describe the overall "
        "objective. Constraint: feature must be a leaf (no children). Side effect: "
        "creates session with status 'active'.",
    )
    def create_session(self, request: CreateSessionRequest) -> str:
        feature_id = _parse_uuid(request.feature_id)
        with _remote():
            response = self.client.create_session(feature_id, request.goal)
            info = _session_info(response["session"])
        return to_json(info)

    @_tool(
        CreateTaskRequest,
        "Create a new task within a session. Use this to break down feature work into "
        "discrete units that can be assigned to agents. Each task should be small enough "
        "for one agent to complete (1-3 story points). Include detailed scope so the "
        "agent knows exactly what to implement. Returns the created task with its ID for "
        "spawning an agent.",
    )
    def create_task(self, request: CreateTaskRequest) -> str:
        session_id = _parse_uuid(request.session_id)
        agent_type = _parse_agent_type(request.agent_type)
        with _remote():
            task = self.client.create_task(
                session_id,
                {
                    "parent_id": None,
                    "title": request.title,
                    "scope": request.scope,
                    "agent_type": agent_type,
                },
            )
            info = _task_info(task)
        return to_json(info)

    @_tool(
        BreakdownFeatureRequest,
        "Break down a feature into tasks by creating a session with multiple tasks in one "
        "call. Use this after analyzing a feature to create agent-sized work units. Each "
        "task should be completable by one agent (1-3 story points). Returns the session "
        "and task IDs for spawning agents. This is more efficient than calling "
        "create_session then create_task multiple times.",
    )
    def breakdown_feature(self, request: BreakdownFeatureRequest) -> str:
        feature_id = _parse_uuid(request.feature_id)
        tasks = [
            {
                "parent_id": None,
                "title": item.title,
                "scope": item.scope,
                "agent_type": _parse_agent_type(item.agent_type),
            }
            for item in request.tasks
        ]
        with _remote():
            response = self.client.create_session_with_tasks(feature_id, request.goal, tasks)
            result = BreakdownFeatureResponse(
                session=_session_info(response["session"]),
                tasks=[_task_info(task) for task in response.get("tasks", [])],
            )
        return to_json(result)

    @_tool(
        ListSessionTasksRequest,
        "List all tasks in a session with their current status. Use this to monitor "
        "progress of parallel agent work. Returns array of tasks with: id, title, scope, "
        "status (pending/running/completed/failed), agent_type. Check status to know "
        "which tasks are done.",
    )
    def list_session_tasks(self, request: ListSessionTasksRequest) -> str:
        session_id = _parse_uuid(request.session_id)
        with _remote():
            tasks = self.client.get_tasks_by_session(session_id)
            result = TaskListResponse(
                session_id=str(session_id), tasks=[_task_info(task) for task in tasks]
            )
        return to_json(result)

    @_tool(
        CompleteSessionRequest,
        "Complete a session after all tasks are done. Call this when all tasks are "
        "completed to finalize the session. Creates a history entry summarizing the work "
        "and optionally marks the feature as 'implemented'. IMPORTANT: By default, this "
        "marks the feature as implemented. Set mark_implemented=false if the work is "
        "partial. Side effects: creates feature_history entry, deletes task records, "
        "updates session status to 'completed', optionally updates feature state to "
        "'implemented'.",
    )
    def complete_session(self, request: CompleteSessionRequest) -> str:
        session_id = _parse_uuid(request.session_id)
        completion = {
            "summary": request.summary,
            "commits": [
                {"sha": c.sha, "message": c.message, "author": c.author}
                for c in request.commits
            ],
            "feature_state": FeatureState.IMPLEMENTED if request.mark_implemented else None,
        }
        with _remote():
            result = self.client.complete_session(session_id, completion)
            response = CompleteSessionResponse(
                session_id=str(result["session"]["id"]),
                feature_id=str(result["session"]["feature_id"]),
                feature_state="implemented" if request.mark_implemented else "unchanged",
                history_entry_id=str(result["history_entry"]["id"]),
            )
        return to_json(response)

    # ------------------------------------------------------------------
    # Discovery tools
    # ------------------------------------------------------------------

    @_tool(
        ListFeaturesRequest,
        "List features, optionally filtered by project or state. Returns summaries only "
        "(id, title, state, priority, parent_id). Use get_feature for full details of a "
        "specific feature.",
    )
    def list_features(self, request: ListFeaturesRequest) -> str:
        project_id = _parse_uuid(request.project_id) if request.project_id is not None else None
        with _remote():
            features = self.client.list_features(
                project_id, request.state, request.limit, request.offset
            )
            result = FeatureListSummaryResponse(
                features=[_summary_info(feature) for feature in features]
            )
        return to_json(result)

    @_tool(
        SearchFeaturesRequest,
        "Search features by title or content. Use this to find specific features without "
        "listing all of them. Returns summaries ranked by relevance. Use get_feature for "
        "full details.",
    )
    def search_features(self, request: SearchFeaturesRequest) -> str:
        project_id = _parse_uuid(request.project_id) if request.project_id is not None else None
        with _remote():
            features = self.client.search_features(request.query, project_id, request.limit)
            result = FeatureListSummaryResponse(
                features=[_summary_info(feature) for feature in features]
            )
        return to_json(result)

    @_tool(
        GetFeatureRequest,
        "Get detailed information about a specific feature by ID. Returns the feature's "
        "title, details, and current state. Use this before creating a session to "
        "understand what needs to be built.",
    )
    def get_feature(self, request: GetFeatureRequest) -> str:
        feature_id = _parse_uuid(request.feature_id)
        with _remote():
            info = feature_to_info(self.client.get_feature(feature_id))
        return to_json(info)

    @_tool(
        GetFeatureHistoryRequest,
        "Get implementation history for a feature. Returns past sessions with summaries, "
        "files changed, and commit references. Use this to understand previous work "
        "before starting a new session or to review what was done.",
    )
    def get_feature_history(self, request: GetFeatureHistoryRequest) -> str:
        feature_id = _parse_uuid(request.feature_id)
        with _remote():
            history = self.client.get_feature_history(feature_id)
            result = FeatureHistoryResponse(
                feature_id=str(feature_id),
                entries=[_history_entry(entry) for entry in history],
            )
        return to_json(result)

    @_tool(
        GetProjectContextRequest,
        "Get project context for a directory path. Given a directory (e.g., your current "
        "working directory), returns the associated project with its instructions and "
        "coding guidelines. Use this to understand project conventions before starting "
        "work.",
    )
    def get_project_context(self, request: GetProjectContextRequest) -> str:
        with _remote():
            result = self.client.get_project_context(request.directory_path)
        return to_json(result)

    @_tool(
        GetActiveFeatureRequest,
        "Get the currently active feature selected in the Manifest desktop app for the "
        "current project. Returns the feature ID, title, and details if a feature is "
        "selected, or null if no feature is selected. The context is per-project, stored "
        "in .manifest/active_context.json in the current working directory.",
    )
    def get_active_feature(self, request: GetActiveFeatureRequest) -> str:
        try:
            cwd = Path.cwd()
        except OSError as exc:
            raise ToolError.internal(f"Could not determine current directory: {exc}") from exc
        context_path = cwd / ".manifest" / "active_context.json"
        if not context_path.exists():
            return _NO_ACTIVE_FEATURE
        try:
            content = context_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise ToolError.internal(f"Failed to read context file: {exc}") from exc
        try:
            context = json.loads(content)
        except json.JSONDecodeError as exc:
            raise ToolError.internal(f"Invalid context file: {exc}") from exc
        return json.dumps(
            {"active_feature": context}, indent=2, sort_keys=True, ensure_ascii=False
        )

    @_tool(
        UpdateFeatureStateRequest,
        "Update a feature's state, title, or details. Use this to transition features "
        "through their lifecycle (proposed → specified → implemented → deprecated) or to "
        "update living documentation when implementation reveals new information. At "
        "least one field (state, title, or details) must be provided.",
    )
    def update_feature_state(self, request: UpdateFeatureStateRequest) -> str:
        feature_id = _parse_uuid(request.feature_id)
        if request.state is None and request.title is None and request.details is None:
            raise ToolError.invalid_params(
                "At least one of state, title, or details must be provided"
            )
        new_state = _parse_state(request.state) if request.state is not None else None
        update = {
            "parent_id": None,
            "title": request.title,
            "details": request.details,
            "desired_details": None,
            "state": new_state,
            "priority": None,
        }
        with _remote():
            info = feature_to_info(self.client.update_feature(feature_id, update))
        return to_json(info)

    # ------------------------------------------------------------------
    # Setup tools
    # ------------------------------------------------------------------

    @_tool(
        CreateProjectRequest,
        "Create a new project. Projects are containers for features and can have "
        "multiple directories (e.g., monorepo subdirectories). Use this when starting "
        "work on a new codebase. After creating, use add_project_directory to associate "
        "directories.",
    )
    def create_project(self, request: CreateProjectRequest) -> str:
        with _remote():
            project = self.client.create_project(
                {
                    "name": request.name,
                    "description": request.description,
                    "instructions": request.instructions,
                }
            )
            info = ProjectInfo(
                id=str(project["id"]),
                name=project["name"],
                description=project.get("description"),
                instructions=project.get("instructions"),
            )
        return to_json(info)

    @_tool(
        AddProjectDirectoryRequest,
        "Associate a directory with a project. This enables get_project_context to find "
        "the project when given a directory path. Use after create_project. Mark one "
        "directory as is_primary=true for the main project location. Include "
        "instructions for directory-specific build/test commands.",
    )
    def add_project_directory(self, request: AddProjectDirectoryRequest) -> str:
        project_id = _parse_uuid(request.project_id)
        with _remote():
            directory = self.client.add_project_directory(
                project_id,
                {
                    "path": request.path,
                    "git_remote": request.git_remote,
                    "is_primary": request.is_primary,
                    "instructions": request.instructions,
                },
            )
            info = DirectoryInfo(
                id=str(directory["id"]),
                path=directory["path"],
                git_remote=directory.get("git_remote"),
                is_primary=bool(directory.get("is_primary", False)),
                instructions=directory.get("instructions"),
            )
        return to_json(info)

    @_tool(
        CreateFeatureRequest,
        "Create a feature (system capability) within a project. Name by capability, not "
        "by phase or task - e.g., 'Router' not 'Phase 1: Implement Routing'. Use "
        "parent_id for domain grouping (e.g., 'Authentication' parent with 'OAuth' and "
        "'Password Login' children). Only leaf features can have implementation "
        "sessions. Use priority field for sequencing.",
    )
    def create_feature(self, request: CreateFeatureRequest) -> str:
        project_id = _parse_uuid(request.project_id)
        parent_id = _parse_uuid(request.parent_id) if request.parent_id is not None else None
        state = _parse_state(request.state)
        feature = {
            "id": None,
            "parent_id": None if parent_id is None else str(parent_id),
            "title": request.title,
            "details": request.details,
            "state": state,
            "priority": request.priority,
        }
        with _remote():
            info = feature_to_info(self.client.create_feature(project_id, feature))
        return to_json(info)

    @_tool(
        PlanFeaturesRequest,
        "Plan and optionally create a feature tree for a project. Pass your proposed "
        "features after applying the user story test: 'As a [user], I can [feature]...'. "
        "With confirm=false (default), returns the proposal for user review. With "
        "confirm=true, creates all features in the database. Use this for initial "
        "project setup or adding multiple related features.",
    )
    def plan_features(self, request: PlanFeaturesRequest) -> str:
        project_id = _parse_uuid(request.project_id)
        with _remote():
            response = self.client.bulk_create_features(
                project_id, request.features, request.confirm
            )
        return to_json(response)