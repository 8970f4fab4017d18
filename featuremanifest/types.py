"""Request and response types for the Manifest tool interface."""

import dataclasses
import functools
import json
import types as _pytypes
import typing
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

_U32_MAX = 2**32 - 1
_I32_MIN = -(2**31)
_I32_MAX = 2**31 - 1


class RequestParseError(ValueError):
    """Raised when tool arguments do not match the expected request shape."""


class _StrEnum(str, Enum):
    def __str__(self) -> str:
        return self.value


class AgentType(_StrEnum):
    """The kind of agent that executes a task."""

    CLAUDE = "claude"
    GEMINI = "gemini"
    CODEX = "codex"


class FeatureState(_StrEnum):
    """Lifecycle state of a feature."""

    PROPOSED = "proposed"
    SPECIFIED = "specified"
    IMPLEMENTED = "implemented"
    DEPRECATED = "deprecated"


class TaskStatus(_StrEnum):
    """Progress state of a task."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


def _field(
    description: str,
    *,
    default: Any = dataclasses.MISSING,
    default_factory: Any = dataclasses.MISSING,
    unsigned: bool = False,
) -> Any:
    return field(
        default=default,
        default_factory=default_factory,
        metadata={"description": description, "unsigned": unsigned},
    )


# ------------------------------------------------------------------
# Request types
# ------------------------------------------------------------------


@dataclass(kw_only=True)
class GetTaskContextRequest:
    task_id: str = _field("The UUID of the task assigned to you")


@dataclass(kw_only=True)
class StartTaskRequest:
    task_id: str = _field("The UUID of the task to start working on")


@dataclass(kw_only=True)
class CompleteTaskRequest:
    task_id: str = _field("The UUID of the task to mark as complete")


@dataclass(kw_only=True)
class CreateSessionRequest:
    feature_id: str = _field(
        "The UUID of the feature to start a session on "
        "(must be a leaf feature with no children)"
    )
    goal: str = _field(
        "The goal of this session - what will be accomplished when the session ends"
    )


@dataclass(kw_only=True)
class CreateTaskRequest:
    session_id: str = _field("The UUID of the session to create the task in")
    title: str = _field("Short title describing what this task accomplishes")
    scope: str = _field(
        "Detailed scope of work - be specific about what to implement, test, or verify"
    )
    agent_type: str = _field(
        "Which agent type should handle this task: 'claude', 'gemini', or 'codex'"
    )


@dataclass(kw_only=True)
class ListSessionTasksRequest:
    session_id: str = _field("The UUID of the session to list tasks for")


@dataclass(kw_only=True)
class CommitRefInput:
    """A reference to a git commit."""

    sha: str = _field("The commit SHA (short or full)")
    message: str = _field("The commit message (first line)")
    author: str | None = _field("The commit author", default=None)


@dataclass(kw_only=True)
class CompleteSessionRequest:
    session_id: str = _field("The UUID of the session to complete")
    summary: str = _field(
        "Summary of work done during this session - becomes the feature history entry"
    )
    commits: list[CommitRefInput] = _field(
        "Git commits created during this session", default_factory=list
    )
    mark_implemented: bool = _field(
        "Whether to mark the feature as 'implemented'. Defaults to true. "
        "Set to false if work is partial or feature needs more sessions.",
        default=True,
    )


@dataclass(kw_only=True)
class ListFeaturesRequest:
    project_id: str | None = _field(
        "Optional project UUID to filter features by project", default=None
    )
    state: str | None = _field(
        "Optional state filter: 'proposed', 'specified', 'implemented', or 'deprecated'",
        default=None,
    )
    limit: int | None = _field(
        "Maximum number of features to return. Defaults to no limit.",
        default=None,
        unsigned=True,
    )
    offset: int | None = _field(
        "Number of features to skip for pagination. Defaults to 0.",
        default=None,
        unsigned=True,
    )


@dataclass(kw_only=True)
class SearchFeaturesRequest:
    query: str = _field("Search term to match against title and details")
    project_id: str | None = _field(
        "Optional project UUID to limit search to a specific project", default=None
    )
    limit: int | None = _field(
        "Maximum number of results to return. Defaults to 10.",
        default=None,
        unsigned=True,
    )


@dataclass(kw_only=True)
class GetFeatureRequest:
    feature_id: str = _field("The UUID of the feature to retrieve")


@dataclass(kw_only=True)
class GetFeatureHistoryRequest:
    feature_id: str = _field("The UUID of the feature to get history for")


@dataclass(kw_only=True)
class GetProjectContextRequest:
    directory_path: str = _field(
        "The directory path to look up (e.g., current working directory). "
        "Returns the project that contains this directory."
    )


@dataclass(kw_only=True)
class GetActiveFeatureRequest:
    """Parameterless request for the feature selected in the desktop app."""


@dataclass(kw_only=True)
class UpdateFeatureStateRequest:
    feature_id: str = _field("The UUID of the feature to update")
    state: str | None = _field(
        "The new state: 'proposed', 'specified', 'implemented', or 'deprecated'",
        default=None,
    )
    title: str | None = _field("New title for the feature", default=None)
    details: str | None = _field(
        "New details for the feature. Use this to update the living documentation "
        "when implementation reveals new information.",
        default=None,
    )


@dataclass(kw_only=True)
class CreateProjectRequest:
    name: str = _field("The project name (e.g., 'RocketShip', 'MyApp')")
    description: str | None = _field(
        "Optional description of the project", default=None
    )
    instructions: str | None = _field(
        "Optional project-wide instructions for AI agents (coding guidelines, conventions)",
        default=None,
    )


@dataclass(kw_only=True)
class AddProjectDirectoryRequest:
    project_id: str = _field("The UUID of the project to add this directory to")
    path: str = _field(
        "Absolute path to the directory (e.g., '/Users/me/projects/myapp')"
    )
    git_remote: str | None = _field(
        "Optional git remote URL (e.g., 'git@example.com:org/repo.git')", default=None
    )
    is_primary: bool = _field(
        "Whether this is the primary directory for the project. Defaults to false.",
        default=False,
    )
    instructions: str | None = _field(
        "Optional directory-specific instructions (build commands, test commands)",
        default=None,
    )


@dataclass(kw_only=True)
class CreateFeatureRequest:
    project_id: str = _field("The UUID of the project this feature belongs to")
    parent_id: str | None = _field(
        "Optional parent feature UUID for hierarchical features", default=None
    )
    title: str = _field("Short title for the feature (e.g., 'User Authentication')")
    details: str | None = _field(
        "Optional feature details including user stories, implementation notes, "
        "and technical context",
        default=None,
    )
    state: str = _field(
        "Initial state: 'proposed' (default), 'specified', 'implemented', or 'deprecated'",
        default="proposed",
    )
    priority: int | None = _field(
        "Priority for ordering within parent. Lower values appear first. Defaults to 0.",
        default=None,
    )


@dataclass(kw_only=True)
class ProposedFeature:
    """A feature in a proposed feature tree."""

    title: str = _field("Short capability name (2-5 words). What users can DO.")
    details: str | None = _field(
        "Feature details: user story, technical notes, constraints, acceptance criteria. "
        "User stories can be in \"As a [user], I can [capability] so that [benefit]\" format.",
        default=None,
    )
    priority: int = _field(
        "Priority for ordering. Lower values = implement first.", default=0
    )
    children: list["ProposedFeature"] = _field(
        "Child features (for hierarchical structure)", default_factory=list
    )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ProposedFeature":
        """Build a proposed feature tree from decoded JSON."""
        return parse_request(cls, data)

    def to_dict(self) -> dict[str, Any]:
        """Return the feature tree as plain JSON-ready data."""
        return _plain(self)


@dataclass(kw_only=True)
class PlanFeaturesRequest:
    project_id: str = _field("The UUID of the project to plan features for")
    features: list[ProposedFeature] = _field(
        "The proposed feature tree. Apply the user story test before proposing: "
        "'As a [user], I can [feature]...'"
    )
    confirm: bool = _field(
        "If true, creates the features in the database. "
        "If false (default), returns proposal for user review.",
        default=False,
    )


@dataclass(kw_only=True)
class TaskInputItem:
    """A task to create as part of feature breakdown."""

    title: str = _field(
        "Short title describing what this task accomplishes (2-5 words)"
    )
    scope: str = _field(
        "Detailed scope of work - be specific about what to implement, test, or verify"
    )
    agent_type: str = _field(
        "Which agent type should handle this task: 'claude', 'gemini', or 'codex'. "
        "Defaults to 'claude'.",
        default="claude",
    )


@dataclass(kw_only=True)
class BreakdownFeatureRequest:
    feature_id: str = _field("The UUID of the feature to break down into tasks")
    goal: str = _field(
        "The session goal - what will be accomplished when all tasks are complete"
    )
    tasks: list[TaskInputItem] = _field(
        "The tasks to create. Each task should be completable by one agent "
        "(1-3 story points)."
    )


# ------------------------------------------------------------------
# Response types
# ------------------------------------------------------------------


@dataclass
class TaskInfo:
    id: str
    title: str
    scope: str
    status: str
    agent_type: str


@dataclass
class FeatureInfo:
    id: str
    title: str
    details: str | None
    desired_details: str | None
    state: str
    priority: int


@dataclass
class TaskContextResponse:
    task: TaskInfo
    feature: FeatureInfo
    session_goal: str


@dataclass
class SessionInfo:
    id: str
    feature_id: str
    goal: str
    status: str


@dataclass
class TaskListResponse:
    session_id: str
    tasks: list[TaskInfo]


@dataclass
class CompleteSessionResponse:
    session_id: str
    feature_id: str
    feature_state: str
    history_entry_id: str


@dataclass
class FeatureListResponse:
    features: list[FeatureInfo]


@dataclass
class CommitInfo:
    sha: str
    message: str
    author: str | None


@dataclass
class HistoryEntryInfo:
    id: str
    session_id: str | None
    summary: str
    commits: list[CommitInfo]
    created_at: str


@dataclass
class FeatureHistoryResponse:
    feature_id: str
    entries: list[HistoryEntryInfo]


@dataclass
class FeatureSummaryInfo:
    id: str
    title: str
    state: str
    priority: int
    parent_id: str | None


@dataclass
class FeatureListSummaryResponse:
    features: list[FeatureSummaryInfo]


@dataclass
class ProjectInfo:
    id: str
    name: str
    description: str | None
    instructions: str | None


@dataclass
class DirectoryInfo:
    id: str
    path: str
    git_remote: str | None
    is_primary: bool
    instructions: str | None


@dataclass
class ProjectContextResponse:
    project: ProjectInfo
    directory: DirectoryInfo


@dataclass
class PlanFeaturesResponse:
    proposed_features: list[ProposedFeature]
    created: bool
    created_feature_ids: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PlanFeaturesResponse":
        """Build a response from decoded JSON."""
        return parse_request(cls, data)


@dataclass
class BreakdownFeatureResponse:
    session: SessionInfo
    tasks: list[TaskInfo]


# ------------------------------------------------------------------
# Parsing, schemas and serialisation
# ------------------------------------------------------------------

# Types referred to by name inside their own definition.
_FORWARD_REFS: dict[str, type] = {"ProposedFeature": ProposedFeature}


@functools.lru_cache(maxsize=None)
def _hints(cls: type) -> dict[str, Any]:
    return {f.name: f.type for f in dataclasses.fields(cls)}


def _resolve(hint: Any) -> Any:
    if isinstance(hint, typing.ForwardRef):
        hint = hint.__forward_arg__
    if isinstance(hint, str):
        try:
            return _FORWARD_REFS[hint]
        except KeyError:
            raise TypeError(f"unsupported field type {hint!r}") from None
    return hint


def _is_optional(hint: Any) -> bool:
    origin = typing.get_origin(hint)
    return origin is typing.Union or origin is _pytypes.UnionType


def _non_none(hint: Any) -> Any:
    return next(arg for arg in typing.get_args(hint) if arg is not type(None))


def _path(where: str, name: str) -> str:
    return f"{where}.{name}" if where else name


def _convert(value: Any, hint: Any, where: str, unsigned: bool) -> Any:
    hint = _resolve(hint)
    if _is_optional(hint):
        if value is None:
            return None
        return _convert(value, _non_none(hint), where, unsigned)
    if typing.get_origin(hint) is list:
        if not isinstance(value, list):
            raise RequestParseError(f"{where}: expected an array")
        (item_hint,) = typing.get_args(hint)
        return [
            _convert(item, item_hint, f"{where}[{index}]", unsigned)
            for index, item in enumerate(value)
        ]
    if dataclasses.is_dataclass(hint):
        return _parse(hint, value, where)
    if hint is bool:
        if not isinstance(value, bool):
            raise RequestParseError(f"{where}: expected a boolean")
        return value
    if hint is int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise RequestParseError(f"{where}: expected an integer")
        low, high = (0, _U32_MAX) if unsigned else (_I32_MIN, _I32_MAX)
        if not low <= value <= high:
            raise RequestParseError(f"{where}: {value} is out of range")
        return value
    if hint is str:
        if not isinstance(value, str):
            raise RequestParseError(f"{where}: expected a string")
        return value
    raise TypeError(f"unsupported field type {hint!r}")


def _parse(cls: type, data: Any, where: str) -> Any:
    if data is None:
        data = {}
    if not isinstance(data, Mapping):
        raise RequestParseError(f"{where or cls.__name__}: expected an object")
    hints = _hints(cls)
    values: dict[str, Any] = {}
    for f in dataclasses.fields(cls):
        name_path = _path(where, f.name)
        if f.name not in data:
            has_default = (
                f.default is not dataclasses.MISSING
                or f.default_factory is not dataclasses.MISSING
            )
            if not has_default:
                raise RequestParseError(f"missing field `{name_path}`")
            continue
        values[f.name] = _convert(
            data[f.name], hints[f.name], name_path, f.metadata.get("unsigned", False)
        )
    return cls(**values)


def parse_request(request_type: type, data: Any) -> Any:
    """Build ``request_type`` from decoded JSON arguments, validating as it goes.

    Unknown keys are ignored; missing optional keys take their defaults.
    """
    if not dataclasses.is_dataclass(request_type) or not isinstance(request_type, type):
        raise TypeError(f"{request_type!r} is not a request type")
    return _parse(request_type, data, "")


def _type_schema(hint: Any, defs: dict[str, Any], unsigned: bool) -> dict[str, Any]:
    hint = _resolve(hint)
    if _is_optional(hint):
        inner = _type_schema(_non_none(hint), defs, unsigned)
        if "type" in inner:
            inner["type"] = [inner["type"], "null"]
            return inner
        return {"anyOf": [inner, {"type": "null"}]}
    if typing.get_origin(hint) is list:
        (item_hint,) = typing.get_args(hint)
        return {"type": "array", "items": _type_schema(item_hint, defs, unsigned)}
    if dataclasses.is_dataclass(hint):
        name = hint.__name__
        if name not in defs:
            defs[name] = {}
            defs[name].update(_object_schema(hint, defs))
        return {"$ref": f"#/$defs/{name}"}
    if hint is bool:
        return {"type": "boolean"}
    if hint is int:
        if unsigned:
            return {"type": "integer", "format": "uint32", "minimum": 0}
        return {"type": "integer", "format": "int32"}
    if hint is str:
        return {"type": "string"}
    raise TypeError(f"unsupported field type {hint!r}")


def _object_schema(cls: type, defs: dict[str, Any]) -> dict[str, Any]:
    hints = _hints(cls)
    properties: dict[str, Any] = {}
    required: list[str] = []
    for f in dataclasses.fields(cls):
        prop = _type_schema(hints[f.name], defs, f.metadata.get("unsigned", False))
        description = f.metadata.get("description")
        if description:
            prop["description"] = description
        if f.default is not dataclasses.MISSING:
            if f.default is not None:
                prop["default"] = f.default
        elif f.default_factory is not dataclasses.MISSING:
            prop["default"] = _plain(f.default_factory())
        else:
            required.append(f.name)
        properties[f.name] = prop
    schema: dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required
    return schema


def input_schema(request_type: type) -> dict[str, Any]:
    """Return a JSON Schema describing the arguments of ``request_type``."""
    if not dataclasses.is_dataclass(request_type) or not isinstance(request_type, type):
        raise TypeError(f"{request_type!r} is not a request type")
    defs: dict[str, Any] = {}
    schema = {"title": request_type.__name__, **_object_schema(request_type, defs)}
    if defs:
        schema["$defs"] = defs
    return schema


def _plain(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: _plain(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Mapping):
        return {str(key): _plain(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(item) for item in value]
    return value


def to_json(value: Any) -> str:
    """Serialise a response (or any plain data) as pretty-printed JSON."""
    return json.dumps(_plain(value), indent=2, ensure_ascii=False)