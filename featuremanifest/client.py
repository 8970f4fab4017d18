"""HTTP client for the Manifest API.

Configuration comes from the environment:

- ``MANIFEST_URL``: base URL of the API (default ``http://localhost:17010/api/v1``)
- ``MANIFEST_API_KEY``: bearer token, optional for a local server
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Iterable, Mapping
from http import HTTPStatus
from typing import Any

import requests

from featuremanifest.types import (
    DirectoryInfo,
    FeatureInfo,
    PlanFeaturesResponse,
    ProjectContextResponse,
    ProjectInfo,
    ProposedFeature,
    to_json,
)

DEFAULT_URL = "http://localhost:17010/api/v1"

_CONNECT_TIMEOUT = 10.0
_READ_TIMEOUT = 30.0

_QUERY_ESCAPES = {
    " ": "%20",
    "&": "%26",
    "=": "%3D",
    "?": "%3F",
    "#": "%23",
    "%": "%25",
}


class ClientError(Exception):
    """Base class for errors raised by :class:`ManifestClient`."""


class TransportError(ClientError):
    """The request could not be sent or its response could not be read."""

    def __init__(self, reason: str) -> None:
        super().__init__(f"HTTP request failed: {reason}")
        self.reason = reason


class NotFoundError(ClientError):
    """The server answered 404."""

    def __init__(self, body: str) -> None:
        super().__init__(f"Not found: {body}")
        self.body = body


class BadRequestError(ClientError):
    """The server answered 400."""

    def __init__(self, body: str) -> None:
        super().__init__(f"Bad request: {body}")
        self.body = body


class UnauthorizedError(ClientError):
    """The server answered 401."""

    def __init__(self) -> None:
        super().__init__("Unauthorized: API key required or invalid")


class ServerError(ClientError):
    """Any other unsuccessful answer, or an inconsistent one."""

    def __init__(self, detail: str) -> None:
        super().__init__(f"Server error: {detail}")
        self.detail = detail


def encode_search_query(query: str) -> str:
    """Percent-encode the characters that would break a query string."""
    return "".join(_QUERY_ESCAPES.get(char, char) for char in query)


def _uuid(value: str | uuid.UUID) -> uuid.UUID:
    return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))


def _status_text(code: int) -> str:
    try:
        return f"{code} {HTTPStatus(code).phrase}"
    except ValueError:
        return str(code)


def feature_to_info(feature: Mapping[str, Any]) -> FeatureInfo:
    """Reduce a feature record from the API to the tool-facing summary."""
    return FeatureInfo(
        id=str(feature["id"]),
        title=feature["title"],
        details=feature.get("details"),
        desired_details=feature.get("desired_details"),
        state=str(feature["state"]),
        priority=int(feature.get("priority", 0)),
    )


class ManifestClient:
    """Talks to a Manifest API server, local or remote."""

    def __init__(self, base_url: str, api_key: str | None = None) -> None:
        self.base_url = base_url
        self.api_key = api_key
        self._http = requests.Session()

    @classmethod
    def from_env(cls) -> ManifestClient:
        """Create a client from MANIFEST_URL and MANIFEST_API_KEY."""
        return cls(
            os.environ.get("MANIFEST_URL", DEFAULT_URL),
            os.environ.get("MANIFEST_API_KEY"),
        )

    def close(self) -> None:
        """Release pooled connections."""
        self._http.close()

    def __enter__(self) -> ManifestClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _send(
        self,
        method: str,
        path: str,
        *,
        payload: Any = None,
        params: Mapping[str, str] | None = None,
    ) -> requests.Response:
        headers: dict[str, str] = {}
        if self.api_key is not None:
            headers["Authorization"] = f"Bearer {self.api_key}"
        data = None
        if payload is not None:
            headers["Content-Type"] = "application/json"
            data = to_json(payload).encode("utf-8")
        try:
            response = self._http.request(
                method,
                f"{self.base_url}{path}",
                headers=headers,
                data=data,
                params=params,
                timeout=(_CONNECT_TIMEOUT, _READ_TIMEOUT),
            )
        except requests.RequestException as exc:
            raise TransportError(str(exc)) from exc
        self._raise_for_status(response)
        return response

    @staticmethod
    def _raise_for_status(response: requests.Response) -> None:
        if 200 <= response.status_code < 300:
            return
        body = response.text or ""
        code = response.status_code
        if code == 404:
            raise NotFoundError(body)
        if code == 400:
            raise BadRequestError(body)
        if code == 401:
            raise UnauthorizedError()
        raise ServerError(f"{_status_text(code)}: {body}")

    def _json(self, method: str, path: str, **kwargs: Any) -> Any:
        response = self._send(method, path, **kwargs)
        try:
            return response.json()
        except ValueError as exc:
            raise TransportError(f"error decoding response body: {exc}") from exc

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def get_task(self, task_id: str | uuid.UUID) -> dict[str, Any]:
        """Fetch a task."""
        return self._json("GET", f"/tasks/{_uuid(task_id)}")

    def update_task(self, task_id: str | uuid.UUID, update: Mapping[str, Any]) -> None:
        """Update a task's status, worktree path or branch."""
        self._send("PUT", f"/tasks/{_uuid(task_id)}", payload=update)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def get_session(self, session_id: str | uuid.UUID) -> dict[str, Any]:
        """Fetch a session."""
        return self._json("GET", f"/sessions/{_uuid(session_id)}")

    def create_session(self, feature_id: str | uuid.UUID, goal: str) -> dict[str, Any]:
        """Start a session on a feature with no tasks."""
        return self.create_session_with_tasks(feature_id, goal, [])

    def create_session_with_tasks(
        self,
        feature_id: str | uuid.UUID,
        goal: str,
        tasks: Iterable[Mapping[str, Any]],
    ) -> dict[str, Any]:
        """Start a session on a feature together with its initial tasks."""
        return self._json(
            "POST",
            f"/features/{_uuid(feature_id)}/sessions",
            payload={"goal": goal, "tasks": list(tasks)},
        )

    def create_task(
        self, session_id: str | uuid.UUID, task: Mapping[str, Any]
    ) -> dict[str, Any]:
        """Add a task to a session."""
        return self._json("POST", f"/sessions/{_uuid(session_id)}/tasks", payload=task)

    def get_tasks_by_session(self, session_id: str | uuid.UUID) -> list[dict[str, Any]]:
        """List the tasks of a session."""
        return self._json("GET", f"/sessions/{_uuid(session_id)}/tasks")

    def complete_session(
        self, session_id: str | uuid.UUID, completion: Mapping[str, Any]
    ) -> dict[str, Any]:
        """Finish a session, recording its summary and commits."""
        return self._json(
            "POST", f"/sessions/{_uuid(session_id)}/complete", payload=completion
        )

    # ------------------------------------------------------------------
    # Features
    # ------------------------------------------------------------------

    def get_feature(self, feature_id: str | uuid.UUID) -> dict[str, Any]:
        """Fetch a feature with full details."""
        return self._json("GET", f"/features/{_uuid(feature_id)}")

    def get_feature_history(self, feature_id: str | uuid.UUID) -> list[dict[str, Any]]:
        """Fetch the history entries of a feature."""
        return self._json("GET", f"/features/{_uuid(feature_id)}/history")

    def list_features(
        self,
        project_id: str | uuid.UUID | None = None,
        state: str | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[dict[str, Any]]:
        """List feature summaries, optionally for one project and paginated."""
        path = (
            f"/projects/{_uuid(project_id)}/features"
            if project_id is not None
            else "/features"
        )
        params = [
            f"{name}={value}"
            for name, value in (("state", state), ("limit", limit), ("offset", offset))
            if value is not None
        ]
        if params:
            path = f"{path}?{'&'.join(params)}"
        return self._json("GET", path)

    def search_features(
        self,
        query: str,
        project_id: str | uuid.UUID | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Search feature titles and details; results are ranked summaries."""
        params = [f"q={encode_search_query(query)}"]
        if project_id is not None:
            params.append(f"project_id={_uuid(project_id)}")
        if limit is not None:
            params.append(f"limit={limit}")
        return self._json("GET", f"/features/search?{'&'.join(params)}")

    def update_feature(
        self, feature_id: str | uuid.UUID, update: Mapping[str, Any]
    ) -> dict[str, Any]:
        """Update a feature and return it."""
        return self._json("PUT", f"/features/{_uuid(feature_id)}", payload=update)

    def create_feature(
        self, project_id: str | uuid.UUID, feature: Mapping[str, Any]
    ) -> dict[str, Any]:
        """Create a feature in a project."""
        return self._json(
            "POST", f"/projects/{_uuid(project_id)}/features", payload=feature
        )

    def bulk_create_features(
        self,
        project_id: str | uuid.UUID,
        features: Iterable[ProposedFeature],
        confirm: bool = False,
    ) -> PlanFeaturesResponse:
        """Preview, or with ``confirm`` create, a whole feature tree."""
        data = self._json(
            "POST",
            f"/projects/{_uuid(project_id)}/features/bulk",
            payload={
                "features": [feature.to_dict() for feature in features],
                "confirm": confirm,
            },
        )
        return PlanFeaturesResponse.from_dict(data)

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    def get_project(self, project_id: str | uuid.UUID) -> dict[str, Any]:
        """Fetch a project with its directories."""
        return self._json("GET", f"/projects/{_uuid(project_id)}")

    def get_project_by_directory(self, path: str) -> dict[str, Any]:
        """Find the project registered for ``path`` or a parent of it."""
        return self._json("GET", "/projects/by-directory", params={"path": path})

    def create_project(self, project: Mapping[str, Any]) -> dict[str, Any]:
        """Create a project."""
        return self._json("POST", "/projects", payload=project)

    def add_project_directory(
        self, project_id: str | uuid.UUID, directory: Mapping[str, Any]
    ) -> dict[str, Any]:
        """Register a directory with a project."""
        return self._json(
            "POST", f"/projects/{_uuid(project_id)}/directories", payload=directory
        )

    def get_project_context(self, directory_path: str) -> ProjectContextResponse:
        """Project and matching directory for a working directory."""
        found = self.get_project_by_directory(directory_path)
        project = found.get("project", found)
        matching = next(
            (
                directory
                for directory in found.get("directories", [])
                if directory_path == directory["path"]
                or directory_path.startswith(f"{directory['path']}/")
            ),
            None,
        )
        if matching is None:
            raise ServerError("Directory match logic error")
        return ProjectContextResponse(
            project=ProjectInfo(
                id=str(project["id"]),
                name=project["name"],
                description=project.get("description"),
                instructions=project.get("instructions"),
            ),
            directory=DirectoryInfo(
                id=str(matching["id"]),
                path=matching["path"],
                git_remote=matching.get("git_remote"),
                is_primary=bool(matching.get("is_primary", False)),
                instructions=matching.get("instructions"),
            ),
        )