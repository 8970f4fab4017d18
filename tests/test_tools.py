import json

import pytest
import responses

from featuremanifest.client import ManifestClient
from featuremanifest.tools import ManifestTools, ToolError
from featuremanifest.types import (
    CompleteSessionRequest,
    CreateTaskRequest,
    GetActiveFeatureRequest,
    ProposedFeature,
    PlanFeaturesRequest,
    StartTaskRequest,
    UpdateFeatureStateRequest,
)

BASE = "http://manifest.test/api/v1"
TASK_ID = "11111111-1111-4111-8111-111111111111"
SESSION_ID = "22222222-2222-4222-8222-222222222222"
FEATURE_ID = "33333333-3333-4333-8333-333333333333"
PROJECT_ID = "44444444-4444-4444-8444-444444444444"
HISTORY_ID = "55555555-5555-4555-8555-555555555555"
DIR_ID = "66666666-6666-4666-8666-666666666666"


@pytest.fixture
def http():
    with responses.RequestsMock(assert_all_requests_are_fired=False) as rsps:
        yield rsps


@pytest.fixture
def tools():
    return ManifestTools(ManifestClient(BASE, None))


def _body(call):
    return json.loads(call.request.body)


def _feature(**overrides):
    feature = {
        "id": FEATURE_ID,
        "project_id": PROJECT_ID,
        "parent_id": None,
        "title": "User Login",
        "details": "Login details",
        "desired_details": None,
        "state": "specified",
        "priority": 2,
    }
    feature.update(overrides)
    return feature


def _task(**overrides):
    task = {
        "id": TASK_ID,
        "session_id": SESSION_ID,
        "title": "Task",
        "scope": "Scope",
        "status": "pending",
        "agent_type": "claude",
    }
    task.update(overrides)
    return task


def _session():
    return {"id": SESSION_ID, "feature_id": FEATURE_ID, "goal": "Implement feature", "status": "active"}


def test_list_tools_names_and_schemas(tools):
    listed = tools.list_tools()
    names = [tool["name"] for tool in listed]
    assert names[:3] == ["get_task_context", "start_task", "complete_task"]
    assert names[-1] == "plan_features"
    assert len(names) == 19
    by_name = {tool["name"]: tool for tool in listed}
    assert by_name["create_task"]["inputSchema"]["title"] == "CreateTaskRequest"
    assert "task_id" in by_name["start_task"]["inputSchema"]["required"]


def test_call_unknown_tool(tools):
    with pytest.raises(ToolError) as info:
        tools.call("no_such_tool", {})
    assert info.value.code == ToolError.INVALID_PARAMS


def test_call_missing_argument(tools):
    with pytest.raises(ToolError) as info:
        tools.call("start_task", {})
    assert info.value.code == ToolError.INVALID_PARAMS
    assert "task_id" in info.value.message


def test_invalid_uuid_is_invalid_params(tools, http):
    with pytest.raises(ToolError) as info:
        tools.start_task(StartTaskRequest(task_id="not-a-uuid"))
    assert info.value.code == ToolError.INVALID_PARAMS
    assert info.value.message.startswith("Invalid UUID")
    assert len(http.calls) == 0


def test_get_task_context(tools, http):
    http.add(responses.GET, f"{BASE}/tasks/{TASK_ID}", json=_task())
    http.add(responses.GET, f"{BASE}/sessions/{SESSION_ID}", json=_session())
    http.add(responses.GET, f"{BASE}/features/{FEATURE_ID}", json=_feature())
    result = json.loads(tools.call("get_task_context", {"task_id": TASK_ID}))
    assert result["task"]["id"] == TASK_ID
    assert result["task"]["agent_type"] == "claude"
    assert result["feature"]["title"] == "User Login"
    assert result["feature"]["priority"] == 2
    assert result["session_goal"] == "Implement feature"


def test_start_task_sets_running(tools, http):
    http.add(responses.PUT, f"{BASE}/tasks/{TASK_ID}", status=200)
    text = tools.start_task(StartTaskRequest(task_id=TASK_ID))
    assert text == "Task started - status set to 'running'"
    assert _body(http.calls[0])["status"] == "running"


def test_complete_task_sets_completed(tools, http):
    http.add(responses.PUT, f"{BASE}/tasks/{TASK_ID}", status=200)
    text = tools.call("complete_task", {"task_id": TASK_ID})
    assert text == "Task completed successfully"
    assert _body(http.calls[0])["status"] == "completed"


def test_create_session(tools, http):
    http.add(
        responses.POST,
        f"{BASE}/features/{FEATURE_ID}/sessions",
        json={"session": _session(), "tasks": []},
        status=201,
    )
    result = json.loads(
        tools.call("create_session", {"feature_id": FEATURE_ID, "goal": "Implement feature"})
    )
    assert result == {
        "id": SESSION_ID,
        "feature_id": FEATURE_ID,
        "goal": "Implement feature",
        "status": "active",
    }
    assert _body(http.calls[0]) == {"goal": "Implement feature", "tasks": []}


def test_create_task_rejects_unknown_agent(tools, http):
    request = CreateTaskRequest(session_id=SESSION_ID, title="T", scope="S", agent_type="robot")
    with pytest.raises(ToolError) as info:
        tools.create_task(request)
    assert info.value.code == ToolError.INVALID_PARAMS
    assert "Invalid agent_type 'robot'" in info.value.message
    assert len(http.calls) == 0


def test_create_task(tools, http):
    http.add(
        responses.POST,
        f"{BASE}/sessions/{SESSION_ID}/tasks",
        json=_task(agent_type="gemini", title="Write tests"),
        status=201,
    )
    request = CreateTaskRequest(
        session_id=SESSION_ID, title="Write tests", scope="S", agent_type="gemini"
    )
    result = json.loads(tools.create_task(request))
    assert result["agent_type"] == "gemini"
    assert result["title"] == "Write tests"
    body = _body(http.calls[0])
    assert body["agent_type"] == "gemini"
    assert body["parent_id"] is None


def test_breakdown_feature_defaults_agent(tools, http):
    http.add(
        responses.POST,
        f"{BASE}/features/{FEATURE_ID}/sessions",
        json={"session": _session(), "tasks": [_task()]},
        status=201,
    )
    result = json.loads(
        tools.call(
            "breakdown_feature",
            {
                "feature_id": FEATURE_ID,
                "goal": "Implement feature",
                "tasks": [{"title": "Task", "scope": "Scope"}],
            },
        )
    )
    assert result["session"]["id"] == SESSION_ID
    assert [t["id"] for t in result["tasks"]] == [TASK_ID]
    body = _body(http.calls[0])
    assert body["tasks"][0]["agent_type"] == "claude"


def test_list_session_tasks(tools, http):
    http.add(responses.GET, f"{BASE}/sessions/{SESSION_ID}/tasks", json=[_task(), _task(status="running")])
    result = json.loads(tools.call("list_session_tasks", {"session_id": SESSION_ID}))
    assert result["session_id"] == SESSION_ID
    assert [t["status"] for t in result["tasks"]] == ["pending", "running"]


def _completion():
    return {
        "session": dict(_session(), status="completed"),
        "history_entry": {"id": HISTORY_ID},
    }


def test_complete_session_marks_implemented_by_default(tools, http):
    http.add(responses.POST, f"{BASE}/sessions/{SESSION_ID}/complete", json=_completion())
    result = json.loads(
        tools.call(
            "complete_session",
            {"session_id": SESSION_ID, "summary": "Done", "commits": [{"sha": "abc", "message": "m"}]},
        )
    )
    assert result == {
        "session_id": SESSION_ID,
        "feature_id": FEATURE_ID,
        "feature_state": "implemented",
        "history_entry_id": HISTORY_ID,
    }
    body = _body(http.calls[0])
    assert body["feature_state"] == "implemented"
    assert body["commits"] == [{"sha": "abc", "message": "m", "author": None}]


def test_complete_session_partial(tools, http):
    http.add(responses.POST, f"{BASE}/sessions/{SESSION_ID}/complete", json=_completion())
    request = CompleteSessionRequest(session_id=SESSION_ID, summary="Partial", mark_implemented=False)
    result = json.loads(tools.complete_session(request))
    assert result["feature_state"] == "unchanged"
    assert _body(http.calls[0])["feature_state"] is None


def test_list_features_query(tools, http):
    http.add(
        responses.GET,
        f"{BASE}/projects/{PROJECT_ID}/features",
        json=[{"id": FEATURE_ID, "title": "User Login", "state": "specified", "priority": 1, "parent_id": None}],
    )
    result = json.loads(
        tools.call("list_features", {"project_id": PROJECT_ID, "state": "specified", "limit": 5})
    )
    assert result["features"][0]["title"] == "User Login"
    assert result["features"][0]["parent_id"] is None
    assert http.calls[0].request.url.endswith("?state=specified&limit=5")


def test_search_features_encodes_query(tools, http):
    http.add(
        responses.GET,
        f"{BASE}/features/search",
        json=[{"id": FEATURE_ID, "title": "OAuth Flow", "state": "proposed", "priority": 0, "parent_id": PROJECT_ID}],
    )
    result = json.loads(tools.call("search_features", {"query": "a b&c"}))
    assert result["features"][0]["parent_id"] == PROJECT_ID
    assert "q=a%20b%26c" in http.calls[0].request.url


def test_get_feature(tools, http):
    http.add(responses.GET, f"{BASE}/features/{FEATURE_ID}", json=_feature(desired_details="Desired"))
    result = json.loads(tools.call("get_feature", {"feature_id": FEATURE_ID}))
    assert result["desired_details"] == "Desired"
    assert result["state"] == "specified"


def test_get_feature_history(tools, http):
    http.add(
        responses.GET,
        f"{BASE}/features/{FEATURE_ID}/history",
        json=[
            {
                "id": HISTORY_ID,
                "feature_id": FEATURE_ID,
                "session_id": SESSION_ID,
                "details": {"summary": "Implemented login flow", "commits": [{"sha": "abc", "message": "m", "author": "dev"}]},
                "created_at": "2024-05-01T12:00:00Z",
            }
        ],
    )
    result = json.loads(tools.call("get_feature_history", {"feature_id": FEATURE_ID}))
    entry = result["entries"][0]
    assert result["feature_id"] == FEATURE_ID
    assert entry["summary"] == "Implemented login flow"
    assert entry["session_id"] == SESSION_ID
    assert entry["commits"][0]["author"] == "dev"
    assert entry["created_at"] == "2024-05-01T12:00:00+00:00"


def test_not_found_maps_to_invalid_params(tools, http):
    http.add(responses.GET, f"{BASE}/features/{FEATURE_ID}", body="Feature not found", status=404)
    with pytest.raises(ToolError) as info:
        tools.call("get_feature", {"feature_id": FEATURE_ID})
    assert info.value.code == ToolError.INVALID_PARAMS
    assert info.value.message == "Feature not found"


def test_unauthorized_maps_to_internal(tools, http):
    http.add(responses.GET, f"{BASE}/features/{FEATURE_ID}", status=401)
    with pytest.raises(ToolError) as info:
        tools.call("get_feature", {"feature_id": FEATURE_ID})
    assert info.value.code == ToolError.INTERNAL_ERROR
    assert info.value.message == "Unauthorized: check MANIFEST_API_KEY"


def test_server_error_maps_to_internal(tools, http):
    http.add(responses.GET, f"{BASE}/features/{FEATURE_ID}", body="boom", status=500)
    with pytest.raises(ToolError) as info:
        tools.call("get_feature", {"feature_id": FEATURE_ID})
    assert info.value.code == ToolError.INTERNAL_ERROR
    assert info.value.message.startswith("500")
    assert info.value.message.endswith("boom")


def test_update_feature_state_requires_a_field(tools, http):
    with pytest.raises(ToolError) as info:
        tools.update_feature_state(UpdateFeatureStateRequest(feature_id=FEATURE_ID))
    assert info.value.message == "At least one of state, title, or details must be provided"
    assert len(http.calls) == 0


def test_update_feature_state_rejects_bad_state(tools):
    with pytest.raises(ToolError) as info:
        tools.update_feature_state(UpdateFeatureStateRequest(feature_id=FEATURE_ID, state="done"))
    assert info.value.code == ToolError.INVALID_PARAMS
    assert "Invalid state 'done'" in info.value.message


def test_update_feature_state(tools, http):
    http.add(responses.PUT, f"{BASE}/features/{FEATURE_ID}", json=_feature(title="New", state="deprecated"))
    result = json.loads(
        tools.call("update_feature_state", {"feature_id": FEATURE_ID, "title": "New", "state": "deprecated"})
    )
    assert result["title"] == "New"
    assert result["state"] == "deprecated"
    body = _body(http.calls[0])
    assert body["state"] == "deprecated"
    assert body["details"] is None


def test_get_active_feature_without_file(tools, tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    result = json.loads(tools.get_active_feature(GetActiveFeatureRequest()))
    assert result["active_feature"] is None


def test_get_active_feature_with_file(tools, tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    context = {"feature_id": FEATURE_ID, "title": "User Login"}
    (tmp_path / ".manifest").mkdir()
    (tmp_path / ".manifest" / "active_context.json").write_text(json.dumps(context))
    result = json.loads(tools.call("get_active_feature", {}))
    assert result == {"active_feature": context}


def test_get_active_feature_invalid_file(tools, tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    (tmp_path / ".manifest").mkdir()
    (tmp_path / ".manifest" / "active_context.json").write_text("{broken")
    with pytest.raises(ToolError) as info:
        tools.get_active_feature(GetActiveFeatureRequest())
    assert info.value.code == ToolError.INTERNAL_ERROR
    assert info.value.message.startswith("Invalid context file")


def test_get_project_context(tools, http):
    http.add(
        responses.GET,
        f"{BASE}/projects/by-directory",
        json={
            "project": {"id": PROJECT_ID, "name": "Test Project", "description": None, "instructions": "Run tests"},
            "directories": [
                {"id": DIR_ID, "project_id": PROJECT_ID, "path": "/home/user/project", "git_remote": None, "is_primary": True, "instructions": None}
            ],
        },
    )
    result = json.loads(tools.call("get_project_context", {"directory_path": "/home/user/project/src"}))
    assert result["project"]["name"] == "Test Project"
    assert result["directory"]["id"] == DIR_ID
    assert result["directory"]["is_primary"] is True


def test_create_project(tools, http):
    http.add(
        responses.POST,
        f"{BASE}/projects",
        json={"id": PROJECT_ID, "name": "My Project", "description": None, "instructions": None},
        status=201,
    )
    result = json.loads(tools.call("create_project", {"name": "My Project"}))
    assert result == {"id": PROJECT_ID, "name": "My Project", "description": None, "instructions": None}
    assert _body(http.calls[0])["name"] == "My Project"


def test_add_project_directory(tools, http):
    http.add(
        responses.POST,
        f"{BASE}/projects/{PROJECT_ID}/directories",
        json={"id": DIR_ID, "project_id": PROJECT_ID, "path": "/home/user/project", "git_remote": None, "is_primary": True, "instructions": "Run npm test"},
        status=201,
    )
    result = json.loads(
        tools.call(
            "add_project_directory",
            {"project_id": PROJECT_ID, "path": "/home/user/project", "is_primary": True, "instructions": "Run npm test"},
        )
    )
    assert result["path"] == "/home/user/project"
    assert result["instructions"] == "Run npm test"
    assert _body(http.calls[0])["is_primary"] is True


def test_create_feature_defaults_to_proposed(tools, http):
    http.add(
        responses.POST,
        f"{BASE}/projects/{PROJECT_ID}/features",
        json=_feature(state="proposed", parent_id=FEATURE_ID),
        status=201,
    )
    result = json.loads(
        tools.call("create_feature", {"project_id": PROJECT_ID, "title": "User Login", "parent_id": FEATURE_ID})
    )
    assert result["state"] == "proposed"
    body = _body(http.calls[0])
    assert body["state"] == "proposed"
    assert body["parent_id"] == FEATURE_ID
    assert body["id"] is None


def test_plan_features(tools, http):
    proposed = [{"title": "Authentication", "details": None, "priority": 0, "children": [{"title": "OAuth", "details": None, "priority": 1, "children": []}]}]
    http.add(
        responses.POST,
        f"{BASE}/projects/{PROJECT_ID}/features/bulk",
        json={"proposed_features": proposed, "created": True, "created_feature_ids": [FEATURE_ID]},
    )
    request = PlanFeaturesRequest(
        project_id=PROJECT_ID,
        features=[ProposedFeature.from_dict(item) for item in proposed],
        confirm=True,
    )
    result = json.loads(tools.plan_features(request))
    assert result["created"] is True
    assert result["created_feature_ids"] == [FEATURE_ID]
    assert result["proposed_features"] == proposed
    body = _body(http.calls[0])
    assert body["confirm"] is True
    assert body["features"] == proposed