import json

import pytest

from featuremanifest.types import (
    AgentType,
    BreakdownFeatureRequest,
    CommitRefInput,
    CompleteSessionRequest,
    CreateFeatureRequest,
    CreateTaskRequest,
    FeatureInfo,
    FeatureState,
    GetActiveFeatureRequest,
    GetTaskContextRequest,
    ListFeaturesRequest,
    PlanFeaturesRequest,
    PlanFeaturesResponse,
    ProposedFeature,
    RequestParseError,
    SessionInfo,
    TaskInfo,
    TaskStatus,
    BreakdownFeatureResponse,
    input_schema,
    parse_request,
    to_json,
)


def test_parse_simple_request():
    req = parse_request(GetTaskContextRequest, {"task_id": "abc"})
    assert req.task_id == "abc"


def test_missing_required_field_raises():
    with pytest.raises(RequestParseError, match="task_id"):
        parse_request(GetTaskContextRequest, {})


def test_unknown_fields_are_ignored():
    req = parse_request(GetTaskContextRequest, {"task_id": "x", "extra": 1})
    assert req == GetTaskContextRequest(task_id="x")


def test_complete_session_defaults():
    req = parse_request(CompleteSessionRequest, {"session_id": "s", "summary": "done"})
    assert req.commits == []
    assert req.mark_implemented is True


def test_complete_session_parses_nested_commits():
    req = parse_request(
        CompleteSessionRequest,
        {
            "session_id": "s",
            "summary": "done",
            "commits": [{"sha": "abc123", "message": "fix"}],
            "mark_implemented": False,
        },
    )
    assert req.commits == [CommitRefInput(sha="abc123", message="fix", author=None)]
    assert req.mark_implemented is False


def test_nested_error_names_path():
    with pytest.raises(RequestParseError, match=r"commits\[0\]\.message"):
        parse_request(
            CompleteSessionRequest,
            {"session_id": "s", "summary": "d", "commits": [{"sha": "a"}]},
        )


def test_create_feature_default_state_is_proposed():
    req = parse_request(CreateFeatureRequest, {"project_id": "p", "title": "Router"})
    assert req.state == "proposed"
    assert req.parent_id is None
    assert req.priority is None


def test_breakdown_task_default_agent_is_claude():
    req = parse_request(
        BreakdownFeatureRequest,
        {"feature_id": "f", "goal": "g", "tasks": [{"title": "t", "scope": "s"}]},
    )
    assert req.tasks[0].agent_type == "claude"


@pytest.mark.parametrize(
    "data",
    [
        {"task_id": 5},
        {"task_id": None},
        {"task_id": ["a"]},
    ],
)
def test_wrong_type_raises(data):
    with pytest.raises(RequestParseError):
        parse_request(GetTaskContextRequest, data)


def test_negative_limit_rejected():
    with pytest.raises(RequestParseError, match="limit"):
        parse_request(ListFeaturesRequest, {"limit": -1})


def test_bool_is_not_an_integer():
    with pytest.raises(RequestParseError):
        parse_request(ListFeaturesRequest, {"offset": True})


def test_optional_fields_accept_null():
    req = parse_request(ListFeaturesRequest, {"state": None, "limit": 20})
    assert req.state is None
    assert req.limit == 20


def test_non_object_arguments_rejected():
    with pytest.raises(RequestParseError):
        parse_request(GetTaskContextRequest, ["task_id"])


def test_empty_request_accepts_none():
    assert parse_request(GetActiveFeatureRequest, None) == GetActiveFeatureRequest()


def test_parse_request_rejects_non_request_type():
    with pytest.raises(TypeError):
        parse_request(dict, {})


def test_proposed_feature_round_trip():
    data = {
        "title": "Authentication",
        "details": None,
        "priority": 1,
        "children": [
            {"title": "Password Login", "details": "As a user, I can log in", "priority": 0, "children": []}
        ],
    }
    feature = ProposedFeature.from_dict(data)
    assert feature.children[0].title == "Password Login"
    assert feature.to_dict() == data


def test_proposed_feature_defaults():
    feature = ProposedFeature.from_dict({"title": "Router"})
    assert feature.priority == 0
    assert feature.children == []
    assert feature.details is None


def test_plan_features_response_from_dict_defaults_ids():
    resp = PlanFeaturesResponse.from_dict(
        {"proposed_features": [{"title": "Router"}], "created": False}
    )
    assert resp.created is False
    assert resp.created_feature_ids == []
    assert resp.proposed_features[0].title == "Router"


def test_input_schema_required_and_descriptions():
    schema = input_schema(CreateTaskRequest)
    assert schema["type"] == "object"
    assert schema["required"] == ["session_id", "title", "scope", "agent_type"]
    assert (
        schema["properties"]["session_id"]["description"]
        == "The UUID of the session to create the task in"
    )


def test_input_schema_optional_unsigned():
    schema = input_schema(ListFeaturesRequest)
    assert "required" not in schema
    limit = schema["properties"]["limit"]
    assert limit["type"] == ["integer", "null"]
    assert limit["minimum"] == 0


def test_input_schema_recursive_definition():
    schema = input_schema(PlanFeaturesRequest)
    assert schema["properties"]["features"]["items"] == {"$ref": "#/$defs/ProposedFeature"}
    children = schema["$defs"]["ProposedFeature"]["properties"]["children"]
    assert children["items"] == {"$ref": "#/$defs/ProposedFeature"}
    assert schema["$defs"]["ProposedFeature"]["required"] == ["title"]


def test_input_schema_records_defaults():
    schema = input_schema(CompleteSessionRequest)
    assert schema["properties"]["mark_implemented"]["default"] is True
    assert schema["properties"]["commits"]["default"] == []


def test_to_json_round_trip_preserves_order_and_nulls():
    info = FeatureInfo(
        id="f1", title="Router", details=None, desired_details=None,
        state=FeatureState.PROPOSED, priority=3,
    )
    text = to_json(info)
    decoded = json.loads(text)
    assert list(decoded) == ["id", "title", "details", "desired_details", "state", "priority"]
    assert decoded["state"] == "proposed"
    assert decoded["details"] is None
    assert text.startswith('{\n  "id"')


def test_to_json_nested_response():
    resp = BreakdownFeatureResponse(
        session=SessionInfo(id="s", feature_id="f", goal="g", status="active"),
        tasks=[TaskInfo(id="t", title="T", scope="S", status="pending", agent_type="claude")],
    )
    decoded = json.loads(to_json(resp))
    assert decoded["session"]["goal"] == "g"
    assert decoded["tasks"][0]["agent_type"] == "claude"


def test_enums_parse_from_strings():
    assert FeatureState("implemented") is FeatureState.IMPLEMENTED
    assert AgentType("codex") is AgentType.CODEX
    assert TaskStatus("running").value == "running"
    assert str(AgentType.GEMINI) == "gemini"
    with pytest.raises(ValueError):
        AgentType("gpt")