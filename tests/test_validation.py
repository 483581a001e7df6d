"""
Static tool-call checks and the core data model invariants.
"""

import json

import pytest
from fakes import (
    JIRA,
    call,
)
from pydantic import ValidationError

from keel.agent.policy import (
    AllowAllPolicy,
    ToolListPolicy,
)
from keel.agent.validation import (
    validate_required_fields,
    validate_tool_call,
)
from keel.core.schema import (
    Observation,
    Request,
    ToolAction,
    ToolDef,
    ToolResult,
)

TWO_REQUIRED = json.dumps({"type": "object", "required": ["a", "b"]})
CALC = ToolDef(name="calc", actions=[ToolAction(name="add", input_schema=TWO_REQUIRED)])


@pytest.mark.parametrize(
    "tool_call, expected",
    [
        (call("", "search"), "missing tool name"),
        (call("app/nope", "search"), "unknown tool: app/nope"),
        (call("app/jira", ""), "missing tool action"),
        (call("app/jira", "delete"), "unknown action: delete"),
        (call("app/jira", "search"), "missing required params: query"),
        (call("app/jira", "search", query="x"), None),
        (call("app/jira", "create"), None),
    ],
)
def test_validation_order(tool_call, expected) -> None:
    """The first failing check is reported, in the documented order."""

    assert validate_tool_call(tool_call, [JIRA]) == expected


def test_missing_params_reported_in_schema_order() -> None:
    """Only absent keys are listed, in the order the schema declares them."""

    assert validate_tool_call(call("calc", "add", a=1), [CALC]) == "missing required params: b"
    assert validate_tool_call(call("calc", "add"), [CALC]) == "missing required params: a, b"
    assert validate_tool_call(call("calc", "add", a=1, b=2), [CALC]) is None


@pytest.mark.parametrize(
    "schema",
    ["not json", "[]", json.dumps({"required": "a"}), json.dumps({"required": []}), "{}"],
)
def test_unusable_schemas_are_not_enforced(schema: str) -> None:
    """A schema we cannot interpret never blocks a call."""

    assert validate_required_fields(schema, {}) is None


# ---------------------------------------------------------------------------
# Policies
# ---------------------------------------------------------------------------
def test_allow_all_policy() -> None:
    """The default policy refuses nothing."""

    assert AllowAllPolicy().allow_tool("anything")


def test_tool_list_policy_deny_wins() -> None:
    """A denied name is refused even when it is also allowed."""

    policy = ToolListPolicy(allow=["app/*"], deny=["app/pagerduty"])
    assert policy.allow_tool("app/jira")
    assert not policy.allow_tool("app/pagerduty")
    assert not policy.allow_tool("ops/deploy")


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------
def test_observation_carries_exactly_one_outcome() -> None:
    """Observations with both or neither of result and error are rejected."""

    with pytest.raises(ValidationError):
        Observation(tool_name="t")
    with pytest.raises(ValidationError):
        Observation(tool_name="t", result=ToolResult(), error="boom")

    assert Observation.success("t", ToolResult()).ok
    assert not Observation.failure("t", "boom").ok
    assert Observation.failure("t", "").error == "unknown error"


def test_request_is_immutable() -> None:
    """Requests cannot be changed once created."""

    request = Request(query="hello")
    with pytest.raises(ValidationError):
        request.query = "changed"
