"""
REST API, driven through FastAPI's TestClient with an engine built from fakes.
"""

import pytest
from fakes import (
    JIRA,
    RecordingExecutor,
    RecordingLLM,
    ScriptedPlanner,
    StaticRegistry,
    call,
)
from fastapi.testclient import TestClient

from keel.agent.engine import Engine
from keel.agent.planner_interface import HeuristicPlanner
from keel.api.app import (
    app,
    get_engine,
)
from keel.context.assembler import DefaultContextAssembler
from keel.core.errors import LLMError
from keel.core.schema import Plan


def client_for(**overrides) -> TestClient:
    parts = {
        "planner": HeuristicPlanner(keywords=["jira"]),
        "llm": RecordingLLM(text="done"),
        "tools": StaticRegistry([JIRA]),
        "executor": RecordingExecutor(),
        "context": DefaultContextAssembler(system_prompt="SYS"),
    }
    parts.update(overrides)
    engine = Engine(**parts)
    app.dependency_overrides[get_engine] = lambda: engine
    return TestClient(app)


@pytest.fixture(autouse=True)
def _reset_overrides():
    yield
    app.dependency_overrides.clear()


def test_health() -> None:
    """Liveness probe."""

    assert client_for().get("/health").json() == {"status": "ok"}


def test_tools_listing() -> None:
    """The catalog is exposed with its actions."""

    body = client_for().get("/tools", params={"user_id": "u"}).json()
    assert body[0]["name"] == "app/jira"
    assert [a["name"] for a in body[0]["actions"]] == ["search", "create"]


def test_agent_round_trip() -> None:
    """A tool request returns the reply, results, observations and trace."""

    resp = client_for().post(
        "/agent", json={"message": "tool:app/jira.search", "session_id": "s-1"}
    )
    body = resp.json()

    assert resp.status_code == 200
    assert body["reply"] == "done"
    assert body["session_id"] == "s-1"
    assert body["tool_results"] == {"app/jira": {"issues": ["ABC-1"]}}
    assert body["observations"][0]["tool_name"] == "app/jira"
    assert body["trace"][0]["name"] == "run.started"


def test_agent_assigns_session_and_accepts_query_alias() -> None:
    """Requests without a session get one; 'query' is accepted for 'message'."""

    body = client_for(tools=StaticRegistry([])).post("/agent", json={"query": "hello"}).json()
    assert body["session_id"]
    assert body["tool_results"] is None


def test_blank_message_is_bad_request() -> None:
    """Invalid requests map to 400."""

    assert client_for().post("/agent", json={"message": "  "}).status_code == 400


def test_non_convergence_is_unprocessable() -> None:
    """Running out of steps maps to 422."""

    planner = ScriptedPlanner(Plan.calls(call(query="x")))
    resp = client_for(planner=planner).post("/agent", json={"message": "loop"})
    assert resp.status_code == 422
    assert "max steps exceeded" in resp.json()["detail"]


def test_engine_failure_is_bad_gateway() -> None:
    """Other engine errors map to 502."""

    resp = client_for(llm=RecordingLLM(error=LLMError("provider down"))).post(
        "/agent", json={"message": "hello"}
    )
    assert resp.status_code == 502
    assert resp.json()["detail"] == "provider down"
