"""
HTTP tool-service client, exercised against httpx.MockTransport.
"""

import asyncio
import json

import httpx
import pytest

from keel.core.errors import (
    ToolExecutionError,
    ToolServiceError,
)
from keel.core.schema import ToolCall
from keel.tools.remote import ToolServiceClient

CATALOG = [
    {
        "name": "app/jira",
        "description": "Jira issues",
        "actions": [
            {"name": "search", "description": "Search", "inputSchema": '{"required": ["query"]}'}
        ],
    }
]


def service(status: int = 200, catalog=None, result=None, seen=None):
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        if status != 200:
            return httpx.Response(status, text="nope")
        if request.method == "GET" and request.url.path == "/v1/tools":
            return httpx.Response(200, json=CATALOG if catalog is None else catalog)
        if request.method == "POST" and request.url.path == "/v1/tools/execute":
            return httpx.Response(200, json=result or {"success": True, "data": {"n": 3}})
        return httpx.Response(404)

    return httpx.MockTransport(handler)


def test_list_tools_decodes_catalog_and_sends_scope() -> None:
    """The catalog is decoded and scoped by user and project."""

    seen = []
    client = ToolServiceClient(
        "http://tools/", auth_token="secret", transport=service(seen=seen)
    )
    tools = asyncio.run(client.list_tools("u1", "p1"))

    assert tools[0].name == "app/jira"
    assert tools[0].get_action("search").input_schema == '{"required": ["query"]}'
    assert seen[0].url.params["userId"] == "u1"
    assert seen[0].url.params["projectId"] == "p1"
    assert seen[0].headers["Authorization"] == "Bearer secret"


def test_execute_posts_call_and_returns_result() -> None:
    """Calls are posted as name/action/args and the result is normalized."""

    seen = []
    client = ToolServiceClient("http://tools", transport=service(seen=seen))
    result = asyncio.run(
        client.execute(ToolCall(name="app/jira", action="search", args={"query": "x"}))
    )

    assert result.success
    assert result.data == {"n": 3}
    assert json.loads(seen[0].content) == {
        "name": "app/jira",
        "action": "search",
        "args": {"query": "x"},
    }


@pytest.mark.parametrize("status", [302, 404, 500])
def test_bad_status_raises_tool_service_error(status: int) -> None:
    """Any status of 300 or above is a failure for both operations."""

    client = ToolServiceClient("http://tools", transport=service(status=status))
    with pytest.raises(ToolServiceError, match=f"HTTP {status}"):
        asyncio.run(client.list_tools("", ""))
    with pytest.raises(ToolExecutionError):
        asyncio.run(client.execute(ToolCall(name="t", action="a")))


def test_malformed_catalog_raises() -> None:
    """A catalog that does not decode is reported, not ignored."""

    client = ToolServiceClient("http://tools", transport=service(catalog=[{"actions": []}]))
    with pytest.raises(ToolServiceError, match="invalid catalog"):
        asyncio.run(client.list_tools("", ""))
