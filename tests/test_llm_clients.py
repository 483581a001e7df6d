"""
Provider routing and the self-contained LLM clients.
"""

import asyncio
import json

import httpx
import pytest

from keel.core.errors import LLMError
from keel.core.schema import (
    HistoryMessage,
    LLMRequest,
    Observation,
    ToolResult,
)
from keel.llm.clients import (
    AnthropicLLMClient,
    OpenAILLMClient,
    RouterLLMClient,
    StubLLMClient,
    TGILLMClient,
    history_messages,
    load_llm_client,
)


def respond(client, **fields):
    fields.setdefault("query", "what's open?")
    fields.setdefault("prompt", "ctx")
    return asyncio.run(client.respond(LLMRequest(**fields)))


def test_stub_summarizes_observations() -> None:
    """The stub client is deterministic and lists every observation."""

    observations = [
        Observation.success("app/jira", ToolResult(data={"n": 1})),
        Observation.failure("app/github", "rate limited"),
    ]
    reply = respond(StubLLMClient(), observations=observations)

    assert reply.text.splitlines() == [
        "[stub] what's open?",
        '- app/jira: {"n": 1}',
        "- app/github: error=rate limited",
    ]
    assert (reply.provider, reply.model) == ("stub", "stub")


def test_router_uses_request_provider_then_default() -> None:
    """Per-request provider wins; unknown providers fall back to the default."""

    stub = StubLLMClient()
    router = RouterLLMClient("stub", clients={"stub": stub})

    assert respond(router).provider == "stub"
    assert respond(router, provider="nonexistent").provider == "stub"
    assert respond(router, provider="STUB", model="m2").model == "m2"


def test_router_without_any_provider_fails() -> None:
    """No usable provider is an LLMError."""

    with pytest.raises(LLMError, match="no LLM provider configured"):
        respond(RouterLLMClient(None), provider="nonexistent")


def test_load_unknown_llm_client() -> None:
    """Unregistered provider names are rejected."""

    assert isinstance(load_llm_client("stub"), StubLLMClient)
    with pytest.raises(LLMError):
        load_llm_client("does-not-exist")


def test_history_roles_are_normalized() -> None:
    """Unknown roles are sent as user messages."""

    history = [
        HistoryMessage(role="assistant", content="a"),
        HistoryMessage(role="tool", content="t"),
    ]
    assert history_messages(history) == [
        {"role": "assistant", "content": "a"},
        {"role": "user", "content": "t"},
    ]


def test_tgi_client_posts_prompt_and_reads_generated_text() -> None:
    """The TGI client renders the chat and returns generated_text."""

    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update(json.loads(request.content))
        return httpx.Response(200, json={"generated_text": " two tickets"})

    client = TGILLMClient(endpoint="http://tgi/generate", transport=httpx.MockTransport(handler))
    reply = respond(client, history=[HistoryMessage(role="user", content="hi")])

    assert reply.text == " two tickets"
    assert reply.provider == "tgi"
    assert seen["inputs"] == "ctx\n\nUser: hi\nUser: what's open?\nAssistant:"
    assert seen["parameters"]["temperature"] == 0.2


def test_tgi_client_wraps_http_errors() -> None:
    """Transport and status failures become LLMError."""

    transport = httpx.MockTransport(lambda request: httpx.Response(500))
    with pytest.raises(LLMError):
        respond(TGILLMClient(endpoint="http://tgi/generate", transport=transport))


def test_hosted_providers_require_keys() -> None:
    """OpenAI and Anthropic clients refuse to run without credentials."""

    openai_client = OpenAILLMClient()
    openai_client._api_key = None
    anthropic_client = AnthropicLLMClient()
    anthropic_client._api_key = None

    with pytest.raises(LLMError, match="OpenAI API key"):
        respond(openai_client)
    with pytest.raises(LLMError, match="Anthropic API key"):
        respond(anthropic_client)
