"""
Rolling session summaries: the compressor on its own and wired through the engine.
"""

import asyncio
from typing import List

from fakes import (
    FIXED_NOW,
    RecordingExecutor,
    RecordingLLM,
    StaticRegistry,
)

from keel.agent.engine import Engine
from keel.agent.planner_interface import HeuristicPlanner
from keel.context.assembler import DefaultContextAssembler
from keel.core.errors import LLMError
from keel.core.schema import Request
from keel.llm.clients import BaseLLMClient
from keel.memory.compressor import (
    SessionCompressor,
    brief,
    simple_summary,
)
from keel.memory.memory_store import (
    InMemoryBackend,
    MemoryAdapter,
    Turn,
)


class ScriptedSummarizer(BaseLLMClient):
    """Answers summarization prompts with canned text and records them."""

    def __init__(self, *replies: str, error: Exception | None = None):
        super().__init__("scripted")
        self.replies = list(replies)
        self.error = error
        self.prompts: List[str] = []
        self.temperatures: List[float] = []

    async def complete(self, system, messages, model=None, temperature=0.2) -> str:
        self.prompts.append(messages[-1]["content"])
        self.temperatures.append(temperature)
        if self.error is not None:
            raise self.error
        return self.replies.pop(0)


class NoSummaryBackend(InMemoryBackend):
    async def set_summary(self, session_id: str, summary: str) -> None:
        raise RuntimeError("summary store offline")


def turns(count: int, session: str = "s1") -> List[Turn]:
    roles = ("user", "assistant")
    return [
        Turn(session_id=session, role=roles[i % 2], content=f"message {i}") for i in range(count)
    ]


def seeded(count: int) -> InMemoryBackend:
    backend = InMemoryBackend()

    async def seed():
        for t in turns(count):
            await backend.add_turn(t)

    asyncio.run(seed())
    return backend


# ---------------------------------------------------------------------------
# Summaries
# ---------------------------------------------------------------------------
def test_brief_keeps_first_sentence_or_truncates() -> None:
    """Short first sentences are kept; long text is cut at 100 characters."""

    assert brief(Turn(session_id="s", role="user", content="Deploy it. Then verify.")) == (
        "Deploy it."
    )
    long_turn = Turn(session_id="s", role="user", content="x" * 150)
    assert brief(long_turn) == "x" * 100 + "..."
    assert simple_summary(turns(2)) == "- user: message 0\n- assistant: message 1"


def test_summarize_asks_the_llm_at_temperature_zero() -> None:
    """The conversation is rendered with speaker labels for the model."""

    llm = ScriptedSummarizer("  Discussed two messages.  ")
    summary = asyncio.run(SessionCompressor(InMemoryBackend(), llm=llm).summarize(turns(2)))

    assert summary == "Discussed two messages."
    assert "User: message 0\nAssistant: message 1" in llm.prompts[0]
    assert llm.temperatures == [0.0]


def test_summarize_falls_back_to_digest_on_llm_failure() -> None:
    """A failing summarizer degrades to the plain digest."""

    llm = ScriptedSummarizer(error=LLMError("quota"))
    summary = asyncio.run(SessionCompressor(InMemoryBackend(), llm=llm).summarize(turns(2)))
    assert summary == simple_summary(turns(2))


def test_rolling_summary_merges_through_llm_or_appends() -> None:
    """With a model the summaries are merged; without one they are concatenated."""

    llm = ScriptedSummarizer("new part", "merged")
    merged = asyncio.run(
        SessionCompressor(InMemoryBackend(), llm=llm).update_rolling_summary("old", turns(1))
    )
    assert merged == "merged"
    assert "Previous Summary:\nold\n\nNew Information:\nnew part" in llm.prompts[1]

    plain = SessionCompressor(InMemoryBackend())
    assert asyncio.run(plain.update_rolling_summary("old", turns(1))) == (
        "old\n\n- user: message 0"
    )
    assert asyncio.run(plain.update_rolling_summary("old", [])) == "old"


# ---------------------------------------------------------------------------
# Compression passes
# ---------------------------------------------------------------------------
def test_compress_old_turns_summarizes_outside_recent_window() -> None:
    """Turns older than the recent window are summarized once and flagged."""

    backend = seeded(10)
    compressor = SessionCompressor(backend, keep_recent=5, min_batch=4)

    async def scenario():
        first = await compressor.compress_old_turns("s1")
        second = await compressor.compress_old_turns("s1")
        return first, second, await backend.get_summary("s1"), await backend.get_turns("s1", 10)

    first, second, summary, stored = asyncio.run(scenario())
    assert (first, second) == (True, False)
    assert summary == simple_summary(turns(5))
    assert [t.compressed for t in stored] == [True] * 5 + [False] * 5
    assert stored[0].display_text() == "message 0"


def test_compress_waits_for_a_full_batch() -> None:
    """Fewer old turns than the batch size leave the summary untouched."""

    backend = seeded(7)
    compressor = SessionCompressor(backend, keep_recent=5, min_batch=4)
    done = asyncio.run(compressor.compress_old_turns("s1"))

    assert done is False
    assert asyncio.run(backend.get_summary("s1")) == ""


def test_adapter_swallows_compression_failures() -> None:
    """A failing summary write does not disturb the turn write."""

    backend = NoSummaryBackend()
    compressor = SessionCompressor(backend, keep_recent=0, min_batch=1)
    adapter = MemoryAdapter(backend, compressor=compressor)

    async def scenario():
        await adapter.add_turn("s1", "hi", "user", FIXED_NOW)
        await adapter.add_turn("s1", "hello", "assistant", FIXED_NOW)
        return await backend.get_turns("s1", 10)

    assert [t.content for t in asyncio.run(scenario())] == ["hi", "hello"]


def test_summary_reaches_the_prompt_after_several_runs() -> None:
    """Repeated runs on one session eventually show a conversation summary."""

    backend = InMemoryBackend()
    llm = RecordingLLM()
    engine = Engine(
        planner=HeuristicPlanner(keywords=[]),
        llm=llm,
        tools=StaticRegistry([]),
        executor=RecordingExecutor(),
        context=DefaultContextAssembler(memory=backend, system_prompt="SYS"),
        memory=MemoryAdapter(backend, compressor=SessionCompressor(backend)),
        clock=lambda: FIXED_NOW,
    )

    async def scenario():
        for i in range(8):
            await engine.run(Request(query=f"question {i}", session_id="s1"))

    asyncio.run(scenario())
    assert "## Conversation Summary" not in llm.requests[4].prompt
    assert "## Conversation Summary\n- user: question 0\n- assistant: final answer" in (
        llm.requests[-1].prompt
    )
