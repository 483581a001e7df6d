"""
Prompt assembly for the engine.

:class:`DefaultContextAssembler` composes, in order: system instructions, knowledge graph context,
tool descriptions, session memory (summary, relevant past turns, recent turns) and the current
request.  Enrichment and memory reads are best-effort: a failing section is left out, the build
carries on.
"""

import json
import logging
from datetime import (
    datetime,
    timezone,
)
from typing import (
    List,
    Sequence,
)

from keel.context.knowledge import KnowledgeClient
from keel.context.prompts import SYSTEM_PROMPT
from keel.core.interfaces import ContextAssembler
from keel.core.schema import (
    Observation,
    Request,
    ToolDef,
)
from keel.memory.memory_store import (
    MemoryBackend,
    Turn,
)

logger = logging.getLogger(__name__)


def format_time_ago(moment: datetime, now: datetime | None = None) -> str:
    """Render *moment* relative to *now* ("just now", "5 mins ago", ...)."""
    now = now or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    seconds = (now - moment).total_seconds()
    if seconds < 60:
        return "just now"
    if seconds < 3600:
        return f"{int(seconds // 60)} mins ago"
    if seconds < 86400:
        return f"{int(seconds // 3600)} hrs ago"
    return f"{int(seconds // 86400)} days ago"


def truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


def format_tools(tools: Sequence[ToolDef]) -> str:
    """Readable description of the tool catalog."""
    blocks = []
    for tool in tools:
        lines = [f"### {tool.name}", tool.description]
        if tool.actions:
            lines.append("Actions:")
            for action in tool.actions:
                line = f"- {action.name}: {action.description}"
                if action.input_schema:
                    line += f" Schema: {action.input_schema}"
                lines.append(line)
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks).strip()


class DefaultContextAssembler(ContextAssembler):
    """
    Builds prompts from system instructions, knowledge context, memory, tools and the query.

    Parameters
    ----------
    memory:
        Backend to read session memory from.  Without one, the memory sections are absent.
    knowledge:
        Knowledge graph client; None disables enrichment.
    system_prompt:
        Replaces :data:`~keel.context.prompts.SYSTEM_PROMPT`.
    recent_turns, relevant_turns:
        How many recent / semantically relevant turns to include.
    note_enrichment_failures:
        Add a visible system note when enrichment fails instead of silently omitting it.
    """

    def __init__(
        self,
        memory: MemoryBackend | None = None,
        knowledge: KnowledgeClient | None = None,
        system_prompt: str = SYSTEM_PROMPT,
        recent_turns: int = 3,
        relevant_turns: int = 5,
        note_enrichment_failures: bool = False,
    ):
        self._memory = memory
        self._knowledge = knowledge
        self._system_prompt = system_prompt
        self._recent_turns = recent_turns
        self._relevant_turns = relevant_turns
        self._note_enrichment_failures = note_enrichment_failures

    async def build(self, request: Request, tools: Sequence[ToolDef]) -> str:
        sections: List[str] = []
        if self._system_prompt:
            sections.append(self._system_prompt)
        sections.extend(await self._knowledge_sections(request))

        tool_text = format_tools(tools)
        if tool_text:
            sections.append(f"## Available Tools\n{tool_text}")

        if self._memory is not None:
            sections.extend(await self._memory_sections(self._memory, request))
        sections.append(f"## Current Request\n{request.query}")
        return "\n\n".join(sections)

    def append_observations(self, prompt: str, observations: Sequence[Observation]) -> str:
        if not observations:
            return prompt

        lines = [prompt, "", "## Tool Observations"]
        for obs in observations:
            if obs.error:
                lines.append(f"- {obs.tool_name}: error={obs.error}")
                continue
            if obs.result is not None:
                payload = json.dumps(obs.result.data, sort_keys=True, default=str)
                lines.append(f"- {obs.tool_name}: {payload}")
                if obs.result.message:
                    lines.append(f"  message: {obs.result.message}")
        return "\n".join(lines) + "\n"

    # ------------------------------------------------------------------ #
    # Sections
    # ------------------------------------------------------------------ #
    async def _knowledge_sections(self, request: Request) -> List[str]:
        if self._knowledge is None:
            return []
        try:
            knowledge = await self._knowledge.enrich(request.query, request.context_entities)
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("Knowledge context enrichment failed: %s", exc)
            if self._note_enrichment_failures:
                return [f"## System Notes\nKnowledge context unavailable: {exc}"]
            return []
        formatted = knowledge.format_for_llm()
        return [formatted] if formatted else []

    async def _memory_sections(self, memory: MemoryBackend, request: Request) -> List[str]:
        session_id = request.session_id
        sections: List[str] = []

        try:
            summary = await memory.get_summary(session_id)
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("Failed to load session summary: %s", exc)
            summary = ""
        if summary:
            sections.append(f"## Conversation Summary\n{summary}")

        try:
            relevant = await memory.search_turns(session_id, request.query, self._relevant_turns)
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("Failed to search turns: %s", exc)
            relevant = []
        if relevant:
            sections.append(self._format_relevant(relevant))

        try:
            recent = await memory.get_turns(session_id, self._recent_turns)
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("Failed to get recent turns: %s", exc)
            recent = []
        if recent:
            sections.append(self._format_recent(recent))
        return sections

    @staticmethod
    def _format_relevant(turns: Sequence[Turn]) -> str:
        lines = ["## Relevant Context (from earlier in conversation)"]
        for turn in turns:
            lines.append(
                f"- [{format_time_ago(turn.created_at)}] {turn.role}: "
                f"{truncate(turn.display_text(), 200)}"
            )
        return "\n".join(lines)

    @staticmethod
    def _format_recent(turns: Sequence[Turn]) -> str:
        lines = ["## Recent Conversation"]
        for turn in turns:
            role = "Assistant" if turn.role == "assistant" else "User"
            lines.append(f"{role}: {turn.display_text()}")
        return "\n".join(lines)
