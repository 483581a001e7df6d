"""
Rolling session summaries.

:class:`SessionCompressor` folds turns that have dropped out of the recent window into the
session's rolling summary, which the context assembler renders as ``## Conversation Summary``.
Summaries come from an LLM when one is configured; without one, or when the call fails, a plain
one-line-per-turn digest is used instead.
"""

import logging
from typing import (
    Dict,
    List,
    Sequence,
)

from keel.context.prompts import (
    MERGE_SUMMARIES_PROMPT,
    SUMMARIZE_PROMPT,
)
from keel.llm.clients import BaseLLMClient
from keel.memory.memory_store import (
    MemoryBackend,
    Turn,
)

logger = logging.getLogger(__name__)

SUMMARY_SYSTEM = "You write short, factual summaries of conversations."


def brief(turn: Turn, limit: int = 100) -> str:
    """First sentence of the turn, or its first *limit* characters."""
    content = turn.content
    idx = content.find(".")
    if 0 < idx < limit:
        return content[: idx + 1]
    if len(content) > limit:
        return content[:limit] + "..."
    return content


def simple_summary(turns: Sequence[Turn]) -> str:
    return "\n".join(f"- {t.role}: {brief(t)}" for t in turns)


class SessionCompressor:
    """
    Maintains the rolling summary of a session.

    Parameters
    ----------
    backend:
        Memory backend holding the turns and the summary.
    llm:
        Client used to summarize and merge; None means the plain digest is always used.
    keep_recent:
        Number of newest turns that are never compressed.
    min_batch:
        Compress only once at least this many old turns are waiting.
    scan_limit:
        How many of the newest turns are inspected per pass.
    """

    def __init__(
        self,
        backend: MemoryBackend,
        llm: BaseLLMClient | None = None,
        keep_recent: int = 5,
        min_batch: int = 4,
        scan_limit: int = 100,
    ):
        self.backend = backend
        self.llm = llm
        self.keep_recent = max(0, keep_recent)
        self.min_batch = max(1, min_batch)
        self.scan_limit = scan_limit

    async def _ask(self, prompt: str) -> str:
        llm = self.llm
        if llm is None:
            return ""
        try:
            text = await llm.complete(
                SUMMARY_SYSTEM, [{"role": "user", "content": prompt}], temperature=0.0
            )
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("Summarization call failed; using plain digest: %s", exc)
            return ""
        return text.strip()

    async def summarize(self, turns: Sequence[Turn]) -> str:
        """Summary of *turns*; empty for no turns."""
        if not turns:
            return ""
        conversation = "\n".join(
            f"{'Assistant' if t.role == 'assistant' else 'User'}: {t.content}" for t in turns
        )
        summary = await self._ask(SUMMARIZE_PROMPT.format(conversation=conversation))
        return summary or simple_summary(turns)

    async def update_rolling_summary(self, existing: str, new_turns: Sequence[Turn]) -> str:
        """Fold *new_turns* into *existing*."""
        if not new_turns:
            return existing
        latest = await self.summarize(new_turns)
        if not existing:
            return latest
        merged = await self._ask(MERGE_SUMMARIES_PROMPT.format(previous=existing, latest=latest))
        return merged or f"{existing}\n\n{latest}"

    async def compress_old_turns(self, session_id: str) -> bool:
        """
        Fold old, uncompressed turns of *session_id* into its rolling summary.

        Returns True when the summary was updated.  Backend errors propagate.
        """
        turns = await self.backend.get_turns(session_id, self.scan_limit)
        if len(turns) <= self.keep_recent:
            return False
        old: List[Turn] = [t for t in turns[: len(turns) - self.keep_recent] if not t.compressed]
        if len(old) < self.min_batch:
            return False

        existing = await self.backend.get_summary(session_id)
        summary = await self.update_rolling_summary(existing, old)
        await self.backend.set_summary(session_id, summary)
        briefs: Dict[str, str] = {t.id: brief(t) for t in old}
        await self.backend.mark_compressed(session_id, briefs)
        logger.debug("Compressed %d turns of session '%s'", len(old), session_id)
        return True
