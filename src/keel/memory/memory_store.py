"""
Conversational memory for Keel.

Two layers:

* :class:`MemoryBackend` - the storage contract (turns, facts, rolling summary).  Implementations
  are :class:`InMemoryBackend` here and :class:`keel.memory.vector_memory.ChromaMemoryBackend`.
* :class:`MemoryAdapter` - the engine-facing :class:`~keel.core.interfaces.MemoryStore`.  Writes are
  fire-and-forget: backend errors are logged and swallowed, never propagated.  With a
  :class:`~keel.memory.compressor.SessionCompressor` attached, older turns are folded into the
  rolling summary after each assistant turn.
"""

import asyncio
import json
import logging
import re
import uuid
from abc import (
    ABC,
    abstractmethod,
)
from collections import defaultdict
from datetime import (
    datetime,
    timezone,
)
from typing import (
    TYPE_CHECKING,
    Dict,
    List,
    Mapping,
)

from pydantic import (
    BaseModel,
    Field,
)

from keel.core.interfaces import MemoryStore
from keel.core.schema import Observation

if TYPE_CHECKING:
    from keel.memory.compressor import SessionCompressor

logger = logging.getLogger(__name__)

_WORD = re.compile(r"[a-z0-9]+")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


class Turn(BaseModel):
    """A single conversation message."""

    id: str = Field(default_factory=_new_id)
    session_id: str
    role: str  # "user" | "assistant"
    content: str
    summary: str = ""  # compressed version of old turns
    compressed: bool = False
    created_at: datetime = Field(default_factory=_utcnow)

    def display_text(self) -> str:
        """Summary for compressed turns, original content otherwise."""
        if self.compressed and self.summary:
            return self.summary
        return self.content


class Fact(BaseModel):
    """A structured fact about an entity, e.g. a tool result."""

    id: str = Field(default_factory=_new_id)
    entity_id: str
    session_id: str
    type: str
    content: str
    source: str
    created_at: datetime = Field(default_factory=_utcnow)


# ---------------------------------------------------------------------------
# Backend contract
# ---------------------------------------------------------------------------
class MemoryBackend(ABC):
    """Storage behind the memory adapter and the context assembler."""

    @abstractmethod
    async def get_summary(self, session_id: str) -> str:
        """Rolling conversation summary; empty when there is none."""

    @abstractmethod
    async def set_summary(self, session_id: str, summary: str) -> None:
        """Replace the rolling conversation summary."""

    @abstractmethod
    async def add_turn(self, turn: Turn) -> None:
        """Persist one turn."""

    @abstractmethod
    async def mark_compressed(self, session_id: str, summaries: Mapping[str, str]) -> None:
        """Flag the turns keyed in *summaries* as compressed, storing each one's short summary."""

    @abstractmethod
    async def get_turns(self, session_id: str, limit: int) -> List[Turn]:
        """Most recent *limit* turns of the session, oldest first."""

    @abstractmethod
    async def search_turns(self, session_id: str, query: str, limit: int) -> List[Turn]:
        """Turns of the session most relevant to *query*, best first."""

    @abstractmethod
    async def store_fact(self, fact: Fact) -> None:
        """Persist one fact."""

    @abstractmethod
    async def get_facts(self, session_id: str, limit: int) -> List[Fact]:
        """Most recent facts of the session, newest first."""


class InMemoryBackend(MemoryBackend):
    """
    Process-local backend.

    Relevance is plain term overlap between the query and the turn text, ties broken by recency.
    Meant for development and tests: nothing survives a restart, and each session keeps only its
    newest *max_turns* turns and *max_facts* facts.  Use the Chroma backend for persistence and
    semantic search.
    """

    def __init__(self, max_turns: int = 500, max_facts: int = 500) -> None:
        self._lock = asyncio.Lock()
        self._turns: Dict[str, List[Turn]] = defaultdict(list)
        self._facts: Dict[str, List[Fact]] = defaultdict(list)
        self._summaries: Dict[str, str] = {}
        self.max_turns = max_turns
        self.max_facts = max_facts

    async def get_summary(self, session_id: str) -> str:
        async with self._lock:
            return self._summaries.get(session_id, "")

    async def set_summary(self, session_id: str, summary: str) -> None:
        async with self._lock:
            self._summaries[session_id] = summary

    async def add_turn(self, turn: Turn) -> None:
        async with self._lock:
            turns = self._turns[turn.session_id]
            turns.append(turn)
            del turns[: -self.max_turns]

    async def mark_compressed(self, session_id: str, summaries: Mapping[str, str]) -> None:
        async with self._lock:
            for turn in self._turns.get(session_id, []):
                if turn.id in summaries:
                    turn.summary = summaries[turn.id]
                    turn.compressed = True

    async def get_turns(self, session_id: str, limit: int) -> List[Turn]:
        if limit <= 0:
            return []
        async with self._lock:
            return list(self._turns.get(session_id, [])[-limit:])

    async def search_turns(self, session_id: str, query: str, limit: int) -> List[Turn]:
        terms = set(_WORD.findall(query.lower()))
        if not terms or limit <= 0:
            return []
        async with self._lock:
            turns = list(self._turns.get(session_id, []))
        scored = []
        for index, turn in enumerate(turns):
            score = len(terms & set(_WORD.findall(turn.display_text().lower())))
            if score:
                scored.append((score, index, turn))
        scored.sort(key=lambda item: (item[0], item[1]), reverse=True)
        return [turn for _, _, turn in scored[:limit]]

    async def store_fact(self, fact: Fact) -> None:
        async with self._lock:
            facts = self._facts[fact.session_id]
            facts.append(fact)
            del facts[: -self.max_facts]

    async def get_facts(self, session_id: str, limit: int) -> List[Fact]:
        async with self._lock:
            facts = self._facts.get(session_id, [])
            return list(reversed(facts))[:limit]


# ---------------------------------------------------------------------------
# Engine-facing adapter
# ---------------------------------------------------------------------------
class MemoryAdapter(MemoryStore):
    """Best-effort :class:`MemoryStore` over a :class:`MemoryBackend`."""

    def __init__(self, backend: MemoryBackend, compressor: "SessionCompressor | None" = None):
        self.backend = backend
        self.compressor = compressor

    async def add_turn(self, session_id: str, content: str, role: str, timestamp: datetime) -> None:
        turn = Turn(session_id=session_id, role=role, content=content, created_at=timestamp)
        try:
            await self.backend.add_turn(turn)
        except Exception:  # pylint: disable=broad-except
            logger.warning(
                "Failed to record %s turn for session '%s'", role, session_id, exc_info=True
            )
            return

        # An assistant turn closes an exchange
        if self.compressor is None or role != "assistant":
            return
        try:
            await self.compressor.compress_old_turns(session_id)
        except Exception:  # pylint: disable=broad-except
            logger.warning(
                "Failed to update rolling summary for session '%s'", session_id, exc_info=True
            )

    async def store_fact(self, session_id: str, observation: Observation) -> None:
        if observation.result is None:
            return
        fact = Fact(
            entity_id=observation.tool_name,
            session_id=session_id,
            type="tool_observation",
            content=json.dumps(observation.result.model_dump(), sort_keys=True, default=str),
            source=observation.tool_name,
        )
        try:
            await self.backend.store_fact(fact)
        except Exception:  # pylint: disable=broad-except
            logger.warning(
                "Failed to store fact from '%s' for session '%s'",
                observation.tool_name,
                session_id,
                exc_info=True,
            )
