"""
Chroma-backed memory backend.

Turns and facts are stored as one document each in their own collections (rolling summaries go
to a third, keyed by session id):
  text     = turn content / fact payload
  metadata = { "session_id": str, "role" | "type": str, "created_at": iso, "ts": float,
               "compressed": bool, "summary": str }  (the last two once a turn is compressed)

Every turn is also appended to a flat-file audit trail (JSON lines).  chromadb's client is
synchronous, so calls run in a worker thread.
"""

import asyncio
import json
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import (
    Any,
    Dict,
    List,
    Mapping,
    cast,
)

import chromadb
from chromadb.api.types import EmbeddingFunction
from chromadb.utils import embedding_functions

from keel.core.errors import MemoryBackendError
from keel.memory.memory_store import (
    Fact,
    MemoryBackend,
    Turn,
)

logger = logging.getLogger(__name__)

_DEFAULT_EMBED_MODEL = os.getenv("KEEL_EMBED_MODEL", "all-MiniLM-L6-v2")  # small; runs CPU‑only


class ChromaMemoryBackend(MemoryBackend):
    """
    Chroma wrapper for storing & querying conversation memory.
    """

    def __init__(
        self,
        collection_name: str = "keel",
        host: str = "chroma",  # service name in docker‑compose
        port: int = 8000,
        log_path: str | Path | None = None,
        client: Any = None,
        embedding_function: EmbeddingFunction | None = None,
    ):
        self._client = client or chromadb.HttpClient(host=host, port=port)
        self._embed_fn = embedding_function or cast(
            EmbeddingFunction,
            embedding_functions.SentenceTransformerEmbeddingFunction(
                model_name=_DEFAULT_EMBED_MODEL
            ),
        )
        self._turns = self._client.get_or_create_collection(
            name=f"{collection_name}_turns", embedding_function=self._embed_fn
        )
        self._facts = self._client.get_or_create_collection(
            name=f"{collection_name}_facts", embedding_function=self._embed_fn
        )
        self._sessions = self._client.get_or_create_collection(
            name=f"{collection_name}_sessions", embedding_function=self._embed_fn
        )
        self._log_path = Path(log_path) if log_path else None
        if self._log_path is not None:
            self._log_path.parent.mkdir(parents=True, exist_ok=True)
            self._log_path.touch(exist_ok=True)

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #
    @staticmethod
    async def _call(fn: Any, *args: Any, **kwargs: Any) -> Any:
        try:
            return await asyncio.to_thread(fn, *args, **kwargs)
        except Exception as exc:  # pylint: disable=broad-except
            raise MemoryBackendError(f"chroma call failed: {exc}") from exc

    @staticmethod
    def _rows(res: Dict[str, Any]) -> List[tuple]:
        ids = res.get("ids") or []
        docs = res.get("documents") or []
        metas = res.get("metadatas") or []
        # query() nests one list per query text
        if ids and isinstance(ids[0], list):
            ids, docs, metas = ids[0], docs[0] if docs else [], metas[0] if metas else []
        return list(zip(ids, docs, metas))

    @staticmethod
    def _to_turn(doc_id: str, doc: str, meta: Dict[str, Any]) -> Turn:
        return Turn(
            id=doc_id,
            session_id=meta.get("session_id", ""),
            role=meta.get("role", "user"),
            content=doc or "",
            summary=meta.get("summary", ""),
            compressed=bool(meta.get("compressed", False)),
            created_at=datetime.fromisoformat(meta["created_at"]),
        )

    def _append_log(self, turn: Turn) -> None:
        if self._log_path is None:
            return
        with self._log_path.open("a", encoding="utf-8") as f:
            f.write(json.dumps({"turn": turn.model_dump(mode="json")}) + "\n")

    # ------------------------------------------------------------------ #
    # MemoryBackend
    # ------------------------------------------------------------------ #
    async def get_summary(self, session_id: str) -> str:
        res = await self._call(self._sessions.get, ids=[session_id], include=["documents"])
        docs = res.get("documents") or []
        return docs[0] if docs and docs[0] else ""

    async def set_summary(self, session_id: str, summary: str) -> None:
        await self._call(
            self._sessions.upsert,
            ids=[session_id],
            documents=[summary],
            metadatas=[{"session_id": session_id}],
        )

    async def add_turn(self, turn: Turn) -> None:
        await self._call(
            self._turns.upsert,
            ids=[turn.id],
            documents=[turn.content],
            metadatas=[
                {
                    "session_id": turn.session_id,
                    "role": turn.role,
                    "created_at": turn.created_at.isoformat(),
                    "ts": turn.created_at.timestamp(),
                }
            ],
        )
        # Flat‑file audit trail
        await asyncio.to_thread(self._append_log, turn)

    async def mark_compressed(self, session_id: str, summaries: Mapping[str, str]) -> None:
        if not summaries:
            return
        res = await self._call(
            self._turns.get, ids=list(summaries), include=["documents", "metadatas"]
        )
        ids, metadatas = [], []
        for doc_id, _, meta in self._rows(res):
            if meta.get("session_id") != session_id:
                continue
            ids.append(doc_id)
            metadatas.append({**meta, "compressed": True, "summary": summaries[doc_id]})
        if ids:
            await self._call(self._turns.update, ids=ids, metadatas=metadatas)

    async def get_turns(self, session_id: str, limit: int) -> List[Turn]:
        if limit <= 0:
            return []
        res = await self._call(
            self._turns.get, where={"session_id": session_id}, include=["documents", "metadatas"]
        )
        rows = sorted(self._rows(res), key=lambda row: row[2].get("ts", 0.0))
        return [self._to_turn(*row) for row in rows[-limit:]]

    async def search_turns(self, session_id: str, query: str, limit: int) -> List[Turn]:
        if limit <= 0 or not query:
            return []
        res = await self._call(
            self._turns.query,
            query_texts=[query],
            n_results=limit,
            where={"session_id": session_id},
            include=["documents", "metadatas"],
        )
        logger.debug("Memory query results: '%s'", res)
        return [self._to_turn(*row) for row in self._rows(res)]

    async def store_fact(self, fact: Fact) -> None:
        await self._call(
            self._facts.upsert,
            ids=[fact.id],
            documents=[fact.content],
            metadatas=[
                {
                    "session_id": fact.session_id,
                    "entity_id": fact.entity_id,
                    "type": fact.type,
                    "source": fact.source,
                    "created_at": fact.created_at.isoformat(),
                    "ts": fact.created_at.timestamp(),
                }
            ],
        )

    async def get_facts(self, session_id: str, limit: int) -> List[Fact]:
        res = await self._call(
            self._facts.get, where={"session_id": session_id}, include=["documents", "metadatas"]
        )
        rows = sorted(self._rows(res), key=lambda row: row[2].get("ts", 0.0), reverse=True)
        return [
            Fact(
                id=doc_id,
                entity_id=meta.get("entity_id", ""),
                session_id=meta.get("session_id", ""),
                type=meta.get("type", ""),
                content=doc or "",
                source=meta.get("source", ""),
                created_at=datetime.fromisoformat(meta["created_at"]),
            )
            for doc_id, doc, meta in rows[:limit]
        ]
