"""
Builds an :class:`~keel.agent.engine.Engine` from :class:`~keel.config.Settings`.

The API server and the CLI both call :func:`build_engine`; tests usually construct the engine
directly with fakes.
"""

import logging
from pathlib import Path
from typing import Tuple

from keel.agent.engine import Engine
from keel.agent.planner_interface import load_planner
from keel.agent.policy import (
    AllowAllPolicy,
    ToolListPolicy,
)
from keel.agent.tool_executor import LocalToolExecutor
from keel.config import (
    Settings,
    settings as default_settings,
    split_csv,
)
from keel.context.assembler import DefaultContextAssembler
from keel.context.knowledge import KnowledgeClient
from keel.core.errors import EngineConfigError
from keel.core.interfaces import (
    Policy,
    ToolExecutor,
    ToolRegistry,
)
from keel.llm.clients import (
    RouterLLMClient,
    load_llm_client,
)
from keel.memory.compressor import SessionCompressor
from keel.memory.memory_store import (
    InMemoryBackend,
    MemoryAdapter,
    MemoryBackend,
)
from keel.tools import LocalToolRegistry
from keel.tools.remote import ToolServiceClient

logger = logging.getLogger(__name__)


def build_tool_backend(cfg: Settings) -> Tuple[ToolRegistry, ToolExecutor]:
    """Catalog and executor for ``TOOL_BACKEND`` (``local`` or ``remote``)."""
    backend = cfg.TOOL_BACKEND.lower()
    if backend == "local":
        return LocalToolRegistry(), LocalToolExecutor()
    if backend == "remote":
        client = ToolServiceClient(
            base_url=cfg.TOOL_SERVICE_URL,
            auth_token=cfg.TOOL_SERVICE_TOKEN,
            timeout=cfg.TOOL_SERVICE_TIMEOUT,
        )
        return client, client
    raise EngineConfigError(f"unknown tool backend: {cfg.TOOL_BACKEND}")


def build_memory_backend(cfg: Settings) -> MemoryBackend | None:
    """Memory backend for ``MEMORY_BACKEND`` (``none``, ``memory`` or ``chroma``)."""
    backend = cfg.MEMORY_BACKEND.lower()
    if backend == "none":
        return None
    if backend == "memory":
        return InMemoryBackend()
    if backend == "chroma":
        # Lazy import - chromadb pulls in a lot at import time
        from keel.memory.vector_memory import (  # pylint: disable=import-outside-toplevel
            ChromaMemoryBackend,
        )

        return ChromaMemoryBackend(
            host=cfg.VECTOR_DB_HOST,
            port=cfg.VECTOR_DB_PORT,
            log_path=Path(cfg.DATA_DIR) / "keel_turns.jsonl",
        )
    raise EngineConfigError(f"unknown memory backend: {cfg.MEMORY_BACKEND}")


def build_memory_store(cfg: Settings, backend: MemoryBackend | None) -> MemoryAdapter | None:
    """Engine-facing memory over *backend*, with the rolling summary when enabled."""
    if backend is None:
        return None
    if not cfg.MEMORY_SUMMARY_ENABLED:
        return MemoryAdapter(backend)
    # The stub client only echoes, so it summarizes worse than the plain digest
    provider = cfg.LLM_PROVIDER.lower()
    llm = load_llm_client(provider) if provider != "stub" else None
    compressor = SessionCompressor(
        backend,
        llm=llm,
        keep_recent=cfg.MEMORY_SUMMARY_KEEP_RECENT,
        min_batch=cfg.MEMORY_SUMMARY_BATCH,
    )
    return MemoryAdapter(backend, compressor=compressor)


def build_policy(cfg: Settings) -> Policy:
    allow = split_csv(cfg.TOOL_ALLOWLIST)
    deny = split_csv(cfg.TOOL_DENYLIST)
    if not allow and not deny:
        return AllowAllPolicy()
    return ToolListPolicy(allow=allow or None, deny=deny)


def build_engine(cfg: Settings | None = None) -> Engine:
    """Wire planner, LLM router, tools, memory, knowledge enrichment and policy."""
    cfg = cfg or default_settings

    planner_name = cfg.PLANNER.lower()
    if planner_name == "heuristic":
        planner = load_planner(planner_name, keywords=split_csv(cfg.PLANNER_KEYWORDS))
    else:
        planner = load_planner(planner_name, max_tool_rounds=cfg.PLANNER_MAX_TOOL_ROUNDS)

    tools, executor = build_tool_backend(cfg)
    backend = build_memory_backend(cfg)
    knowledge = (
        KnowledgeClient(cfg.KNOWLEDGE_URL, timeout=cfg.KNOWLEDGE_TIMEOUT)
        if cfg.KNOWLEDGE_URL
        else None
    )
    context = DefaultContextAssembler(
        memory=backend,
        knowledge=knowledge,
        recent_turns=cfg.MEMORY_RECENT_TURNS,
        relevant_turns=cfg.MEMORY_RELEVANT_TURNS,
    )

    logger.info(
        "Engine: planner=%s llm=%s tools=%s memory=%s knowledge=%s",
        planner_name,
        cfg.LLM_PROVIDER,
        cfg.TOOL_BACKEND,
        cfg.MEMORY_BACKEND,
        bool(knowledge),
    )
    return Engine(
        planner=planner,
        llm=RouterLLMClient(cfg.LLM_PROVIDER),
        tools=tools,
        executor=executor,
        context=context,
        memory=build_memory_store(cfg, backend),
        policy=build_policy(cfg),
        tool_timeout=cfg.TOOL_TIMEOUT,
        max_steps=cfg.MAX_STEPS,
    )
