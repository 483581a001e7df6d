"""
Knowledge-graph enrichment.

Entities are extracted from the query text (ticket ids, PR references, file paths, @mentions,
infrastructure terms) and combined with the caller's context-entity hints.  Their nodes, and the
neighbours of tickets and PRs, are fetched from the knowledge service and rendered as prompt text.
"""

import logging
import re
from typing import (
    Any,
    Dict,
    Iterable,
    List,
)

import httpx
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
)

from keel.core.errors import KnowledgeServiceError

logger = logging.getLogger(__name__)

_TICKET = re.compile(r"\b([A-Z]+-\d+)\b")
_PR = re.compile(r"\bPR[-#]?(\d+)\b")
_FILE = re.compile(r"\b([a-zA-Z_][a-zA-Z0-9_/.-]*\.(?:ts|js|go|py|rs|tsx|jsx|json|yaml|yml|md))\b")
_MENTION = re.compile(r"@([a-zA-Z][a-zA-Z0-9_-]+)")
_SERVICE_TERMS = ("api", "auth", "gateway", "database", "cache", "redis", "postgres", "kafka")


class Entity(BaseModel):
    """An entity mentioned in, or attached to, a query."""

    type: str  # ticket, pr, file, user, service, reference
    id: str
    value: str


class Node(BaseModel):
    """A knowledge graph node."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    display_name: str = Field("", alias="displayName")
    entity_type: str = Field("", alias="entityType")
    properties: Dict[str, Any] = Field(default_factory=dict)


class Edge(BaseModel):
    """A knowledge graph edge."""

    model_config = ConfigDict(populate_by_name=True)

    source: str = Field(..., alias="from")
    target: str = Field(..., alias="to")
    relationship: str = ""


class KnowledgeContext(BaseModel):
    """Everything the knowledge service returned for one query."""

    query: str
    entities: List[Entity] = Field(default_factory=list)
    retrieved_nodes: List[Node] = Field(default_factory=list)
    related_nodes: List[Node] = Field(default_factory=list)
    edges: List[Edge] = Field(default_factory=list)

    def format_for_llm(self) -> str:
        """Render the context as prompt sections; empty when nothing was retrieved."""
        sections: List[str] = []
        if self.retrieved_nodes:
            lines = ["## Knowledge Graph Context"]
            for node in self.retrieved_nodes:
                props = _format_properties(node.properties)
                line = f"- [{node.entity_type}] **{node.id}**: {node.display_name}"
                lines.append(f"{line} {props}" if props else line)
            sections.append("\n".join(lines))
        if self.related_nodes:
            lines = ["## Related Items"]
            for i, node in enumerate(self.related_nodes):
                relationship = self.edges[i].relationship if i < len(self.edges) else ""
                lines.append(f"- [{node.entity_type}] {node.display_name} ({relationship})")
            sections.append("\n".join(lines))
        return "\n\n".join(sections)


def _format_properties(props: Dict[str, Any]) -> str:
    parts = [f"{k}: {v}" for k, v in sorted(props.items()) if not (k == "source" and v == "stub")]
    return f"({', '.join(parts)})" if parts else ""


def extract_entities(query: str) -> List[Entity]:
    """Pull structured entity references out of free text."""
    entities = [Entity(type="ticket", id=m, value=m) for m in _TICKET.findall(query)]
    entities += [
        Entity(type="pr", id=f"PR-{m.group(1)}", value=m.group(0)) for m in _PR.finditer(query)
    ]
    entities += [Entity(type="file", id=m, value=m) for m in _FILE.findall(query)]
    entities += [
        Entity(type="user", id=m.group(1), value=m.group(0)) for m in _MENTION.finditer(query)
    ]
    lower = query.lower()
    entities += [Entity(type="service", id=t, value=t) for t in _SERVICE_TERMS if t in lower]
    return entities


class KnowledgeClient:
    """Async client for the knowledge graph service."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url, timeout=self._timeout, transport=self._transport
        )

    async def query_nodes(self, client: httpx.AsyncClient, ids: List[str]) -> List[Node]:
        resp = await client.post("/v1/nodes/query", json={"ids": ids})
        resp.raise_for_status()
        return [Node.model_validate(item) for item in resp.json() or []]

    async def related_nodes(self, client: httpx.AsyncClient, node_id: str) -> tuple:
        resp = await client.get(f"/v1/nodes/{node_id}/related")
        resp.raise_for_status()
        payload = resp.json() or {}
        nodes = [Node.model_validate(item) for item in payload.get("nodes", [])]
        edges = [Edge.model_validate(item) for item in payload.get("edges", [])]
        return nodes, edges

    async def enrich(self, query: str, context_entities: Iterable[str] = ()) -> KnowledgeContext:
        """
        Build the knowledge context for *query*.

        Raises
        ------
        KnowledgeServiceError
            If the primary node lookup fails.  Failures fetching neighbours of a single entity are
            logged and skipped.
        """
        entities = extract_entities(query)
        entities += [Entity(type="reference", id=e, value=e) for e in context_entities]
        logger.debug("Extracted %d entities from query", len(entities))
        context = KnowledgeContext(query=query, entities=entities)
        if not entities:
            return context

        async with self._client() as client:
            try:
                context.retrieved_nodes = await self.query_nodes(client, [e.id for e in entities])
            except (httpx.HTTPError, ValueError, ValidationError) as exc:
                raise KnowledgeServiceError(f"knowledge node lookup failed: {exc}") from exc

            for entity in entities:
                if entity.type not in ("ticket", "pr"):
                    continue
                try:
                    nodes, edges = await self.related_nodes(client, entity.id)
                except (httpx.HTTPError, ValueError, ValidationError) as exc:
                    logger.warning("Failed to get related nodes for %s: %s", entity.id, exc)
                    continue
                context.related_nodes.extend(nodes)
                context.edges.extend(edges)
        return context
