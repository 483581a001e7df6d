"""
Pydantic models for Keel API requests and responses.
This module defines the request and response schemas used by the Keel API.
"""

from typing import (
    Any,
    Dict,
    List,
    Optional,
)

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
)

from keel.core.schema import (
    HistoryMessage,
    Observation,
    Request,
    Response,
)


# ---------------------------------------------------------------------------
# Pydantic request / response schema
# ---------------------------------------------------------------------------
class AgentRequest(BaseModel):
    """Incoming user message."""

    model_config = ConfigDict(populate_by_name=True)

    message: str = Field(
        ...,
        validation_alias=AliasChoices("message", "query"),
        description="User message for Keel",
    )
    session_id: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("session_id", "sessionId"),
        description="Session ID for conversation context",
    )
    user_id: Optional[str] = Field(None, validation_alias=AliasChoices("user_id", "userId"))
    project_id: Optional[str] = Field(
        None, validation_alias=AliasChoices("project_id", "projectId")
    )
    context_entities: List[str] = Field(
        default_factory=list, validation_alias=AliasChoices("context_entities", "contextEntities")
    )
    history: List[HistoryMessage] = Field(default_factory=list)
    provider: Optional[str] = None
    model: Optional[str] = None

    def to_request(self) -> Request:
        return Request(
            query=self.message,
            session_id=self.session_id or "",
            user_id=self.user_id or "",
            project_id=self.project_id or "",
            context_entities=list(self.context_entities),
            history=list(self.history),
            provider=self.provider,
            model=self.model,
        )


class TraceEventModel(BaseModel):
    name: str
    detail: str = ""


class AgentResponse(BaseModel):
    """API response returned to the caller."""

    reply: str
    session_id: str
    provider: Optional[str] = None
    model: Optional[str] = None
    tool_results: Dict[str, Any] | None = None
    observations: List[Observation] = Field(default_factory=list)
    trace: List[TraceEventModel] = Field(default_factory=list)

    @classmethod
    def from_response(cls, response: Response) -> "AgentResponse":
        """Flatten an engine response; successful tool payloads are keyed by tool name."""
        tool_results = {
            obs.tool_name: obs.result.data
            for obs in response.observations
            if obs.result is not None
        }
        return cls(
            reply=response.text,
            session_id=response.trace.id,
            provider=response.provider,
            model=response.model,
            tool_results=tool_results or None,
            observations=list(response.observations),
            trace=[TraceEventModel(name=e.name, detail=e.detail) for e in response.trace.events],
        )


class ToolActionModel(BaseModel):
    name: str
    description: str = ""
    input_schema: str = ""


class ToolModel(BaseModel):
    """A catalog entry as listed by ``GET /tools``."""

    name: str
    description: str = ""
    actions: List[ToolActionModel] = Field(default_factory=list)
