"""
Schema definitions for request <-> planner <-> engine <-> tool messages.

These data models serve as the contract between the transport layer, the orchestration loop, the
planner and the tool backends.  We keep them separate from runtime logic so they can be imported
anywhere without side-effects.
"""

from enum import Enum
from typing import (
    Any,
    Dict,
    List,
    Optional,
)

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    model_validator,
)

from keel.core.trace import Trace


class HistoryMessage(BaseModel):
    """A normalized chat history entry."""

    model_config = ConfigDict(frozen=True)

    role: str
    content: str


class Request(BaseModel):
    """Normalized input to one engine run.  Never mutated once created."""

    model_config = ConfigDict(frozen=True)

    query: str
    session_id: str = ""
    user_id: str = ""
    project_id: str = ""
    context_entities: List[str] = Field(default_factory=list)
    history: List[HistoryMessage] = Field(default_factory=list)
    provider: Optional[str] = Field(None, description="LLM provider override")
    model: Optional[str] = Field(None, description="LLM model override")


class ToolAction(BaseModel):
    """A single named operation of a tool."""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    input_schema: str = Field("", description="JSON schema of the arguments, as text")


class ToolDef(BaseModel):
    """A callable capability visible to the agent for one run."""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    actions: List[ToolAction] = Field(default_factory=list)

    def get_action(self, name: str) -> Optional[ToolAction]:
        """Return the action called *name*, if declared."""
        for action in self.actions:
            if action.name == name:
                return action
        return None


class ToolCall(BaseModel):
    """A call that the planner wants the engine to execute."""

    name: str = Field(..., description="Tool name as listed in the catalog")
    action: str = Field("", description="Action within the tool")
    args: Dict[str, Any] = Field(default_factory=dict, description="Arguments for the action")


class ToolResult(BaseModel):
    """Normalized outcome of a successful dispatch."""

    success: bool = True
    data: Dict[str, Any] = Field(default_factory=dict)
    message: str = ""


class Observation(BaseModel):
    """
    Record of one attempted tool call.

    Exactly one of ``result`` and ``error`` is set.
    """

    tool_name: str
    result: Optional[ToolResult] = None
    error: Optional[str] = None

    @model_validator(mode="after")
    def _exactly_one_outcome(self) -> "Observation":
        has_result = self.result is not None
        has_error = bool(self.error)
        if has_result == has_error:
            raise ValueError("observation must carry exactly one of result or error")
        return self

    @classmethod
    def success(cls, tool_name: str, result: ToolResult) -> "Observation":
        """Observation for a dispatch that returned *result*."""
        return cls(tool_name=tool_name, result=result)

    @classmethod
    def failure(cls, tool_name: str, error: str) -> "Observation":
        """Observation for a call that was rejected or failed with *error*."""
        return cls(tool_name=tool_name, error=error or "unknown error")

    @property
    def ok(self) -> bool:
        """True when the observation carries a result."""
        return self.result is not None


class PlanType(str, Enum):
    """The planner's decision for the current step."""

    DIRECT = "direct"
    TOOL_CALLS = "tool_calls"
    NEED_CLARIFICATION = "need_clarification"


class Plan(BaseModel):
    """One planner decision."""

    type: PlanType
    tool_calls: List[ToolCall] = Field(default_factory=list)
    clarification: str = ""

    @classmethod
    def direct(cls) -> "Plan":
        return cls(type=PlanType.DIRECT)

    @classmethod
    def calls(cls, *tool_calls: ToolCall) -> "Plan":
        return cls(type=PlanType.TOOL_CALLS, tool_calls=list(tool_calls))

    @classmethod
    def clarify(cls, question: str) -> "Plan":
        return cls(type=PlanType.NEED_CLARIFICATION, clarification=question)


class PlanInput(BaseModel):
    """Everything a planner may look at for one step."""

    request: Request
    prompt: str
    tools: List[ToolDef] = Field(default_factory=list)
    observations: List[Observation] = Field(default_factory=list)
    step: int = 1


class LLMRequest(BaseModel):
    """Payload for the final answer generation."""

    query: str
    prompt: str
    observations: List[Observation] = Field(default_factory=list)
    history: List[HistoryMessage] = Field(default_factory=list)
    provider: Optional[str] = None
    model: Optional[str] = None


class LLMResponse(BaseModel):
    """Text produced by the language model, with the provider/model that produced it."""

    text: str
    provider: Optional[str] = None
    model: Optional[str] = None


class Response(BaseModel):
    """Final output of a run."""

    text: str
    provider: Optional[str] = None
    model: Optional[str] = None
    observations: List[Observation] = Field(default_factory=list)
    trace: Trace
