"""
Collaborator contracts consumed by the engine.

Every implementation is shared between concurrent runs, so none of them may keep per-run mutable
state: request-scoped data travels in the :class:`~keel.core.schema.Request`,
:class:`~keel.core.schema.PlanInput` and :class:`~keel.core.schema.Response` values.
"""

from abc import (
    ABC,
    abstractmethod,
)
from datetime import datetime
from typing import (
    List,
    Sequence,
)

from keel.core.schema import (
    LLMRequest,
    LLMResponse,
    Observation,
    Plan,
    PlanInput,
    Request,
    ToolCall,
    ToolDef,
    ToolResult,
)


class Planner(ABC):
    """Decides whether to answer directly, call tools, or ask for clarification."""

    @abstractmethod
    async def plan(self, plan_input: PlanInput) -> Plan:
        """Return the decision for the current step."""


class LLMClient(ABC):
    """Turns an assembled context plus observations into natural-language text."""

    @abstractmethod
    async def respond(self, llm_request: LLMRequest) -> LLMResponse:
        """Generate the final answer."""


class ToolRegistry(ABC):
    """Lists the tools visible to a user/project pair."""

    @abstractmethod
    async def list_tools(self, user_id: str, project_id: str) -> List[ToolDef]:
        """Return the tool catalog.  An empty list means "no tools", not an error."""


class ToolExecutor(ABC):
    """Dispatches one structured tool call."""

    @abstractmethod
    async def execute(self, call: ToolCall) -> ToolResult:
        """Run *call*; raise :class:`~keel.core.errors.ToolExecutionError` on failure."""


class MemoryStore(ABC):
    """Records conversational turns and facts derived from tool results."""

    @abstractmethod
    async def add_turn(self, session_id: str, content: str, role: str, timestamp: datetime) -> None:
        """Record one turn of the conversation."""

    @abstractmethod
    async def store_fact(self, session_id: str, observation: Observation) -> None:
        """Record a fact derived from a successful observation."""


class ContextAssembler(ABC):
    """Builds the reasoning context and folds observations back into it."""

    @abstractmethod
    async def build(self, request: Request, tools: Sequence[ToolDef]) -> str:
        """Compose the initial prompt for *request*."""

    @abstractmethod
    def append_observations(self, prompt: str, observations: Sequence[Observation]) -> str:
        """Return *prompt* extended with a section describing *observations*."""


class Policy(ABC):
    """Yes/no gate on whether a named tool may be invoked."""

    @abstractmethod
    def allow_tool(self, name: str) -> bool:
        """Return True if the tool called *name* may be dispatched."""
