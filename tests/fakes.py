"""In-memory stand-ins for the engine's collaborators, shared by the test modules."""

import asyncio
import json
from datetime import (
    datetime,
    timezone,
)
from typing import (
    Any,
    Dict,
    List,
    Sequence,
)

from keel.core.interfaces import (
    LLMClient,
    MemoryStore,
    Planner,
    ToolExecutor,
    ToolRegistry,
)
from keel.core.schema import (
    LLMRequest,
    LLMResponse,
    Observation,
    Plan,
    PlanInput,
    ToolAction,
    ToolCall,
    ToolDef,
    ToolResult,
)

FIXED_NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

QUERY_SCHEMA = json.dumps(
    {"type": "object", "properties": {"query": {"type": "string"}}, "required": ["query"]}
)

JIRA = ToolDef(
    name="app/jira",
    description="Jira issues",
    actions=[
        ToolAction(name="search", description="Search issues", input_schema=QUERY_SCHEMA),
        ToolAction(name="create", description="Create an issue"),
    ],
)

GITHUB = ToolDef(
    name="app/github",
    description="GitHub pull requests",
    actions=[ToolAction(name="list", description="List pull requests")],
)


class ScriptedPlanner(Planner):
    """Returns the scripted plans in order, repeating the last one; records every input."""

    def __init__(self, *plans: Plan):
        self.plans = list(plans)
        self.inputs: List[PlanInput] = []

    async def plan(self, plan_input: PlanInput) -> Plan:
        self.inputs.append(plan_input)
        index = min(len(self.inputs), len(self.plans)) - 1
        return self.plans[index]


class RecordingLLM(LLMClient):
    def __init__(self, text: str = "final answer", error: Exception | None = None):
        self.text = text
        self.error = error
        self.requests: List[LLMRequest] = []

    async def respond(self, llm_request: LLMRequest) -> LLMResponse:
        self.requests.append(llm_request)
        if self.error is not None:
            raise self.error
        return LLMResponse(
            text=self.text,
            provider=llm_request.provider or "fake",
            model=llm_request.model or "fake-model",
        )


class StaticRegistry(ToolRegistry):
    def __init__(self, tools: Sequence[ToolDef] = (), error: Exception | None = None):
        self.tools = list(tools)
        self.error = error
        self.calls: List[tuple] = []

    async def list_tools(self, user_id: str, project_id: str) -> List[ToolDef]:
        self.calls.append((user_id, project_id))
        if self.error is not None:
            raise self.error
        return list(self.tools)


class RecordingExecutor(ToolExecutor):
    """Answers every call with *data* unless a per-tool error or delay is configured."""

    def __init__(
        self,
        data: Dict[str, Any] | None = None,
        errors: Dict[str, Exception] | None = None,
        delay: float = 0.0,
    ):
        self.data = data if data is not None else {"issues": ["ABC-1"]}
        self.errors = errors or {}
        self.delay = delay
        self.calls: List[ToolCall] = []

    async def execute(self, call: ToolCall) -> ToolResult:
        self.calls.append(call)
        if self.delay:
            await asyncio.sleep(self.delay)
        if call.name in self.errors:
            raise self.errors[call.name]
        return ToolResult(success=True, data=dict(self.data), message="ok")


class RecordingMemory(MemoryStore):
    def __init__(self, error: Exception | None = None):
        self.error = error
        self.turns: List[tuple] = []
        self.facts: List[tuple] = []

    async def add_turn(self, session_id: str, content: str, role: str, timestamp: datetime) -> None:
        if self.error is not None:
            raise self.error
        self.turns.append((session_id, role, content, timestamp))

    async def store_fact(self, session_id: str, observation: Observation) -> None:
        if self.error is not None:
            raise self.error
        self.facts.append((session_id, observation))


def call(name: str = "app/jira", action: str = "search", **args: Any) -> ToolCall:
    return ToolCall(name=name, action=action, args=args)
