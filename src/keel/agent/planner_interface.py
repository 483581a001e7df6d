"""
Planner interface for Keel.

A planner looks at the current :class:`~keel.core.schema.PlanInput` and decides whether to answer
directly, call tools, or ask the user for clarification.  Planners must be deterministic: for the
same input and configuration they return equal plans.

Two families are provided:

1. :class:`HeuristicPlanner` - rule based, no model calls (default).
2. LLM-driven planners (``openai``, ``anthropic``, ``tgi``) that ask a model for a JSON decision at
   temperature 0.

Additional planners can be added by subclassing :class:`BasePlanner` and registering via
:func:`register_planner`.
"""

import json
import logging
import re
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Optional,
    Sequence,
    Tuple,
    Type,
)

from pydantic import (
    BaseModel,
    Field,
    ValidationError,
)

from keel.config import (
    settings,
    split_csv,
)
from keel.context.prompts import PLANNER_INSTRUCTIONS
from keel.core.errors import (
    KeelError,
    PlanError,
)
from keel.core.interfaces import Planner
from keel.core.schema import (
    Plan,
    PlanInput,
    Request,
    ToolCall,
    ToolDef,
)
from keel.llm.clients import (
    BaseLLMClient,
    OpenAILLMClient,
    load_llm_client,
)

logger = logging.getLogger(__name__)

SEARCH_ACTIONS = ("search", "list", "query")
CLARIFY_TOOL_SYNTAX = "Which tool and action should I use? Example: tool:app/jira/search"


# ---------------------------------------------------------------------------
# Pydantic models for response validation
class PlannerResponse(BaseModel):
    """
    Validates planner responses from LLMs.

    ``answer`` only signals "answer now".  Its text is ignored: the final reply is always produced
    by the engine's LLM client, which sees the full context, history and observations.
    """

    tool_calls: List[Dict[str, Any]] = Field(default_factory=list)
    clarification: str | None = None
    answer: str | None = None


# ---------------------------------------------------------------------------
# Registry helpers
# ---------------------------------------------------------------------------
_PLANNER_REGISTRY: dict[str, Type["BasePlanner"]] = {}


def register_planner(name: str) -> Callable:
    """Decorator to register a planner class under *name*."""

    def wrapper(cls: Type["BasePlanner"]) -> Type["BasePlanner"]:
        _PLANNER_REGISTRY[name] = cls
        return cls

    return wrapper


def load_planner(name: str | None = None, **kwargs: Any) -> "BasePlanner":
    """
    Factory that returns an instantiated planner.

    Fallback order:
    1. *name* arg
    2. ``settings.PLANNER`` env option
    3. default: ``"heuristic"``
    """

    target = name or getattr(settings, "PLANNER", "heuristic")
    cls = _PLANNER_REGISTRY.get(target.lower())
    if cls is None:
        raise ValueError(f"Planner '{target}' is not registered.")
    return cls(**kwargs)


# ---------------------------------------------------------------------------
# Helpers shared by planners
# ---------------------------------------------------------------------------
def default_args(request: Request) -> Dict[str, Any]:
    """Arguments every planner-built call starts from."""
    args: Dict[str, Any] = {"query": request.query}
    if request.user_id:
        args["userId"] = request.user_id
    if request.project_id:
        args["projectId"] = request.project_id
    return args


def infer_action(tool_name: str, tools: Sequence[ToolDef]) -> str:
    """Prefer a search/list/query action of *tool_name*, else its first action."""
    for tool in tools:
        if tool.name != tool_name:
            continue
        for action in tool.actions:
            if action.name in SEARCH_ACTIONS:
                return action.name
        return tool.actions[0].name if tool.actions else ""
    return ""


def _sanitize_json_string(content: str) -> str:
    """Clean up JSON strings returned by LLMs."""
    # Strip markdown code blocks if present
    if "```" in content:
        match = re.search(r"```(?:json)?\s*(.+?)```", content, re.DOTALL)
        if match:
            content = match.group(1).strip()

    # Remove control characters except whitespace
    content = "".join(ch for ch in content if ch >= " " or ch in "\n\r\t")

    # Find the outermost matching braces
    open_idx = content.find("{")
    if open_idx >= 0:
        brace_count = 0
        for i in range(open_idx, len(content)):
            if content[i] == "{":
                brace_count += 1
            elif content[i] == "}":
                brace_count -= 1
                if brace_count == 0:
                    # Extract just the JSON object
                    content = content[open_idx : i + 1]
                    break
    return content


# ---------------------------------------------------------------------------
# Base class
# ---------------------------------------------------------------------------
class BasePlanner(Planner):
    """Abstract planner that converts the current context -> plan."""

    @staticmethod
    def _parse_response(content: str) -> Plan:
        """Parse and validate an LLM decision using Pydantic."""
        cleaned = _sanitize_json_string(content)
        try:
            raw = json.loads(cleaned)
        except json.JSONDecodeError as e:
            logger.error("Failed to parse planner response as JSON: %s", e)
            raise PlanError(f"planner returned invalid JSON: {content!r}") from e

        # Single-call shorthand: {"tool": ..., "action": ..., "args": {...}}
        if isinstance(raw, dict) and "tool" in raw:
            raw = {
                "tool_calls": [
                    {"name": raw["tool"], "action": raw.get("action", ""), "args": raw.get("args")}
                ]
            }

        try:
            parsed = PlannerResponse.model_validate(raw)
            calls = [
                ToolCall(
                    name=call["name"], action=call.get("action") or "", args=call.get("args") or {}
                )
                for call in parsed.tool_calls
            ]
        except (ValidationError, KeyError, TypeError) as e:
            logger.error("Failed to validate planner response: %s", e)
            raise PlanError(f"planner returned an unusable decision: {content!r}") from e

        if calls:
            return Plan.calls(*calls)
        if parsed.clarification:
            return Plan.clarify(parsed.clarification)
        return Plan.direct()


# ---------------------------------------------------------------------------
# Concrete planners
# ---------------------------------------------------------------------------
@register_planner("heuristic")
class HeuristicPlanner(BasePlanner):
    """
    Rule-based planner.

    Decision order:
    1. any observation already exists -> answer directly (single tool pass);
    2. explicit marker ``tool:<name>.<action>`` or ``tool:<namespace>/<action>`` -> that call, or a
       clarification when the marker cannot be resolved;
    3. a domain keyword from the query appears in a tool name -> that tool;
    4. first tool exposing a search/list/query action;
    5. answer directly.
    """

    def __init__(self, keywords: Sequence[str] | None = None):
        if keywords is None:
            keywords = split_csv(settings.PLANNER_KEYWORDS)
        self.keywords = tuple(k.lower() for k in keywords)

    async def plan(self, plan_input: PlanInput) -> Plan:
        if plan_input.observations:
            return Plan.direct()

        query = plan_input.request.query.lower()

        # Explicit tool invocation
        idx = query.find("tool:")
        if idx >= 0:
            fields = query[idx + len("tool:") :].split()
            call = self._parse_tool_token(fields[0], plan_input) if fields else None
            if call is not None:
                return Plan.calls(call)
            return Plan.clarify(CLARIFY_TOOL_SYNTAX)

        if plan_input.tools:
            call = self._pick_tool_for_query(query, plan_input)
            if call is not None:
                return Plan.calls(call)

        return Plan.direct()

    @staticmethod
    def _resolve_name(name: str, action: str, tools: Sequence[ToolDef]) -> Tuple[str, str]:
        # The query was lower-cased; map both parts back to the catalog spelling.
        for tool in tools:
            if tool.name.lower() != name:
                continue
            for known in tool.actions:
                if known.name.lower() == action:
                    return tool.name, known.name
            return tool.name, action
        return name, action

    def _parse_tool_token(self, token: str, plan_input: PlanInput) -> Optional[ToolCall]:
        name, action = token, ""
        if "." in token:
            name, action = token.split(".", 1)
        elif "/" in token:
            parts = token.split("/")
            if len(parts) >= 3:
                name, action = "/".join(parts[:-1]), parts[-1]

        tools = plan_input.tools
        name, action = self._resolve_name(name, action, tools)
        if not action:
            action = infer_action(name, tools)
        if not name or not action:
            return None
        return ToolCall(name=name, action=action, args=default_args(plan_input.request))

    def _pick_tool_for_query(self, query: str, plan_input: PlanInput) -> Optional[ToolCall]:
        words = set(re.findall(r"[a-z0-9]+", query))
        for keyword in self.keywords:
            if keyword not in words:
                continue
            for tool in plan_input.tools:
                if keyword not in tool.name.lower():
                    continue
                action = infer_action(tool.name, plan_input.tools)
                if action:
                    return ToolCall(
                        name=tool.name, action=action, args=default_args(plan_input.request)
                    )

        # Fallback: choose first tool with a search/list/query action
        for tool in plan_input.tools:
            for action in tool.actions:
                if action.name in SEARCH_ACTIONS:
                    return ToolCall(
                        name=tool.name, action=action.name, args=default_args(plan_input.request)
                    )
        return None


class LLMPlanner(BasePlanner):
    """
    Planner that asks a language model for the decision.

    The model sees the assembled context (which already lists tools and folded observations) and
    answers with JSON.  Requests go out at temperature 0.  Once *max_tool_rounds* steps have
    produced observations the planner answers directly without calling the model.
    """

    provider: str = ""

    def __init__(self, llm: BaseLLMClient | None = None, max_tool_rounds: int | None = None):
        self._llm = llm or load_llm_client(self.provider)
        if max_tool_rounds is None:
            max_tool_rounds = settings.PLANNER_MAX_TOOL_ROUNDS
        self.max_tool_rounds = max(1, max_tool_rounds)

    async def _complete(self, plan_input: PlanInput) -> str:
        return await self._llm.complete(
            PLANNER_INSTRUCTIONS,
            [{"role": "user", "content": plan_input.prompt}],
            temperature=0.0,
        )

    async def plan(self, plan_input: PlanInput) -> Plan:
        if plan_input.observations and plan_input.step - 1 >= self.max_tool_rounds:
            return Plan.direct()
        try:
            content = await self._complete(plan_input)
        except KeelError as e:
            logger.error("%s planner error: %s", self.provider, e)
            raise PlanError(f"{self.provider} planner failed: {e}") from e
        logger.debug("%s planner response: %s", self.provider, content)
        return self._parse_response(content)


@register_planner("openai")
class OpenAIPlanner(LLMPlanner):
    """OpenAI-based planner using JSON response mode."""

    provider = "openai"

    async def _complete(self, plan_input: PlanInput) -> str:
        if not isinstance(self._llm, OpenAILLMClient):
            return await super()._complete(plan_input)
        return await self._llm.complete(
            PLANNER_INSTRUCTIONS,
            [{"role": "user", "content": plan_input.prompt}],
            temperature=0.0,
            response_format={"type": "json_object"},
        )


@register_planner("anthropic")
class AnthropicPlanner(LLMPlanner):
    """Anthropic Claude-based planner."""

    provider = "anthropic"


@register_planner("tgi")
class TGIPlanner(LLMPlanner):
    """TGI-based planner for self-hosted models."""

    provider = "tgi"
