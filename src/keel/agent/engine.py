"""
Main orchestration loop for Keel.

:class:`Engine` runs one request through a bounded plan -> act -> observe loop:

1. fetch the tool catalog (a failure degrades to "no tools" plus a visible system note);
2. build the initial context;
3. up to ``max_steps`` times ask the planner for a decision.  Direct answers go to the LLM,
   clarifications are returned as-is, tool calls are validated, policy-checked and dispatched
   one after another under a per-call timeout, and their observations are folded into the context;
4. give up with :class:`~keel.core.errors.ConvergenceError` once the step bound is exhausted.

Tool failures never end a run; they become observations the final answer can see.  Memory writes
on finalization are best-effort.
"""

import asyncio
import logging
import uuid
from datetime import (
    datetime,
    timezone,
)
from typing import (
    Callable,
    List,
    Sequence,
)

from keel.agent.validation import validate_tool_call
from keel.core.errors import (
    ConvergenceError,
    EngineConfigError,
    InvalidRequestError,
    PlanError,
)
from keel.core.interfaces import (
    ContextAssembler,
    LLMClient,
    MemoryStore,
    Planner,
    Policy,
    ToolExecutor,
    ToolRegistry,
)
from keel.core.schema import (
    LLMRequest,
    LLMResponse,
    Observation,
    PlanInput,
    PlanType,
    Request,
    Response,
    ToolCall,
    ToolDef,
)
from keel.core.trace import Trace

logger = logging.getLogger(__name__)

DEFAULT_MAX_STEPS = 4
DEFAULT_TOOL_TIMEOUT = 20.0  # seconds


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Engine:
    """
    Orchestrates planner, tools, context, LLM and memory for one request at a time.

    One instance may serve many concurrent :meth:`run` calls: everything request-scoped lives in
    local variables of :meth:`run`, and the collaborators are expected to be stateless.
    """

    def __init__(
        self,
        planner: Planner,
        llm: LLMClient,
        tools: ToolRegistry,
        executor: ToolExecutor,
        context: ContextAssembler,
        memory: MemoryStore | None = None,
        policy: Policy | None = None,
        tool_timeout: float = DEFAULT_TOOL_TIMEOUT,
        max_steps: int = DEFAULT_MAX_STEPS,
        clock: Callable[[], datetime] | None = None,
    ):
        required = {
            "planner": planner,
            "llm client": llm,
            "tool registry": tools,
            "tool executor": executor,
            "context assembler": context,
        }
        for label, value in required.items():
            if value is None:
                raise EngineConfigError(f"{label} is required")

        self.planner = planner
        self.llm = llm
        self.tools = tools
        self.executor = executor
        self.context = context
        self.memory = memory
        self.policy = policy
        self.tool_timeout = (
            tool_timeout if tool_timeout and tool_timeout > 0 else DEFAULT_TOOL_TIMEOUT
        )
        self.max_steps = max_steps if max_steps and max_steps > 0 else DEFAULT_MAX_STEPS
        self.clock = clock or _utcnow

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    async def run(self, request: Request) -> Response:
        """
        Execute the loop for *request* and return the final response.

        Raises
        ------
        InvalidRequestError
            If the query is empty.
        PlanError
            If the planner fails or returns a tool plan without calls.
        ConvergenceError
            If no final answer was reached within ``max_steps`` planner steps.
        KeelError
            Context-build and LLM failures propagate unchanged.
        """
        if not request.query.strip():
            raise InvalidRequestError("query is required")

        trace = Trace(id=request.session_id or uuid.uuid4().hex)
        trace.add_event("run.started", request.query)
        logger.info("Run %s started (session=%r)", trace.id, request.session_id)

        tools: List[ToolDef] = []
        tool_warning = ""
        try:
            tools = list(await self.tools.list_tools(request.user_id, request.project_id))
            trace.add_event("tools.listed", str(len(tools)))
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("Tool discovery failed; proceeding without tools: %s", exc)
            trace.add_event("tools.list.failed", str(exc))
            tool_warning = f"Tool discovery failed; proceeding without tools: {exc}"

        prompt = await self.context.build(request, tools)
        if tool_warning:
            prompt = f"{prompt}\n\n## System Notes\n{tool_warning}"
        trace.add_event("context.built", f"{len(prompt)} chars")

        observations: List[Observation] = []
        folded = 0
        for step in range(1, self.max_steps + 1):
            plan = await self.planner.plan(
                PlanInput(
                    request=request,
                    prompt=prompt,
                    tools=tools,
                    observations=list(observations),
                    step=step,
                )
            )
            trace.add_event("plan", f"step {step}: {plan.type.value}")
            logger.debug("Step %d plan: %s", step, plan.type.value)

            if plan.type is PlanType.DIRECT:
                reply = await self.llm.respond(
                    LLMRequest(
                        query=request.query,
                        prompt=prompt,
                        observations=list(observations),
                        history=request.history,
                        provider=request.provider,
                        model=request.model,
                    )
                )
                trace.add_event("llm.responded", f"{reply.provider}/{reply.model}")
                return await self._finalize(request, reply, observations, trace)

            if plan.type is PlanType.NEED_CLARIFICATION:
                trace.add_event("clarification", plan.clarification)
                return await self._finalize(
                    request, LLMResponse(text=plan.clarification), observations, trace
                )

            if not plan.tool_calls:
                raise PlanError("planner returned tool plan with no calls")

            for call in plan.tool_calls:
                observations.append(await self._attempt(call, tools, trace))

            # Only the observations of this step are appended; earlier ones are already folded.
            prompt = self.context.append_observations(prompt, observations[folded:])
            folded = len(observations)
            trace.add_event("observations.folded", str(folded))

        trace.add_event("run.failed", "max steps exceeded")
        logger.warning("Run %s did not converge in %d steps", trace.id, self.max_steps)
        raise ConvergenceError(self.max_steps)

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    async def _attempt(self, call: ToolCall, tools: Sequence[ToolDef], trace: Trace) -> Observation:
        """Validate, policy-check and dispatch one call; always returns an observation."""
        label = f"{call.name}.{call.action}"

        error = validate_tool_call(call, tools)
        if error:
            logger.info("Tool call %s rejected: %s", label, error)
            trace.add_event("tool.rejected", f"{label}: {error}")
            return Observation.failure(call.name, error)

        if self.policy is not None and not self.policy.allow_tool(call.name):
            logger.info("Tool call %s blocked by policy", label)
            trace.add_event("tool.blocked", label)
            return Observation.failure(call.name, "tool blocked by policy")

        try:
            result = await asyncio.wait_for(self.executor.execute(call), timeout=self.tool_timeout)
        except asyncio.TimeoutError:
            logger.warning("Tool call %s timed out after %ss", label, self.tool_timeout)
            trace.add_event("tool.timeout", label)
            error = f"tool call timed out after {self.tool_timeout:g}s"
            return Observation.failure(call.name, error)
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("Tool call %s failed: %s", label, exc)
            trace.add_event("tool.failed", f"{label}: {exc}")
            return Observation.failure(call.name, str(exc) or type(exc).__name__)

        logger.info("Tool call %s completed (success=%s)", label, result.success)
        trace.add_event("tool.completed", label)
        return Observation.success(call.name, result)

    async def _finalize(
        self,
        request: Request,
        reply: LLMResponse,
        observations: List[Observation],
        trace: Trace,
    ) -> Response:
        if self.memory is not None:
            session_id = request.session_id
            for role, content in (("user", request.query), ("assistant", reply.text)):
                try:
                    await self.memory.add_turn(session_id, content, role, self.clock())
                except Exception as exc:  # pylint: disable=broad-except
                    logger.warning("Failed to record %s turn: %s", role, exc)
            for obs in observations:
                if obs.result is None:
                    continue
                try:
                    await self.memory.store_fact(session_id, obs)
                except Exception as exc:  # pylint: disable=broad-except
                    logger.warning("Failed to store fact from %s: %s", obs.tool_name, exc)

        trace.add_event("run.finished", f"{len(observations)} observations")
        logger.info("Run %s finished with %d observations", trace.id, len(observations))
        return Response(
            text=reply.text,
            provider=reply.provider,
            model=reply.model,
            observations=list(observations),
            trace=trace,
        )
