"""
Exception hierarchy for Keel.

Errors fall in two groups.  Fatal errors propagate out of :meth:`keel.agent.engine.Engine.run`
(planner, context, LLM, convergence).  Tool-level errors never leave the engine: they are folded
into an :class:`~keel.core.schema.Observation` instead.
"""


class KeelError(RuntimeError):
    """Base class for every error raised by Keel."""


class EngineConfigError(KeelError):
    """Raised when the engine is wired without a required collaborator."""


class InvalidRequestError(KeelError):
    """Raised when a request cannot be run at all (e.g. empty query)."""


class PlanError(KeelError):
    """Raised when the planner fails or returns an unusable plan."""


class ConvergenceError(KeelError):
    """Raised when the step bound is exhausted before a final answer."""

    def __init__(self, max_steps: int):
        super().__init__(f"max steps exceeded ({max_steps})")
        self.max_steps = max_steps


class ContextBuildError(KeelError):
    """Raised when the reasoning context cannot be assembled."""


class LLMError(KeelError):
    """Raised when the language-model backend fails to produce an answer."""


class KnowledgeServiceError(KeelError):
    """Raised when the knowledge graph service cannot be reached or decoded."""


class MemoryBackendError(KeelError):
    """Raised by memory backends; swallowed by :class:`keel.memory.memory_store.MemoryAdapter`."""


class ToolExecutionError(KeelError):
    """Raised when a requested tool cannot run or fails."""


class ToolServiceError(ToolExecutionError):
    """Raised when the remote tool service rejects or garbles a request."""
