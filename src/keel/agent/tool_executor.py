"""Dispatches tool calls registered in ``keel.tools`` and wraps errors."""

import asyncio
import inspect
import logging
from typing import (
    Any,
    Dict,
    Mapping,
)

from keel.core.errors import ToolExecutionError
from keel.core.interfaces import ToolExecutor
from keel.core.schema import (
    ToolCall,
    ToolResult,
)
from keel.tools import (
    LocalTool,
    lookup_action,
)

logger = logging.getLogger(__name__)


def to_tool_result(value: Any) -> ToolResult:
    """Normalize whatever a tool returned into a :class:`ToolResult`."""
    if isinstance(value, ToolResult):
        return value
    if isinstance(value, dict):
        return ToolResult(success=True, data=value)
    return ToolResult(success=True, data={"result": value})


def _accepted_args(fn: Any, args: Dict[str, Any]) -> Dict[str, Any]:
    """Drop arguments the function does not declare, unless it takes ``**kwargs``."""
    params = inspect.signature(fn).parameters
    if any(p.kind is inspect.Parameter.VAR_KEYWORD for p in params.values()):
        return dict(args)
    return {k: v for k, v in args.items() if k in params}


async def execute_tool(
    name: str,
    action: str,
    args: Dict[str, Any] | None = None,
    registry: Mapping[str, LocalTool] | None = None,
) -> ToolResult:
    """
    Look up *name*/*action* in the registry and invoke it with *args*.

    Parameters
    ----------
    name:
        The registered tool name.
    action:
        The action within the tool.
    args:
        Keyword arguments for the action.  Arguments the function does not declare are dropped,
        so planner defaults such as ``userId`` do not break narrow tools.  If *None*, an empty
        dict is assumed.
    registry:
        Registry to look in; defaults to the global one.

    Returns
    -------
    ToolResult
        The tool's return value, normalized.

    Raises
    ------
    ToolExecutionError
        If the tool is missing or its invocation raises an exception.
    """

    if args is None:
        args = {}

    entry = lookup_action(name, action, registry)
    if entry is None:
        raise ToolExecutionError(f"Tool '{name}.{action}' is not registered.")

    kwargs = _accepted_args(entry.fn, args)
    try:
        inspect.signature(entry.fn).bind(**kwargs)
    except TypeError as exc:
        # Argument mismatch: raise a clean exception for the caller.
        raise ToolExecutionError(f"Invalid arguments for tool '{name}.{action}': {exc}") from exc

    try:
        logger.debug("Executing tool '%s.%s' with args=%s", name, action, kwargs)
        if inspect.iscoroutinefunction(entry.fn):
            value = await entry.fn(**kwargs)
        else:
            value = await asyncio.to_thread(entry.fn, **kwargs)
    except ToolExecutionError:
        raise
    except Exception as exc:  # noqa: BLE001
        logger.exception("Unhandled error in tool '%s.%s'", name, action)
        raise ToolExecutionError(f"Tool '{name}.{action}' raised an error: {exc}") from exc
    return to_tool_result(value)


class LocalToolExecutor(ToolExecutor):
    """Runs tool calls against in-process registered functions."""

    def __init__(self, registry: Mapping[str, LocalTool] | None = None):
        self._registry = registry

    async def execute(self, call: ToolCall) -> ToolResult:
        return await execute_tool(call.name, call.action, call.args, self._registry)
