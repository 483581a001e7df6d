"""
Local tool registry for Keel.

This module provides a decorator to register in-process tools and a :class:`LocalToolRegistry` that
exposes them to the engine as :class:`~keel.core.schema.ToolDef` values.  A tool is a named group of
actions; each action is a function called with keyword arguments.  The JSON schema advertised for
an action is derived from the function signature.
"""

import inspect
import json
import logging
from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    get_type_hints,
)

from keel.core.interfaces import ToolRegistry
from keel.core.schema import (
    ToolAction,
    ToolDef,
)

logger = logging.getLogger(__name__)

_JSON_TYPES: Mapping[type, str] = {
    str: "string",
    int: "integer",
    float: "number",
    bool: "boolean",
    dict: "object",
    list: "array",
}


class LocalAction:
    """A registered action: the function plus its advertised metadata."""

    def __init__(self, fn: Callable, description: str = ""):
        self.fn = fn
        self.description = description or inspect.getdoc(fn) or ""
        self.input_schema = json.dumps(build_input_schema(fn))


class LocalTool:
    """A named group of actions, optionally scoped to some users or projects."""

    def __init__(
        self,
        name: str,
        description: str = "",
        users: Iterable[str] | None = None,
        projects: Iterable[str] | None = None,
    ):
        self.name = name
        self.description = description
        self.users = frozenset(users or ())
        self.projects = frozenset(projects or ())
        self.actions: Dict[str, LocalAction] = {}

    def visible_to(self, user_id: str, project_id: str) -> bool:
        """Tools without a scope are visible everywhere."""
        if self.users and user_id not in self.users:
            return False
        if self.projects and project_id not in self.projects:
            return False
        return True

    def to_def(self) -> ToolDef:
        return ToolDef(
            name=self.name,
            description=self.description,
            actions=[
                ToolAction(name=name, description=a.description, input_schema=a.input_schema)
                for name, a in self.actions.items()
            ],
        )


TOOL_REGISTRY: Dict[str, LocalTool] = {}
"""Global registry of local tools, keyed by tool name."""


def build_input_schema(fn: Callable) -> Dict[str, Any]:
    """Derive a JSON schema for *fn*'s keyword arguments (no default means required)."""
    sig = inspect.signature(fn)
    try:
        type_hints = get_type_hints(fn)
    except (NameError, TypeError):
        type_hints = {}
    properties: Dict[str, Dict[str, str]] = {}
    required: List[str] = []
    for param_name, param in sig.parameters.items():
        if param.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
            continue
        json_type = _JSON_TYPES.get(type_hints.get(param_name))  # type: ignore[arg-type]
        properties[param_name] = {"type": json_type} if json_type else {}
        if param.default is inspect.Parameter.empty:
            required.append(param_name)
    schema: Dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required
    return schema


def describe_tool(
    name: str,
    description: str = "",
    users: Iterable[str] | None = None,
    projects: Iterable[str] | None = None,
    registry: Dict[str, LocalTool] | None = None,
) -> LocalTool:
    """Create (or update) the tool entry *name* with a description and an optional scope."""
    registry = TOOL_REGISTRY if registry is None else registry
    tool = registry.get(name)
    if tool is None:
        tool = registry[name] = LocalTool(name, description, users, projects)
    else:
        tool.description = description or tool.description
        if users is not None:
            tool.users = frozenset(users)
        if projects is not None:
            tool.projects = frozenset(projects)
    return tool


def register_tool(
    name: str,
    action: str = "run",
    description: str = "",
    registry: Dict[str, LocalTool] | None = None,
) -> Callable:
    """
    Register a function as action *action* of the tool *name*.

    The function is registered as a decorator, so it can be used like this:
        @register_tool("jira", action="search")
        def search_issues(query: str, limit: int = 10):
            ...

    Parameters
    ----------
    name: str
        The tool name, as the planner and the catalog will see it.
    action: str
        The action name within the tool.  Must be unique per tool.
    description: str
        Action description; defaults to the function docstring.
    registry:
        Registry to add to; defaults to the global :data:`TOOL_REGISTRY`.

    Returns
    -------
    Callable
        A decorator that registers the function.

    Raises
    ------
    ValueError
        If the (tool, action) pair is already registered.
    """
    registry = TOOL_REGISTRY if registry is None else registry
    existing = registry.get(name)
    if existing is not None and action in existing.actions:
        raise ValueError(f"Tool '{name}' already has an action '{action}'.")
    logger.debug("Registering tool '%s' action '%s'", name, action)

    def wrapper(fn: Callable) -> Callable:
        tool = describe_tool(name, registry=registry)
        tool.actions[action] = LocalAction(fn, description)
        return fn

    return wrapper


def lookup_action(
    name: str, action: str, registry: Mapping[str, LocalTool] | None = None
) -> Optional[LocalAction]:
    """Return the registered action, or None."""
    registry = TOOL_REGISTRY if registry is None else registry
    tool = registry.get(name)
    if tool is None:
        return None
    return tool.actions.get(action)


class LocalToolRegistry(ToolRegistry):
    """Exposes registered in-process tools as the engine's tool catalog."""

    def __init__(self, registry: Mapping[str, LocalTool] | None = None):
        self._registry = TOOL_REGISTRY if registry is None else registry

    async def list_tools(self, user_id: str, project_id: str) -> List[ToolDef]:
        return [
            tool.to_def()
            for tool in self._registry.values()
            if tool.actions and tool.visible_to(user_id, project_id)
        ]


describe_tool("echo", "Echo text back to the caller; useful for checking the tool path.")


@register_tool("echo", action="echo")
def echo_tool(text: str) -> str:
    """Echo the input text back to the caller."""
    return text
