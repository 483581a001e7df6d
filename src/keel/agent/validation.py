"""Static checks run on a tool call before it may reach an executor."""

import json
from typing import (
    Any,
    Dict,
    Optional,
    Sequence,
)

from keel.core.schema import (
    ToolCall,
    ToolDef,
)


def validate_tool_call(call: ToolCall, tools: Sequence[ToolDef]) -> Optional[str]:
    """
    Check *call* against the tool catalog.

    Returns an error message describing the first problem found, or None when the call may be
    dispatched.
    """
    if not call.name:
        return "missing tool name"
    tool = next((t for t in tools if t.name == call.name), None)
    if tool is None:
        return f"unknown tool: {call.name}"
    if not call.action:
        return "missing tool action"
    action = tool.get_action(call.action)
    if action is None:
        return f"unknown action: {call.action}"
    if not action.input_schema:
        return None
    return validate_required_fields(action.input_schema, call.args)


def validate_required_fields(schema: str, args: Dict[str, Any] | None) -> Optional[str]:
    """Report schema-required keys missing from *args*, in schema order."""
    args = args or {}
    try:
        payload = json.loads(schema)
    except ValueError:
        # Schemas we cannot read are not enforced.
        return None
    if not isinstance(payload, dict):
        return None
    required = payload.get("required")
    if not isinstance(required, list) or not required:
        return None

    missing = [name for name in required if isinstance(name, str) and name not in args]
    if not missing:
        return None
    return "missing required params: " + ", ".join(missing)
