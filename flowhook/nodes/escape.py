"""Escape & Set node.

Builds an object from named fields whose resolved values are escaped for
safe embedding inside JSON strings later in the workflow.
"""

import re
from dataclasses import dataclass
from typing import Any

from flowhook.core.router import NodeInputs
from flowhook.core.templates import resolve
from flowhook.models.node import NodeCategory, NodeDefinition
from flowhook.nodes.base import BaseNode, NodeContext, NodeExecutionError, NodeValidationError

_ESCAPES = {
    "\\": "\\\\",
    "\t": "\\t",
    "\r": "\\r",
    "\n": "\\n",
    '"': '\\"',
}
_ESCAPE_PATTERN = re.compile(r'[\\\t\r\n"]')
_WHITESPACE = re.compile(r"\s+")


def escape_text(value: Any) -> Any:
    """Escape control characters, quotes and backslashes, collapse whitespace.

    Non-string values are returned unchanged.
    """
    if not isinstance(value, str):
        return value
    escaped = _ESCAPE_PATTERN.sub(lambda m: _ESCAPES[m.group(0)], value)
    return _WHITESPACE.sub(" ", escaped).strip()


def set_nested(target: dict[str, Any], dotted_name: str, value: Any) -> None:
    """Set ``a.b.c`` inside a nested dict, creating intermediate objects."""
    *parents, leaf = dotted_name.split(".")
    current = target
    for part in parents:
        child = current.get(part)
        if not isinstance(child, dict):
            child = {}
            current[part] = child
        current = child
    current[leaf] = value


@dataclass
class EscapeField:
    name: str
    value: Any


class EscapeNode(BaseNode[list[EscapeField]]):
    """Resolve, escape and assemble named fields into one object."""

    failure_title = "Escape node failed"

    def get_definition(self) -> NodeDefinition:
        """Get node definition."""
        return NodeDefinition(
            name="escape",
            display_name="Escape & Set",
            description="Sets fields to escaped, template-resolved values",
            category=NodeCategory.LOGIC,
            tags=["text", "escape", "set"],
        )

    def validate_input(self, config: dict[str, Any]) -> list[EscapeField]:
        """Validate the field list; fields without a name or value are skipped."""
        raw_fields = config.get("fields") or []
        if not isinstance(raw_fields, list):
            raise NodeValidationError("Fields must be a list", field="fields")
        return [
            EscapeField(name=str(raw["name"]), value=raw["value"])
            for raw in raw_fields
            if isinstance(raw, dict) and raw.get("name") and raw.get("value")
        ]

    async def execute(
        self,
        config: list[EscapeField],
        inputs: NodeInputs,
        context: NodeContext,
    ) -> dict[str, Any]:
        """Build the output object."""
        if not config:
            raise NodeExecutionError(
                "No fields configured",
                node_name="escape",
                error_code="NO_FIELDS",
            )
        result: dict[str, Any] = {}
        for item in config:
            set_nested(result, item.name, escape_text(resolve(item.value, inputs)))
        return result
