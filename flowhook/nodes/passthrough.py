"""Passthrough node.

Used for the ``passthrough`` kind and for every node type the registry
does not know.
"""

from typing import Any

from flowhook.core.router import NodeInputs
from flowhook.models.node import NodeCategory, NodeDefinition
from flowhook.nodes.base import BaseNode, NodeContext


class PassthroughNode(BaseNode[dict[str, Any]]):
    """Forward the first positional input unchanged ({} when there is none)."""

    def get_definition(self) -> NodeDefinition:
        """Get node definition."""
        return NodeDefinition(
            name="passthrough",
            display_name="Passthrough",
            description="Forwards its first input unchanged",
            category=NodeCategory.LOGIC,
            aliases=["noop"],
        )

    async def execute(
        self,
        config: dict[str, Any],
        inputs: NodeInputs,
        context: NodeContext,
    ) -> Any:
        """Return the first positional input."""
        return inputs.first({})
