"""Webhook trigger node.

Entry point of a workflow: its output is the inbound request that
started the run.
"""

from typing import Any

from flowhook.core.router import NodeInputs
from flowhook.models.node import NodeCategory, NodeDefinition
from flowhook.nodes.base import BaseNode, NodeContext


class TriggerNode(BaseNode[dict[str, Any]]):
    """Identity over the triggering event.

    Output:
        {"method", "headers", "query", "body", "url"}
    """

    def get_definition(self) -> NodeDefinition:
        """Get node definition."""
        return NodeDefinition(
            name="trigger",
            display_name="Webhook",
            description="Starts the workflow with the inbound webhook request",
            category=NodeCategory.TRIGGER,
            aliases=["webhook"],
            tags=["webhook", "trigger"],
        )

    async def execute(
        self,
        config: dict[str, Any],
        inputs: NodeInputs,
        context: NodeContext,
    ) -> dict[str, Any]:
        """Return the triggering event."""
        return context.trigger.to_dict()
