"""Node registry.

Central ``NodeKind -> node`` map. Saved workflows name node types with
the strings their editor used (``webhook``, ``if``, ``claude`` ...); those
resolve through aliases, and anything unknown falls back to passthrough.
"""

from typing import Type

import structlog

from flowhook.models.node import NodeCategory, NodeDefinition
from flowhook.models.workflow import NodeKind
from flowhook.nodes.base import BaseNode

logger = structlog.get_logger()


class NodeRegistryError(Exception):
    """Error in node registry operations."""

    def __init__(self, message: str, error_code: str = "NODE_REGISTRY_ERROR") -> None:
        super().__init__(message)
        self.error_code = error_code


class NodeRegistry:
    """Central registry for workflow node kinds.

    Example usage:
        registry = NodeRegistry()
        registry.register(HttpNode)

        node = registry.get("http")
        output = await node.run(config, inputs, context)
    """

    def __init__(self) -> None:
        """Initialize empty registry."""
        self._instances: dict[str, BaseNode] = {}
        self._aliases: dict[str, str] = {}

    def register(self, node_class: Type[BaseNode]) -> None:
        """Register a node class under its name and aliases.

        Args:
            node_class: Node class to register

        Raises:
            NodeRegistryError: If the name or an alias is already taken
        """
        instance = node_class()
        definition = instance.get_definition()

        names = [definition.name, *definition.aliases]
        for name in names:
            if name in self._instances or name in self._aliases:
                raise NodeRegistryError(
                    f"Node type '{name}' already registered", "NODE_ALREADY_REGISTERED"
                )

        self._instances[definition.name] = instance
        for alias in definition.aliases:
            self._aliases[alias] = definition.name

        logger.debug(
            "node_registered",
            name=definition.name,
            aliases=definition.aliases,
            category=definition.category.value,
        )

    def unregister(self, name: str) -> None:
        """Remove a node kind and its aliases."""
        self._instances.pop(name, None)
        self._aliases = {a: n for a, n in self._aliases.items() if n != name}

    def canonical_name(self, node_type: str) -> str | None:
        """Get the registered name a type string refers to, if any."""
        if node_type in self._instances:
            return node_type
        return self._aliases.get(node_type)

    def get(self, node_type: str) -> BaseNode | None:
        """Get a node instance by type string (name or alias).

        Returns:
            Node instance or None if not found
        """
        name = self.canonical_name(node_type)
        return self._instances.get(name) if name else None

    def resolve(self, node_type: str) -> BaseNode:
        """Get the node for a type string, falling back to passthrough.

        Raises:
            NodeRegistryError: If neither the type nor passthrough is registered
        """
        node = self.get(node_type)
        if node is not None:
            return node
        fallback = self._instances.get(NodeKind.PASSTHROUGH.value)
        if fallback is None:
            raise NodeRegistryError(
                f"Unknown node type '{node_type}' and no passthrough node registered",
                "NODE_NOT_FOUND",
            )
        logger.debug("node_type_unknown_using_passthrough", node_type=node_type)
        return fallback

    def resolve_kind(self, node_type: str) -> NodeKind:
        """Get the canonical kind of a type string (passthrough when unknown)."""
        instance = self.get(node_type)
        if instance is None:
            return NodeKind.PASSTHROUGH
        return instance.get_definition().node_kind

    def get_definition(self, node_type: str) -> NodeDefinition | None:
        """Get node definition by type string."""
        instance = self.get(node_type)
        return instance.get_definition() if instance else None

    def list_all(self) -> list[NodeDefinition]:
        """List all registered node definitions."""
        return [inst.get_definition() for inst in self._instances.values()]

    def list_by_category(self, category: NodeCategory) -> list[NodeDefinition]:
        """List nodes by category."""
        return [
            inst.get_definition()
            for inst in self._instances.values()
            if inst.category == category
        ]

    def load_builtin_nodes(self) -> int:
        """Load all built-in node kinds.

        Returns:
            Number of nodes loaded
        """
        from flowhook.nodes.code_run import CodeRunNode
        from flowhook.nodes.conditional import ConditionalNode
        from flowhook.nodes.escape import EscapeNode
        from flowhook.nodes.http import HttpNode
        from flowhook.nodes.llm_call import (
            ClaudeNode,
            GeminiNode,
            LlmCallNode,
            OpenAINode,
            PerplexityNode,
        )
        from flowhook.nodes.passthrough import PassthroughNode
        from flowhook.nodes.schedule import ScheduleTriggerNode
        from flowhook.nodes.switch import SwitchNode
        from flowhook.nodes.trigger import TriggerNode

        builtin_nodes = [
            # Entry
            TriggerNode,
            ScheduleTriggerNode,
            # Logic
            ConditionalNode,
            SwitchNode,
            EscapeNode,
            PassthroughNode,
            # API
            HttpNode,
            LlmCallNode,
            OpenAINode,
            PerplexityNode,
            ClaudeNode,
            GeminiNode,
            # Code
            CodeRunNode,
        ]

        count = 0
        for node_class in builtin_nodes:
            try:
                self.register(node_class)
                count += 1
            except NodeRegistryError as e:
                logger.warning(
                    "builtin_node_registration_failed",
                    error=str(e),
                )

        logger.info("builtin_nodes_loaded", count=count)
        return count


# Singleton instance
_registry: NodeRegistry | None = None


def get_node_registry() -> NodeRegistry:
    """Get or create the singleton node registry.

    Returns:
        NodeRegistry instance with builtin nodes loaded
    """
    global _registry
    if _registry is None:
        _registry = NodeRegistry()
        _registry.load_builtin_nodes()
    return _registry
