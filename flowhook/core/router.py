"""Branch router.

Decides which upstream outputs are visible to a node. Conditional and
switch nodes prune their outgoing edges by handle: only the edge whose
``sourceHandle`` matches the recorded branch result forwards data.

All functions here are pure and safe to call speculatively.
"""

from collections import defaultdict, deque
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from flowhook.models.workflow import (
    FALSE_HANDLE,
    TRUE_HANDLE,
    NodeKind,
    WorkflowEdge,
    WorkflowNode,
    switch_handle,
)

if TYPE_CHECKING:
    from flowhook.nodes.registry import NodeRegistry


@dataclass
class NodeInputs:
    """Inputs visible to one node.

    Attributes:
        positional: Outputs of direct parents whose edge is active, in edge order
        named: Outputs of every recorded ancestor keyed by display name
    """

    positional: list[Any] = field(default_factory=list)
    named: dict[str, Any] = field(default_factory=dict)

    def first(self, default: Any = None) -> Any:
        """Get the first positional input."""
        return self.positional[0] if self.positional else default


def _forwarded(output: Any) -> Any:
    """Data a branching node passes down its selected edge."""
    if isinstance(output, dict) and "output" in output:
        return output["output"]
    return output


def _edge_active(
    edge: WorkflowEdge,
    conditional_results: Mapping[str, bool],
    switch_results: Mapping[str, int],
) -> bool:
    """Check an edge's handle against its source's branch result, if any."""
    if edge.source in switch_results:
        return edge.source_handle == switch_handle(switch_results[edge.source])
    if edge.source in conditional_results:
        expected = TRUE_HANDLE if conditional_results[edge.source] else FALSE_HANDLE
        return edge.source_handle == expected
    return True


def collect_ancestors(node_id: str, edges: Iterable[WorkflowEdge]) -> list[str]:
    """Get every transitive ancestor of a node in breadth-first order.

    Args:
        node_id: Node whose ancestors are wanted
        edges: All workflow edges

    Returns:
        Ancestor ids, nearest first, each listed once
    """
    parents: dict[str, list[str]] = defaultdict(list)
    for edge in edges:
        parents[edge.target].append(edge.source)

    ancestors: list[str] = []
    visited = {node_id}
    queue = deque([node_id])
    while queue:
        current = queue.popleft()
        for source in parents.get(current, []):
            if source in visited:
                continue
            visited.add(source)
            ancestors.append(source)
            queue.append(source)
    return ancestors


def _named_outputs(
    ancestor_ids: Iterable[str],
    node_outputs: Mapping[str, Any],
    nodes: Iterable[WorkflowNode],
) -> dict[str, Any]:
    node_map = {node.id: node for node in nodes}
    named: dict[str, Any] = {}
    # Farther ancestors sharing a name overwrite nearer ones
    for ancestor_id in ancestor_ids:
        if ancestor_id in node_outputs and ancestor_id in node_map:
            named[node_map[ancestor_id].display_name] = node_outputs[ancestor_id]
    return named


def visible_inputs(
    node_id: str,
    edges: Iterable[WorkflowEdge],
    node_outputs: Mapping[str, Any],
    conditional_results: Mapping[str, bool],
    nodes: Iterable[WorkflowNode],
    switch_results: Mapping[str, int] | None = None,
) -> NodeInputs:
    """Compute the inputs a node sees.

    A parent without a recorded output contributes nothing. A parent with
    a recorded conditional or switch result contributes only through the
    edge whose handle matches that result, and then forwards the ``output``
    field of its result rather than the whole record.

    The named map covers all transitive ancestors with a recorded output,
    regardless of branch pruning.

    Args:
        node_id: Node whose inputs are computed
        edges: All workflow edges
        node_outputs: Outputs recorded so far, keyed by node id
        conditional_results: Branch result per conditional node id
        nodes: All workflow nodes (for display names)
        switch_results: Matched output index per switch node id

    Returns:
        NodeInputs with positional and named views
    """
    edges = list(edges)
    switch_results = switch_results or {}

    positional: list[Any] = []
    for edge in edges:
        if edge.target != node_id or edge.source not in node_outputs:
            continue
        if not _edge_active(edge, conditional_results, switch_results):
            continue
        output = node_outputs[edge.source]
        if edge.source in conditional_results or edge.source in switch_results:
            output = _forwarded(output)
        positional.append(output)

    named = _named_outputs(collect_ancestors(node_id, edges), node_outputs, nodes)
    return NodeInputs(positional=positional, named=named)


def is_pruned(
    node_id: str,
    edges: Iterable[WorkflowEdge],
    attempted: Iterable[str],
    conditional_results: Mapping[str, bool],
    switch_results: Mapping[str, int] | None = None,
) -> bool:
    """Check whether branch pruning keeps a node from running.

    A node with no incoming edges is never pruned. Otherwise it is pruned
    when none of its incoming edges is active: the source was not
    attempted, or the edge's handle does not match the source's branch.
    """
    attempted = set(attempted)
    switch_results = switch_results or {}
    incoming = [edge for edge in edges if edge.target == node_id]
    if not incoming:
        return False
    return not any(
        edge.source in attempted
        and _edge_active(edge, conditional_results, switch_results)
        for edge in incoming
    )


def _branch_results(
    nodes: Iterable[WorkflowNode],
    node_outputs: Mapping[str, Any],
    registry: "NodeRegistry",
) -> tuple[dict[str, bool], dict[str, int]]:
    """Read branch results back out of recorded outputs."""
    conditional: dict[str, bool] = {}
    switches: dict[str, int] = {}
    for node in nodes:
        output = node_outputs.get(node.id)
        if not isinstance(output, dict):
            continue
        kind = registry.resolve_kind(node.type)
        if kind == NodeKind.CONDITIONAL and "result" in output:
            conditional[node.id] = output["result"] is True
        elif kind == NodeKind.SWITCH and isinstance(output.get("matchedOutput"), int):
            switches[node.id] = output["matchedOutput"]
    return conditional, switches


def tested_named_inputs(
    node_id: str,
    edges: Iterable[WorkflowEdge],
    nodes: Iterable[WorkflowNode],
    node_outputs: Mapping[str, Any],
    registry: "NodeRegistry | None" = None,
) -> dict[str, Any]:
    """Named ancestor outputs for testing a single node.

    Unlike a run, a single-node test only has whatever outputs the editor
    kept from earlier tests. Ancestors are walked backwards through edges
    that are known to be active: edges leaving a conditional or switch
    node are followed only when that node's output is known and selects
    the edge's handle.

    Args:
        node_id: Node under test
        edges: All workflow edges
        nodes: All workflow nodes
        node_outputs: Previously tested outputs keyed by node id
        registry: Registry resolving node kinds (default: built-in registry)

    Returns:
        Outputs keyed by display name
    """
    if registry is None:
        from flowhook.nodes.registry import get_node_registry

        registry = get_node_registry()
    edges = list(edges)
    nodes = list(nodes)
    conditional, switches = _branch_results(nodes, node_outputs, registry)
    branching = {
        node.id
        for node in nodes
        if registry.resolve_kind(node.type) in (NodeKind.CONDITIONAL, NodeKind.SWITCH)
    }

    ancestors: list[str] = []
    visited = {node_id}
    queue = deque([node_id])
    while queue:
        current = queue.popleft()
        for edge in edges:
            if edge.target != current or edge.source in visited:
                continue
            if edge.source in branching:
                known = edge.source in conditional or edge.source in switches
                if not known or not _edge_active(edge, conditional, switches):
                    continue
            visited.add(edge.source)
            ancestors.append(edge.source)
            queue.append(edge.source)

    return _named_outputs(ancestors, node_outputs, nodes)

