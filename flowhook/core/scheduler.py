"""Graph scheduler.

Compiles a workflow's nodes and edges into a deterministic,
dependency-respecting execution order.
"""

from collections.abc import Iterable

import structlog

from flowhook.models.workflow import WorkflowEdge, WorkflowNode

logger = structlog.get_logger()


def build_dependencies(
    nodes: Iterable[WorkflowNode],
    edges: Iterable[WorkflowEdge],
) -> dict[str, list[str]]:
    """Map each node id to the sources of its incoming edges."""
    dependencies: dict[str, list[str]] = {node.id: [] for node in nodes}
    for edge in edges:
        if edge.target in dependencies:
            dependencies[edge.target].append(edge.source)
    return dependencies


def schedule(
    nodes: Iterable[WorkflowNode],
    edges: Iterable[WorkflowEdge],
) -> list[WorkflowNode]:
    """Compute the execution order of a workflow graph.

    Nodes are scanned repeatedly in declaration order. A node is ready
    once every one of its dependencies has been ordered, including nodes
    ordered earlier in the same scan. Scanning stops when every node is
    ordered or a full scan orders nothing new.

    Cycles and edges from unknown nodes leave their targets unordered.
    That is not an error: the partial order is returned and the left-over
    nodes are logged.

    Args:
        nodes: Workflow nodes in declaration order
        edges: Workflow edges

    Returns:
        Ordered nodes (possibly a prefix of a full order)
    """
    nodes = list(nodes)
    dependencies = build_dependencies(nodes, edges)

    order: list[WorkflowNode] = []
    ordered: set[str] = set()

    while len(order) < len(nodes):
        added = False
        for node in nodes:
            if node.id in ordered:
                continue
            if all(dep in ordered for dep in dependencies[node.id]):
                order.append(node)
                ordered.add(node.id)
                added = True
        if not added:
            break

    if len(order) < len(nodes):
        logger.warning(
            "schedule_incomplete",
            scheduled=len(order),
            total=len(nodes),
            unscheduled=[node.id for node in nodes if node.id not in ordered],
        )
    else:
        logger.debug("schedule_built", order=[node.id for node in order])

    return order
