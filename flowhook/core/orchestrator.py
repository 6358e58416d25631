"""Run orchestrator.

Drives one workflow run: schedules the snapshot once, then for each node
in order computes its visible inputs, runs it through the node registry
and records the result. Execution is sequential; a node's failure is
recorded as its output and the run continues.

State machine:
    pending -> running -> success | failed

Example usage:
    orchestrator = WorkflowOrchestrator(credentials=store)
    async for event in orchestrator.execute(workflow, trigger):
        print(event.type, event.node_id)
"""

import copy
from dataclasses import dataclass, field
from typing import Any, AsyncGenerator

import httpx
import structlog

from flowhook.config import Settings, get_settings
from flowhook.core.router import NodeInputs, is_pruned, tested_named_inputs, visible_inputs
from flowhook.core.scheduler import schedule
from flowhook.models.execution import (
    ExecutionError,
    ExecutionEvent,
    ExecutionRecord,
    TriggerEvent,
)
from flowhook.models.workflow import (
    NodeKind,
    WorkflowDefinition,
    WorkflowEdge,
    WorkflowNode,
    WorkflowSnapshot,
    WorkflowSnapshotError,
)
from flowhook.nodes.base import NodeContext
from flowhook.nodes.registry import NodeRegistry, get_node_registry
from flowhook.services.code_runner import CodeRunner
from flowhook.services.credential_service import CredentialLookup

logger = structlog.get_logger()

# Matched output recorded for a switch whose output carries none
SWITCH_FALLBACK = -1

WorkflowLike = WorkflowDefinition | WorkflowSnapshot | dict[str, Any] | None


class ResumeError(ExecutionError):
    """A finished execution cannot be resumed as asked."""


@dataclass(frozen=True)
class ResumePoint:
    """Run being resumed and the node the new run restarts from."""

    source: ExecutionRecord
    start_node_id: str


@dataclass
class RunState:
    """Per-run maps owned by the orchestrator."""

    outputs: dict[str, Any] = field(default_factory=dict)
    conditional_results: dict[str, bool] = field(default_factory=dict)
    switch_results: dict[str, int] = field(default_factory=dict)
    attempted: list[str] = field(default_factory=list)


def snapshot_of(workflow: WorkflowLike) -> WorkflowSnapshot:
    """Capture the snapshot a run executes.

    Raises:
        WorkflowSnapshotError: If the workflow has no usable snapshot
    """
    if isinstance(workflow, WorkflowSnapshot):
        return workflow
    if isinstance(workflow, WorkflowDefinition):
        return workflow.snapshot
    return WorkflowSnapshot.from_dict(workflow)


class WorkflowOrchestrator:
    """Executes workflow snapshots and builds their execution records."""

    def __init__(
        self,
        registry: NodeRegistry | None = None,
        credentials: CredentialLookup | None = None,
        code_runner: CodeRunner | None = None,
        http_transport: httpx.AsyncBaseTransport | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            registry: Node registry (default: built-in registry)
            credentials: Credential lookup handed to nodes
            code_runner: External code runner for code nodes
            http_transport: Transport for HTTP and LLM nodes (tests inject mocks)
            settings: Application settings
        """
        self.registry = registry or get_node_registry()
        self.credentials = credentials
        self.code_runner = code_runner
        self.http_transport = http_transport
        self.settings = settings or get_settings()

    def _context(self, execution_id: str, node_id: str | None, trigger: TriggerEvent) -> NodeContext:
        return NodeContext(
            execution_id=execution_id,
            node_id=node_id,
            trigger=trigger,
            credentials=self.credentials,
            code_runner=self.code_runner,
            http_transport=self.http_transport,
            settings=self.settings,
        )

    async def execute(
        self,
        workflow: WorkflowLike,
        trigger: TriggerEvent | None = None,
        record: ExecutionRecord | None = None,
        workflow_id: str | None = None,
        resume: ResumePoint | None = None,
    ) -> AsyncGenerator[ExecutionEvent, None]:
        """Execute a workflow, streaming events.

        The record is mutated as the run progresses and is finalized once
        the generator is exhausted. Engine-level failures (invalid
        snapshot, internal errors) finalize it as failed and emit an
        ``error`` event instead of raising.

        Args:
            workflow: Workflow definition, snapshot, or raw graph
            trigger: Inbound request that started the run
            record: Record to fill (a new one is created when None)
            workflow_id: Workflow id when ``workflow`` does not carry one
            resume: Reuse the results of nodes scheduled before the
                resume point instead of running them again

        Yields:
            ``start``, one ``step`` per scheduled node, then ``complete``
            or ``error``
        """
        trigger = trigger or TriggerEvent()
        if workflow_id is None and isinstance(workflow, WorkflowDefinition):
            workflow_id = workflow.id
        if record is None:
            record = ExecutionRecord(workflow_id=workflow_id, input_data=trigger.to_dict())

        record.mark_running()
        logger.info("execution_starting", execution_id=record.id, workflow_id=workflow_id)
        start_data = {"workflow_id": workflow_id, "input_data": record.input_data}
        if resume is not None:
            start_data["resumed_from"] = resume.source.id
            start_data["start_node_id"] = resume.start_node_id
        yield ExecutionEvent(type="start", execution_id=record.id, data=start_data)

        step_number = 0
        try:
            snapshot = snapshot_of(workflow)
            order = schedule(snapshot.nodes, snapshot.edges)
            state = RunState()

            reusing = resume is not None
            for node in order:
                step_number += 1
                if reusing and node.id == resume.start_node_id:
                    reusing = False
                if reusing:
                    yield self._reuse(node, resume.source, state, record, step_number)
                else:
                    yield await self._step(node, snapshot, state, record, trigger, step_number)

        except Exception as e:
            if isinstance(e, WorkflowSnapshotError):
                logger.warning(
                    "execution_snapshot_invalid",
                    execution_id=record.id,
                    error_code=e.error_code,
                    error=str(e),
                )
            else:
                logger.exception(
                    "execution_failed",
                    execution_id=record.id,
                    workflow_id=workflow_id,
                    error_type=type(e).__name__,
                )
            record.mark_failed(str(e) or type(e).__name__)
            yield ExecutionEvent(
                type="error",
                execution_id=record.id,
                step_number=step_number,
                data={
                    "error": record.error_message,
                    "error_type": type(e).__name__,
                    "summary": record.summary(),
                },
            )
            return

        record.mark_success()
        logger.info(
            "execution_completed",
            execution_id=record.id,
            workflow_id=workflow_id,
            nodes=len(record.execution_order),
            failed_nodes=record.failed_nodes,
            skipped_nodes=record.skipped_nodes,
            duration_ms=record.duration_ms,
        )
        yield ExecutionEvent(
            type="complete",
            execution_id=record.id,
            step_number=step_number,
            data={"output": record.output_data, "summary": record.summary()},
        )

    async def _step(
        self,
        node: WorkflowNode,
        snapshot: WorkflowSnapshot,
        state: RunState,
        record: ExecutionRecord,
        trigger: TriggerEvent,
        step_number: int,
    ) -> ExecutionEvent:
        """Run (or skip) one scheduled node and record the result."""
        edges = snapshot.edges
        if is_pruned(
            node.id, edges, state.attempted, state.conditional_results, state.switch_results
        ):
            record.record_skipped(node.id)
            logger.debug("node_skipped", execution_id=record.id, node_id=node.id)
            return ExecutionEvent(
                type="step",
                execution_id=record.id,
                node_id=node.id,
                step_number=step_number,
                data={"node_type": node.type, "status": "skipped"},
            )

        visible = visible_inputs(
            node.id,
            edges,
            state.outputs,
            state.conditional_results,
            snapshot.nodes,
            state.switch_results,
        )
        # Nodes get private copies so recorded outputs are never mutated
        inputs = NodeInputs(
            positional=copy.deepcopy(visible.positional),
            named=copy.deepcopy(visible.named),
        )
        recorded_input = copy.deepcopy(visible.positional)

        implementation = self.registry.resolve(node.type)
        output = await implementation.run(
            copy.deepcopy(node.config),
            inputs,
            self._context(record.id, node.id, trigger),
        )

        state.outputs[node.id] = output
        state.attempted.append(node.id)
        result = record.record_node(node.id, recorded_input, output)
        self._record_branch(node, output, state)

        return ExecutionEvent(
            type="step",
            execution_id=record.id,
            node_id=node.id,
            step_number=step_number,
            data={
                "node_type": node.type,
                "status": result.status.value,
                "order": result.order,
                "output": output,
            },
        )

    def _reuse(
        self,
        node: WorkflowNode,
        source: ExecutionRecord,
        state: RunState,
        record: ExecutionRecord,
        step_number: int,
    ) -> ExecutionEvent:
        """Carry one node's result over from the run being resumed."""
        prior = source.node_results.get(node.id)
        if prior is None:
            record.record_skipped(node.id)
            return ExecutionEvent(
                type="step",
                execution_id=record.id,
                node_id=node.id,
                step_number=step_number,
                data={"node_type": node.type, "status": "skipped", "reused": True},
            )

        output = copy.deepcopy(prior.output)
        state.outputs[node.id] = output
        state.attempted.append(node.id)
        result = record.record_node(node.id, copy.deepcopy(prior.input), output)
        self._record_branch(node, output, state)
        logger.debug("node_result_reused", execution_id=record.id, node_id=node.id)

        return ExecutionEvent(
            type="step",
            execution_id=record.id,
            node_id=node.id,
            step_number=step_number,
            data={
                "node_type": node.type,
                "status": result.status.value,
                "order": result.order,
                "output": output,
                "reused": True,
            },
        )

    def _record_branch(self, node: WorkflowNode, output: Any, state: RunState) -> None:
        kind = self.registry.resolve_kind(node.type)
        if kind == NodeKind.CONDITIONAL:
            # Errored conditionals take the false branch
            state.conditional_results[node.id] = (
                isinstance(output, dict) and output.get("result") is True
            )
        elif kind == NodeKind.SWITCH:
            matched = output.get("matchedOutput") if isinstance(output, dict) else None
            if isinstance(matched, bool) or not isinstance(matched, int):
                matched = SWITCH_FALLBACK
            state.switch_results[node.id] = matched

    async def run(
        self,
        workflow: WorkflowLike,
        trigger: TriggerEvent | None = None,
        workflow_id: str | None = None,
    ) -> ExecutionRecord:
        """Execute a workflow to completion.

        Returns:
            The finalized execution record
        """
        if workflow_id is None and isinstance(workflow, WorkflowDefinition):
            workflow_id = workflow.id
        trigger = trigger or TriggerEvent()
        record = ExecutionRecord(workflow_id=workflow_id, input_data=trigger.to_dict())
        async for _ in self.execute(workflow, trigger, record=record, workflow_id=workflow_id):
            pass
        return record

    async def resume(
        self,
        workflow: WorkflowLike,
        source: ExecutionRecord,
        start_node_id: str | None = None,
        workflow_id: str | None = None,
    ) -> ExecutionRecord:
        """Re-run a finished execution from one of its nodes.

        Nodes scheduled before the start node keep the results recorded
        by ``source``; the start node and everything after it run again
        against the same trigger event.

        Args:
            workflow: Current workflow definition, snapshot, or raw graph
            source: Finished record of the run being resumed
            start_node_id: Node to restart from (default: the errored node)
            workflow_id: Workflow id when ``workflow`` does not carry one

        Returns:
            The finalized record of the new run

        Raises:
            ResumeError: If ``source`` cannot be resumed from that node
            WorkflowSnapshotError: If the workflow has no usable snapshot
        """
        if not source.is_resumable:
            raise ResumeError(
                "Only failed executions can be resumed", "RESUME_NOT_ALLOWED"
            )
        if source.resumed_to_execution_id:
            raise ResumeError(
                f"Execution '{source.id}' was already resumed", "RESUME_ALREADY_DONE"
            )
        start = start_node_id or source.error_node
        if not start:
            raise ResumeError("No node to resume from", "RESUME_NO_START_NODE")
        if not source.node_results:
            raise ResumeError("No node results to resume from", "RESUME_NO_RESULTS")

        snapshot = snapshot_of(workflow)
        if snapshot.get_node(start) is None:
            raise ResumeError(
                f"Node '{start}' is not in the workflow", "RESUME_START_NODE_NOT_FOUND"
            )

        if workflow_id is None:
            workflow_id = (
                workflow.id if isinstance(workflow, WorkflowDefinition) else source.workflow_id
            )
        record = ExecutionRecord(
            workflow_id=workflow_id,
            input_data=copy.deepcopy(source.input_data),
            resumed_from_execution_id=source.id,
        )
        source.mark_resumed(record.id)
        logger.info(
            "execution_resuming",
            execution_id=record.id,
            source_execution_id=source.id,
            start_node_id=start,
        )

        async for _ in self.execute(
            snapshot,
            TriggerEvent.from_dict(source.input_data),
            record=record,
            workflow_id=workflow_id,
            resume=ResumePoint(source=source, start_node_id=start),
        ):
            pass
        return record

    async def test_node(
        self,
        node_type: str,
        config: dict[str, Any] | None = None,
        positional: list[Any] | None = None,
        *,
        node_id: str | None = None,
        nodes: list[WorkflowNode] | tuple[WorkflowNode, ...] = (),
        edges: list[WorkflowEdge] | tuple[WorkflowEdge, ...] = (),
        node_outputs: dict[str, Any] | None = None,
        trigger: TriggerEvent | None = None,
    ) -> dict[str, Any]:
        """Run a single node outside of a workflow run.

        Named inputs are looked up from previously tested outputs of the
        node's ancestors, following only branches known to be active. No
        execution record is produced.

        Returns:
            {"input": <positional inputs>, "output": <node output>}
        """
        positional = copy.deepcopy(positional or [])
        named: dict[str, Any] = {}
        if node_id is not None and node_outputs:
            named = tested_named_inputs(node_id, edges, nodes, node_outputs, self.registry)

        context = self._context("test", node_id, trigger or TriggerEvent())
        output = await self.registry.resolve(node_type).run(
            copy.deepcopy(config or {}),
            NodeInputs(positional=copy.deepcopy(positional), named=copy.deepcopy(named)),
            context,
        )
        logger.info("node_tested", node_type=node_type, node_id=node_id)
        return {"input": positional, "output": output}
