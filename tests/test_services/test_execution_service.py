"""Tests for the execution service, execution log and workflow source."""

from datetime import datetime, timedelta, timezone

import pytest

from flowhook.models.execution import ExecutionRecord, ExecutionStatus, TriggerEvent
from flowhook.models.node import NodeCategory, NodeDefinition
from flowhook.models.workflow import NodeKind, WorkflowSnapshotError
from flowhook.nodes.registry import NodeRegistry
from flowhook.nodes.trigger import TriggerNode
from flowhook.services.execution_service import (
    ExecutionNotFoundError,
    ExecutionService,
    InMemoryExecutionLog,
    WebhookAuthError,
    WebhookNotFoundError,
)
from flowhook.services.workflow_service import (
    InMemoryWorkflowSource,
    WorkflowNotFoundError,
    normalize_path,
)


class InboundNode(TriggerNode):
    """Webhook trigger registered under a private name."""

    def get_definition(self) -> NodeDefinition:
        return NodeDefinition(
            name="inbound",
            display_name="Inbound",
            description="Webhook trigger under another name",
            category=NodeCategory.TRIGGER,
            kind=NodeKind.TRIGGER,
        )


def hook_workflow(workflow_id: str, path: str, active: bool = True, **auth) -> dict:
    return {
        "id": workflow_id,
        "name": workflow_id,
        "active": active,
        "nodes": [
            {"id": "hook", "type": "webhook", "data": {"config": {"path": path, **auth}}},
            {
                "id": "code",
                "type": "code",
                "data": {"config": {"code": "return $input.first();"}},
            },
        ],
        "edges": [{"source": "hook", "target": "code"}],
    }


@pytest.fixture
def execution_log() -> InMemoryExecutionLog:
    return InMemoryExecutionLog(max_size=10)


@pytest.fixture
def service(workflow_source, orchestrator, execution_log) -> ExecutionService:
    return ExecutionService(workflow_source, orchestrator, execution_log)


class TestWorkflowSource:
    """Tests for the in-memory workflow source."""

    def test_normalize_path(self):
        assert normalize_path(" /orders/new/ ") == "orders/new"
        assert normalize_path(None) == ""

    @pytest.mark.asyncio
    async def test_find_by_path_skips_inactive(self, workflow_source):
        workflow_source.add(hook_workflow("wf-1", "/orders"))
        workflow_source.add(hook_workflow("wf-2", "orders", active=False))
        workflow_source.add(hook_workflow("wf-3", "refunds"))

        matches = await workflow_source.find_by_webhook_path("orders/")

        assert [workflow.id for workflow in matches] == ["wf-1"]

    @pytest.mark.asyncio
    async def test_get_unknown(self, workflow_source):
        with pytest.raises(WorkflowNotFoundError):
            await workflow_source.get("missing")

    def test_add_rejects_malformed_graph(self, workflow_source):
        with pytest.raises(WorkflowSnapshotError):
            workflow_source.add({"id": "bad", "nodes": [{"type": "noop"}]})

    def test_add_rejects_non_object_node_data(self, workflow_source):
        with pytest.raises(WorkflowSnapshotError, match="data must be an object"):
            workflow_source.add({"id": "bad", "nodes": [{"id": "a", "data": "x"}]})

    @pytest.mark.asyncio
    async def test_trigger_lookup_uses_source_registry(self):
        """Trigger types come from the source's own registry."""
        registry = NodeRegistry()
        registry.register(InboundNode)
        custom = InMemoryWorkflowSource(registry)
        shared = InMemoryWorkflowSource()
        workflow = {
            "id": "wf-inbound",
            "nodes": [{"id": "in", "type": "inbound", "data": {"config": {"path": "orders"}}}],
        }
        custom.add(workflow)
        shared.add(workflow)

        assert [w.id for w in await custom.find_by_webhook_path("orders")] == ["wf-inbound"]
        assert await shared.find_by_webhook_path("orders") == []


class TestExecutionLog:
    """Tests for the bounded execution history."""

    @pytest.mark.asyncio
    async def test_list_newest_first_with_filters(self, execution_log):
        records = [
            ExecutionRecord(workflow_id="wf-1"),
            ExecutionRecord(workflow_id="wf-2"),
            ExecutionRecord(workflow_id="wf-1", status=ExecutionStatus.FAILED),
        ]
        for record in records:
            await execution_log.save(record)

        assert [r.id for r in await execution_log.list()] == [r.id for r in reversed(records)]
        assert [r.id for r in await execution_log.list(workflow_id="wf-1")] == [
            records[2].id,
            records[0].id,
        ]
        failed = await execution_log.list(status=ExecutionStatus.FAILED)
        assert [r.id for r in failed] == [records[2].id]
        assert len(await execution_log.list(limit=1, offset=1)) == 1

    @pytest.mark.asyncio
    async def test_eviction(self):
        """The oldest records are dropped beyond max_size."""
        log = InMemoryExecutionLog(max_size=2)
        first, second, third = (ExecutionRecord(workflow_id="wf") for _ in range(3))
        for record in (first, second, third):
            await log.save(record)

        assert len(log) == 2
        with pytest.raises(ExecutionNotFoundError):
            await log.get(first.id)
        assert (await log.get(third.id)) is third


class TestTriggerWebhook:
    """Tests for webhook-triggered runs."""

    @pytest.mark.asyncio
    async def test_runs_every_matching_workflow(self, service, workflow_source, execution_log):
        workflow_source.add(hook_workflow("wf-1", "orders"))
        workflow_source.add(hook_workflow("wf-2", "orders"))

        summaries = await service.trigger_webhook("orders", TriggerEvent(body={"id": 1}))

        assert [s["workflow_id"] for s in summaries] == ["wf-1", "wf-2"]
        assert all(s["status"] == "success" for s in summaries)
        assert summaries[0]["nodes"] == {"hook": "success", "code": "success"}
        assert len(execution_log) == 2

    @pytest.mark.asyncio
    async def test_unknown_path(self, service):
        with pytest.raises(WebhookNotFoundError):
            await service.trigger_webhook("nowhere", TriggerEvent())

    @pytest.mark.asyncio
    async def test_auth_checked_before_any_run(self, service, workflow_source, execution_log):
        """One rejecting workflow stops every run on the path."""
        workflow_source.add(hook_workflow("wf-open", "orders"))
        workflow_source.add(
            hook_workflow("wf-secure", "orders", auth="header", credentialId="bearer-1")
        )

        with pytest.raises(WebhookAuthError) as exc_info:
            await service.trigger_webhook("orders", TriggerEvent())

        assert exc_info.value.workflow_id == "wf-secure"
        assert len(execution_log) == 0

    @pytest.mark.asyncio
    async def test_authenticated_request(self, service, workflow_source):
        workflow_source.add(
            hook_workflow("wf-secure", "orders", auth="header", credentialId="bearer-1")
        )
        event = TriggerEvent(headers={"Authorization": "Bearer secret-token"})

        summaries = await service.trigger_webhook("orders", event)

        assert summaries[0]["status"] == "success"


class TestManualRuns:
    """Tests for runs started by id."""

    @pytest.mark.asyncio
    async def test_run_workflow(self, service, workflow_source, execution_log):
        workflow_source.add(hook_workflow("wf-1", "orders"))

        record = await service.run_workflow("wf-1", TriggerEvent(body={"x": 1}))

        assert record.status == ExecutionStatus.SUCCESS
        assert record.output_data == {"ok": True}
        assert (await execution_log.get(record.id)) is record

    @pytest.mark.asyncio
    async def test_run_unknown_workflow(self, service):
        with pytest.raises(WorkflowNotFoundError):
            await service.run_workflow("missing")

    @pytest.mark.asyncio
    async def test_stream_saves_record(self, service, workflow_source, execution_log):
        """Streamed runs yield events and store the record at the end."""
        workflow_source.add(hook_workflow("wf-1", "orders"))

        events = [event async for event in service.stream_workflow("wf-1")]

        assert events[0].type == "start"
        assert events[-1].type == "complete"
        saved = await execution_log.list(workflow_id="wf-1")
        assert len(saved) == 1
        assert saved[0].status == ExecutionStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_closed_stream_saves_cancelled_record(
        self, service, workflow_source, execution_log
    ):
        """A stream closed mid-run is finalized as failed and still stored."""
        workflow_source.add(hook_workflow("wf-1", "orders"))

        stream = service.stream_workflow("wf-1")
        first = await stream.__anext__()
        await stream.aclose()

        assert first.type == "start"
        assert len(execution_log) == 1
        saved = await execution_log.get(first.execution_id)
        assert saved.status == ExecutionStatus.FAILED
        assert saved.error_message == "Execution cancelled"
        assert saved.duration_ms is not None

    @pytest.mark.asyncio
    async def test_stream_closed_after_completion(
        self, service, workflow_source, execution_log
    ):
        """Closing after the last event keeps the successful record."""
        workflow_source.add(hook_workflow("wf-1", "orders"))

        stream = service.stream_workflow("wf-1")
        async for event in stream:
            if event.type == "complete":
                break
        await stream.aclose()

        saved = await execution_log.list(workflow_id="wf-1")
        assert [r.status for r in saved] == [ExecutionStatus.SUCCESS]


def schedule_workflow(workflow_id: str, active: bool = True) -> dict:
    return {
        "id": workflow_id,
        "name": workflow_id,
        "active": active,
        "nodes": [
            {
                "id": "timer",
                "type": "schedule",
                "data": {"config": {"interval": "hours", "intervalValue": 1, "timezone": "UTC"}},
            },
            {"id": "after", "type": "noop"},
        ],
        "edges": [{"source": "timer", "target": "after"}],
    }


class TestScheduledRuns:
    """Tests for schedule-triggered runs."""

    @pytest.mark.asyncio
    async def test_due_workflows_run_once_per_interval(
        self, service, workflow_source, execution_log
    ):
        """A workflow runs when due and waits for the next interval."""
        workflow_source.add(schedule_workflow("wf-timer"))
        workflow_source.add(schedule_workflow("wf-off", active=False))
        workflow_source.add(hook_workflow("wf-hook", "orders"))
        start = datetime(2025, 3, 10, 9, 0, tzinfo=timezone.utc)

        first = await service.trigger_schedules(start)
        too_soon = await service.trigger_schedules(start + timedelta(minutes=30))
        next_hour = await service.trigger_schedules(start + timedelta(hours=1))

        assert [s["workflow_id"] for s in first] == ["wf-timer"]
        assert too_soon == []
        assert [s["workflow_id"] for s in next_hour] == ["wf-timer"]
        assert len(execution_log) == 2

    @pytest.mark.asyncio
    async def test_schedule_event_feeds_workflow(self, service, workflow_source):
        """Downstream nodes see the schedule details."""
        workflow_source.add(schedule_workflow("wf-timer"))
        now = datetime(2025, 3, 10, 9, 0, tzinfo=timezone.utc)

        summary = (await service.trigger_schedules(now))[0]
        record = await service.sink.get(summary["execution_id"])

        assert record.input_data["url"] == "/schedule"
        assert record.output_data["triggerType"] == "schedule"
        assert record.output_data["triggeredAt"] == "2025-03-10T09:00:00+00:00"


class TestResume:
    """Tests for resuming stored executions."""

    @pytest.mark.asyncio
    async def test_resume_reruns_failed_node(
        self, service, workflow_source, execution_log, make_runner, fake_runner
    ):
        """The errored node runs again and both records are stored linked."""
        workflow_source.add(hook_workflow("wf-1", "orders"))
        service.orchestrator.code_runner = make_runner(stdout="")
        failed = await service.run_workflow("wf-1", TriggerEvent(body={"x": 1}))
        assert failed.error_node == "code"

        service.orchestrator.code_runner = fake_runner
        resumed = await service.resume_execution(failed.id)

        assert resumed.output_data == {"ok": True}
        assert resumed.error_node is None
        assert resumed.node_results["hook"].output == failed.node_results["hook"].output
        stored = await execution_log.get(failed.id)
        assert stored.resumed_to_execution_id == resumed.id
        assert (await execution_log.get(resumed.id)).resumed_from_execution_id == failed.id

    @pytest.mark.asyncio
    async def test_resume_unknown_execution(self, service):
        with pytest.raises(ExecutionNotFoundError):
            await service.resume_execution("missing")

    @pytest.mark.asyncio
    async def test_resume_deleted_workflow(self, service, execution_log):
        """Executions whose workflow is gone cannot be resumed."""
        record = ExecutionRecord(workflow_id="gone")
        record.mark_failed("boom")
        await execution_log.save(record)

        with pytest.raises(WorkflowNotFoundError):
            await service.resume_execution(record.id)
