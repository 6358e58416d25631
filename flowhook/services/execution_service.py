"""Execution service.

Wires the workflow source, the orchestrator and the execution sink
together: webhook-triggered runs, manual runs and streamed runs all end
with the finalized record handed to the sink.
"""

import asyncio
from collections import OrderedDict
from contextlib import aclosing
from datetime import datetime
from typing import AsyncGenerator, Protocol

import structlog

from flowhook.config import get_settings
from flowhook.core.orchestrator import WorkflowOrchestrator
from flowhook.models.execution import (
    ExecutionEvent,
    ExecutionRecord,
    ExecutionStatus,
    TriggerEvent,
    utc_now,
)
from flowhook.models.workflow import WorkflowDefinition
from flowhook.nodes.schedule import is_due, schedule_event
from flowhook.services.credential_service import CredentialLookup
from flowhook.services.webhook_auth import auth_required, validate_webhook_auth
from flowhook.services.workflow_service import WorkflowNotFoundError, WorkflowSource

logger = structlog.get_logger()

CANCELLED_MESSAGE = "Execution cancelled"


class ExecutionServiceError(Exception):
    """Error in execution service operations."""

    def __init__(self, message: str, error_code: str = "EXECUTION_SERVICE_ERROR") -> None:
        super().__init__(message)
        self.error_code = error_code


class ExecutionNotFoundError(ExecutionServiceError):
    """Execution not found."""

    def __init__(self, execution_id: str) -> None:
        super().__init__(f"Execution '{execution_id}' not found", "EXECUTION_NOT_FOUND")


class WebhookNotFoundError(ExecutionServiceError):
    """No active workflow listens on the webhook path."""

    def __init__(self, path: str) -> None:
        super().__init__("Webhook not found or workflow is inactive", "WEBHOOK_NOT_FOUND")
        self.path = path


class WebhookAuthError(ExecutionServiceError):
    """Webhook request failed the trigger's authentication."""

    def __init__(self, workflow_id: str) -> None:
        super().__init__(
            "Unauthorized: Invalid authentication credentials", "WEBHOOK_UNAUTHORIZED"
        )
        self.workflow_id = workflow_id


class ExecutionSink(Protocol):
    """Receives finalized execution records and reads them back."""

    async def save(self, record: ExecutionRecord) -> None:
        """Persist a record."""
        ...

    async def get(self, execution_id: str) -> ExecutionRecord:
        """Get a record by id.

        Raises:
            ExecutionNotFoundError: If the record is unknown
        """
        ...


class InMemoryExecutionLog:
    """Bounded execution history, newest first.

    Example usage:
        log = InMemoryExecutionLog(max_size=100)
        await log.save(record)
        recent = await log.list(workflow_id="wf-1", limit=10)
    """

    def __init__(self, max_size: int | None = None) -> None:
        """Initialize an empty log.

        Args:
            max_size: Records kept before the oldest are evicted
        """
        self.max_size = max_size or get_settings().execution_log_size
        self._records: OrderedDict[str, ExecutionRecord] = OrderedDict()

    async def save(self, record: ExecutionRecord) -> None:
        """Store a record, evicting the oldest beyond ``max_size``."""
        self._records[record.id] = record
        self._records.move_to_end(record.id)
        while len(self._records) > self.max_size:
            self._records.popitem(last=False)

    async def get(self, execution_id: str) -> ExecutionRecord:
        """Get a record by id.

        Raises:
            ExecutionNotFoundError: If the record is unknown or evicted
        """
        record = self._records.get(execution_id)
        if record is None:
            raise ExecutionNotFoundError(execution_id)
        return record

    async def list(
        self,
        workflow_id: str | None = None,
        status: ExecutionStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[ExecutionRecord]:
        """List records, newest first."""
        records = [
            record
            for record in reversed(self._records.values())
            if (workflow_id is None or record.workflow_id == workflow_id)
            and (status is None or record.status == status)
        ]
        return records[offset : offset + limit]

    def __len__(self) -> int:
        return len(self._records)


class ExecutionService:
    """Service for running workflows.

    Handles:
    - Webhook-triggered runs of every matching active workflow
    - Manual runs by workflow id
    - Streaming runs as execution events
    - Scheduled runs of workflows whose schedule trigger is due
    - Resuming failed runs from a node

    Example usage:
        service = ExecutionService(source, WorkflowOrchestrator(credentials=store), log)
        summaries = await service.trigger_webhook("orders", event)
    """

    def __init__(
        self,
        source: WorkflowSource,
        orchestrator: WorkflowOrchestrator | None = None,
        sink: ExecutionSink | None = None,
    ) -> None:
        """Initialize execution service.

        Args:
            source: Workflow definitions
            orchestrator: Run orchestrator (default: built-in nodes, no credentials)
            sink: Receives finalized records
        """
        self.source = source
        self.orchestrator = orchestrator or WorkflowOrchestrator()
        self.sink = sink
        # Start time of the last scheduled run per workflow id
        self._last_scheduled: dict[str, datetime] = {}

    @property
    def credentials(self) -> CredentialLookup | None:
        """Credential lookup shared with the orchestrator."""
        return self.orchestrator.credentials

    async def _save(self, record: ExecutionRecord) -> None:
        if self.sink is not None:
            await self.sink.save(record)

    async def _authenticate(self, workflow: WorkflowDefinition, event: TriggerEvent) -> None:
        for node in workflow.trigger_nodes(self.orchestrator.registry):
            if auth_required(node.config) and not await validate_webhook_auth(
                event, node.config, self.credentials
            ):
                logger.warning(
                    "webhook_auth_failed",
                    workflow_id=workflow.id,
                    node_id=node.id,
                    auth_type=node.config.get("authType") or "bearer",
                )
                raise WebhookAuthError(workflow.id)

    async def trigger_webhook(self, path: str, event: TriggerEvent) -> list[dict]:
        """Run every active workflow listening on ``path``.

        Every matching workflow is authenticated before any of them runs.

        Returns:
            One record summary per workflow run

        Raises:
            WebhookNotFoundError: If no active workflow listens on the path
            WebhookAuthError: If a workflow rejects the request's credentials
        """
        workflows = await self.source.find_by_webhook_path(path)
        if not workflows:
            logger.info("webhook_not_found", path=path)
            raise WebhookNotFoundError(path)

        for workflow in workflows:
            await self._authenticate(workflow, event)

        summaries = []
        for workflow in workflows:
            logger.info(
                "webhook_triggered",
                workflow_id=workflow.id,
                path=path,
                method=event.method,
            )
            record = await self.orchestrator.run(workflow, event)
            await self._save(record)
            summaries.append(record.summary())
        return summaries

    async def trigger_schedules(self, now: datetime | None = None) -> list[dict]:
        """Run every active workflow whose schedule trigger is due.

        A workflow runs at most once per call, even with several due
        schedule nodes.

        Args:
            now: Time of the check (default: now)

        Returns:
            One record summary per workflow run
        """
        now = now or utc_now()
        summaries = []
        for workflow in await self.source.list_active():
            last_run = self._last_scheduled.get(workflow.id)
            due = next(
                (
                    node
                    for node in workflow.schedule_nodes(self.orchestrator.registry)
                    if is_due(node.config, last_run, now)
                ),
                None,
            )
            if due is None:
                continue

            logger.info("schedule_triggered", workflow_id=workflow.id, node_id=due.id)
            self._last_scheduled[workflow.id] = now
            record = await self.orchestrator.run(workflow, schedule_event(due.config, now))
            await self._save(record)
            summaries.append(record.summary())
        return summaries

    async def run_workflow(
        self,
        workflow_id: str,
        event: TriggerEvent | None = None,
    ) -> ExecutionRecord:
        """Run a workflow by id.

        Raises:
            WorkflowNotFoundError: If the workflow doesn't exist
        """
        workflow = await self.source.get(workflow_id)
        record = await self.orchestrator.run(workflow, event)
        await self._save(record)
        return record

    async def resume_execution(
        self,
        execution_id: str,
        start_node_id: str | None = None,
    ) -> ExecutionRecord:
        """Resume a failed execution from a node of its workflow.

        Both the resumed record (now linked to the new run) and the new
        record are saved.

        Raises:
            ExecutionNotFoundError: If the execution is unknown
            WorkflowNotFoundError: If its workflow no longer exists
            ResumeError: If the execution cannot be resumed from that node
        """
        if self.sink is None:
            raise ExecutionNotFoundError(execution_id)
        source = await self.sink.get(execution_id)
        if source.workflow_id is None:
            raise WorkflowNotFoundError(str(source.workflow_id))
        workflow = await self.source.get(source.workflow_id)

        record = await self.orchestrator.resume(workflow, source, start_node_id)
        await self._save(source)
        await self._save(record)
        return record

    async def stream_workflow(
        self,
        workflow_id: str,
        event: TriggerEvent | None = None,
    ) -> AsyncGenerator[ExecutionEvent, None]:
        """Run a workflow by id, yielding execution events.

        The record is saved once the run ends. A stream closed or
        cancelled before the run ends leaves the record failed with
        "Execution cancelled", and it is still saved.

        Raises:
            WorkflowNotFoundError: If the workflow doesn't exist
        """
        workflow = await self.source.get(workflow_id)
        event = event or TriggerEvent()
        record = ExecutionRecord(workflow_id=workflow.id, input_data=event.to_dict())
        try:
            async with aclosing(
                self.orchestrator.execute(workflow, event, record=record)
            ) as events:
                async for execution_event in events:
                    yield execution_event
        finally:
            if not record.is_finished:
                logger.warning(
                    "execution_stream_abandoned",
                    execution_id=record.id,
                    workflow_id=workflow.id,
                    nodes=len(record.execution_order),
                )
                record.mark_failed(CANCELLED_MESSAGE)
            await self._save(record)


async def poll_schedules(service: ExecutionService, interval: float) -> None:
    """Check schedule triggers every ``interval`` seconds until cancelled."""
    logger.info("schedule_poller_started", interval=interval)
    while True:
        try:
            await service.trigger_schedules()
        except Exception:
            logger.exception("schedule_check_failed")
        await asyncio.sleep(interval)
