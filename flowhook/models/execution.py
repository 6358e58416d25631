"""Execution record model.

Tracks one workflow run: status transitions, per-node input/output,
execution order, timing and error information. The orchestrator owns the
record during the run and hands it to the persistence collaborator when
it is finalized.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field


def utc_now() -> datetime:
    """Get current UTC time with timezone info."""
    return datetime.now(timezone.utc)


class ExecutionError(Exception):
    """Base exception for execution errors."""

    def __init__(self, message: str, error_code: str = "EXECUTION_ERROR") -> None:
        super().__init__(message)
        self.error_code = error_code


class ExecutionStatus(str, Enum):
    """Execution lifecycle status."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


class NodeResultStatus(str, Enum):
    """Outcome of one attempted node."""

    SUCCESS = "success"
    ERROR = "error"


def is_error_output(output: Any) -> bool:
    """Check whether a node output is an error record."""
    return isinstance(output, dict) and "error" in output and bool(output["error"])


@dataclass
class TriggerEvent:
    """Inbound request that started the run."""

    method: str = "POST"
    url: str = "/"
    headers: dict[str, Any] = field(default_factory=dict)
    query: dict[str, Any] = field(default_factory=dict)
    body: Any = field(default_factory=dict)

    def header(self, name: str, default: str = "") -> str:
        """Get a header value by case-insensitive name (first value of lists)."""
        wanted = name.lower()
        for key, value in self.headers.items():
            if key.lower() == wanted:
                if isinstance(value, list):
                    return str(value[0]) if value else default
                return str(value)
        return default

    def input(self, name: str, default: Any = "") -> Any:
        """Get a field from the body, falling back to the query string."""
        if isinstance(self.body, dict) and name in self.body:
            return self.body[name]
        return self.query.get(name, default)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for storage."""
        return {
            "method": self.method,
            "url": self.url,
            "headers": self.headers,
            "query": self.query,
            "body": self.body,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "TriggerEvent":
        """Create from dictionary."""
        data = data or {}
        return cls(
            method=str(data.get("method", "POST")).upper(),
            url=data.get("url", "/"),
            headers=dict(data.get("headers") or {}),
            query=dict(data.get("query") or {}),
            body=data.get("body") if data.get("body") is not None else {},
        )


class NodeResult(BaseModel):
    """Recorded input and output of one attempted node."""

    input: list[Any] = Field(default_factory=list)
    output: Any = None
    order: int
    status: NodeResultStatus = NodeResultStatus.SUCCESS
    error_message: str | None = None


class ExecutionRecord(BaseModel):
    """Structured, replayable trace of one workflow run.

    Created at run start, mutated only by the orchestrator and finalized
    exactly once.
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    workflow_id: str | None = None
    status: ExecutionStatus = ExecutionStatus.PENDING
    input_data: dict[str, Any] = Field(default_factory=dict)
    output_data: Any = None
    node_results: dict[str, NodeResult] = Field(default_factory=dict)
    execution_order: list[str] = Field(default_factory=list)
    skipped_nodes: list[str] = Field(default_factory=list)
    error_node: str | None = None
    error_message: str | None = None
    started_at: datetime = Field(default_factory=utc_now)
    finished_at: datetime | None = None
    duration_ms: int | None = None
    resumed_from_execution_id: str | None = None
    resumed_to_execution_id: str | None = None

    @property
    def is_finished(self) -> bool:
        """Whether the record reached a terminal status."""
        return self.status in (ExecutionStatus.SUCCESS, ExecutionStatus.FAILED)

    @property
    def is_resumable(self) -> bool:
        """Whether the run ended failed or with a failed node."""
        return self.status == ExecutionStatus.FAILED or (
            self.status == ExecutionStatus.SUCCESS and self.error_node is not None
        )

    @property
    def failed_nodes(self) -> list[str]:
        """Ids of attempted nodes whose output is an error record."""
        return [
            node_id
            for node_id, result in self.node_results.items()
            if result.status == NodeResultStatus.ERROR
        ]

    def mark_running(self) -> None:
        """Mark execution as running."""
        self._ensure_open()
        self.status = ExecutionStatus.RUNNING
        self.started_at = utc_now()

    def record_node(self, node_id: str, inputs: list[Any], output: Any) -> NodeResult:
        """Store the input and output of an attempted node."""
        self._ensure_open()
        failed = is_error_output(output)
        result = NodeResult(
            input=inputs,
            output=output,
            order=len(self.execution_order),
            status=NodeResultStatus.ERROR if failed else NodeResultStatus.SUCCESS,
            error_message=_error_text(output) if failed else None,
        )
        self.node_results[node_id] = result
        self.execution_order.append(node_id)
        self.output_data = output
        if failed and self.error_node is None:
            self.error_node = node_id
        return result

    def record_skipped(self, node_id: str) -> None:
        """Remember a node that branch pruning kept from running."""
        self._ensure_open()
        self.skipped_nodes.append(node_id)

    def mark_success(self) -> None:
        """Mark execution as successful."""
        self._finalize(ExecutionStatus.SUCCESS)

    def mark_failed(self, error: str) -> None:
        """Mark execution as failed with a run-level error message."""
        self._finalize(ExecutionStatus.FAILED)
        self.error_message = error

    def mark_resumed(self, execution_id: str) -> None:
        """Link a finished record to the run that resumed it."""
        if not self.is_finished:
            raise ExecutionError(
                f"Execution '{self.id}' is still {self.status.value}", "EXECUTION_NOT_FINISHED"
            )
        self.resumed_to_execution_id = execution_id

    def summary(self) -> dict[str, Any]:
        """Compact per-node status report for webhook callers."""
        return {
            "execution_id": self.id,
            "workflow_id": self.workflow_id,
            "status": self.status.value,
            "nodes": {
                node_id: result.status.value
                for node_id, result in self.node_results.items()
            },
            "failed_nodes": self.failed_nodes,
            "skipped_nodes": list(self.skipped_nodes),
            "duration_ms": self.duration_ms,
            "error_message": self.error_message,
        }

    def _finalize(self, status: ExecutionStatus) -> None:
        self._ensure_open()
        self.status = status
        self.finished_at = utc_now()
        delta = self.finished_at - self.started_at
        self.duration_ms = int(delta.total_seconds() * 1000)

    def _ensure_open(self) -> None:
        if self.is_finished:
            raise ExecutionError(
                f"Execution '{self.id}' is already {self.status.value}",
                "EXECUTION_FINALIZED",
            )


def _error_text(output: dict[str, Any]) -> str:
    message = output.get("message")
    return f"{output['error']}: {message}" if message else str(output["error"])


@dataclass
class ExecutionEvent:
    """Event emitted during workflow execution."""

    type: str  # 'start', 'step', 'complete', 'error'
    timestamp: datetime = field(default_factory=utc_now)
    data: dict[str, Any] = field(default_factory=dict)
    execution_id: str | None = None
    node_id: str | None = None
    step_number: int | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for SSE streaming."""
        return {
            "type": self.type,
            "timestamp": self.timestamp.isoformat(),
            "data": self.data,
            "execution_id": self.execution_id,
            "node_id": self.node_id,
            "step_number": self.step_number,
        }

    def to_sse(self) -> str:
        """Format as Server-Sent Event."""
        return f"data: {json.dumps(self.to_dict(), default=str)}\n\n"
