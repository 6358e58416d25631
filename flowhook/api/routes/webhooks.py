"""Webhook endpoints.

``/webhook/{path}`` runs every active workflow whose trigger listens on
the path; ``/webhook-test/{path}`` only feeds test-listen sessions.
"""

from typing import Any

import structlog
from fastapi import APIRouter, HTTPException, status

from flowhook.api.deps import ExecutionServiceDep, ServicesDep, TestListenersDep, TriggerEventDep
from flowhook.services.execution_service import WebhookAuthError, WebhookNotFoundError

logger = structlog.get_logger()

router = APIRouter()

WEBHOOK_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE"]


@router.api_route("/webhook/{path:path}", methods=WEBHOOK_METHODS)
async def handle_webhook(
    path: str,
    event: TriggerEventDep,
    service: ExecutionServiceDep,
) -> dict[str, Any]:
    """Run the workflows listening on a webhook path.

    Args:
        path: Webhook path configured on the trigger node
        event: Inbound request
        service: Execution service

    Returns:
        Per-workflow run status with per-node status
    """
    try:
        summaries = await service.trigger_webhook(path, event)
    except WebhookNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except WebhookAuthError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e)) from e

    return {
        "message": "Webhook processed successfully",
        "processed_workflows": summaries,
    }


@router.api_route("/webhook-test/{path:path}", methods=WEBHOOK_METHODS)
async def handle_test_webhook(
    path: str,
    event: TriggerEventDep,
    listeners: TestListenersDep,
    services: ServicesDep,
) -> dict[str, Any]:
    """Capture a request for a listening test session."""
    if not await listeners.capture(path, event, services.credentials):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No active test listener for this path",
        )
    return {"message": "Test webhook received", "test_mode": True}
