"""API route handlers."""

from flowhook.api.routes.executions import router as executions_router
from flowhook.api.routes.nodes import router as nodes_router
from flowhook.api.routes.webhooks import router as webhooks_router
from flowhook.api.routes.workflows import router as workflows_router

__all__ = [
    "executions_router",
    "nodes_router",
    "webhooks_router",
    "workflows_router",
]
