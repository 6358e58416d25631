"""Tests for webhook and test-listen endpoints."""

import pytest
from httpx import AsyncClient

from flowhook.services.workflow_service import InMemoryWorkflowSource


def order_workflow(workflow_id: str = "wf-orders", **trigger_config) -> dict:
    return {
        "id": workflow_id,
        "name": "Orders",
        "nodes": [
            {
                "id": "hook",
                "type": "webhook",
                "data": {"config": {"path": "orders", **trigger_config}, "customName": "Webhook"},
            },
            {
                "id": "check",
                "type": "if",
                "data": {
                    "config": {
                        "conditions": [
                            {
                                "value1": "{{body.amount}}",
                                "operator": "gt",
                                "value2": "100",
                                "dataType": "number",
                            }
                        ]
                    }
                },
            },
            {"id": "high", "type": "noop"},
            {"id": "low", "type": "noop"},
        ],
        "edges": [
            {"source": "hook", "target": "check"},
            {"source": "check", "target": "high", "sourceHandle": "true"},
            {"source": "check", "target": "low", "sourceHandle": "false"},
        ],
    }


class TestWebhookEndpoint:
    """Tests for /webhook/{path}."""

    @pytest.mark.asyncio
    async def test_webhook_runs_workflow(
        self,
        client: AsyncClient,
        workflow_source: InMemoryWorkflowSource,
    ):
        """A POST runs the listening workflow and reports per-node status."""
        workflow_source.add(order_workflow())

        response = await client.post("/webhook/orders", json={"amount": 150})

        assert response.status_code == 200
        data = response.json()
        assert data["message"] == "Webhook processed successfully"
        summary = data["processed_workflows"][0]
        assert summary["workflow_id"] == "wf-orders"
        assert summary["status"] == "success"
        assert summary["nodes"] == {"hook": "success", "check": "success", "high": "success"}
        assert summary["skipped_nodes"] == ["low"]

    @pytest.mark.asyncio
    async def test_webhook_get_with_query(
        self,
        client: AsyncClient,
        workflow_source: InMemoryWorkflowSource,
    ):
        """GET requests are accepted; the body is empty."""
        workflow_source.add(order_workflow())

        response = await client.get("/webhook/orders", params={"amount": "5"})

        assert response.status_code == 200
        assert response.json()["processed_workflows"][0]["skipped_nodes"] == ["high"]

    @pytest.mark.asyncio
    async def test_unknown_path(self, client: AsyncClient):
        response = await client.post("/webhook/nowhere", json={})

        assert response.status_code == 404
        assert response.json()["detail"] == "Webhook not found or workflow is inactive"

    @pytest.mark.asyncio
    async def test_inactive_workflow(
        self,
        client: AsyncClient,
        workflow_source: InMemoryWorkflowSource,
    ):
        workflow_source.add({**order_workflow(), "active": False})

        response = await client.post("/webhook/orders", json={})

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_unauthorized(
        self,
        client: AsyncClient,
        workflow_source: InMemoryWorkflowSource,
    ):
        """A wrong bearer token is rejected with 401."""
        workflow_source.add(order_workflow(auth="header", credentialId="bearer-1"))

        rejected = await client.post(
            "/webhook/orders", json={}, headers={"Authorization": "Bearer wrong"}
        )
        accepted = await client.post(
            "/webhook/orders", json={}, headers={"Authorization": "Bearer secret-token"}
        )

        assert rejected.status_code == 401
        assert rejected.json()["detail"] == "Unauthorized: Invalid authentication credentials"
        assert accepted.status_code == 200

    @pytest.mark.asyncio
    async def test_form_body(
        self,
        client: AsyncClient,
        workflow_source: InMemoryWorkflowSource,
    ):
        """Form posts become a dict of fields."""
        workflow_source.add(order_workflow())

        await client.post("/webhook/orders", data={"amount": "300"})
        executions = (await client.get("/api/v1/executions")).json()
        record = (await client.get(f"/api/v1/executions/{executions[0]['execution_id']}")).json()

        assert record["input_data"]["body"] == {"amount": "300"}
        assert record["execution_order"] == ["hook", "check", "high"]


class TestTestListen:
    """Tests for the test-listen flow."""

    @pytest.mark.asyncio
    async def test_capture_flow(self, client: AsyncClient):
        """Start, capture, poll, stop."""
        started = await client.post(
            "/api/v1/workflows/wf-1/test-listen", json={"path": "orders", "method": "POST"}
        )
        test_run_id = started.json()["test_run_id"]

        polled = await client.get(f"/api/v1/workflows/wf-1/test-listen/{test_run_id}")
        assert polled.json()["status"] == "listening"

        captured = await client.post("/webhook-test/orders", json={"amount": 1})
        assert captured.status_code == 200
        assert captured.json() == {"message": "Test webhook received", "test_mode": True}

        polled = await client.get(f"/api/v1/workflows/wf-1/test-listen/{test_run_id}")
        assert polled.json()["status"] == "received"
        assert polled.json()["data"]["body"] == {"amount": 1}

        stopped = await client.delete(f"/api/v1/workflows/wf-1/test-listen/{test_run_id}")
        assert stopped.json() == {"message": "Stopped listening"}
        polled = await client.get(f"/api/v1/workflows/wf-1/test-listen/{test_run_id}")
        assert polled.json()["status"] == "stopped"

    @pytest.mark.asyncio
    async def test_no_listener(self, client: AsyncClient):
        response = await client.post("/webhook-test/orders", json={})

        assert response.status_code == 404
        assert response.json()["detail"] == "No active test listener for this path"

    @pytest.mark.asyncio
    async def test_unknown_session(self, client: AsyncClient):
        response = await client.get("/api/v1/workflows/wf-1/test-listen/test_nope")

        assert response.status_code == 404
        assert response.json()["status"] == "not_found"

    @pytest.mark.asyncio
    async def test_session_of_another_workflow(self, client: AsyncClient):
        """Polling or stopping through another workflow's URL is not found."""
        started = await client.post("/api/v1/workflows/wf-1/test-listen", json={"path": "orders"})
        test_run_id = started.json()["test_run_id"]

        polled = await client.get(f"/api/v1/workflows/wf-2/test-listen/{test_run_id}")
        stopped = await client.delete(f"/api/v1/workflows/wf-2/test-listen/{test_run_id}")
        own = await client.get(f"/api/v1/workflows/wf-1/test-listen/{test_run_id}")

        assert polled.status_code == 404
        assert polled.json()["status"] == "not_found"
        assert stopped.status_code == 404
        assert own.json()["status"] == "listening"

    @pytest.mark.asyncio
    async def test_listener_auth(self, client: AsyncClient):
        """Test captures honour the trigger's API key."""
        await client.post(
            "/api/v1/workflows/wf-1/test-listen",
            json={
                "path": "secure",
                "auth": "header",
                "authType": "apiKey",
                "authConfig": {"apiKeyName": "X-Key", "apiKeyValue": "k1"},
            },
        )

        rejected = await client.post("/webhook-test/secure", headers={"X-Key": "bad"})
        accepted = await client.post("/webhook-test/secure", headers={"X-Key": "k1"})

        assert rejected.status_code == 404
        assert accepted.status_code == 200
