"""Tests for run, execution history, node catalog and health endpoints."""

import json

import pytest
from httpx import AsyncClient

from flowhook.services.workflow_service import InMemoryWorkflowSource

ESCAPE_WORKFLOW = {
    "id": "wf-escape",
    "name": "Escape",
    "nodes": [
        {"id": "hook", "type": "webhook", "data": {"config": {"path": "escape"}}},
        {
            "id": "set",
            "type": "escape",
            "data": {"config": {"fields": [{"name": "note", "value": "{{body.text}}"}]}},
        },
    ],
    "edges": [{"source": "hook", "target": "set"}],
}


class TestRunEndpoints:
    """Tests for manual and streamed runs."""

    @pytest.mark.asyncio
    async def test_run_returns_record(
        self,
        client: AsyncClient,
        workflow_source: InMemoryWorkflowSource,
    ):
        """The full record comes back."""
        workflow_source.add(ESCAPE_WORKFLOW)

        response = await client.post(
            "/api/v1/workflows/wf-escape/run", json={"body": {"text": 'a "quote"'}}
        )

        assert response.status_code == 200
        record = response.json()
        assert record["status"] == "success"
        assert record["execution_order"] == ["hook", "set"]
        assert record["output_data"] == {"note": 'a \\"quote\\"'}
        assert record["input_data"]["url"] == "/api/v1/workflows/wf-escape/run"

    @pytest.mark.asyncio
    async def test_run_without_body(
        self,
        client: AsyncClient,
        workflow_source: InMemoryWorkflowSource,
    ):
        workflow_source.add(ESCAPE_WORKFLOW)

        response = await client.post("/api/v1/workflows/wf-escape/run")

        assert response.status_code == 200
        assert response.json()["input_data"]["body"] == {}

    @pytest.mark.asyncio
    async def test_run_unknown_workflow(self, client: AsyncClient):
        response = await client.post("/api/v1/workflows/missing/run", json={})

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_stream_events(
        self,
        client: AsyncClient,
        workflow_source: InMemoryWorkflowSource,
    ):
        """The stream carries start, step and complete events."""
        workflow_source.add(ESCAPE_WORKFLOW)

        response = await client.post(
            "/api/v1/workflows/wf-escape/run/stream", json={"body": {"text": "hi"}}
        )

        assert response.status_code == 200
        events = [
            line.split(":", 1)[1].strip()
            for line in response.text.splitlines()
            if line.startswith("event:")
        ]
        assert events == ["start", "step", "step", "complete"]
        data = [
            json.loads(line.split(":", 1)[1])
            for line in response.text.splitlines()
            if line.startswith("data:")
        ]
        assert data[-1]["data"]["summary"]["status"] == "success"

    @pytest.mark.asyncio
    async def test_stream_unknown_workflow(self, client: AsyncClient):
        response = await client.post("/api/v1/workflows/missing/run/stream", json={})

        assert response.status_code == 404


class TestExecutionEndpoints:
    """Tests for execution history."""

    @pytest.mark.asyncio
    async def test_list_and_get(
        self,
        client: AsyncClient,
        workflow_source: InMemoryWorkflowSource,
    ):
        workflow_source.add(ESCAPE_WORKFLOW)
        run = (await client.post("/api/v1/workflows/wf-escape/run", json={})).json()

        listed = await client.get("/api/v1/executions", params={"workflow_id": "wf-escape"})
        fetched = await client.get(f"/api/v1/executions/{run['id']}")

        assert [s["execution_id"] for s in listed.json()] == [run["id"]]
        assert fetched.json()["node_results"]["set"]["status"] == "success"

    @pytest.mark.asyncio
    async def test_status_filter(
        self,
        client: AsyncClient,
        workflow_source: InMemoryWorkflowSource,
    ):
        workflow_source.add(ESCAPE_WORKFLOW)
        await client.post("/api/v1/workflows/wf-escape/run", json={})

        response = await client.get("/api/v1/executions", params={"status": "failed"})

        assert response.json() == []

    @pytest.mark.asyncio
    async def test_unknown_execution(self, client: AsyncClient):
        response = await client.get("/api/v1/executions/nope")

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_limit_bounds(self, client: AsyncClient):
        response = await client.get("/api/v1/executions", params={"limit": 0})

        assert response.status_code == 422


BROKEN_WORKFLOW = {
    "id": "wf-broken",
    "name": "Broken",
    "nodes": [
        {"id": "hook", "type": "webhook", "data": {"config": {"path": "broken"}}},
        {"id": "set", "type": "escape", "data": {"config": {"fields": []}}},
    ],
    "edges": [{"source": "hook", "target": "set"}],
}


class TestResumeEndpoint:
    """Tests for resuming executions."""

    @pytest.mark.asyncio
    async def test_resume_failed_execution(
        self,
        client: AsyncClient,
        workflow_source: InMemoryWorkflowSource,
    ):
        """A new linked run starts from the errored node; a second resume conflicts."""
        workflow_source.add(BROKEN_WORKFLOW)
        failed = (await client.post("/api/v1/workflows/wf-broken/run", json={})).json()
        assert failed["error_node"] == "set"

        response = await client.post(f"/api/v1/executions/{failed['id']}/resume")
        again = await client.post(f"/api/v1/executions/{failed['id']}/resume")

        assert response.status_code == 200
        resumed = response.json()
        assert resumed["resumed_from_execution_id"] == failed["id"]
        assert resumed["execution_order"] == ["hook", "set"]
        source = (await client.get(f"/api/v1/executions/{failed['id']}")).json()
        assert source["resumed_to_execution_id"] == resumed["id"]
        assert again.status_code == 409

    @pytest.mark.asyncio
    async def test_resume_unknown_start_node(
        self,
        client: AsyncClient,
        workflow_source: InMemoryWorkflowSource,
    ):
        workflow_source.add(BROKEN_WORKFLOW)
        failed = (await client.post("/api/v1/workflows/wf-broken/run", json={})).json()

        response = await client.post(
            f"/api/v1/executions/{failed['id']}/resume", json={"startNodeId": "nope"}
        )

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_resume_successful_execution(
        self,
        client: AsyncClient,
        workflow_source: InMemoryWorkflowSource,
    ):
        """Runs without errors cannot be resumed."""
        workflow_source.add(ESCAPE_WORKFLOW)
        run = (await client.post("/api/v1/workflows/wf-escape/run", json={})).json()

        response = await client.post(f"/api/v1/executions/{run['id']}/resume")

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_resume_unknown_execution(self, client: AsyncClient):
        response = await client.post("/api/v1/executions/nope/resume")

        assert response.status_code == 404


class TestNodeEndpoints:
    """Tests for the node catalog and single-node tests."""

    @pytest.mark.asyncio
    async def test_list_nodes(self, client: AsyncClient):
        response = await client.get("/api/v1/nodes")

        data = response.json()
        assert data["total"] == 13
        assert [n["name"] for n in data["categories"]["code"]] == ["codeRun"]
        assert {n["name"] for n in data["categories"]["trigger"]} == {"trigger", "schedule"}

    @pytest.mark.asyncio
    async def test_node_test(self, client: AsyncClient):
        """Named references resolve from earlier node outputs."""
        response = await client.post(
            "/api/v1/nodes/test",
            json={
                "nodeType": "escape",
                "nodeId": "e",
                "config": {"fields": [{"name": "total", "value": "{{Pricing.total}}"}]},
                "nodes": [
                    {"id": "p", "type": "noop", "data": {"customName": "Pricing"}},
                    {"id": "e", "type": "escape"},
                ],
                "edges": [{"source": "p", "target": "e"}],
                "nodeOutputs": {"p": {"total": 9.5}},
            },
        )

        assert response.status_code == 200
        assert response.json()["output"] == {"total": "9.5"}

    @pytest.mark.asyncio
    async def test_node_test_bad_graph(self, client: AsyncClient):
        response = await client.post(
            "/api/v1/nodes/test",
            json={"nodeType": "noop", "nodes": [{"type": "noop"}]},
        )

        assert response.status_code == 422


class TestHealth:
    @pytest.mark.asyncio
    async def test_health(self, client: AsyncClient):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
