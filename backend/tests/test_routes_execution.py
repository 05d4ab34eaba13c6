"""Tests for workflow execution routes (app/routes/execution.py).

Covers:
- POST /api/declarative-workflows/{id}/execute
- POST /api/declarative-workflows/{id}/execute-stream (SSE framing)
- GET /api/declarative-workflows/{id}/executions
- SubWorkflow lookup through the database-backed resolver
"""

from __future__ import annotations

import json

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from app.repositories.execution_log import ExecutionLogRepository
from app.sse import KEEPALIVE, stream_execution
from workflow_designer.engine import DeclarativeWorkflowDefinition, WorkflowEngine

BASE = "/api/declarative-workflows"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _create(client: AsyncClient, payload: dict) -> str:
    resp = await client.post(BASE, json=payload)
    assert resp.status_code == 201, resp.text
    return resp.json()["id"]


def _echo_workflow(build, **extra):
    return build.workflow(
        [
            build.executor("echo", "SetTextVariable", variableName="reply", text="You said: {{ userInput }}"),
            build.executor("say", "SendActivity", message="{{ reply }}"),
        ],
        [build.edges("echo", "say")],
        **extra,
    )


def _parse_sse(body: str) -> list:
    frames = []
    for block in body.split("\n\n"):
        block = block.strip()
        if block.startswith("data: "):
            frames.append(json.loads(block[len("data: "):]))
    return frames


# ---------------------------------------------------------------------------
# POST /execute
# ---------------------------------------------------------------------------


class TestExecute:

    @pytest.mark.asyncio
    async def test_execute_returns_result(self, client: AsyncClient, build):
        workflow_id = await _create(client, _echo_workflow(build))

        resp = await client.post(f"{BASE}/{workflow_id}/execute", json={"input": "hello"})
        data = resp.json()

        assert resp.status_code == 200
        assert data["status"] == "Completed"
        assert data["workflowId"] == workflow_id
        assert data["output"] == "You said: hello"
        assert data["executedNodes"] == ["echo", "say"]
        assert data["variables"]["userInput"] == "hello"
        assert [s["executorId"] for s in data["steps"]] == ["echo", "say"]

    @pytest.mark.asyncio
    async def test_parameters_become_variables(self, client: AsyncClient, build):
        payload = build.workflow(
            [build.executor("calc", "SetVariable", variableName="total", value="=price * qty")],
            variables=[
                {"name": "price", "type": "number", "defaultValue": 0},
                {"name": "qty", "type": "number", "defaultValue": 1},
            ],
        )
        workflow_id = await _create(client, payload)

        resp = await client.post(
            f"{BASE}/{workflow_id}/execute", json={"parameters": {"price": 4, "qty": 3}},
        )
        assert resp.json()["output"] == 12

    @pytest.mark.asyncio
    async def test_execute_without_body(self, client: AsyncClient, build):
        workflow_id = await _create(client, build.workflow([
            build.executor("set", "SetVariable", variableName="x", value=1),
        ]))

        resp = await client.post(f"{BASE}/{workflow_id}/execute")
        assert resp.json()["status"] == "Completed"

    @pytest.mark.asyncio
    async def test_failed_run_is_reported(self, client: AsyncClient, build):
        workflow_id = await _create(client, build.workflow([
            build.executor("parse", "ParseValue", variableName="n", value="abc", valueType="number"),
        ]))

        data = (await client.post(f"{BASE}/{workflow_id}/execute")).json()
        assert data["status"] == "Failed"
        assert data["errorType"] == "EvaluationError"
        assert data["errorMessage"]

    @pytest.mark.asyncio
    async def test_not_found(self, client: AsyncClient):
        resp = await client.post(f"{BASE}/missing/execute")
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_invalid_graph_rejected(self, client: AsyncClient, build):
        workflow_id = await _create(client, build.workflow(
            [build.executor("a", "SendActivity", message="hi")],
            [build.edges("a", "ghost")],
        ))

        resp = await client.post(f"{BASE}/{workflow_id}/execute")
        detail = resp.json()["detail"]

        assert resp.status_code == 422
        assert detail["message"] == "Workflow validation failed"
        assert detail["errors"][0]["code"] == "UNKNOWN_EDGE_TARGET"

    @pytest.mark.asyncio
    async def test_sub_workflow_resolved_from_database(self, client: AsyncClient, build):
        await _create(client, build.workflow(
            [build.executor("double", "SetVariable", variableName="doubled", value="=n * 2")],
            id="child",
            name="Child",
        ))
        parent_id = await _create(client, build.workflow(
            [build.executor("sub", "SubWorkflow", workflowId="child", inputs={"n": 21})],
            name="Parent",
        ))

        data = (await client.post(f"{BASE}/{parent_id}/execute")).json()
        assert data["status"] == "Completed"
        assert data["output"] == 42


# ---------------------------------------------------------------------------
# POST /execute-stream
# ---------------------------------------------------------------------------


class TestExecuteStream:

    @pytest.mark.asyncio
    async def test_stream_frames(self, client: AsyncClient, build):
        workflow_id = await _create(client, _echo_workflow(build))

        resp = await client.post(f"{BASE}/{workflow_id}/execute-stream", json={"input": "hi"})

        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/event-stream")
        assert resp.headers["cache-control"] == "no-cache"

        frames = _parse_sse(resp.text)
        types = [f["type"] for f in frames]
        assert types[0] == "WorkflowStarted"
        assert types[-2] == "WorkflowCompleted"
        assert types[-1] == "ExecutionResult"
        assert "LogMessage" in types

        events = frames[:-1]
        assert [e["sequence"] for e in events] == list(range(1, len(events) + 1))
        assert frames[-1]["output"] == "You said: hi"
        assert frames[-1]["status"] == "Completed"

    @pytest.mark.asyncio
    async def test_stream_failure(self, client: AsyncClient, build):
        workflow_id = await _create(client, build.workflow([
            build.executor("parse", "ParseValue", variableName="n", value="abc", valueType="number"),
        ]))

        frames = _parse_sse((await client.post(f"{BASE}/{workflow_id}/execute-stream")).text)
        types = [f["type"] for f in frames]

        assert "NodeFailed" in types
        assert types[-2] == "WorkflowFailed"
        assert frames[-1]["status"] == "Failed"

    @pytest.mark.asyncio
    async def test_stream_invalid_graph(self, client: AsyncClient, build):
        workflow_id = await _create(client, build.workflow(
            [build.executor("a", "SendActivity", message="hi")],
            [build.edges("a", "ghost")],
        ))

        resp = await client.post(f"{BASE}/{workflow_id}/execute-stream")
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_stream_is_logged(self, client: AsyncClient, build):
        workflow_id = await _create(client, _echo_workflow(build))
        await client.post(f"{BASE}/{workflow_id}/execute-stream", json={"input": "logged"})

        logs = (await client.get(f"{BASE}/{workflow_id}/executions")).json()
        assert len(logs) == 1
        assert logs[0]["inputParameters"] == {"userInput": "logged"}


class TestStreamDisconnect:
    """A client leaving mid-stream cancels the run and still logs it."""

    @pytest.mark.asyncio
    async def test_disconnect_cancels_and_persists(self, test_session: AsyncSession, build):
        definition = DeclarativeWorkflowDefinition.from_dict(build.workflow(
            [build.executor("tick", "SetVariable", variableName="count", value="=count + 1")],
            [build.edges("tick", "tick")],
            variables=[{"name": "count", "type": "number", "defaultValue": 0}],
            id="wf-stream",
            maxIterations=100000,
        ))
        repo = ExecutionLogRepository(test_session)
        finished = []

        async def persist(result):
            finished.append(result)
            await repo.record(result, {})

        execution = WorkflowEngine(event_queue_size=2).execute(definition)
        frames = stream_execution(execution, on_finish=persist)
        first = await frames.__anext__()
        await frames.aclose()

        assert first != KEEPALIVE
        assert json.loads(first[len("data: "):])["type"] == "WorkflowStarted"
        assert [r.status.value for r in finished] == ["Cancelled"]
        logs = await repo.list_for_workflow("wf-stream")
        assert [log.status for log in logs] == ["Cancelled"]


# ---------------------------------------------------------------------------
# GET /executions
# ---------------------------------------------------------------------------


class TestExecutionLogs:

    @pytest.mark.asyncio
    async def test_logs_newest_first(self, client: AsyncClient, build):
        workflow_id = await _create(client, _echo_workflow(build))
        first = (await client.post(f"{BASE}/{workflow_id}/execute", json={"input": "one"})).json()
        second = (await client.post(f"{BASE}/{workflow_id}/execute", json={"input": "two"})).json()

        logs = (await client.get(f"{BASE}/{workflow_id}/executions")).json()

        assert [log["id"] for log in logs] == [second["runId"], first["runId"]]
        assert logs[0]["workflowId"] == workflow_id
        assert logs[0]["status"] == "Completed"
        assert logs[0]["output"] == "You said: two"
        assert logs[0]["durationMs"] is not None
        assert len(logs[0]["steps"]) == 2

    @pytest.mark.asyncio
    async def test_limit(self, client: AsyncClient, build):
        workflow_id = await _create(client, _echo_workflow(build))
        for text in ("a", "b", "c"):
            await client.post(f"{BASE}/{workflow_id}/execute", json={"input": text})

        logs = (await client.get(f"{BASE}/{workflow_id}/executions", params={"limit": 2})).json()
        assert len(logs) == 2

    @pytest.mark.asyncio
    async def test_failed_run_logged(self, client: AsyncClient, build):
        workflow_id = await _create(client, build.workflow([
            build.executor("parse", "ParseValue", variableName="n", value="abc", valueType="number"),
        ]))
        await client.post(f"{BASE}/{workflow_id}/execute")

        log = (await client.get(f"{BASE}/{workflow_id}/executions")).json()[0]
        assert log["status"] == "Failed"
        assert log["errorType"] == "EvaluationError"

    @pytest.mark.asyncio
    async def test_unknown_workflow(self, client: AsyncClient):
        resp = await client.get(f"{BASE}/missing/executions")
        assert resp.status_code == 404
