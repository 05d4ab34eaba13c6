"""Workflow execution and SSE streaming endpoints."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from workflow_designer.agents import ClaudeCliAgentInvoker, HttpToolInvoker
from workflow_designer.engine import GraphValidationError, WorkflowEngine
from workflow_designer.engine.executor import ExecutionRun
from workflow_designer.engine.models import DeclarativeExecutionResult, DeclarativeWorkflowDefinition
from workflow_designer.logging_config import get_api_logger

from .. import database
from ..database import get_session
from ..models.db import ExecutionLogModel
from ..models.schemas import ExecuteRequest, ExecutionLogResponse
from ..repositories.execution_log import ExecutionLogRepository
from ..repositories.workflow import DeclarativeWorkflowRepository, RepositoryWorkflowResolver
from ..sse import SSE_HEADERS, stream_execution

logger = get_api_logger()

router = APIRouter(prefix="/api/declarative-workflows", tags=["execution"])

_engine: Optional[WorkflowEngine] = None


def get_engine() -> WorkflowEngine:
    """FastAPI dependency returning the shared engine (overridable in tests)."""
    global _engine
    if _engine is None:
        _engine = WorkflowEngine(
            agent_invoker=ClaudeCliAgentInvoker(),
            tool_invoker=HttpToolInvoker(),
            workflow_resolver=RepositoryWorkflowResolver(),
        )
    return _engine


# --- Helper functions ---


async def _load_definition(session: AsyncSession, workflow_id: str) -> DeclarativeWorkflowDefinition:
    definition = await DeclarativeWorkflowRepository(session).get_definition(workflow_id)
    if definition is None:
        raise HTTPException(status_code=404, detail="Workflow not found")
    return definition


def _start(
    engine: WorkflowEngine,
    definition: DeclarativeWorkflowDefinition,
    inputs: Dict[str, Any],
) -> ExecutionRun:
    try:
        return engine.execute(definition, inputs)
    except GraphValidationError as e:
        raise HTTPException(
            status_code=422,
            detail={
                "message": "Workflow validation failed",
                "errors": [issue.to_dict() for issue in e.issues],
            },
        )


def _log_to_response(row: ExecutionLogModel) -> ExecutionLogResponse:
    return ExecutionLogResponse(
        id=row.id,
        workflow_id=row.workflow_id,
        status=row.status,
        input_parameters=row.input_parameters,
        output=row.output,
        steps=row.steps,
        variables=row.variables,
        error_message=row.error_message,
        error_type=row.error_type,
        started_at=row.started_at.isoformat(),
        completed_at=row.completed_at.isoformat() if row.completed_at else None,
        duration_ms=row.duration_ms,
    )


# --- Endpoints ---


@router.post("/{workflow_id}/execute")
async def execute_workflow(
    workflow_id: str,
    payload: Optional[ExecuteRequest] = None,
    session: AsyncSession = Depends(get_session),
    engine: WorkflowEngine = Depends(get_engine),
):
    """Run a stored workflow to completion and return its result."""
    definition = await _load_definition(session, workflow_id)
    inputs = payload.to_inputs() if payload else {}
    execution = _start(engine, definition, inputs)

    logger.info(f"Executing workflow '{definition.name}' run_id={execution.run_id}")
    result = await execution.result()
    await ExecutionLogRepository(session).record(result, inputs)
    logger.info(
        f"Workflow run {result.run_id} finished: {result.status.value}"
        + (f" ({result.error_message})" if result.error_message else "")
    )
    return result.to_dict()


@router.post("/{workflow_id}/execute-stream")
async def execute_workflow_stream(
    workflow_id: str,
    payload: Optional[ExecuteRequest] = None,
    session: AsyncSession = Depends(get_session),
    engine: WorkflowEngine = Depends(get_engine),
):
    """Run a stored workflow, streaming ExecutionEvents as SSE."""
    definition = await _load_definition(session, workflow_id)
    inputs = payload.to_inputs() if payload else {}
    execution = _start(engine, definition, inputs)

    async def persist(result: DeclarativeExecutionResult) -> None:
        # The request session is closed once streaming starts
        async with database.get_session_ctx() as log_session:
            await ExecutionLogRepository(log_session).record(result, inputs)

    logger.info(f"Streaming workflow '{definition.name}' run_id={execution.run_id}")
    return StreamingResponse(
        stream_execution(execution, on_finish=persist),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.get("/{workflow_id}/executions", response_model=List[ExecutionLogResponse])
async def list_executions(
    workflow_id: str,
    limit: int = Query(50, ge=1, le=500),
    session: AsyncSession = Depends(get_session),
):
    """Execution logs of one workflow, newest first."""
    await _load_definition(session, workflow_id)
    rows = await ExecutionLogRepository(session).list_for_workflow(workflow_id, limit=limit)
    return [_log_to_response(row) for row in rows]


async def close_engine() -> None:
    """Release the shared engine's HTTP client on shutdown."""
    global _engine
    if _engine is not None and isinstance(_engine.tool_invoker, HttpToolInvoker):
        await _engine.tool_invoker.aclose()
    _engine = None
