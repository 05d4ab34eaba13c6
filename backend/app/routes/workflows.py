"""Declarative workflow CRUD, validation, YAML and executor-type endpoints."""

from __future__ import annotations

import re
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from workflow_designer.engine.graph_builder import validate_workflow
from workflow_designer.engine.models import DeclarativeWorkflowDefinition
from workflow_designer.logging_config import get_api_logger
from workflow_designer.nodes import (
    get_executor_type_definition,
    list_executor_types,
    list_executor_types_by_category,
)
from workflow_designer.nodes.registry import CATEGORIES
from workflow_designer.yaml_conversion import (
    YamlConversionError,
    definition_from_yaml,
    definition_to_yaml,
    preview_yaml,
)

from ..database import get_session
from ..models.schemas import PagedWorkflowsResponse, ValidationResponse, YamlRequest, YamlResponse
from ..repositories.workflow import DeclarativeWorkflowRepository, to_definition

logger = get_api_logger()

router = APIRouter(prefix="/api/declarative-workflows", tags=["declarative-workflows"])

NOT_FOUND = "Workflow not found"


# --- Helper functions ---


def _parse_definition(payload: Dict[str, Any]) -> DeclarativeWorkflowDefinition:
    try:
        return DeclarativeWorkflowDefinition.from_dict(payload)
    except (ValueError, TypeError) as e:
        raise HTTPException(status_code=422, detail=str(e))


def _parse_yaml(text: str) -> DeclarativeWorkflowDefinition:
    try:
        return definition_from_yaml(text)
    except YamlConversionError as e:
        raise HTTPException(status_code=422, detail=str(e))


async def _get_or_404(repo: DeclarativeWorkflowRepository, workflow_id: str) -> DeclarativeWorkflowDefinition:
    definition = await repo.get_definition(workflow_id)
    if definition is None:
        raise HTTPException(status_code=404, detail=NOT_FOUND)
    return definition


def _yaml_filename(name: str) -> str:
    slug = re.sub(r"[^A-Za-z0-9_.-]+", "_", name).strip("_") or "workflow"
    return f"{slug}.yaml"


# --- Executor type metadata ---


@router.get("/executor-types")
async def get_executor_types():
    """Registry metadata grouped by designer category."""
    return {
        category: [d.to_dict() for d in list_executor_types_by_category(category)]
        for category in CATEGORIES
    }


@router.get("/executor-types/all")
async def get_all_executor_types():
    return [d.to_dict() for d in list_executor_types()]


@router.get("/executor-schema/{executor_type}")
async def get_executor_schema(executor_type: str):
    definition = get_executor_type_definition(executor_type)
    if definition is None:
        raise HTTPException(status_code=404, detail=f"Unknown executor type: {executor_type}")
    return {
        "type": definition.executor_type.value,
        "configSchema": definition.config_schema,
        "outputSchema": definition.output_schema,
    }


# --- Validation and YAML ---


@router.post("/validate", response_model=ValidationResponse)
async def validate_definition(payload: Dict[str, Any] = Body(...)):
    """Report every validation error and warning of a definition."""
    definition = _parse_definition(payload)
    result = validate_workflow(definition)
    return ValidationResponse(
        is_valid=result.valid,
        errors=[e.to_dict() for e in result.errors],
        warnings=[w.to_dict() for w in result.warnings],
    )


@router.post("/parse-yaml")
async def parse_yaml(payload: YamlRequest):
    """YAML text → definition JSON (not stored)."""
    return _parse_yaml(payload.yaml).to_dict()


@router.post("/import-yaml", status_code=201)
async def import_yaml(
    payload: YamlRequest,
    session: AsyncSession = Depends(get_session),
):
    definition = _parse_yaml(payload.yaml)
    repo = DeclarativeWorkflowRepository(session)
    if await repo.get_by_id(definition.id) is not None:
        raise HTTPException(status_code=409, detail=f"Workflow '{definition.id}' already exists")
    row = await repo.save_definition(definition)
    logger.info(f"Imported workflow '{definition.name}' ({row.id}) from YAML")
    return to_definition(row).to_dict()


@router.post("/export-yaml", response_model=YamlResponse)
async def export_yaml(payload: Dict[str, Any] = Body(...)):
    return YamlResponse(yaml=definition_to_yaml(_parse_definition(payload)))


@router.post("/preview-yaml", response_model=YamlResponse)
async def preview_definition_yaml(payload: Dict[str, Any] = Body(...)):
    return YamlResponse(yaml=preview_yaml(_parse_definition(payload)))


# --- CRUD Endpoints ---


@router.get("", response_model=PagedWorkflowsResponse)
async def list_workflows(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100, alias="pageSize"),
    session: AsyncSession = Depends(get_session),
):
    """List workflow definitions with pagination, most recently updated first."""
    repo = DeclarativeWorkflowRepository(session)
    rows, total = await repo.list(page=page, page_size=page_size)
    return PagedWorkflowsResponse(
        items=[to_definition(row).to_dict() for row in rows],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.post("", status_code=201)
async def create_workflow(
    payload: Dict[str, Any] = Body(...),
    session: AsyncSession = Depends(get_session),
):
    definition = _parse_definition(payload)
    repo = DeclarativeWorkflowRepository(session)
    if await repo.get_by_id(definition.id) is not None:
        raise HTTPException(status_code=409, detail=f"Workflow '{definition.id}' already exists")
    row = await repo.save_definition(definition)
    logger.info(f"Created workflow '{definition.name}' ({row.id})")
    return to_definition(row).to_dict()


@router.get("/{workflow_id}")
async def get_workflow(
    workflow_id: str,
    session: AsyncSession = Depends(get_session),
):
    definition = await _get_or_404(DeclarativeWorkflowRepository(session), workflow_id)
    return definition.to_dict()


@router.put("/{workflow_id}")
async def update_workflow(
    workflow_id: str,
    payload: Dict[str, Any] = Body(...),
    session: AsyncSession = Depends(get_session),
):
    """Replace the stored definition; the path id wins over the body id."""
    repo = DeclarativeWorkflowRepository(session)
    existing = await _get_or_404(repo, workflow_id)
    definition = _parse_definition({**payload, "id": workflow_id})
    definition.created_at = existing.created_at
    row = await repo.save_definition(definition)
    return to_definition(row).to_dict()


@router.delete("/{workflow_id}", status_code=204)
async def delete_workflow(
    workflow_id: str,
    session: AsyncSession = Depends(get_session),
):
    repo = DeclarativeWorkflowRepository(session)
    if not await repo.delete(workflow_id):
        raise HTTPException(status_code=404, detail=NOT_FOUND)
    logger.info(f"Deleted workflow {workflow_id}")
    return Response(status_code=204)


@router.get("/{workflow_id}/export-yaml", response_model=YamlResponse)
async def export_stored_yaml(
    workflow_id: str,
    session: AsyncSession = Depends(get_session),
):
    definition = await _get_or_404(DeclarativeWorkflowRepository(session), workflow_id)
    return YamlResponse(yaml=definition_to_yaml(definition))


@router.get("/{workflow_id}/download-yaml")
async def download_yaml(
    workflow_id: str,
    session: AsyncSession = Depends(get_session),
):
    definition = await _get_or_404(DeclarativeWorkflowRepository(session), workflow_id)
    return Response(
        content=definition_to_yaml(definition),
        media_type="application/x-yaml",
        headers={
            "Content-Disposition": f'attachment; filename="{_yaml_filename(definition.name)}"',
        },
    )
