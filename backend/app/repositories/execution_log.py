"""Repository layer for execution logs."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

from sqlalchemy import select

from app.models.db import ExecutionLogModel
from workflow_designer.engine.models import DeclarativeExecutionResult

from .base import SqlAlchemyRepository


def _jsonable(value: Any) -> Any:
    return json.loads(json.dumps(value, ensure_ascii=False, default=str))


class ExecutionLogRepository(SqlAlchemyRepository[ExecutionLogModel]):

    model = ExecutionLogModel

    async def record(
        self,
        result: DeclarativeExecutionResult,
        input_parameters: Optional[Dict[str, Any]] = None,
    ) -> ExecutionLogModel:
        """Persist the terminal result of one execution."""
        data = _jsonable(result.to_dict())
        return await self.add(ExecutionLogModel(
            id=result.run_id,
            workflow_id=result.workflow_id,
            status=result.status.value,
            input_parameters=_jsonable(input_parameters or {}),
            output=data["output"],
            steps=data["steps"],
            variables=data["variables"],
            error_message=result.error_message,
            error_type=result.error_type,
            started_at=result.started_at,
            completed_at=result.completed_at,
            duration_ms=result.duration_ms,
        ))

    async def list_for_workflow(self, workflow_id: str, limit: int = 50) -> List[ExecutionLogModel]:
        """Newest first."""
        result = await self.session.execute(
            select(ExecutionLogModel)
            .where(ExecutionLogModel.workflow_id == workflow_id)
            .order_by(ExecutionLogModel.started_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())
