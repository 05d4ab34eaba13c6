"""Repository layer for declarative workflow definitions."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional, Tuple

from sqlalchemy import func, select

from app import database
from app.models.db import DeclarativeWorkflowModel
from workflow_designer.engine.models import DeclarativeWorkflowDefinition

from .base import SqlAlchemyRepository


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DeclarativeWorkflowRepository(SqlAlchemyRepository[DeclarativeWorkflowModel]):
    """Stores definitions as camelCase JSON documents."""

    model = DeclarativeWorkflowModel

    async def list(
        self,
        page: int = 1,
        page_size: int = 20,
    ) -> Tuple[List[DeclarativeWorkflowModel], int]:
        query = (
            select(DeclarativeWorkflowModel)
            .order_by(DeclarativeWorkflowModel.updated_at.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        count_query = select(func.count()).select_from(DeclarativeWorkflowModel)

        result = await self.session.execute(query)
        workflows = list(result.scalars().all())

        count_result = await self.session.execute(count_query)
        total = count_result.scalar() or 0

        return workflows, total

    async def save_definition(self, definition: DeclarativeWorkflowDefinition) -> DeclarativeWorkflowModel:
        """Insert or replace the row for ``definition.id``."""
        definition.updated_at = _utcnow()
        row = await self.get_by_id(definition.id)
        if row is None:
            return await self.add(DeclarativeWorkflowModel(
                id=definition.id,
                name=definition.name,
                description=definition.description,
                version=definition.version,
                definition=definition.to_dict(),
                created_at=definition.created_at,
                updated_at=definition.updated_at,
            ))

        row.name = definition.name
        row.description = definition.description
        row.version = definition.version
        row.definition = definition.to_dict()
        row.updated_at = definition.updated_at
        await self.session.flush()
        return row

    async def get_definition(self, workflow_id: str) -> Optional[DeclarativeWorkflowDefinition]:
        row = await self.get_by_id(workflow_id)
        if row is None:
            return None
        return to_definition(row)


def to_definition(row: DeclarativeWorkflowModel) -> DeclarativeWorkflowDefinition:
    data = dict(row.definition or {})
    data["id"] = row.id
    return DeclarativeWorkflowDefinition.from_dict(data)


class RepositoryWorkflowResolver:
    """WorkflowResolver for SubWorkflow executors, backed by the database.

    Opens a short-lived session per lookup so nested runs never share the
    request session.
    """

    async def get_definition(self, workflow_id: str) -> Optional[DeclarativeWorkflowDefinition]:
        async with database.get_session_ctx() as session:
            return await DeclarativeWorkflowRepository(session).get_definition(workflow_id)
