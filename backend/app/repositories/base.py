"""Generic async repository over one ORM model.

Specialised repositories subclass SqlAlchemyRepository and add queries
specific to their table.
"""

from __future__ import annotations

from typing import Any, Generic, List, Optional, Type, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import Base

ModelT = TypeVar("ModelT", bound=Base)


class SqlAlchemyRepository(Generic[ModelT]):
    """Data access layer for a single model class."""

    model: Type[ModelT]

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_all(self) -> List[ModelT]:
        result = await self.session.execute(select(self.model))
        return list(result.scalars().all())

    async def get_by_id(self, entity_id: Any) -> Optional[ModelT]:
        return await self.session.get(self.model, entity_id)

    async def find(self, *criteria: Any) -> List[ModelT]:
        """Rows matching every SQLAlchemy criterion, e.g. ``Model.status == "x"``."""
        result = await self.session.execute(select(self.model).where(*criteria))
        return list(result.scalars().all())

    async def add(self, entity: ModelT) -> ModelT:
        self.session.add(entity)
        await self.session.flush()
        return entity

    async def update(self, entity: ModelT) -> ModelT:
        merged = await self.session.merge(entity)
        await self.session.flush()
        return merged

    async def delete(self, entity_id: Any) -> bool:
        entity = await self.get_by_id(entity_id)
        if entity is None:
            return False
        await self.session.delete(entity)
        await self.session.flush()
        return True
