"""Root conftest for engine, API and repository tests.

Provides:
- In-memory SQLite database (replaces production engine)
- Async HTTP client against the FastAPI app with an engine override
- Small builders for workflow definitions used across test modules
"""

from __future__ import annotations

from types import SimpleNamespace
from typing import Any, AsyncGenerator, Dict, List, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

import app.database as db_module
from app.database import Base

# Import all ORM models so they register with Base.metadata
import app.models.db  # noqa: F401

# Register every executor type
import workflow_designer.nodes  # noqa: F401


# ---------------------------------------------------------------------------
# Definition builders
# ---------------------------------------------------------------------------


def executor(executor_id: str, executor_type: str, **config: Any) -> Dict[str, Any]:
    """camelCase executor dict."""
    return {"id": executor_id, "type": executor_type, "config": config}


def edges(source: str, *targets: Any, group_type: str = "Single") -> Dict[str, Any]:
    """camelCase edge group; a target is an id or an ``(id, condition)`` pair."""
    items = []
    for target in targets:
        if isinstance(target, tuple):
            items.append({"targetExecutorId": target[0], "condition": target[1]})
        else:
            items.append({"targetExecutorId": target})
    return {"type": group_type, "sourceExecutorId": source, "edges": items}


def workflow_dict(
    executors: List[Dict[str, Any]],
    edge_groups: Optional[List[Dict[str, Any]]] = None,
    variables: Optional[List[Dict[str, Any]]] = None,
    start: Optional[str] = None,
    **extra: Any,
) -> Dict[str, Any]:
    data = {
        "name": extra.pop("name", "Test workflow"),
        "startExecutorId": start or executors[0]["id"],
        "executors": executors,
        "edgeGroups": edge_groups or [],
        "variables": variables or [],
    }
    data.update(extra)
    return data


@pytest.fixture
def build():
    """Expose the builders to test modules as one fixture."""

    return SimpleNamespace(executor=executor, edges=edges, workflow=workflow_dict)


# ---------------------------------------------------------------------------
# In-memory async SQLite engine (StaticPool shares one connection)
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def test_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Fresh in-memory SQLite engine per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def test_session(test_engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    """Per-test database session with automatic rollback."""
    factory = async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False,
    )
    async with factory() as session:
        yield session
        await session.rollback()


# ---------------------------------------------------------------------------
# FastAPI test client (patches DB engine, overrides the workflow engine)
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def client(test_engine: AsyncEngine) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client for testing FastAPI routes.

    Replaces the production DB engine/session_factory in app.database
    with the test in-memory engine, so get_session_ctx() calls made by
    streaming responses and sub-workflow lookups use the test DB.
    """
    from app.main import app
    from app.repositories.workflow import RepositoryWorkflowResolver
    from app.routes.execution import get_engine
    from workflow_designer.engine import WorkflowEngine

    original_engine = db_module.engine
    original_factory = db_module.async_session_factory

    db_module.engine = test_engine
    db_module.async_session_factory = async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False,
    )
    app.dependency_overrides[get_engine] = lambda: WorkflowEngine(
        workflow_resolver=RepositoryWorkflowResolver(),
    )

    try:
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            yield ac
    finally:
        app.dependency_overrides.clear()
        db_module.engine = original_engine
        db_module.async_session_factory = original_factory
