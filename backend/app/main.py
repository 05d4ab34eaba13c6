"""FastAPI Application Entry Point.

Configures the app, lifespan, CORS, and includes all route modules.
"""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from workflow_designer.config import CORS_ORIGINS
from workflow_designer.logging_config import get_api_logger

from .database import close_db, init_db

# Ensure executor types are registered at import time
import workflow_designer.nodes  # noqa: F401

logger = get_api_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage database and shared engine lifecycle."""
    await init_db()
    logger.info("Workflow designer API started")
    yield
    await close_engine()
    await close_db()


app = FastAPI(title="Declarative Workflow Designer API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
from .routes.execution import close_engine  # noqa: E402
from .routes.execution import router as execution_router  # noqa: E402
from .routes.workflows import router as workflows_router  # noqa: E402

app.include_router(workflows_router)
app.include_router(execution_router)


@app.get("/health")
async def health_check():
    """Health check endpoint for container orchestration."""
    return {"status": "ok"}
