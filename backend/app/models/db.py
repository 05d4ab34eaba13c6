"""SQLAlchemy ORM models for the declarative workflow designer.

Tables:
- declarative_workflows: Workflow definitions (camelCase JSON document)
- execution_logs: One row per finished execution of a workflow
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.dialects.sqlite import JSON
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _gen_uuid() -> str:
    return str(uuid.uuid4())


# ─── Workflow Definition ─────────────────────────────────────────────


class DeclarativeWorkflowModel(Base):
    """Persistent declarative workflow definition.

    The full definition (executors, edge groups, variables) is stored as
    JSON; name/description/version are duplicated into columns for listing.
    """

    __tablename__ = "declarative_workflows"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_gen_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    version: Mapped[str] = mapped_column(String(32), nullable=False, default="1.0.0")

    definition: Mapped[Dict[str, Any]] = mapped_column(
        JSON, nullable=False, comment="DeclarativeWorkflowDefinition camelCase JSON",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow,
    )

    # Relationships
    executions: Mapped[List["ExecutionLogModel"]] = relationship(
        back_populates="workflow", cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("ix_declarative_workflows_updated_at", "updated_at"),
    )


# ─── Execution Log ──────────────────────────────────────────────────


class ExecutionLogModel(Base):
    """Record of one finished execution.

    Stores the terminal status, caller inputs, output, per-node steps and
    the final variable snapshot.
    """

    __tablename__ = "execution_logs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_gen_uuid)
    workflow_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("declarative_workflows.id", ondelete="CASCADE"), nullable=False,
    )
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, comment="Completed | Failed | Cancelled",
    )

    input_parameters: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    output: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
    steps: Mapped[Optional[List[Dict[str, Any]]]] = mapped_column(JSON, nullable=True)
    variables: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    error_type: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    # Timing
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow,
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    duration_ms: Mapped[Optional[int]] = mapped_column(
        Integer, nullable=True, comment="Execution duration in milliseconds",
    )

    # Relationship
    workflow: Mapped["DeclarativeWorkflowModel"] = relationship(back_populates="executions")

    __table_args__ = (
        Index("ix_execution_logs_workflow_id", "workflow_id"),
        Index("ix_execution_logs_started_at", "started_at"),
    )
