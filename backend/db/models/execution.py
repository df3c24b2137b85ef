"""Execution model for the workflow automation engine."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from core.constants import ExecutionStatus
from db.base import BaseModel


class ExecutionModel(BaseModel):
    """Persisted execution record.

    Attributes:
        id: Execution id (UUID string, assigned by the engine)
        tenant_id: Owning tenant
        workflow_id: Workflow that was started
        workflow_version: Graph version the run is pinned to
        status: RUNNING, COMPLETED, FAILED, PAUSED, WAITING_APPROVAL, CANCELLED
        current_node_id: Resumption pointer
        context: Full serialized ExecutionContext
        error_message: Failure message if the run failed
        started_at / completed_at / duration_ms: Timing
    """

    __tablename__ = "workflow_executions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    workflow_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    workflow_version: Mapped[int] = mapped_column(default=1)
    status: Mapped[str] = mapped_column(
        String(32), default=ExecutionStatus.RUNNING.value, index=True
    )
    current_node_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    context: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    error_message: Mapped[Optional[str]] = mapped_column(nullable=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_ms: Mapped[Optional[int]] = mapped_column(nullable=True)
