"""ExecutionLog model for the workflow automation engine."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from core.constants import LogLevel
from db.base import BaseModel


class ExecutionLogModel(BaseModel):
    """Append-only log entry for an execution.

    Attributes:
        id: Autoincrement id (preserves append order)
        execution_id: Foreign key to the execution
        node_id: Node the entry refers to, if any
        level: debug, info, warning, error
        message: Log message
        details: JSON context for the entry
        timestamp: When the entry was written
    """

    __tablename__ = "workflow_execution_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    execution_id: Mapped[str] = mapped_column(
        ForeignKey("workflow_executions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    node_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    level: Mapped[str] = mapped_column(String(16), default=LogLevel.INFO.value, index=True)
    message: Mapped[str] = mapped_column(nullable=False)
    details: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
