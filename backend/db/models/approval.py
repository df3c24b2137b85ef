"""ApprovalRequest model for the workflow automation engine."""

from typing import Optional

from sqlalchemy import JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from core.constants import ApprovalStatus
from db.base import BaseModel


class ApprovalRequestModel(BaseModel):
    """Persisted approval request.

    The queryable columns are mirrored out of ``data``, which holds the
    full serialized ApprovalRequest.
    """

    __tablename__ = "workflow_approval_requests"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    execution_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    node_id: Mapped[str] = mapped_column(String(128), nullable=False)
    tenant_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    status: Mapped[str] = mapped_column(
        String(32), default=ApprovalStatus.PENDING.value, index=True
    )
    data: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
