"""Database models for the workflow automation engine.

This module imports all models to ensure they are registered
with SQLAlchemy's declarative base.
"""

from db.models.execution import ExecutionModel
from db.models.execution_log import ExecutionLogModel
from db.models.approval import ApprovalRequestModel

__all__ = [
    "ExecutionModel",
    "ExecutionLogModel",
    "ApprovalRequestModel",
]
