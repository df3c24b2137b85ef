"""
Execution persistence.

A suspended execution holds no engine resources: its full context is
serialized into an ExecutionRecord and saved through an ExecutionStore.
Resume loads the record and re-dispatches the paused node.

Two implementations of each store:
- InMemory*: process-local dicts (tests, single-process deployments)
- SqlAlchemy*: async ORM against ``DATABASE_URL`` (aiosqlite locally)

Every backend failure is re-raised as PersistenceError so the engine can
treat it as fatal without knowing which backend is configured.
"""

import copy
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from core.constants import ApprovalStatus, ExecutionStatus, LogLevel
from core.exceptions import PersistenceError
from db.models import ApprovalRequestModel, ExecutionLogModel, ExecutionModel
from workflow.models import ApprovalRequest, ExecutionContext

logger = structlog.get_logger(__name__)


# ─── Records ──────────────────────────────────────────────────

@dataclass
class ExecutionRecord:
    """Persisted state of one execution."""

    execution_id: str
    workflow_id: str
    tenant_id: str
    workflow_version: int
    status: ExecutionStatus
    context: ExecutionContext
    error_message: Optional[str] = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None

    @property
    def current_node_id(self) -> Optional[str]:
        return self.context.current_node_id

    def to_dict(self) -> dict:
        return {
            "execution_id": self.execution_id,
            "workflow_id": self.workflow_id,
            "tenant_id": self.tenant_id,
            "workflow_version": self.workflow_version,
            "status": self.status.value,
            "context": self.context.to_dict(),
            "error_message": self.error_message,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_ms": self.duration_ms,
        }


@dataclass
class ExecutionLogEntry:
    """One line of an execution's audit log."""

    execution_id: str
    message: str
    level: str = LogLevel.INFO.value
    node_id: Optional[str] = None
    details: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "execution_id": self.execution_id,
            "node_id": self.node_id,
            "level": self.level,
            "message": self.message,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }


# ─── Execution Stores ─────────────────────────────────────────

class ExecutionStore(ABC):
    """Saves and loads execution records and their logs."""

    @abstractmethod
    async def save(self, record: ExecutionRecord) -> None:
        """Insert or replace the record for ``record.execution_id``."""

    @abstractmethod
    async def load(self, execution_id: str) -> Optional[ExecutionRecord]:
        """Return the record, or None when the id is unknown."""

    @abstractmethod
    async def append_log(self, entry: ExecutionLogEntry) -> None:
        ...

    @abstractmethod
    async def get_logs(self, execution_id: str) -> list[ExecutionLogEntry]:
        """Log entries in append order."""

    @abstractmethod
    async def list_by_status(
        self, status: ExecutionStatus, tenant_id: Optional[str] = None
    ) -> list[ExecutionRecord]:
        ...


class InMemoryExecutionStore(ExecutionStore):
    """Process-local store. Records are deep-copied on the way in and out."""

    def __init__(self):
        self._records: dict[str, dict] = {}
        self._logs: dict[str, list[ExecutionLogEntry]] = {}

    async def save(self, record: ExecutionRecord) -> None:
        self._records[record.execution_id] = copy.deepcopy(record.to_dict())

    async def load(self, execution_id: str) -> Optional[ExecutionRecord]:
        data = self._records.get(execution_id)
        if data is None:
            return None
        return _record_from_dict(copy.deepcopy(data))

    async def append_log(self, entry: ExecutionLogEntry) -> None:
        self._logs.setdefault(entry.execution_id, []).append(entry)

    async def get_logs(self, execution_id: str) -> list[ExecutionLogEntry]:
        return list(self._logs.get(execution_id, []))

    async def list_by_status(
        self, status: ExecutionStatus, tenant_id: Optional[str] = None
    ) -> list[ExecutionRecord]:
        status = ExecutionStatus(status)
        return [
            _record_from_dict(copy.deepcopy(data))
            for data in self._records.values()
            if data["status"] == status.value
            and (tenant_id is None or data["tenant_id"] == tenant_id)
        ]


def _record_from_dict(data: dict) -> ExecutionRecord:
    return ExecutionRecord(
        execution_id=data["execution_id"],
        workflow_id=data["workflow_id"],
        tenant_id=data["tenant_id"],
        workflow_version=data["workflow_version"],
        status=ExecutionStatus(data["status"]),
        context=ExecutionContext.from_dict(data["context"]),
        error_message=data.get("error_message"),
        started_at=datetime.fromisoformat(data["started_at"]) if data.get("started_at") else None,
        completed_at=datetime.fromisoformat(data["completed_at"]) if data.get("completed_at") else None,
        duration_ms=data.get("duration_ms"),
    )


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SqlAlchemyExecutionStore(ExecutionStore):
    """Async ORM store. Each call runs in its own session and transaction."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def save(self, record: ExecutionRecord) -> None:
        try:
            async with self.session_factory() as session:
                row = await session.get(ExecutionModel, record.execution_id)
                if row is None:
                    row = ExecutionModel(id=record.execution_id)
                    session.add(row)
                row.tenant_id = record.tenant_id
                row.workflow_id = record.workflow_id
                row.workflow_version = record.workflow_version
                row.status = record.status.value
                row.current_node_id = record.context.current_node_id
                row.context = record.context.to_dict()
                row.error_message = record.error_message
                row.started_at = record.started_at
                row.completed_at = record.completed_at
                row.duration_ms = record.duration_ms
                await session.commit()
        except SQLAlchemyError as e:
            logger.error("Failed to persist execution", execution_id=record.execution_id, error=str(e))
            raise PersistenceError(f"Failed to save execution {record.execution_id}: {e}") from e

        logger.debug("Execution persisted", execution_id=record.execution_id, status=record.status.value)

    async def load(self, execution_id: str) -> Optional[ExecutionRecord]:
        try:
            async with self.session_factory() as session:
                row = await session.get(ExecutionModel, execution_id)
        except SQLAlchemyError as e:
            logger.error("Failed to load execution", execution_id=execution_id, error=str(e))
            raise PersistenceError(f"Failed to load execution {execution_id}: {e}") from e
        return self._to_record(row) if row is not None else None

    async def append_log(self, entry: ExecutionLogEntry) -> None:
        try:
            async with self.session_factory() as session:
                session.add(
                    ExecutionLogModel(
                        execution_id=entry.execution_id,
                        node_id=entry.node_id,
                        level=entry.level,
                        message=entry.message,
                        details=entry.details or None,
                        timestamp=entry.timestamp,
                    )
                )
                await session.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to append log for {entry.execution_id}: {e}") from e

    async def get_logs(self, execution_id: str) -> list[ExecutionLogEntry]:
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(ExecutionLogModel)
                    .where(ExecutionLogModel.execution_id == execution_id)
                    .order_by(ExecutionLogModel.id)
                )
                rows = result.scalars().all()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to read logs for {execution_id}: {e}") from e
        return [
            ExecutionLogEntry(
                execution_id=row.execution_id,
                message=row.message,
                level=row.level,
                node_id=row.node_id,
                details=row.details or {},
                timestamp=row.timestamp,
            )
            for row in rows
        ]

    async def list_by_status(
        self, status: ExecutionStatus, tenant_id: Optional[str] = None
    ) -> list[ExecutionRecord]:
        query = select(ExecutionModel).where(ExecutionModel.status == ExecutionStatus(status).value)
        if tenant_id is not None:
            query = query.where(ExecutionModel.tenant_id == tenant_id)
        try:
            async with self.session_factory() as session:
                result = await session.execute(query.order_by(ExecutionModel.started_at))
                rows = result.scalars().all()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to list executions: {e}") from e
        return [self._to_record(row) for row in rows]

    @staticmethod
    def _to_record(row: ExecutionModel) -> ExecutionRecord:
        return ExecutionRecord(
            execution_id=row.id,
            workflow_id=row.workflow_id,
            tenant_id=row.tenant_id,
            workflow_version=row.workflow_version,
            status=ExecutionStatus(row.status),
            context=ExecutionContext.from_dict(row.context),
            error_message=row.error_message,
            started_at=_aware(row.started_at),
            completed_at=_aware(row.completed_at),
            duration_ms=row.duration_ms,
        )


# ─── Approval Stores ──────────────────────────────────────────

class ApprovalStore(ABC):
    """Saves and loads approval requests."""

    @abstractmethod
    async def save(self, request: ApprovalRequest) -> None:
        ...

    @abstractmethod
    async def get(self, approval_id: str) -> Optional[ApprovalRequest]:
        ...

    @abstractmethod
    async def list_open(self, tenant_id: Optional[str] = None) -> list[ApprovalRequest]:
        """Requests in PENDING or PARTIALLY_APPROVED."""

    @abstractmethod
    async def list_for_execution(self, execution_id: str) -> list[ApprovalRequest]:
        ...


_OPEN_STATUSES = (ApprovalStatus.PENDING.value, ApprovalStatus.PARTIALLY_APPROVED.value)


class InMemoryApprovalStore(ApprovalStore):

    def __init__(self):
        self._requests: dict[str, dict] = {}

    async def save(self, request: ApprovalRequest) -> None:
        self._requests[request.id] = copy.deepcopy(request.to_dict())

    async def get(self, approval_id: str) -> Optional[ApprovalRequest]:
        data = self._requests.get(approval_id)
        return ApprovalRequest.from_dict(copy.deepcopy(data)) if data else None

    async def list_open(self, tenant_id: Optional[str] = None) -> list[ApprovalRequest]:
        return [
            ApprovalRequest.from_dict(copy.deepcopy(data))
            for data in self._requests.values()
            if data["status"] in _OPEN_STATUSES
            and (tenant_id is None or data["tenant_id"] == tenant_id)
        ]

    async def list_for_execution(self, execution_id: str) -> list[ApprovalRequest]:
        return [
            ApprovalRequest.from_dict(copy.deepcopy(data))
            for data in self._requests.values()
            if data["execution_id"] == execution_id
        ]


class SqlAlchemyApprovalStore(ApprovalStore):

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def save(self, request: ApprovalRequest) -> None:
        try:
            async with self.session_factory() as session:
                row = await session.get(ApprovalRequestModel, request.id)
                if row is None:
                    row = ApprovalRequestModel(id=request.id)
                    session.add(row)
                row.execution_id = request.execution_id
                row.node_id = request.node_id
                row.tenant_id = request.tenant_id
                row.status = request.status
                row.data = request.to_dict()
                await session.commit()
        except SQLAlchemyError as e:
            logger.error("Failed to persist approval request", approval_id=request.id, error=str(e))
            raise PersistenceError(f"Failed to save approval request {request.id}: {e}") from e

    async def get(self, approval_id: str) -> Optional[ApprovalRequest]:
        try:
            async with self.session_factory() as session:
                row = await session.get(ApprovalRequestModel, approval_id)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load approval request {approval_id}: {e}") from e
        return ApprovalRequest.from_dict(row.data) if row is not None else None

    async def list_open(self, tenant_id: Optional[str] = None) -> list[ApprovalRequest]:
        query = select(ApprovalRequestModel).where(ApprovalRequestModel.status.in_(_OPEN_STATUSES))
        if tenant_id is not None:
            query = query.where(ApprovalRequestModel.tenant_id == tenant_id)
        return await self._fetch(query)

    async def list_for_execution(self, execution_id: str) -> list[ApprovalRequest]:
        return await self._fetch(
            select(ApprovalRequestModel).where(ApprovalRequestModel.execution_id == execution_id)
        )

    async def _fetch(self, query) -> list[ApprovalRequest]:
        try:
            async with self.session_factory() as session:
                result = await session.execute(query)
                rows = result.scalars().all()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to query approval requests: {e}") from e
        return [ApprovalRequest.from_dict(row.data) for row in rows]


# ─── Singleton ─────────────────────────────────────────────────

_execution_store: Optional[ExecutionStore] = None
_approval_store: Optional[ApprovalStore] = None


def get_execution_store() -> ExecutionStore:
    """Get or create the process-wide execution store (in-memory by default)."""
    global _execution_store
    if _execution_store is None:
        _execution_store = InMemoryExecutionStore()
    return _execution_store


def get_approval_store() -> ApprovalStore:
    global _approval_store
    if _approval_store is None:
        _approval_store = InMemoryApprovalStore()
    return _approval_store


def configure_sql_stores(session_factory: async_sessionmaker) -> tuple[ExecutionStore, ApprovalStore]:
    """Switch the process-wide stores to the database backend."""
    global _execution_store, _approval_store
    _execution_store = SqlAlchemyExecutionStore(session_factory)
    _approval_store = SqlAlchemyApprovalStore(session_factory)
    return _execution_store, _approval_store
