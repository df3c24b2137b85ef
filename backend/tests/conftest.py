"""Shared pytest fixtures for the workflow automation engine test suite.

Provides:
- In-memory async SQLite database for the SQLAlchemy stores
- A controllable clock shared by handlers and the approval service
- Fully wired HandlerServices / WorkflowEngine over in-memory stores
- Recording messaging channels and an httpx.MockTransport for HTTP
- A helper that registers and activates workflows
"""

import os
from typing import Callable, Optional

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

# Override settings BEFORE any app imports
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("LOG_FORMAT", "text")

from app.config import Settings  # noqa: E402
from db.base import Base  # noqa: E402
from handlers.base_handler import HandlerServices  # noqa: E402
from integrations.http_executor import HttpExecutor  # noqa: E402
from notifications.manager import NotificationManager  # noqa: E402
from services.activity_store import ActivityStore  # noqa: E402
from services.approval_service import ApprovalService  # noqa: E402
from services.assignment_service import AssignmentService  # noqa: E402
from services.entity_store import InMemoryEntityStore  # noqa: E402
from services.list_service import ListService  # noqa: E402
from services.workflow_service import WorkflowService  # noqa: E402
from workflow.engine import WorkflowEngine  # noqa: E402
from workflow.store import InMemoryApprovalStore, InMemoryExecutionStore  # noqa: E402
from helpers import FakeClock, HttpRecorder, RecordingChannel  # noqa: E402
from notifications.channels import ChannelType  # noqa: E402

# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def db_engine():
    """Fresh in-memory database per test."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)
    import db.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, expire_on_commit=False, autoflush=False)


# ---------------------------------------------------------------------------
# Engine fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def settings():
    return Settings(
        ENVIRONMENT="testing",
        ENGINE_MAX_STEPS=200,
        LOOP_MAX_ITERATIONS=50,
        DELAY_RECHECK_CLOCK=True,
        APPROVAL_ENABLED=True,
        APPROVAL_DEFAULT_TIMEOUT_HOURS=72,
        APPROVAL_EXPIRY_POLICY="reject",
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def notifications():
    return NotificationManager()


@pytest.fixture
def email_channel(notifications):
    channel = RecordingChannel(ChannelType.EMAIL)
    notifications.register_channel(channel)
    return channel


@pytest.fixture
def http_recorder():
    return HttpRecorder()


@pytest.fixture
def approval_service(settings, notifications, clock):
    return ApprovalService(store=InMemoryApprovalStore(), notifier=notifications, settings=settings, clock=clock)


@pytest.fixture
def services(settings, notifications, approval_service, http_recorder, clock):
    return HandlerServices(
        settings=settings,
        entity_store=InMemoryEntityStore(),
        activity_store=ActivityStore(),
        list_service=ListService(),
        notifications=notifications,
        http_executor=HttpExecutor(transport=httpx.MockTransport(http_recorder)),
        assignment=AssignmentService(),
        approvals=approval_service,
        clock=clock,
    )


@pytest.fixture
def execution_store():
    return InMemoryExecutionStore()


@pytest.fixture
def workflow_service():
    return WorkflowService()


@pytest.fixture
def engine(execution_store, workflow_service, services):
    return WorkflowEngine(store=execution_store, workflow_service=workflow_service, services=services)


@pytest.fixture
def register_workflow(workflow_service) -> Callable:
    """Create and activate a workflow from a list of node dicts."""

    async def _register(nodes: list, key: str = "wf", module_type: str = "LEAD",
                        trigger_type: str = "RECORD_CREATE", tenant_id: Optional[str] = None):
        workflow = await workflow_service.create(
            key=key,
            name=key.replace("_", " ").title(),
            module_type=module_type,
            trigger_type=trigger_type,
            graph={"nodes": nodes},
            tenant_id=tenant_id,
        )
        return await workflow_service.activate(workflow.id)

    return _register

