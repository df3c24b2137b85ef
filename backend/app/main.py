"""Workflow Automation Engine - runtime bootstrap.

Wires settings, logging, persistence, messaging channels and the engine
into one ``EngineRuntime``. On start it recovers executions left behind by
a previous process; while running, a poller resumes elapsed waits and
expires overdue approvals.

Embed it with ``async with lifespan() as runtime: ...`` or run it
standalone with ``python -m app.main``.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Callable, Optional

import structlog

from app.config import Settings, get_settings
from core.logging_config import setup_logging
from core.utils import utc_now
from db.session import close_db, create_db_engine, create_session_factory, init_db
from handlers.base_handler import HandlerServices
from integrations.http_executor import HttpExecutor
from notifications.manager import NotificationManager
from services.activity_store import get_activity_store
from services.approval_service import ApprovalService
from services.assignment_service import get_assignment_service
from services.entity_store import get_entity_store
from services.list_service import get_list_service
from services.trigger_service import TriggerService
from services.workflow_service import WorkflowService, get_workflow_service
from workflow.engine import WorkflowEngine
from workflow.recovery import RecoveryService
from workflow.store import configure_sql_stores, get_approval_store, get_execution_store

logger = structlog.get_logger(__name__)


class EngineRuntime:
    """Owns the process-level collaborators of one engine instance."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        workflow_service: Optional[WorkflowService] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.settings = settings or get_settings()
        self.workflow_service = workflow_service or get_workflow_service()
        self.clock = clock

        self.db_engine = None
        self.notifications: Optional[NotificationManager] = None
        self.engine: Optional[WorkflowEngine] = None
        self.triggers: Optional[TriggerService] = None
        self.recovery: Optional[RecoveryService] = None
        self.sweeps = 0
        self._poller: Optional[asyncio.Task] = None

    async def start(self) -> None:
        settings = self.settings
        setup_logging(settings)

        if settings.EXECUTION_STORE == "sql":
            self.db_engine = create_db_engine(settings.DATABASE_URL)
            await init_db(self.db_engine)
            execution_store, approval_store = configure_sql_stores(create_session_factory(self.db_engine))
            logger.info("Database ready", url=settings.DATABASE_URL.split("@")[-1])
        else:
            execution_store, approval_store = get_execution_store(), get_approval_store()
            logger.warning("Using in-memory execution store; suspended runs will not survive a restart")

        self.notifications = NotificationManager()
        self.notifications.configure_channels(settings.channel_config())
        logger.info("Messaging channels configured", channels=self.notifications.get_status()["channels"])

        approvals = ApprovalService(
            store=approval_store,
            notifier=self.notifications,
            settings=settings,
            clock=self.clock,
        )
        services = HandlerServices(
            settings=settings,
            entity_store=get_entity_store(),
            activity_store=get_activity_store(),
            list_service=get_list_service(),
            notifications=self.notifications,
            http_executor=HttpExecutor(
                timeout=settings.HTTP_TIMEOUT_SECONDS,
                block_private_hosts=settings.HTTP_BLOCK_PRIVATE_HOSTS,
            ),
            assignment=get_assignment_service(),
            approvals=approvals,
            clock=self.clock,
        )
        self.engine = WorkflowEngine(
            store=execution_store,
            workflow_service=self.workflow_service,
            services=services,
        )
        self.triggers = TriggerService(engine=self.engine)
        self.recovery = RecoveryService(self.engine)
        logger.info("Workflow execution engine ready", handlers=len(self.engine.registry.available_types))

        results = await self.recovery.recover_all()
        recovered = sum(1 for r in results if r.recovered)
        if recovered:
            logger.info("Recovered executions from previous run", count=recovered)

        if settings.SWEEP_INTERVAL_SECONDS > 0:
            self._poller = asyncio.create_task(self._poll_loop(settings.SWEEP_INTERVAL_SECONDS))
            logger.info("Wake-up poller started", interval=settings.SWEEP_INTERVAL_SECONDS)

        logger.info(
            "Runtime started",
            app=settings.APP_NAME,
            version=settings.APP_VERSION,
            environment=settings.ENVIRONMENT,
        )

    async def stop(self) -> None:
        if self._poller is not None:
            self._poller.cancel()
            try:
                await self._poller
            except asyncio.CancelledError:
                pass
            self._poller = None
        if self.db_engine is not None:
            await close_db(self.db_engine)
            self.db_engine = None
        logger.info("Runtime stopped")

    async def _poll_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await self.recovery.sweep()
            except Exception as e:
                # One bad tick must not stop later ones
                logger.error("Sweep failed", error=str(e), exc_info=True)
            self.sweeps += 1


@asynccontextmanager
async def lifespan(settings: Optional[Settings] = None, **kwargs):
    """Start a runtime for the duration of the block."""
    runtime = EngineRuntime(settings, **kwargs)
    await runtime.start()
    try:
        yield runtime
    finally:
        await runtime.stop()


async def serve() -> None:
    """Run until cancelled."""
    async with lifespan():
        await asyncio.Event().wait()


def main() -> None:
    try:
        asyncio.run(serve())
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")


if __name__ == "__main__":
    main()
