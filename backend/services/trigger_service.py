"""Trigger service — starts workflow executions for incoming record events
and delivers external events to executions waiting on them."""

import logging
from typing import Optional

from core.constants import ExecutionStatus
from core.exceptions import WorkflowEngineError, WorkflowNotFoundError
from services.workflow_service import WorkflowService
from workflow.engine import WorkflowEngine, get_workflow_engine
from workflow.models import ExecutionContext

logger = logging.getLogger(__name__)


class TriggerService:
    """Fans a (module, trigger) event out to every matching active workflow."""

    def __init__(
        self,
        engine: Optional[WorkflowEngine] = None,
        workflow_service: Optional[WorkflowService] = None,
    ):
        self.engine = engine or get_workflow_engine()
        self.workflow_service = workflow_service or self.engine.workflow_service

    async def trigger_workflows(
        self,
        tenant_id: str,
        module_type: str,
        trigger_type: str,
        record_data: Optional[dict] = None,
    ) -> int:
        """Start one execution per active workflow matching the event.

        A workflow that fails to start is logged and skipped; the rest
        still run.

        Returns:
            Number of executions started
        """
        workflows = await self.workflow_service.find_active(tenant_id, module_type, trigger_type)
        if not workflows:
            logger.debug(f"No active workflows for {module_type}/{trigger_type} in tenant {tenant_id}")
            return 0

        started = 0
        for workflow in workflows:
            try:
                context = await self.engine.start(workflow, record_data, tenant_id)
            except WorkflowEngineError as e:
                logger.error(f"Failed to start workflow {workflow.id} for {module_type}/{trigger_type}: {e.message}")
                continue
            except Exception as e:
                logger.error(
                    f"Unexpected error starting workflow {workflow.id} for {module_type}/{trigger_type}: {e}",
                    exc_info=True,
                )
                continue
            started += 1
            logger.info(f"Workflow {workflow.id} started as execution {context.execution_id}")

        logger.info(
            f"Triggered {started}/{len(workflows)} workflow(s) for {module_type}/{trigger_type} "
            f"in tenant {tenant_id}"
        )
        return started

    async def trigger_workflow_by_id(
        self,
        workflow_id: str,
        tenant_id: str,
        trigger_data: Optional[dict] = None,
    ) -> ExecutionContext:
        """Start one workflow directly (manual runs, webhooks).

        Raises:
            WorkflowNotFoundError: Unknown workflow, or not visible to the tenant
        """
        workflow = await self.workflow_service.get(workflow_id)
        if workflow is None or (workflow.tenant_id is not None and workflow.tenant_id != tenant_id):
            raise WorkflowNotFoundError(workflow_id)
        if not workflow.active:
            logger.warning(f"Starting inactive workflow {workflow_id} by id")
        return await self.engine.start(workflow, trigger_data, tenant_id)

    async def deliver_event(self, tenant_id: str, event_type: str, event_data: Optional[dict] = None) -> int:
        """Resume every paused execution of the tenant waiting for this event.

        An execution matches when its ``waitingForEvent`` equals event_type
        and every key of its ``eventCondition`` has the same value in
        event_data.

        Returns:
            Number of executions resumed
        """
        event_data = event_data or {}
        resumed = 0
        for record in await self.engine.store.list_by_status(ExecutionStatus.PAUSED, tenant_id):
            variables = record.context.variables
            if variables.get("waitingForEvent") != event_type:
                continue
            condition = variables.get("eventCondition") or {}
            if any(event_data.get(key) != value for key, value in condition.items()):
                continue
            try:
                await self.engine.resume(
                    record.execution_id, {"eventData": event_data, "resumeReason": "event"}
                )
            except WorkflowEngineError as e:
                logger.error(f"Failed to deliver {event_type} to execution {record.execution_id}: {e.message}")
                continue
            resumed += 1

        logger.info(f"Event {event_type} resumed {resumed} execution(s) in tenant {tenant_id}")
        return resumed
