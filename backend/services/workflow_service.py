"""Workflow service — registry of workflow definitions and their versions.

Every graph change on an active workflow bumps the version; earlier
versions stay loadable so suspended executions resume against the graph
they were started with. Activation requires a clean validator report.
"""

import copy
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from core.exceptions import WorkflowNotFoundError, WorkflowValidationError
from workflow.models import Workflow
from workflow.schemas import WorkflowCreate, parse_graph
from workflow.validator import WorkflowValidator, get_workflow_validator

logger = logging.getLogger(__name__)


class WorkflowService:
    """In-process workflow repository with version history."""

    def __init__(self, validator: Optional[WorkflowValidator] = None):
        self.validator = validator or get_workflow_validator()
        self._workflows: dict[str, Workflow] = {}
        self._versions: dict[tuple[str, int], Workflow] = {}

    async def create(
        self,
        key: str,
        name: str,
        module_type: str,
        trigger_type: str,
        graph: Any = None,
        tenant_id: Optional[str] = None,
        description: str = "",
        workflow_id: Optional[str] = None,
    ) -> Workflow:
        """Register a new inactive workflow at version 1.

        Raises:
            pydantic.ValidationError: Malformed fields or graph payload
        """
        payload = WorkflowCreate(
            key=key,
            name=name,
            module_type=module_type,
            trigger_type=trigger_type,
            graph=graph.to_dict() if hasattr(graph, "to_dict") else (graph or {}),
            tenant_id=tenant_id,
            description=description,
        )
        workflow = Workflow(
            id=workflow_id or str(uuid.uuid4()),
            key=payload.key,
            name=payload.name,
            module_type=payload.module_type.upper(),
            trigger_type=payload.trigger_type.upper(),
            graph=payload.graph.to_graph(),
            tenant_id=payload.tenant_id,
            description=payload.description,
        )
        self._store(workflow)
        logger.info(f"Created workflow {workflow.id} ({workflow.key})")
        return copy.deepcopy(workflow)

    async def update_graph(self, workflow_id: str, graph: Any) -> Workflow:
        """Replace the graph. Active workflows move to a new version.

        The graph of an active workflow must pass validation; otherwise the
        previous version stays live.

        Raises:
            WorkflowNotFoundError: Unknown workflow id
            WorkflowValidationError: Active workflow and the new graph has errors
        """
        workflow = self._require(workflow_id)
        new_graph = parse_graph(graph)
        if workflow.active:
            report = self.validator.validate(new_graph)
            if not report.is_valid:
                raise WorkflowValidationError(report, f"Cannot update active workflow {workflow_id}")
            workflow.version += 1
        workflow.graph = new_graph
        workflow.updated_at = datetime.now(timezone.utc)
        self._store(workflow)
        logger.info(f"Updated graph of workflow {workflow_id} (version {workflow.version})")
        return copy.deepcopy(workflow)

    async def activate(self, workflow_id: str) -> Workflow:
        """Mark a workflow active after validating its graph.

        Raises:
            WorkflowNotFoundError: Unknown workflow id
            WorkflowValidationError: The graph has validation errors
        """
        workflow = self._require(workflow_id)
        report = self.validator.validate(workflow.graph)
        for warning in report.warnings:
            logger.warning(f"Workflow {workflow_id} node {warning.node_id}: {warning.message}")
        if not report.is_valid:
            raise WorkflowValidationError(report, f"Cannot activate workflow {workflow_id}")

        workflow.active = True
        workflow.updated_at = datetime.now(timezone.utc)
        self._store(workflow)
        logger.info(f"Activated workflow {workflow_id} (version {workflow.version})")
        return copy.deepcopy(workflow)

    async def deactivate(self, workflow_id: str) -> Workflow:
        workflow = self._require(workflow_id)
        workflow.active = False
        workflow.updated_at = datetime.now(timezone.utc)
        self._store(workflow)
        logger.info(f"Deactivated workflow {workflow_id}")
        return copy.deepcopy(workflow)

    async def get(self, workflow_id: str) -> Optional[Workflow]:
        """Latest version, or None."""
        workflow = self._workflows.get(workflow_id)
        return copy.deepcopy(workflow) if workflow else None

    async def get_version(self, workflow_id: str, version: int) -> Optional[Workflow]:
        workflow = self._versions.get((workflow_id, int(version)))
        return copy.deepcopy(workflow) if workflow else None

    async def find_active(self, tenant_id: Optional[str], module_type: str, trigger_type: str) -> list[Workflow]:
        """Active workflows for a (module, trigger) pair visible to a tenant.

        Shared workflows (no tenant) match every tenant.
        """
        module_type, trigger_type = str(module_type).upper(), str(trigger_type).upper()
        return [
            copy.deepcopy(w)
            for w in self._workflows.values()
            if w.active
            and w.module_type == module_type
            and w.trigger_type == trigger_type
            and (w.tenant_id is None or w.tenant_id == tenant_id)
        ]

    async def list_all(self, tenant_id: Optional[str] = None) -> list[Workflow]:
        return [
            copy.deepcopy(w)
            for w in self._workflows.values()
            if tenant_id is None or w.tenant_id in (None, tenant_id)
        ]

    def _require(self, workflow_id: str) -> Workflow:
        workflow = self._workflows.get(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(workflow_id)
        return workflow

    def _store(self, workflow: Workflow) -> None:
        self._workflows[workflow.id] = workflow
        self._versions[(workflow.id, workflow.version)] = copy.deepcopy(workflow)


# ─── Singleton ─────────────────────────────────────────────────

_service: Optional[WorkflowService] = None


def get_workflow_service() -> WorkflowService:
    """Get or create the process-wide workflow repository."""
    global _service
    if _service is None:
        _service = WorkflowService()
    return _service
