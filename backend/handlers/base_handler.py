"""
Base handler interface for all workflow node categories.

One handler is registered per node ``type`` (trigger, condition, data, ...).
Each handler publishes a subtype table through ``operations()`` and the
engine calls ``run()``, which times the dispatch, logs it and converts any
exception into a FAILED result.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional

import structlog

from app.config import Settings
from core.utils import utc_now
from workflow.formula import FormulaEngine
from workflow.models import ExecutionContext, ExecutionResult, Node, ResultStatus
from workflow.resolver import VariableResolver

logger = structlog.get_logger(__name__)

Operation = Callable[[Node, ExecutionContext], Awaitable[ExecutionResult]]

# async (node_ids, context) -> ExecutionResult; set by the engine
BodyRunner = Callable[[list, ExecutionContext], Awaitable[ExecutionResult]]
# async (workflow_id, input_data, parent_context, wait) -> {"executionId", "status", "output", "error"}
SubflowRunner = Callable[[str, dict, ExecutionContext, bool], Awaitable[dict]]


@dataclass
class HandlerServices:
    """Collaborators shared by every handler instance."""

    settings: Settings
    entity_store: Any = None
    activity_store: Any = None
    list_service: Any = None
    notifications: Any = None
    http_executor: Any = None
    assignment: Any = None
    approvals: Any = None
    formula: Optional[FormulaEngine] = None
    clock: Callable[[], datetime] = utc_now
    body_runner: Optional[BodyRunner] = None
    subflow_runner: Optional[SubflowRunner] = None
    functions: Dict[str, Callable] = field(default_factory=dict)
    external_services: Dict[str, Callable] = field(default_factory=dict)

    def __post_init__(self):
        if self.formula is None:
            self.formula = FormulaEngine(clock=self.clock)

    @classmethod
    def default(cls) -> "HandlerServices":
        """Wire the process-wide collaborator singletons."""
        from app.config import get_settings
        from integrations.http_executor import get_http_executor
        from notifications.manager import get_notification_manager
        from services.activity_store import get_activity_store
        from services.approval_service import get_approval_service
        from services.assignment_service import get_assignment_service
        from services.entity_store import get_entity_store
        from services.list_service import get_list_service

        return cls(
            settings=get_settings(),
            entity_store=get_entity_store(),
            activity_store=get_activity_store(),
            list_service=get_list_service(),
            notifications=get_notification_manager(),
            http_executor=get_http_executor(),
            assignment=get_assignment_service(),
            approvals=get_approval_service(),
        )


class NodeHandler(ABC):
    """
    Abstract base class for node category handlers.

    Subclasses must implement:
    - operations() -> {subtype: coroutine method}
    - node_type (class attribute)
    """

    node_type: str = "base"
    display_name: str = "Base Handler"

    def __init__(self, services: HandlerServices):
        self.services = services
        self._operations: Optional[Dict[str, Operation]] = None

    @abstractmethod
    def operations(self) -> Dict[str, Operation]:
        """Map every supported subtype to the coroutine that performs it."""

    @property
    def subtypes(self) -> tuple:
        return tuple(self._table())

    def _table(self) -> Dict[str, Operation]:
        if self._operations is None:
            self._operations = self.operations()
        return self._operations

    async def execute(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        """Dispatch on the node's subtype. Unknown subtypes fail the node."""
        operation = self._table().get(node.subtype)
        if operation is None:
            return ExecutionResult.failed(f"Unknown {self.node_type} subtype: {node.subtype}")
        return await operation(node, context)

    async def run(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        """
        Run the node with timing and error handling.

        This is the main entry point called by the workflow engine.
        """
        start = time.monotonic()
        try:
            logger.info(
                "Node starting",
                node_id=node.id,
                node_type=self.node_type,
                subtype=node.subtype,
            )
            result = await self.execute(node, context)
            result.duration_ms = (time.monotonic() - start) * 1000

            logger.info(
                "Node completed",
                node_id=node.id,
                node_type=self.node_type,
                status=result.status.value,
                outcome=result.outcome,
                duration_ms=round(result.duration_ms, 2),
            )
            return result

        except Exception as e:
            duration_ms = (time.monotonic() - start) * 1000
            logger.error(
                "Node failed",
                node_id=node.id,
                node_type=self.node_type,
                subtype=node.subtype,
                error=str(e),
                duration_ms=round(duration_ms, 2),
            )
            return ExecutionResult(status=ResultStatus.FAILED, error=str(e), duration_ms=duration_ms)

    # ─── Helpers for subclasses ───

    def now(self) -> datetime:
        return self.services.clock()

    @staticmethod
    def resolve(value: Any, context: ExecutionContext) -> str:
        return VariableResolver.resolve(value, context)

    @staticmethod
    def resolve_value(value: Any, context: ExecutionContext) -> Any:
        return VariableResolver.resolve_value(value, context)

    @staticmethod
    def resolve_map(value: Any, context: ExecutionContext) -> dict:
        return VariableResolver.resolve_map(value if isinstance(value, dict) else None, context)

    @staticmethod
    def lookup(path: Optional[str], context: ExecutionContext, default: Any = None) -> Any:
        """Variable at a dotted path, falling back to the trigger payload."""
        if not path:
            return default
        value = VariableResolver.get_value(path, context)
        if value is None:
            value = VariableResolver.get_value(path, context.trigger_data)
        return default if value is None else value
