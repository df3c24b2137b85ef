"""Workflow Execution Engine — resumption-based graph runner.

Walks a workflow graph one node at a time against a shared variable scope:

- Dispatches each node to the handler registered for its type
- Follows the connection named by the node's outcome (``"default"`` unless
  the handler picks another); no connection ends the run as COMPLETED
- Routes failures through an ``"error"`` connection when the node has one
- Suspends on PAUSED / WAITING results: the full context is persisted and
  control returns to the caller; nothing is held in memory across waits
- Resumes by reloading the record and re-dispatching the paused node with
  the resume payload merged into variables
- Runs loop bodies inline and subflows as child executions

Only engine-fatal problems raise: unknown execution, missing workflow
version, dangling node reference, persistence failure. Everything a node
does wrong ends up as a FAILED execution with its message preserved.
"""

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from core.constants import ExecutionStatus, LogLevel, NodeType
from core.exceptions import (
    ExecutionNotFoundError,
    InvalidExecutionStateError,
    NodeNotFoundError,
    WorkflowEngineError,
    WorkflowNotFoundError,
)
from core.logging_config import bind_execution_context, clear_execution_context
from handlers.base_handler import HandlerServices
from handlers.registry import HandlerRegistry
from services.workflow_service import WorkflowService, get_workflow_service
from workflow.models import (
    DEFAULT_OUTCOME,
    ERROR_OUTCOME,
    ExecutedNode,
    ExecutionContext,
    ExecutionResult,
    Node,
    ResultStatus,
    Workflow,
    WorkflowGraph,
)
from workflow.store import ExecutionLogEntry, ExecutionRecord, ExecutionStore, get_execution_store

logger = logging.getLogger(__name__)

MAX_SUBFLOW_DEPTH = 10


class WorkflowEngine:
    """Main workflow execution engine.

    One instance serves every tenant. In-flight runs are tracked only for
    cancellation and for ignoring re-entrant resumes; suspended runs live
    in the execution store.
    """

    def __init__(
        self,
        store: Optional[ExecutionStore] = None,
        workflow_service: Optional[WorkflowService] = None,
        services: Optional[HandlerServices] = None,
        registry: Optional[HandlerRegistry] = None,
    ):
        self.store = store or get_execution_store()
        self.workflow_service = workflow_service or get_workflow_service()
        self.registry = registry or HandlerRegistry(services)
        self.services = self.registry.services
        self.settings = self.services.settings

        self.services.body_runner = self._run_body
        self.services.subflow_runner = self._run_subflow
        if self.services.approvals is not None:
            self.services.approvals.set_resume_callback(self.resume)

        self._running: dict[str, ExecutionContext] = {}
        self._graphs: dict[str, WorkflowGraph] = {}
        self._background: set[asyncio.Task] = set()

    # ─── Entry points ──────────────────────────────────────────

    async def start(
        self,
        workflow: Workflow,
        trigger_data: Optional[dict] = None,
        tenant_id: str = "",
        execution_id: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> ExecutionContext:
        """Start a new execution at the workflow's trigger node.

        Args:
            workflow: Workflow (a specific version) to run
            trigger_data: Payload of the event that started the run
            tenant_id: Tenant the run belongs to
            execution_id: Pre-allocated id, generated when omitted
            metadata: Extra run metadata (e.g. parent execution of a subflow)

        Returns:
            The execution context after the run completed, failed or suspended

        Raises:
            NodeNotFoundError: The graph has no trigger node
            PersistenceError: The execution could not be saved
        """
        triggers = workflow.graph.trigger_nodes()
        if not triggers:
            raise NodeNotFoundError("trigger", workflow.id)

        trigger_data = dict(trigger_data or {})
        context = ExecutionContext(
            execution_id=execution_id or str(uuid.uuid4()),
            workflow_id=workflow.id,
            tenant_id=tenant_id or workflow.tenant_id or "",
            workflow_version=workflow.version,
            variables={**trigger_data, "triggerData": dict(trigger_data)},
            current_node_id=triggers[0].id,
            trigger_data=trigger_data,
            metadata=dict(metadata or {}),
        )
        record = ExecutionRecord(
            execution_id=context.execution_id,
            workflow_id=workflow.id,
            tenant_id=context.tenant_id,
            workflow_version=workflow.version,
            status=ExecutionStatus.RUNNING,
            context=context,
        )

        logger.info(
            f"Starting execution {context.execution_id} of workflow {workflow.id} "
            f"v{workflow.version} for tenant {context.tenant_id}"
        )
        await self.store.save(record)
        await self._log(context, "Execution started", details={"triggerNodeId": triggers[0].id})
        return await self._execute(workflow, record)

    async def resume(self, execution_id: str, resume_data: Optional[dict] = None) -> ExecutionContext:
        """Continue a suspended execution from its paused node.

        The payload is merged into variables; its ``resumeReason`` (default
        ``"manual"``) is visible to the re-dispatched handler. A resume that
        arrives while the same execution is running in this process is
        ignored and returns the live context.

        Raises:
            ExecutionNotFoundError: No record for execution_id
            InvalidExecutionStateError: The execution already finished
            WorkflowNotFoundError: The workflow version it ran is gone
            NodeNotFoundError: The paused node is not in that version
        """
        if execution_id in self._running:
            logger.info(f"Execution {execution_id} is already running; resume ignored")
            return self._running[execution_id]

        record = await self.store.load(execution_id)
        if record is None:
            raise ExecutionNotFoundError(execution_id)
        if execution_id in self._running:
            return self._running[execution_id]
        if record.status.is_terminal:
            raise InvalidExecutionStateError(
                f"Execution {execution_id} is {record.status.value} and cannot be resumed"
            )

        workflow = await self.workflow_service.get_version(record.workflow_id, record.workflow_version)
        if workflow is None:
            raise WorkflowNotFoundError(record.workflow_id, record.workflow_version)

        context = record.context
        if workflow.graph.get(context.current_node_id) is None:
            raise NodeNotFoundError(context.current_node_id, workflow.id)

        payload = dict(resume_data or {})
        context.variables.update(payload)
        context.resume_reason = str(payload.get("resumeReason") or "manual")
        previous = record.status
        record.status = ExecutionStatus.RUNNING
        record.error_message = None

        logger.info(
            f"Resuming execution {execution_id} ({previous.value}) at node "
            f"{context.current_node_id}, reason: {context.resume_reason}"
        )
        await self._log(
            context,
            "Execution resumed",
            node_id=context.current_node_id,
            details={"resumeReason": context.resume_reason, "previousStatus": previous.value},
        )
        return await self._execute(workflow, record)

    async def cancel(self, execution_id: str) -> bool:
        """Cancel an execution.

        A run in progress stops after its current node. A suspended run is
        marked CANCELLED and its open approval requests are cancelled.

        Returns:
            True if cancelled, False if it had already finished

        Raises:
            ExecutionNotFoundError: No record for execution_id
        """
        context = self._running.get(execution_id)
        if context is not None:
            context.metadata["cancelled"] = True
            logger.info(f"Execution {execution_id} marked for cancellation")
            return True

        record = await self.store.load(execution_id)
        if record is None:
            raise ExecutionNotFoundError(execution_id)
        if record.status.is_terminal:
            return False

        self._finish(record, ExecutionStatus.CANCELLED)
        await self.store.save(record)
        if self.services.approvals is not None:
            cancelled = await self.services.approvals.cancel_for_execution(execution_id)
            if cancelled:
                logger.info(f"Cancelled {cancelled} approval request(s) of execution {execution_id}")
        await self._log(record.context, "Execution cancelled", level=LogLevel.WARNING)
        logger.info(f"Execution {execution_id} cancelled")
        return True

    # ─── Traversal ─────────────────────────────────────────────

    async def _execute(self, workflow: Workflow, record: ExecutionRecord) -> ExecutionContext:
        context = record.context
        self._running[context.execution_id] = context
        self._graphs[context.execution_id] = workflow.graph
        bind_execution_context(context.execution_id, context.workflow_id, context.tenant_id)
        try:
            await self._traverse(workflow.graph, record)
        except WorkflowEngineError as e:
            await self._abort(record, e)
            raise
        finally:
            context.resume_reason = None
            self._running.pop(context.execution_id, None)
            self._graphs.pop(context.execution_id, None)
            clear_execution_context()
        return context

    async def _traverse(self, graph: WorkflowGraph, record: ExecutionRecord) -> None:
        context = record.context
        max_steps = self.settings.ENGINE_MAX_STEPS
        steps = 0
        node_id = context.current_node_id

        while node_id is not None:
            if context.metadata.get("cancelled"):
                self._finish(record, ExecutionStatus.CANCELLED)
                await self.store.save(record)
                if self.services.approvals is not None:
                    await self.services.approvals.cancel_for_execution(context.execution_id)
                await self._log(context, "Execution cancelled", level=LogLevel.WARNING)
                logger.info(f"Execution {context.execution_id} cancelled before node {node_id}")
                return

            if steps >= max_steps:
                await self._fail(record, f"Execution exceeded the maximum of {max_steps} steps")
                return

            node = graph.get(node_id)
            if node is None:
                raise NodeNotFoundError(node_id, context.workflow_id)

            context.current_node_id = node.id
            result = await self._dispatch(node, context)
            context.resume_reason = None
            steps += 1

            if result.status == ResultStatus.SUCCESS:
                context.variables.update(result.output)
                node_id = node.next_node_id(result.outcome or DEFAULT_OUTCOME)
                continue

            if result.status == ResultStatus.FAILED:
                handler_id = node.next_node_id(ERROR_OUTCOME)
                if handler_id is None:
                    await self._fail(record, result.error or f"Node {node.id} failed")
                    return
                logger.info(f"Node {node.id} failed, following error connection to {handler_id}")
                context.set_variable("lastError", result.error)
                context.set_variable("lastErrorNodeId", node.id)
                node_id = handler_id
                continue

            # PAUSED / WAITING: keep the pointer on this node
            context.variables.update(result.output)
            status = (
                ExecutionStatus.WAITING_APPROVAL
                if node.type == NodeType.APPROVAL.value
                else ExecutionStatus.PAUSED
            )
            record.status = status
            await self.store.save(record)
            await self._log(context, f"Execution suspended ({status.value})", node_id=node.id)
            logger.info(f"Execution {context.execution_id} suspended at node {node.id} ({status.value})")
            return

        self._finish(record, ExecutionStatus.COMPLETED)
        await self.store.save(record)
        await self._log(context, "Execution completed", details={"durationMs": record.duration_ms})
        logger.info(
            f"Execution {context.execution_id} completed: "
            f"{len(context.executed_nodes)} node(s) in {record.duration_ms}ms"
        )

    async def _dispatch(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        """Run one node and record it in the audit trail and execution log."""
        handler = self.registry.get(node.type)
        if handler is None:
            result = ExecutionResult.failed(f"Unknown node type: {node.type}")
        else:
            result = await handler.run(node, context)

        context.executed_nodes.append(
            ExecutedNode(
                node_id=node.id,
                node_type=node.type,
                subtype=node.subtype,
                status=result.status.value,
                outcome=result.outcome,
                error=result.error,
                duration_ms=round(result.duration_ms, 2),
            )
        )
        await self._log(
            context,
            f"Node {node.id} {result.status.value}",
            level=LogLevel.ERROR if result.status == ResultStatus.FAILED else LogLevel.INFO,
            node_id=node.id,
            details={
                "type": node.type,
                "subtype": node.subtype,
                "outcome": result.outcome,
                "error": result.error,
                "durationMs": round(result.duration_ms, 2),
            },
        )
        return result

    # ─── Loop bodies & subflows ────────────────────────────────

    async def _run_body(self, node_ids: list, context: ExecutionContext) -> ExecutionResult:
        """Run a loop body in order, inline, in the run's variable scope."""
        graph = self._graphs.get(context.execution_id)
        if graph is None:
            return ExecutionResult.failed(f"Execution {context.execution_id} is not running")

        for node_id in node_ids:
            node = graph.get(node_id)
            if node is None:
                return ExecutionResult.failed(f"Loop body node not found: {node_id}")

            result = await self._dispatch(node, context)
            if result.status == ResultStatus.FAILED:
                return result
            if result.status.suspends:
                return ExecutionResult.failed(
                    f"Node {node.id} tried to suspend inside a loop body; suspension inside a loop body is not supported"
                )
            context.variables.update(result.output)

        return ExecutionResult.ok()

    async def _run_subflow(
        self, workflow_id: str, input_data: dict, parent: ExecutionContext, wait: bool = True
    ) -> dict:
        """Start another workflow as a child execution of ``parent``."""
        depth = int(parent.metadata.get("subflowDepth", 0)) + 1
        if depth > MAX_SUBFLOW_DEPTH:
            return self._subflow_result(None, "FAILED", error=f"Subflow nesting deeper than {MAX_SUBFLOW_DEPTH}")

        workflow = await self.workflow_service.get(workflow_id)
        if workflow is None:
            return self._subflow_result(None, "FAILED", error=f"Workflow not found: {workflow_id}")

        child_id = str(uuid.uuid4())
        trigger_data = {
            **(input_data or {}),
            "parentExecutionId": parent.execution_id,
            "parentWorkflowId": parent.workflow_id,
        }
        metadata = {"parentExecutionId": parent.execution_id, "subflowDepth": depth}

        if not wait:
            task = asyncio.create_task(self.start(workflow, trigger_data, parent.tenant_id, child_id, metadata))
            self._background.add(task)
            task.add_done_callback(self._subflow_done)
            logger.info(f"Started subflow {workflow_id} as {child_id} without waiting")
            return self._subflow_result(child_id, "STARTED")

        try:
            child = await self.start(workflow, trigger_data, parent.tenant_id, child_id, metadata)
        finally:
            bind_execution_context(parent.execution_id, parent.workflow_id, parent.tenant_id)

        record = await self.store.load(child.execution_id)
        status = record.status.value if record else ExecutionStatus.FAILED.value
        return self._subflow_result(
            child.execution_id, status, output=dict(child.variables), error=record.error_message if record else None
        )

    def _subflow_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Background subflow failed: {task.exception()}")

    @staticmethod
    def _subflow_result(execution_id: Optional[str], status: str, output: Any = None, error: Optional[str] = None) -> dict:
        return {"executionId": execution_id, "status": status, "output": output, "error": error}

    # ─── Helpers ───────────────────────────────────────────────

    @staticmethod
    def _finish(record: ExecutionRecord, status: ExecutionStatus, error: Optional[str] = None) -> None:
        record.status = status
        record.error_message = error
        record.completed_at = datetime.now(timezone.utc)
        if record.started_at:
            record.duration_ms = int((record.completed_at - record.started_at).total_seconds() * 1000)

    async def _fail(self, record: ExecutionRecord, error: str) -> None:
        self._finish(record, ExecutionStatus.FAILED, error)
        await self.store.save(record)
        await self._log(record.context, f"Execution failed: {error}", level=LogLevel.ERROR)
        logger.error(f"Execution {record.execution_id} failed at node {record.current_node_id}: {error}")

    async def _abort(self, record: ExecutionRecord, error: WorkflowEngineError) -> None:
        """Store a run stopped by an engine error as FAILED so recovery leaves it alone."""
        self._finish(record, ExecutionStatus.FAILED, error.message)
        try:
            await self.store.save(record)
        except WorkflowEngineError as e:
            logger.error(f"Could not mark execution {record.execution_id} as failed: {e.message}")
        logger.error(f"Execution {record.execution_id} aborted at node {record.current_node_id}: {error.message}")

    async def _log(
        self,
        context: ExecutionContext,
        message: str,
        level: LogLevel = LogLevel.INFO,
        node_id: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> None:
        await self.store.append_log(
            ExecutionLogEntry(
                execution_id=context.execution_id,
                message=message,
                level=level.value,
                node_id=node_id,
                details=details or {},
            )
        )

    async def get_execution(self, execution_id: str) -> Optional[ExecutionRecord]:
        return await self.store.load(execution_id)

    def get_running_executions(self) -> dict[str, dict]:
        """Summary of the runs currently being traversed in this process."""
        return {
            eid: {
                "workflow_id": ctx.workflow_id,
                "current_node": ctx.current_node_id,
                "nodes_executed": len(ctx.executed_nodes),
            }
            for eid, ctx in self._running.items()
        }


# ─── Singleton ─────────────────────────────────────────────────

_engine: Optional[WorkflowEngine] = None


def get_workflow_engine() -> WorkflowEngine:
    """Get or create the singleton WorkflowEngine."""
    global _engine
    if _engine is None:
        _engine = WorkflowEngine()
    return _engine
